"""
Reminder row - one schedulable unit per (owner, category[, slot])
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nutri_reminders.db.base import Base
from nutri_reminders.utils.wallclock import now_local
from .recurrence_models import RecurrenceRule, rule_from_dict

CATEGORIES = ("meal", "water", "workout", "goal", "weight", "streak", "summary")


def reminder_id_for(owner_id: str, category: str, slot: Optional[str] = None) -> str:
    """Deterministic id so re-deriving settings replaces rather than duplicates."""
    if slot:
        return f"{category}-{slot.replace('_', '-')}-{owner_id}"
    return f"{category}-{owner_id}"


class Reminder(Base):
    __tablename__ = "reminders"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False)

    # Rule snapshot chosen at (re)creation time; opaque delivery payload
    rule: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    next_trigger: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_triggered: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    trigger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_local)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=now_local)

    __table_args__ = (
        Index("ix_reminders_enabled_next_trigger", "enabled", "next_trigger"),
        Index("ix_reminders_owner_next_trigger", "owner_id", "next_trigger"),
    )

    @property
    def recurrence_rule(self) -> RecurrenceRule:
        return rule_from_dict(self.rule)

    def __repr__(self) -> str:
        return (
            f"<Reminder id={self.id} owner={self.owner_id} enabled={self.enabled} "
            f"next_trigger={self.next_trigger} count={self.trigger_count}>"
        )
