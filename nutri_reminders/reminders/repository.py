from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Sequence
import logging

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from nutri_reminders.utils.wallclock import now_local
from .exceptions import StorageUnavailable, WriteConflict
from .models import Reminder

logger = logging.getLogger(__name__)


class ReminderStore:
    """Durable reminder collection keyed by id.

    Query paths: by owner, and enabled-and-due ordered by ``next_trigger``.
    Each method runs in its own transaction, so a single ``put`` is atomic;
    nothing is atomic across separate calls.

    A store built without a session factory behaves like an unreachable
    database: every operation raises ``StorageUnavailable``.
    """

    def __init__(self, session_factory: Optional[sessionmaker]):
        self._session_factory = session_factory

    @property
    def available(self) -> bool:
        return self._session_factory is not None

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise StorageUnavailable("reminder store is not configured")
        db: Session = self._session_factory()
        try:
            yield db
        except IntegrityError as e:
            raise WriteConflict(str(e.orig)) from e
        except (OperationalError, InterfaceError) as e:
            logger.error(f"❌ [Store] Persistence unavailable: {e.orig!r}")
            raise StorageUnavailable(str(e.orig)) from e
        finally:
            db.close()

    def ping(self) -> bool:
        """Round-trip a trivial query; False when the database cannot be reached."""
        try:
            with self._session() as db:
                db.execute(text("SELECT 1"))
            return True
        except StorageUnavailable as e:
            logger.error(f"❌ [Store] Health check failed: {e}")
            return False

    # --- point operations ---

    def get(self, reminder_id: str) -> Optional[Reminder]:
        with self._session() as db:
            return db.get(Reminder, reminder_id)

    def put(self, reminder: Reminder) -> Reminder:
        """Upsert by id; always refreshes ``updated_at``."""
        with self._session() as db:
            merged = self._merge(db, reminder)
            db.commit()
            return merged

    def delete(self, reminder_id: str) -> bool:
        with self._session() as db:
            result = db.execute(delete(Reminder).where(Reminder.id == reminder_id))
            db.commit()
            return result.rowcount > 0

    def set_enabled(
        self,
        reminder_id: str,
        enabled: bool,
        next_trigger: Optional[datetime] = None,
    ) -> Optional[Reminder]:
        with self._session() as db:
            reminder = db.get(Reminder, reminder_id)
            if reminder is None:
                return None
            reminder.enabled = enabled
            if next_trigger is not None:
                reminder.next_trigger = next_trigger
            reminder.updated_at = now_local()
            db.commit()
            return reminder

    # --- owner-scoped operations ---

    def get_by_owner(self, owner_id: str) -> List[Reminder]:
        stmt = (
            select(Reminder)
            .where(Reminder.owner_id == owner_id)
            .order_by(Reminder.next_trigger.asc(), Reminder.id.asc())
        )
        with self._session() as db:
            return list(db.execute(stmt).scalars())

    def get_upcoming(self, owner_id: str, horizon: datetime) -> List[Reminder]:
        stmt = (
            select(Reminder)
            .where(Reminder.owner_id == owner_id)
            .where(Reminder.enabled.is_(True))
            .where(Reminder.next_trigger <= horizon)
            .order_by(Reminder.next_trigger.asc())
        )
        with self._session() as db:
            return list(db.execute(stmt).scalars())

    def delete_all_for_owner(self, owner_id: str) -> int:
        with self._session() as db:
            result = db.execute(delete(Reminder).where(Reminder.owner_id == owner_id))
            db.commit()
            return result.rowcount

    # --- batch writes used by reconciliation ---

    def upsert_many(self, reminders: Sequence[Reminder]) -> List[Reminder]:
        with self._session() as db:
            merged = [self._merge(db, r) for r in reminders]
            db.commit()
            return merged

    def insert_many(self, reminders: Sequence[Reminder]) -> List[Reminder]:
        """Plain insert; raises ``WriteConflict`` if any id already exists."""
        ts = now_local()
        with self._session() as db:
            for r in reminders:
                r.created_at = r.created_at or ts
                r.updated_at = ts
            db.add_all(list(reminders))
            db.commit()
            return list(reminders)

    # --- trigger loop ---

    def get_due(self, horizon: datetime, limit: Optional[int] = None) -> List[Reminder]:
        stmt = (
            select(Reminder)
            .where(Reminder.enabled.is_(True))
            .where(Reminder.next_trigger <= horizon)
            .order_by(Reminder.next_trigger.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        with self._session() as db:
            return list(db.execute(stmt).scalars())

    def advance(
        self,
        reminder: Reminder,
        next_trigger: datetime,
        fired_at: Optional[datetime] = None,
    ) -> bool:
        """Write back the loop-owned fields of a reminder that was due.

        The update only applies while the row still holds the ``next_trigger``
        the loop read; a row replaced by reconciliation in the meantime is left
        alone. ``fired_at`` set means the reminder fired: ``last_triggered`` is
        recorded and ``trigger_count`` incremented. Returns False when the row
        was gone or replaced.
        """
        values = {"next_trigger": next_trigger, "updated_at": now_local()}
        if fired_at is not None:
            values["last_triggered"] = fired_at
            values["trigger_count"] = Reminder.trigger_count + 1
        stmt = (
            update(Reminder)
            .where(Reminder.id == reminder.id)
            .where(Reminder.next_trigger == reminder.next_trigger)
            .values(**values)
        )
        with self._session() as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount > 0

    @staticmethod
    def _merge(db: Session, reminder: Reminder) -> Reminder:
        ts = now_local()
        if reminder.created_at is None:
            existing = db.get(Reminder, reminder.id)
            reminder.created_at = existing.created_at if existing is not None else ts
        reminder.updated_at = ts
        return db.merge(reminder)
