"""Error taxonomy for the reminder scheduler."""
from typing import Optional


class ReminderError(Exception):
    """Base class for reminder scheduler errors."""


class StorageUnavailable(ReminderError):
    """The persistence medium is missing or unreachable."""


class WriteConflict(ReminderError):
    """A batch write collided with existing rows."""


class ReconciliationConflict(ReminderError):
    """An owner's reminder set could not be installed, even after the fallback."""

    def __init__(self, owner_id: str, message: str):
        super().__init__(f"reconciliation failed for owner {owner_id}: {message}")
        self.owner_id = owner_id


class DeliveryFailure(ReminderError):
    """The delivery sink failed or timed out for one reminder."""

    def __init__(self, reminder_id: str, reason: str):
        super().__init__(f"delivery failed for {reminder_id}: {reason}")
        self.reminder_id = reminder_id
        self.reason = reason


class InvalidRule(ReminderError):
    """A settings category is malformed and cannot produce a recurrence rule."""

    def __init__(self, category: str, reason: str, slot: Optional[str] = None):
        where = f"{category}.{slot}" if slot else category
        super().__init__(f"invalid {where} settings: {reason}")
        self.category = category
        self.slot = slot
        self.reason = reason
