"""
Reconciliation of an owner's full reminder set against submitted settings
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple, Union
import logging
import threading
import time

from nutri_reminders.utils.wallclock import now_local, parse_hhmm, to_local_naive
from .exceptions import InvalidRule, ReconciliationConflict, ReminderError, StorageUnavailable, WriteConflict
from .metrics import reconcile_failed_total, reconcile_success_total, settings_rejected_total
from .models import Reminder, reminder_id_for
from .recurrence_models import (
    INTERVAL_SNAP_TOLERANCE,
    DailyRule,
    IntervalRule,
    RecurrenceCalculator,
    RecurrenceRule,
    build_day_rule,
)
from .repository import ReminderStore
from .schemas import ReminderSettingsIn, parse_settings

logger = logging.getLogger(__name__)

PayloadFactory = Callable[[str, Optional[str], RecurrenceRule], Dict[str, Any]]


def default_payload(category: str, slot: Optional[str], rule: RecurrenceRule) -> Dict[str, Any]:
    """Routing data only; notification copy is filled in by the delivery side."""
    tag = f"{category}-{slot.replace('_', '-')}" if slot else category
    payload: Dict[str, Any] = {"tag": tag, "category": category, "data": {"rule": rule.kind.value}}
    if slot:
        payload["slot"] = slot
    at = getattr(rule, "time", None)
    if at is not None:
        payload["data"]["time"] = f"{at.hour:02d}:{at.minute:02d}"
    return payload


def plan_rules(settings: ReminderSettingsIn) -> List[Tuple[str, Optional[str], RecurrenceRule]]:
    """(category, slot, rule) for every enabled category, in a stable order."""
    planned: List[Tuple[str, Optional[str], RecurrenceRule]] = []

    meal = settings.meal_reminders
    if meal and meal.enabled:
        for slot, at in meal.slots():
            planned.append(("meal", slot, DailyRule(time=parse_hhmm(at))))

    water = settings.water_reminders
    if water and water.enabled:
        planned.append((
            "water",
            None,
            IntervalRule(
                interval_minutes=water.interval_minutes,
                window_start=parse_hhmm(water.start_time),
                window_end=parse_hhmm(water.end_time),
            ),
        ))

    # Day-based categories collapse to a daily rule when every day is selected
    for category, section in (
        ("workout", settings.workout_reminders),
        ("weight", settings.weight_reminders),
        ("streak", settings.streak_reminders),
    ):
        if section and section.enabled:
            planned.append((category, None, build_day_rule(parse_hhmm(section.time), section.days)))

    for category, section in (
        ("goal", settings.goal_reminders),
        ("summary", settings.summary_reminders),
    ):
        if section and section.enabled:
            planned.append((category, None, DailyRule(time=parse_hhmm(section.time))))

    return planned


@dataclass
class ReconcileResult:
    owner_id: str
    reminders: List[Reminder]
    rejected: Dict[str, InvalidRule] = field(default_factory=dict)
    method: str = "none"  # upsert | insert | none


class Reconciler:
    """Replaces an owner's whole reminder set from their settings.

    Delete everything, wait for the delete to settle, then upsert the new set
    by id. If the upsert fails the set is deleted again and plainly inserted;
    a second failure is raised to the caller. Calls for the same owner are
    serialized.
    """

    def __init__(
        self,
        store: ReminderStore,
        notifier=None,
        payload_factory: PayloadFactory = default_payload,
        clock: Callable[[], datetime] = now_local,
        sleep: Callable[[float], None] = time.sleep,
        settle_seconds: float = 0.1,
        retry_settle_seconds: float = 0.2,
        tolerance: timedelta = INTERVAL_SNAP_TOLERANCE,
    ):
        self.store = store
        self.notifier = notifier
        self.payload_factory = payload_factory
        self.settle_seconds = settle_seconds
        self.retry_settle_seconds = retry_settle_seconds
        self.tolerance = tolerance
        self._clock = clock
        self._sleep = sleep
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def now(self) -> datetime:
        return to_local_naive(self._clock())

    @contextmanager
    def _owner_lock(self, owner_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(owner_id, threading.Lock())
        with lock:
            yield

    def reconcile(
        self,
        owner_id: str,
        settings: Union[ReminderSettingsIn, Mapping[str, Any]],
    ) -> ReconcileResult:
        parsed, rejected = parse_settings(settings)
        for category, error in rejected.items():
            settings_rejected_total.inc()
            logger.warning(f"⚠️ [Reconcile] Skipping {category} for owner {owner_id}: {error.reason}")

        with self._owner_lock(owner_id):
            result = self._replace(owner_id, parsed, rejected)

        reconcile_success_total.inc()
        if parsed.enabled:
            self._notify(owner_id, [r.id for r in result.reminders])
        return result

    def set_enabled(self, reminder_id: str, enabled: bool) -> Optional[Reminder]:
        """Toggle one reminder; re-enabling re-seeds ``next_trigger`` once."""
        next_trigger = None
        if enabled:
            current = self.store.get(reminder_id)
            if current is None:
                return None
            next_trigger = RecurrenceCalculator.calculate_next_occurrence(
                current.recurrence_rule, self.now(), tolerance=self.tolerance
            )
        reminder = self.store.set_enabled(reminder_id, enabled, next_trigger=next_trigger)
        if reminder is not None:
            logger.info(f"🔁 [Reconcile] {reminder_id} enabled={enabled} next={reminder.next_trigger}")
            self._notify(reminder.owner_id, [reminder_id])
        return reminder

    def _replace(
        self,
        owner_id: str,
        settings: ReminderSettingsIn,
        rejected: Dict[str, InvalidRule],
    ) -> ReconcileResult:
        purged = True
        try:
            removed = self.store.delete_all_for_owner(owner_id)
            logger.info(f"🧹 [Reconcile] Deleted {removed} existing reminders for owner {owner_id}")
        except StorageUnavailable as e:
            # The upsert below still replaces rows by id; leftovers are purged afterwards
            purged = False
            logger.warning(f"⚠️ [Reconcile] Delete failed for owner {owner_id}, continuing with upsert: {e}")

        self._sleep(self.settle_seconds)

        if not settings.enabled:
            logger.info(f"🔕 [Reconcile] Reminders disabled for owner {owner_id}")
            if not purged:
                self._purge_leftovers(owner_id)
            return ReconcileResult(owner_id=owner_id, reminders=[], rejected=rejected)

        now = self.now()
        planned = plan_rules(settings)
        if not planned:
            logger.info(f"ℹ️ [Reconcile] No reminders to save for owner {owner_id}")
            if not purged:
                self._purge_leftovers(owner_id)
            return ReconcileResult(owner_id=owner_id, reminders=[], rejected=rejected)

        try:
            saved = self.store.upsert_many(self._build(owner_id, planned, now))
            method = "upsert"
        except ReminderError as e:
            logger.warning(f"⚠️ [Reconcile] Upsert failed for owner {owner_id} ({e}), trying delete + insert")
            saved = self._fallback_insert(owner_id, planned, now)
            method = "insert"
            purged = True

        if not purged:
            self._purge_leftovers(owner_id, keep={r.id for r in saved})

        logger.info(f"✅ [Reconcile] Saved {len(saved)} reminders for owner {owner_id} ({method})")
        for r in saved:
            logger.debug(f"[Reconcile] - {r.id}: next trigger {r.next_trigger}")
        return ReconcileResult(owner_id=owner_id, reminders=saved, rejected=rejected, method=method)

    def _purge_leftovers(self, owner_id: str, keep: Optional[Set[str]] = None) -> None:
        """Second delete pass after the initial delete failed. Errors here propagate."""
        keep = keep or set()
        try:
            stale = [r.id for r in self.store.get_by_owner(owner_id) if r.id not in keep]
            for reminder_id in stale:
                self.store.delete(reminder_id)
        except StorageUnavailable:
            reconcile_failed_total.inc()
            logger.error(f"❌ [Reconcile] Could not remove stale reminders for owner {owner_id}")
            raise
        if stale:
            logger.info(f"🧹 [Reconcile] Removed {len(stale)} stale reminders for owner {owner_id}")

    def _fallback_insert(
        self,
        owner_id: str,
        planned: List[Tuple[str, Optional[str], RecurrenceRule]],
        now: datetime,
    ) -> List[Reminder]:
        try:
            self.store.delete_all_for_owner(owner_id)
            self._sleep(self.retry_settle_seconds)
            return self.store.insert_many(self._build(owner_id, planned, now))
        except WriteConflict as e:
            reconcile_failed_total.inc()
            logger.error(f"❌ [Reconcile] Fallback insert also failed for owner {owner_id}: {e}")
            raise ReconciliationConflict(owner_id, str(e)) from e
        except StorageUnavailable:
            reconcile_failed_total.inc()
            logger.error(f"❌ [Reconcile] Store unavailable during fallback for owner {owner_id}")
            raise

    def _build(
        self,
        owner_id: str,
        planned: List[Tuple[str, Optional[str], RecurrenceRule]],
        now: datetime,
    ) -> List[Reminder]:
        reminders = []
        for category, slot, rule in planned:
            reminders.append(Reminder(
                id=reminder_id_for(owner_id, category, slot),
                owner_id=owner_id,
                category=category,
                rule=rule.to_dict(),
                payload=self.payload_factory(category, slot, rule),
                enabled=True,
                next_trigger=RecurrenceCalculator.calculate_next_occurrence(rule, now, tolerance=self.tolerance),
                last_triggered=None,
                trigger_count=0,
                created_at=now,
                updated_at=now,
            ))
        return reminders

    def _notify(self, owner_id: str, reminder_ids: List[str]) -> None:
        if self.notifier is not None:
            self.notifier.notify(owner_id, reminder_ids)
