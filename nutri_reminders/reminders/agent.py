"""
Background delivery agent: scans for due reminders, delivers them and
reschedules each one forward.

One agent per process, owning its store handle, delivery pool and timer.
It is the only writer of ``next_trigger``, ``last_triggered`` and
``trigger_count``. Everything it needs to resume after a restart lives in
the store.
"""
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Set
import logging
import threading

from nutri_reminders.utils.wallclock import now_local, to_local_naive
from .dispatcher import DeliverySink
from .exceptions import DeliveryFailure, ReminderError, StorageUnavailable
from .metrics import (
    reminders_dispatch_failed_total,
    reminders_dispatch_success_total,
    reminders_missed_total,
    scheduler_scans_total,
)
from .models import Reminder
from .recurrence_models import (
    FALLBACK_DELAY,
    INTERVAL_SNAP_TOLERANCE,
    PriorState,
    RecurrenceCalculator,
)
from .repository import ReminderStore

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    FIRING = "firing"


@dataclass
class ScanReport:
    fired: int = 0
    failed: int = 0
    missed: int = 0
    stale: int = 0  # rows replaced or deleted while the scan held them


class ReminderAgent:
    """Trigger loop: ``Idle -> Scanning -> (Firing)* -> Idle``.

    Runs on a periodic timer and on demand through ``wake``. Each due
    reminder is handled on its own, so one failing delivery never stops
    the rest of the batch. A reminder is always moved forward after it is
    processed, whatever the sink reported.
    """

    def __init__(
        self,
        store: ReminderStore,
        sink: DeliverySink,
        clock: Callable[[], datetime] = now_local,
        scan_interval_seconds: float = 180,
        delivery_timeout: float = 10.0,
        delivery_workers: int = 4,
        overdue_grace: Optional[timedelta] = None,
        batch_size: Optional[int] = 500,
        tolerance: timedelta = INTERVAL_SNAP_TOLERANCE,
    ):
        self.store = store
        self.sink = sink
        self.scan_interval_seconds = scan_interval_seconds
        self.delivery_timeout = delivery_timeout
        self.overdue_grace = overdue_grace
        self.batch_size = batch_size
        self.tolerance = tolerance
        self.delivery_workers = delivery_workers
        self._clock = clock
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight: Set[Future] = set()
        self._pool_lock = threading.Lock()
        self._state = AgentState.IDLE
        self._scan_lock = threading.Lock()
        self._wake_event = threading.Event()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # --- lifecycle ---

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="reminder-agent", daemon=True)
        self._thread.start()
        logger.info(f"🚀 [Agent] Started (scan every {self.scan_interval_seconds}s, sink={self.sink.name})")

    def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        with self._pool_lock:
            executor, self._executor = self._executor, None
            self._in_flight = set()
        if executor is not None:
            # Hung deliveries are abandoned, not awaited
            executor.shutdown(wait=False, cancel_futures=True)
        logger.info("🛑 [Agent] Stopped")

    def wake(self, signal=None) -> None:
        """Request an immediate scan. Safe to call from any thread."""
        if signal is not None:
            logger.info(f"⏰ [Agent] Wake for owner {signal.owner_id} ({len(signal.reminder_ids)} reminders changed)")
        self._wake_event.set()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                # Keep the timer alive; the next tick retries from the store
                logger.exception("❌ [Agent] Scan crashed")
            self._wake_event.wait(self.scan_interval_seconds)
            self._wake_event.clear()

    # --- scanning ---

    def run_once(self) -> ScanReport:
        """One full scan: every enabled reminder due at or before now."""
        report = ScanReport()
        with self._scan_lock:
            now = to_local_naive(self._clock())
            self._state = AgentState.SCANNING
            scheduler_scans_total.inc()
            try:
                try:
                    due = self.store.get_due(now, limit=self.batch_size)
                except StorageUnavailable as e:
                    logger.warning(f"⚠️ [Agent] Store unavailable, treating as no reminders: {e}")
                    return report

                if due:
                    logger.info(f"🔍 [Agent] {len(due)} reminders due at {now}")
                for reminder in due:
                    try:
                        self._process(reminder, now, report)
                    except ReminderError as e:
                        logger.error(f"❌ [Agent] Could not reschedule {reminder.id}: {e}")
                    except Exception:
                        logger.exception(f"❌ [Agent] Unexpected error processing {reminder.id}")
            finally:
                self._state = AgentState.IDLE

        if report.fired or report.failed or report.missed:
            logger.info(
                f"✅ [Agent] Scan done: fired={report.fired} failed={report.failed} "
                f"missed={report.missed} stale={report.stale}"
            )
        return report

    def _process(self, reminder: Reminder, now: datetime, report: ScanReport) -> None:
        if self.overdue_grace is not None and now - reminder.next_trigger > self.overdue_grace:
            next_trigger = self._next_trigger(reminder, now)
            if self.store.advance(reminder, next_trigger):
                reminders_missed_total.inc()
                report.missed += 1
                logger.info(f"⏭️ [Agent] {reminder.id} missed ({reminder.next_trigger}), next {next_trigger}")
            else:
                report.stale += 1
            return

        self._state = AgentState.FIRING
        try:
            self._deliver(reminder)
            reminders_dispatch_success_total.inc()
            report.fired += 1
        except DeliveryFailure as e:
            reminders_dispatch_failed_total.inc()
            report.failed += 1
            logger.warning(f"⚠️ [Agent] {e}")

        next_trigger = self._next_trigger(reminder, now)
        if self.store.advance(reminder, next_trigger, fired_at=now):
            logger.debug(f"[Agent] {reminder.id} next trigger {next_trigger}")
        else:
            report.stale += 1
            logger.info(f"ℹ️ [Agent] {reminder.id} changed during scan, leaving the new row alone")

    def _deliver(self, reminder: Reminder) -> None:
        payload = dict(reminder.payload or {})
        payload.setdefault("reminder_id", reminder.id)
        payload.setdefault("owner_id", reminder.owner_id)
        future = self._submit(reminder, payload)
        try:
            ok = future.result(timeout=self.delivery_timeout)
        except FutureTimeout:
            future.cancel()
            raise DeliveryFailure(reminder.id, f"timed out after {self.delivery_timeout}s")
        except Exception as e:
            self._release(self._in_flight, future)
            raise DeliveryFailure(reminder.id, repr(e)) from e
        # The done callback may not have run yet
        self._release(self._in_flight, future)
        if not ok:
            raise DeliveryFailure(reminder.id, f"{self.sink.name} sink reported failure")

    def _submit(self, reminder: Reminder, payload: dict) -> Future:
        """Hand a delivery to the pool, refusing when every worker is still busy."""
        with self._pool_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.delivery_workers, thread_name_prefix="reminder-delivery"
                )
            if len(self._in_flight) >= self.delivery_workers:
                raise DeliveryFailure(
                    reminder.id, f"delivery pool saturated ({len(self._in_flight)} deliveries still running)"
                )
            future = self._executor.submit(self.sink.deliver, payload)
            in_flight = self._in_flight
            in_flight.add(future)
        future.add_done_callback(lambda f: self._release(in_flight, f))
        return future

    def _release(self, in_flight: Set[Future], future: Future) -> None:
        with self._pool_lock:
            in_flight.discard(future)

    def _next_trigger(self, reminder: Reminder, now: datetime) -> datetime:
        try:
            rule = reminder.recurrence_rule
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"⚠️ [Agent] Unreadable rule on {reminder.id}: {e}; retrying in an hour")
            return now + FALLBACK_DELAY
        return RecurrenceCalculator.calculate_next_occurrence(
            rule, now, prior_state=PriorState(last_fired=now), tolerance=self.tolerance
        )
