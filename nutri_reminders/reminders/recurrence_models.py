"""
Recurrence rules and the next-trigger calculator.

Weekday indices are Sunday-based: 0 = Sunday ... 6 = Saturday.
"""
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union
import logging

from nutri_reminders.utils.wallclock import at_time, format_hhmm, parse_hhmm, sunday_weekday

logger = logging.getLogger(__name__)

ALL_DAYS: FrozenSet[int] = frozenset(range(7))

# Anti-flicker window for interval rules: a grid point this close to the
# reference instant is returned instead of advancing to the next one.
INTERVAL_SNAP_TOLERANCE = timedelta(seconds=30)

# Used when a rule cannot be evaluated
FALLBACK_DELAY = timedelta(hours=1)


class RuleKind(str, Enum):
    """Types of recurrence rules"""
    DAILY = "daily"
    WEEKLY = "weekly"
    INTERVAL = "interval"
    ADAPTIVE = "adaptive"


@dataclass(frozen=True)
class DailyRule:
    """Fires once per calendar day at ``time``."""
    time: time
    kind: RuleKind = field(default=RuleKind.DAILY, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "time": format_hhmm(self.time)}


@dataclass(frozen=True)
class WeeklyRule:
    """Fires at ``time`` on each listed weekday (0 = Sunday)."""
    time: time
    days_of_week: FrozenSet[int]
    kind: RuleKind = field(default=RuleKind.WEEKLY, init=False)

    @property
    def is_every_day(self) -> bool:
        return frozenset(self.days_of_week) >= ALL_DAYS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "time": format_hhmm(self.time),
            "days_of_week": sorted(self.days_of_week),
        }


@dataclass(frozen=True)
class IntervalRule:
    """Fires every ``interval_minutes`` inside ``[window_start, window_end)`` each day."""
    interval_minutes: int
    window_start: time
    window_end: time
    kind: RuleKind = field(default=RuleKind.INTERVAL, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "interval_minutes": self.interval_minutes,
            "window_start": format_hhmm(self.window_start),
            "window_end": format_hhmm(self.window_end),
        }


@dataclass(frozen=True)
class AdaptiveRule:
    """Delegates to ``base``; reserved for behaviour-based adjustment."""
    base: "RecurrenceRule"
    kind: RuleKind = field(default=RuleKind.ADAPTIVE, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "base": self.base.to_dict()}


RecurrenceRule = Union[DailyRule, WeeklyRule, IntervalRule, AdaptiveRule]


@dataclass(frozen=True)
class PriorState:
    """What the trigger loop knows about a reminder that just fired."""
    last_fired: Optional[datetime] = None


def rule_from_dict(data: Dict[str, Any]) -> RecurrenceRule:
    """Parse a stored rule dict back into the correct rule class.

    Raises ValueError, KeyError or TypeError on malformed data.
    """
    if not isinstance(data, dict) or "kind" not in data:
        raise ValueError(f"not a recurrence rule: {data!r}")
    kind = RuleKind(data["kind"])
    if kind == RuleKind.DAILY:
        return DailyRule(time=parse_hhmm(data["time"]))
    if kind == RuleKind.WEEKLY:
        return WeeklyRule(
            time=parse_hhmm(data["time"]),
            days_of_week=frozenset(int(d) for d in data.get("days_of_week", [])),
        )
    if kind == RuleKind.INTERVAL:
        return IntervalRule(
            interval_minutes=int(data["interval_minutes"]),
            window_start=parse_hhmm(data["window_start"]),
            window_end=parse_hhmm(data["window_end"]),
        )
    return AdaptiveRule(base=rule_from_dict(data["base"]))


class RecurrenceCalculator:
    """Calculates the next trigger instant for recurrence rules.

    Pure and deterministic. Rules are validated before they get here, so the
    calculator never raises: anything it cannot evaluate is scheduled one hour
    after the reference instant.

    Without ``prior_state`` an interval rule may return a grid point up to
    ``tolerance`` before the reference (anti-flicker snap). With
    ``prior_state`` the result is always strictly after both the reference and
    ``prior_state.last_fired``.
    """

    @staticmethod
    def calculate_next_occurrence(
        rule: RecurrenceRule,
        reference: datetime,
        prior_state: Optional[PriorState] = None,
        tolerance: timedelta = INTERVAL_SNAP_TOLERANCE,
    ) -> datetime:
        snap = True
        if prior_state is not None:
            snap = False
            if prior_state.last_fired is not None and prior_state.last_fired > reference:
                reference = prior_state.last_fired
        try:
            return RecurrenceCalculator._dispatch(rule, reference, tolerance, snap)
        except Exception as e:
            logger.warning(f"⚠️ [Recurrence] Could not evaluate {rule!r}: {e!r}; falling back")
            return reference + FALLBACK_DELAY

    @staticmethod
    def _dispatch(rule: RecurrenceRule, reference: datetime, tolerance: timedelta, snap: bool) -> datetime:
        if isinstance(rule, AdaptiveRule):
            return RecurrenceCalculator._dispatch(rule.base, reference, tolerance, snap)
        if isinstance(rule, WeeklyRule):
            return RecurrenceCalculator._calculate_weekly_next(rule, reference)
        if isinstance(rule, IntervalRule):
            return RecurrenceCalculator._calculate_interval_next(rule, reference, tolerance, snap)
        if isinstance(rule, DailyRule):
            return RecurrenceCalculator._calculate_daily_next(rule.time, reference)
        return reference + FALLBACK_DELAY

    @staticmethod
    def _calculate_daily_next(at: time, reference: datetime) -> datetime:
        candidate = at_time(reference.date(), at)
        # If time has passed today, schedule for tomorrow
        if candidate <= reference:
            candidate += timedelta(days=1)
        return candidate

    @staticmethod
    def _calculate_weekly_next(rule: WeeklyRule, reference: datetime) -> datetime:
        days = {d for d in rule.days_of_week if 0 <= d <= 6}
        if not days:
            return reference + FALLBACK_DELAY
        # All seven days selected: same as daily
        if rule.is_every_day:
            return RecurrenceCalculator._calculate_daily_next(rule.time, reference)

        today = sunday_weekday(reference)
        # Offset 7 covers a single selected day that has already passed today
        for offset in range(8):
            if (today + offset) % 7 not in days:
                continue
            candidate = at_time(reference.date() + timedelta(days=offset), rule.time)
            if candidate > reference:
                return candidate
        return reference + FALLBACK_DELAY

    @staticmethod
    def _calculate_interval_next(
        rule: IntervalRule,
        reference: datetime,
        tolerance: timedelta,
        snap: bool,
    ) -> datetime:
        if rule.interval_minutes <= 0 or rule.window_end <= rule.window_start:
            return reference + FALLBACK_DELAY

        window_start = at_time(reference.date(), rule.window_start)
        window_end = at_time(reference.date(), rule.window_end)
        if reference < window_start:
            return window_start

        period = timedelta(minutes=rule.interval_minutes)
        periods_elapsed = (reference - window_start) // period
        current = window_start + periods_elapsed * period
        if snap and reference - current <= tolerance:
            candidate = current
        else:
            candidate = current + period

        if candidate >= window_end:
            return window_start + timedelta(days=1)
        return candidate


def build_day_rule(at: time, days: Iterable[int]) -> RecurrenceRule:
    """Weekly rule for the given days, or a daily rule when all seven are selected."""
    day_set = frozenset(days)
    if day_set >= ALL_DAYS:
        return DailyRule(time=at)
    return WeeklyRule(time=at, days_of_week=day_set)
