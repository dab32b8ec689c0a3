"""
Settings input and read schemas for reminders
"""
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from nutri_reminders.utils.wallclock import parse_hhmm
from .exceptions import InvalidRule

WEEKDAYS = [1, 2, 3, 4, 5]  # Monday..Friday, 0 = Sunday
EVERY_DAY = [0, 1, 2, 3, 4, 5, 6]


def _check_hhmm(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    t = parse_hhmm(value)
    return f"{t.hour:02d}:{t.minute:02d}"


def _check_days(value: List[int]) -> List[int]:
    if not value:
        raise ValueError("at least one weekday is required")
    days = sorted({int(d) for d in value})
    if days[0] < 0 or days[-1] > 6:
        raise ValueError("weekdays must be between 0 (Sunday) and 6 (Saturday)")
    return days


class CategorySettings(BaseModel):
    """Common shape of a per-category settings block. Accepts snake_case or camelCase keys."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    enabled: bool = False

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # Absent and null fields both fall back to defaults
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if v is not None}
        return data


class MealReminderSettings(CategorySettings):
    breakfast: Optional[str] = None
    lunch: Optional[str] = None
    dinner: Optional[str] = None
    morning_snack: Optional[str] = None
    evening_snack: Optional[str] = None

    @field_validator("breakfast", "lunch", "dinner", "morning_snack", "evening_snack")
    @classmethod
    def _v_time(cls, v):
        return _check_hhmm(v)

    def slots(self) -> List[Tuple[str, str]]:
        """Configured (slot, time) pairs in a stable order."""
        order = ("breakfast", "lunch", "dinner", "morning_snack", "evening_snack")
        return [(slot, getattr(self, slot)) for slot in order if getattr(self, slot)]


class WaterReminderSettings(CategorySettings):
    interval_minutes: int = Field(default=60, ge=1, le=1440)
    start_time: str = "08:00"
    end_time: str = "22:00"

    @field_validator("start_time", "end_time")
    @classmethod
    def _v_time(cls, v):
        return _check_hhmm(v)

    @model_validator(mode="after")
    def _window_order(self) -> "WaterReminderSettings":
        if parse_hhmm(self.end_time) <= parse_hhmm(self.start_time):
            raise ValueError("end_time must be later than start_time")
        return self


class _TimedDaysSettings(CategorySettings):
    time: str
    days: List[int]

    @field_validator("time")
    @classmethod
    def _v_time(cls, v):
        return _check_hhmm(v)

    @field_validator("days")
    @classmethod
    def _v_days(cls, v):
        return _check_days(v)


class WorkoutReminderSettings(_TimedDaysSettings):
    time: str = "18:00"
    days: List[int] = Field(default_factory=lambda: list(WEEKDAYS))


class WeightReminderSettings(_TimedDaysSettings):
    time: str = "08:00"
    days: List[int] = Field(default_factory=lambda: list(EVERY_DAY))


class StreakReminderSettings(_TimedDaysSettings):
    time: str = "19:00"
    days: List[int] = Field(
        default_factory=lambda: list(WEEKDAYS),
        validation_alias=AliasChoices("days", "check_days", "checkDays"),
    )


class _TimedSettings(CategorySettings):
    time: str

    @field_validator("time")
    @classmethod
    def _v_time(cls, v):
        return _check_hhmm(v)


class GoalReminderSettings(_TimedSettings):
    time: str = Field(default="20:00", validation_alias=AliasChoices("time", "check_progress_time", "checkProgressTime"))


class SummaryReminderSettings(_TimedSettings):
    time: str = "20:00"


class ReminderSettingsIn(BaseModel):
    """Typed reminder settings for one owner. Absent categories are disabled."""
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    meal_reminders: Optional[MealReminderSettings] = None
    water_reminders: Optional[WaterReminderSettings] = None
    workout_reminders: Optional[WorkoutReminderSettings] = None
    goal_reminders: Optional[GoalReminderSettings] = None
    weight_reminders: Optional[WeightReminderSettings] = None
    streak_reminders: Optional[StreakReminderSettings] = None
    summary_reminders: Optional[SummaryReminderSettings] = None


# category -> (settings key, model)
CATEGORY_SETTINGS: Dict[str, Tuple[str, Type[CategorySettings]]] = {
    "meal": ("meal_reminders", MealReminderSettings),
    "water": ("water_reminders", WaterReminderSettings),
    "workout": ("workout_reminders", WorkoutReminderSettings),
    "goal": ("goal_reminders", GoalReminderSettings),
    "weight": ("weight_reminders", WeightReminderSettings),
    "streak": ("streak_reminders", StreakReminderSettings),
    "summary": ("summary_reminders", SummaryReminderSettings),
}


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "value"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def parse_settings(
    raw: Union[ReminderSettingsIn, Mapping[str, Any]],
) -> Tuple[ReminderSettingsIn, Dict[str, InvalidRule]]:
    """Validate each category on its own.

    Returns the typed settings with malformed categories left out, plus an
    ``InvalidRule`` per rejected category. Both ``water`` and
    ``water_reminders`` (or ``waterReminders``) style keys are accepted.
    """
    if isinstance(raw, ReminderSettingsIn):
        return raw, {}
    if not isinstance(raw, Mapping):
        raise InvalidRule("settings", "expected an object")

    enabled = raw.get("enabled", True)
    if not isinstance(enabled, bool):
        raise InvalidRule("settings", "enabled must be a boolean")

    sections: Dict[str, CategorySettings] = {}
    rejected: Dict[str, InvalidRule] = {}
    for category, (key, model) in CATEGORY_SETTINGS.items():
        section = raw.get(key, raw.get(to_camel(key), raw.get(category)))
        if section is None:
            continue
        try:
            sections[key] = model.model_validate(section)
        except ValidationError as e:
            rejected[category] = InvalidRule(category, _describe(e))
        except ValueError as e:
            rejected[category] = InvalidRule(category, str(e))
    return ReminderSettingsIn(enabled=enabled, **sections), rejected


class ReminderRead(BaseModel):
    """Schema for reading reminders"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    category: str
    rule: Dict[str, Any]
    payload: Dict[str, Any]
    enabled: bool
    next_trigger: datetime
    last_triggered: Optional[datetime] = None
    trigger_count: int
    created_at: datetime
    updated_at: datetime


class ReconcileRead(BaseModel):
    owner_id: str
    method: str
    reminders: List[ReminderRead]
    rejected: Dict[str, str] = Field(default_factory=dict)


class ReminderToggle(BaseModel):
    enabled: bool


class ScanRead(BaseModel):
    mode: str  # "woken" when an agent thread was signalled, "scanned" when run inline
    fired: int = 0
    failed: int = 0
    missed: int = 0
