from datetime import datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from constants import MODE_OPEN_FOR_ALL, MODE_PAUSED, MODE_PRIORITY


class SystemState(BaseModel):
    """The singleton admission record.

    Assignment is validated, so flipping one mode on while the other is
    active raises instead of producing an impossible state.
    """

    model_config = ConfigDict(validate_assignment=True)

    priority_mode_active: bool = False
    open_for_all_active: bool = False
    priority_timer_started_at: Optional[datetime] = None
    priority_timer_duration_seconds: int = Field(..., gt=0)
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def modes_exclusive(self):
        if self.priority_mode_active and self.open_for_all_active:
            raise ValueError("Priority mode and open for all cannot be active at the same time")
        return self

    @property
    def mode(self) -> str:
        if self.open_for_all_active:
            return MODE_OPEN_FOR_ALL
        if self.priority_mode_active:
            return MODE_PRIORITY
        return MODE_PAUSED

    def _with(self, **changes) -> "SystemState":
        return SystemState(**{**self.model_dump(), **changes})

    def start_priority(self, now: datetime) -> "SystemState":
        return self._with(
            priority_mode_active=True,
            open_for_all_active=False,
            priority_timer_started_at=now,
        )

    def open_for_all(self) -> "SystemState":
        return self._with(
            priority_mode_active=False,
            open_for_all_active=True,
            priority_timer_started_at=None,
        )

    def pause(self) -> "SystemState":
        return self._with(
            priority_mode_active=False,
            open_for_all_active=False,
            priority_timer_started_at=None,
        )


class QueueEntry(BaseModel):
    id: int
    user_id: str
    position: int = Field(..., ge=1)
    gender_category: Optional[str] = None
    joined_at: datetime
    name: Optional[str] = None


class UserProfile(BaseModel):
    user_id: str
    name: Optional[str] = None
    gender: Optional[str] = None
    phone: Optional[str] = None

    @field_validator('gender')
    @classmethod
    def gender_normalized(cls, v):
        if v is None or not v.strip():
            return None
        return v.strip().lower()


class Booking(BaseModel):
    user_id: str
    created_at: datetime


def _format_start_time(v):
    if isinstance(v, time):
        return v.strftime("%H:%M")
    return v[:5] if isinstance(v, str) else v


class ScheduleRule(BaseModel):
    id: int
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: str
    is_active: bool = True
    created_at: Optional[datetime] = None

    @field_validator('start_time', mode='before')
    @classmethod
    def start_time_hhmm(cls, v):
        return _format_start_time(v)


class ScheduleRuleCreate(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    is_active: bool = True


class ScheduleRuleUpdate(BaseModel):
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[str] = Field(default=None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    is_active: Optional[bool] = None


class SystemStateResponse(BaseModel):
    mode: str
    priority_mode_active: bool
    open_for_all_active: bool
    priority_timer_started_at: Optional[datetime]
    priority_timer_duration_seconds: int
    time_remaining: int
    window_expired: bool


class CategoryCount(BaseModel):
    count: int
    capacity: int


class QueueResponse(BaseModel):
    entries: list[QueueEntry]
    total: int
    max_size: int
    categories: dict[str, CategoryCount]


class AdminQueueAdd(BaseModel):
    user_id: str = Field(..., min_length=1)

    @field_validator('user_id')
    @classmethod
    def user_id_cleaned(cls, v):
        return v.strip()


class AdmissionDecision(BaseModel):
    allowed: bool
    reason: str
    time_remaining: int = 0


class RemovedEntry(BaseModel):
    user_id: str
    position: int
    joined_at: datetime
    hours_in_queue: float


class SweepResult(BaseModel):
    removed: list[RemovedEntry]
    exempt_count: int
    remaining: int
    cleaned_at: datetime


class ScheduleCheckResult(BaseModel):
    fired: bool
    reason: str
    matching_rule_ids: list[int] = []
    started_at: Optional[datetime] = None
    checked_at: datetime


class EventsResponse(BaseModel):
    version: int
    events: list[str]
