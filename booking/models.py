"""
Domain schemas for the booking core.

Strict pydantic models for every entity the scheduler and the notification
pipeline handle. Working-hours rules are a tagged union discriminated by
`pattern`; the persistent shapes live in database.models.
"""

import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Annotated, Literal, NamedTuple, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from database.models import (
    AppointmentStatus,
    NotificationStatus,
    NotificationType,
    Weekday,
)

_DURATION_RE = re.compile(r"^(?:(\d+)\s+days?,?\s*)?(\d{1,3}):([0-5]\d)(?::([0-5]\d))?$")


def parse_duration(value: object) -> object:
    """
    Accept service durations in the formats the admin panel and the
    backend produce.

    Examples:
        "01:30:00" -> timedelta(hours=1, minutes=30)
        "00:45"    -> timedelta(minutes=45)
        90         -> timedelta(minutes=90)
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return timedelta(minutes=value)
    if isinstance(value, str):
        match = _DURATION_RE.match(value.strip())
        if match:
            days, hours, minutes, seconds = match.groups()
            return timedelta(
                days=int(days or 0),
                hours=int(hours),
                minutes=int(minutes),
                seconds=int(seconds or 0),
            )
    return value


def format_duration(value: timedelta) -> str:
    """Render a duration as HH:MM:SS."""
    total = int(value.total_seconds())
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


class TimeInterval(NamedTuple):
    """Half-open wall-clock interval [start, end)."""

    start: time
    end: time


class TimeSlot(BaseModel):
    """A bookable interval of exactly one service duration."""

    model_config = ConfigDict(frozen=True)

    start_time: datetime
    end_time: datetime


# ============================================================================
# Working hours
# ============================================================================


class Break(BaseModel):
    """Excluded sub-interval inside a working window."""

    id: UUID = Field(default_factory=uuid4)
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def _check_order(self) -> "Break":
        if self.start_time >= self.end_time:
            raise ValueError("break start_time must be before end_time")
        return self


class _RuleBase(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    start_time: time
    end_time: time
    breaks: list[Break] = Field(default_factory=list)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_window(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        ordered = sorted(self.breaks, key=lambda b: b.start_time)
        for item in ordered:
            if item.start_time < self.start_time or item.end_time > self.end_time:
                raise ValueError(
                    f"break {item.start_time}-{item.end_time} lies outside "
                    f"{self.start_time}-{self.end_time}"
                )
        for previous, current in zip(ordered, ordered[1:]):
            if current.start_time < previous.end_time:
                raise ValueError("breaks must not overlap")
        self.breaks = ordered
        return self

    def matches(self, day: date) -> bool:
        raise NotImplementedError

    def intervals(self) -> list[TimeInterval]:
        """The rule window minus its breaks, in chronological order."""
        result: list[TimeInterval] = []
        cursor = self.start_time
        for item in self.breaks:
            if item.start_time > cursor:
                result.append(TimeInterval(cursor, item.start_time))
            cursor = max(cursor, item.end_time)
        if cursor < self.end_time:
            result.append(TimeInterval(cursor, self.end_time))
        return result


class WeeklyRule(_RuleBase):
    """Works every given weekday."""

    pattern: Literal["weekly"] = "weekly"
    weekday: Weekday

    def matches(self, day: date) -> bool:
        return day.weekday() == self.weekday.day_number


class DateRangeRule(_RuleBase):
    """Works every day of an inclusive date range."""

    pattern: Literal["specific_dates"] = "specific_dates"
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_dates(self) -> "DateRangeRule":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    def matches(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class RecurringDayRule(_RuleBase):
    """Works the Nth given weekday of every month; week_of_month=5 means the last one."""

    pattern: Literal["recurring_day"] = "recurring_day"
    day_of_week: Weekday
    week_of_month: int = Field(ge=1, le=5)

    def matches(self, day: date) -> bool:
        if day.weekday() != self.day_of_week.day_number:
            return False
        if self.week_of_month == 5:
            return (day + timedelta(days=7)).month != day.month
        return (day.day - 1) // 7 + 1 == self.week_of_month


WorkingHoursRule = Annotated[
    Union[WeeklyRule, DateRangeRule, RecurringDayRule],
    Field(discriminator="pattern"),
]

working_hours_adapter: TypeAdapter[WorkingHoursRule] = TypeAdapter(WorkingHoursRule)


class TimeOffPeriod(BaseModel):
    """Closed date interval overriding every working-hours rule."""

    id: UUID = Field(default_factory=uuid4)
    start_date: date
    end_date: date
    reason: str | None = None

    @model_validator(mode="after")
    def _check_dates(self) -> "TimeOffPeriod":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


# ============================================================================
# Staff, services, clients
# ============================================================================


class StaffMember(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str = Field(min_length=1, max_length=100)
    specialty: str = ""
    bio: str | None = None
    image_url: str | None = None
    phone: str | None = None
    email: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    is_active: bool = True
    service_ids: list[UUID] = Field(default_factory=list)
    working_hours: list[WorkingHoursRule] = Field(default_factory=list)
    time_off: list[TimeOffPeriod] = Field(default_factory=list)

    @property
    def has_bot_channel(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def performs(self, service_id: UUID) -> bool:
        """Staff without an explicit service list perform every service."""
        return not self.service_ids or service_id in self.service_ids


class Service(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    price: Decimal = Decimal("0")
    duration: timedelta
    image_url: str | None = None
    is_active: bool = True

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, value):
        return parse_duration(value)

    @field_validator("duration")
    @classmethod
    def _positive_duration(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("duration must be positive")
        return value


class Client(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    phone: str
    email: str | None = None


# ============================================================================
# Appointments
# ============================================================================


class Appointment(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    client_id: UUID
    service_id: UUID
    staff_id: UUID
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str | None = None
    cancellation_reason: str | None = None

    @model_validator(mode="after")
    def _check_times(self) -> "Appointment":
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("appointment times must be timezone-aware")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start_time < end and self.end_time > start


class AppointmentPatch(BaseModel):
    """Partial appointment update applied through the ledger."""

    staff_id: UUID | None = None
    service_id: UUID | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: AppointmentStatus | None = None
    notes: str | None = None
    cancellation_reason: str | None = None


class ClientInfo(BaseModel):
    """Client details as typed into the booking form (validated later)."""

    name: str | None = None
    phone: str | None = None
    email: str | None = None


class BookingRequest(BaseModel):
    """
    Public booking request.

    Fields are optional at the schema level so that the booking validators
    can report the exact missing field.
    """

    client: ClientInfo = Field(default_factory=ClientInfo)
    service_id: UUID | None = None
    staff_id: UUID | None = None
    start_time: datetime | None = None
    duration: timedelta | None = None
    notes: str | None = None

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, value):
        return parse_duration(value)


# ============================================================================
# Notifications
# ============================================================================


class NotificationTemplate(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    type: NotificationType
    message_template: str = Field(min_length=1)
    route: str | None = None
    priority: int | None = Field(default=None, ge=1, le=4)
    delay_hours: int = Field(default=0, ge=0)
    is_active: bool = True


class NotificationQueueItem(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    appointment_id: UUID
    template_id: UUID
    scheduled_time: datetime
    status: NotificationStatus = NotificationStatus.PENDING
    sent_at: datetime | None = None
    error_message: str | None = None
    # Set while a dispatcher holds the item; expired claims can be taken over
    claimed_until: datetime | None = None


class MessagingSettings(BaseModel):
    """Gateway configuration (admin-editable, falls back to environment)."""

    api_key: str = ""
    sender_name: str
    default_route: str
    default_priority: int = Field(default=2, ge=1, le=4)
    test_mode: bool = False
    location: str = ""
    base_url: str = ""
    queue_check_interval: int = Field(default=60, ge=1)
    batch_size: int = Field(default=50, ge=1)
