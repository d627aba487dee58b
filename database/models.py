"""
SQLAlchemy ORM models for the salon booking database.

This module defines the tables:
- staff / staff_services: Salon professionals and the services they perform
- staff_working_hours / staff_breaks: Working-hours rules and their breaks
- staff_time_off: Full-day unavailability periods
- services: Bookable services with pricing and duration
- clients: Salon clients keyed by phone (E.164)
- appointments: Booked appointments (weak references to staff/service/client)
- notification_templates / notification_queue: Templated message pipeline
- messaging_settings: Admin-editable gateway configuration (single row)

All models use:
- UUID primary keys (auto-generated)
- Timezone-aware datetimes normalized to UTC
- Proper indexes and constraints
"""

from datetime import UTC, date, datetime, time
from decimal import Decimal
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    DATE,
    TIME,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column stored as UTC.

    Backends without native timezone support (SQLite) hand back naive
    values; those are re-attached to UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


# ============================================================================
# Enums
# ============================================================================


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    def __str__(self):
        return self.value


class Weekday(str, PyEnum):
    """Day of week as stored in working-hours rules."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def day_number(self) -> int:
        """0 = Monday ... 6 = Sunday (same as date.weekday())."""
        return list(Weekday).index(self)

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        return list(cls)[day.weekday()]


class WorkingHoursPattern(str, PyEnum):
    """Variant tag of a working-hours rule."""

    WEEKLY = "weekly"
    SPECIFIC_DATES = "specific_dates"
    RECURRING_DAY = "recurring_day"


class NotificationType(str, PyEnum):
    """Type of templated client/staff notification."""

    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_REMINDER = "appointment_reminder"
    POST_APPOINTMENT = "post_appointment"
    RETURN_REMINDER = "return_reminder"
    APPOINTMENT_CANCELLED = "appointment_cancelled"


class NotificationStatus(str, PyEnum):
    """Queue item status. SENT and FAILED are terminal."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# ============================================================================
# Staff
# ============================================================================


class Staff(Base):
    """
    Staff model - Salon professionals providing services.

    Staff own their working-hours rules and time-off periods (cascade delete).
    Appointments reference staff by id only and survive staff deletion.
    """

    __tablename__ = "staff"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    specialty: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    telegram_bot_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    telegram_chat_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    services: Mapped[list["StaffService"]] = relationship(
        "StaffService", back_populates="staff", cascade="all, delete-orphan"
    )
    working_hours: Mapped[list["StaffWorkingHours"]] = relationship(
        "StaffWorkingHours",
        back_populates="staff",
        cascade="all, delete-orphan",
        order_by="StaffWorkingHours.created_at",
    )
    time_off: Mapped[list["StaffTimeOff"]] = relationship(
        "StaffTimeOff",
        back_populates="staff",
        cascade="all, delete-orphan",
        order_by="StaffTimeOff.start_date",
    )

    __table_args__ = (
        Index("idx_staff_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Staff(id={self.id}, name='{self.name}')>"


class StaffService(Base):
    """Association between a staff member and a service they perform."""

    __tablename__ = "staff_services"

    staff_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="CASCADE"), primary_key=True
    )
    # Weak reference: deleting a service leaves the association to be pruned by admin
    service_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)

    staff: Mapped["Staff"] = relationship("Staff", back_populates="services")


class StaffWorkingHours(Base):
    """
    Working-hours rule of a staff member.

    `pattern` selects which columns are meaningful:
    - weekly: weekday
    - specific_dates: start_date, end_date
    - recurring_day: day_of_week, week_of_month (5 = last in month)
    """

    __tablename__ = "staff_working_hours"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    staff_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pattern: Mapped[WorkingHoursPattern] = mapped_column(
        SQLEnum(
            WorkingHoursPattern,
            name="working_hours_pattern",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    weekday: Mapped[Weekday | None] = mapped_column(
        SQLEnum(Weekday, name="weekday", values_callable=_enum_values), nullable=True
    )
    start_date: Mapped[date | None] = mapped_column(DATE, nullable=True)
    end_date: Mapped[date | None] = mapped_column(DATE, nullable=True)
    day_of_week: Mapped[Weekday | None] = mapped_column(
        SQLEnum(Weekday, name="weekday", values_callable=_enum_values), nullable=True
    )
    week_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_time: Mapped[time] = mapped_column(TIME, nullable=False)
    end_time: Mapped[time] = mapped_column(TIME, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    staff: Mapped["Staff"] = relationship("Staff", back_populates="working_hours")
    breaks: Mapped[list["StaffBreak"]] = relationship(
        "StaffBreak",
        back_populates="working_hours",
        cascade="all, delete-orphan",
        order_by="StaffBreak.start_time",
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="check_working_hours_order"),
        CheckConstraint(
            "week_of_month IS NULL OR (week_of_month >= 1 AND week_of_month <= 5)",
            name="valid_week_of_month",
        ),
    )


class StaffBreak(Base):
    """Excluded sub-interval (e.g. lunch) inside a working-hours rule."""

    __tablename__ = "staff_breaks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    working_hours_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("staff_working_hours.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_time: Mapped[time] = mapped_column(TIME, nullable=False)
    end_time: Mapped[time] = mapped_column(TIME, nullable=False)

    working_hours: Mapped["StaffWorkingHours"] = relationship(
        "StaffWorkingHours", back_populates="breaks"
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="check_break_order"),
    )


class StaffTimeOff(Base):
    """Closed date interval during which a staff member cannot be booked."""

    __tablename__ = "staff_time_off"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    staff_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("staff.id", ondelete="CASCADE"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(DATE, nullable=False)
    end_date: Mapped[date] = mapped_column(DATE, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    staff: Mapped["Staff"] = relationship("Staff", back_populates="time_off")

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="check_time_off_order"),
        Index("idx_staff_time_off_range", "staff_id", "start_date", "end_date"),
    )


# ============================================================================
# Catalog and clients
# ============================================================================


class Service(Base):
    """Service model - Bookable salon service with price and duration."""

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    # Whole seconds, so HH:MM:SS durations survive a round trip
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("duration_seconds > 0", name="check_duration_positive"),
    )


class Client(Base):
    """
    Client model - Phone number (E.164) is the natural key used for upserts.
    """

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


# ============================================================================
# Appointments
# ============================================================================


class Appointment(Base):
    """
    Appointment model - Booked service between a client and a staff member.

    References are weak (no foreign keys) so deleting staff, services or
    clients never removes appointment history.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    service_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    staff_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=_enum_values,
        ),
        default=AppointmentStatus.PENDING,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_appointment_end_after_start"),
        Index("idx_appointments_staff_time", "staff_id", "start_time", "end_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, staff_id={self.staff_id}, "
            f"start_time={self.start_time}, status='{self.status}')>"
        )


# ============================================================================
# Notifications
# ============================================================================


class NotificationTemplate(Base):
    """
    Notification template - Message text with {placeholders} per event type.

    delay_hours positions reminder (before start) and post-visit/return
    messages (after end) relative to the appointment.
    """

    __tablename__ = "notification_templates"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, name="notification_type", values_callable=_enum_values),
        nullable=False,
    )
    message_template: Mapped[str] = mapped_column(Text, nullable=False)
    route: Mapped[str | None] = mapped_column(String(50), nullable=True)
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delay_hours: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_notification_templates_type", "type"),
    )


class NotificationQueue(Base):
    """
    Notification queue item - One scheduled message for one appointment.

    Moves pending -> sent | failed exactly once, written by the dispatcher.
    """

    __tablename__ = "notification_queue"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    appointment_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    template_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    scheduled_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[NotificationStatus] = mapped_column(
        SQLEnum(NotificationStatus, name="notification_status", values_callable=_enum_values),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_notification_queue_due", "status", "scheduled_time"),
    )


class MessagingSettings(Base):
    """Gateway configuration edited from the admin panel (single row)."""

    __tablename__ = "messaging_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    api_key: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    sender_name: Mapped[str] = mapped_column(String(50), nullable=False)
    default_route: Mapped[str] = mapped_column(String(50), nullable=False)
    default_priority: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    test_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    location: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    base_url: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    queue_check_interval: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )
