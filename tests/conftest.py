"""
Test configuration and fixtures.

This module sets up the test environment and provides shared fixtures for
all tests: an in-memory store, a Moscow-time salon, one staff member working
Mondays 09:00-18:00 with a 13:00-14:00 lunch break and a one-hour service.

The reference booking date is Monday 2026-10-19; the fixed clock is one week
earlier, so every slot of that day is in the future.
"""

import os
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

# Must be set BEFORE any imports of shared.config consumers
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["SMS_TEST_MODE"] = "true"
os.environ["SMS_API_KEY"] = "test-api-key"
os.environ["DISPATCHER_ENABLED"] = "false"
os.environ["TIMEZONE"] = "Europe/Moscow"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["SITE_BASE_URL"] = "https://salon.example"
os.environ["SALON_LOCATION"] = "ул. Ленина, 1"

from booking.context import BookingContext  # noqa: E402
from booking.models import (  # noqa: E402
    Break,
    ClientInfo,
    NotificationTemplate,
    Service,
    StaffMember,
    WeeklyRule,
)
from database.models import NotificationType, Weekday  # noqa: E402
from database.store import InMemoryBookingStore  # noqa: E402
from shared.config import get_settings  # noqa: E402

get_settings.cache_clear()

MOSCOW_TZ = ZoneInfo("Europe/Moscow")
BOOKING_DAY = date(2026, 10, 19)  # Monday
NOW = datetime(2026, 10, 12, 7, 0, tzinfo=UTC)  # Monday 10:00 Moscow


def at(hour: int, minute: int = 0, day: date = BOOKING_DAY) -> datetime:
    """Salon wall-clock time on the booking day."""
    return datetime.combine(day, time(hour, minute), tzinfo=MOSCOW_TZ)


class FakeClock:
    """Settable clock injected wherever services read the current time."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def tz():
    return MOSCOW_TZ


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def monday_rule():
    return WeeklyRule(
        weekday=Weekday.MONDAY,
        start_time=time(9, 0),
        end_time=time(18, 0),
        breaks=[Break(start_time=time(13, 0), end_time=time(14, 0))],
    )


@pytest.fixture
async def service(store):
    return await store.save_service(
        Service(name="Стрижка", price="1500.00", duration=timedelta(hours=1))
    )


@pytest.fixture
async def staff(store, service, monday_rule):
    return await store.save_staff(
        StaffMember(
            name="Ирина",
            specialty="Парикмахер",
            service_ids=[service.id],
            working_hours=[monday_rule],
            telegram_bot_token="123:bot-token",
            telegram_chat_id="555",
        )
    )


@pytest.fixture
def client_info():
    return ClientInfo(name="Анна", phone="+7 912 345-67-89", email="Anna@Example.com")


@pytest.fixture
async def templates(store):
    """One active template per notification type."""
    created = {}
    for template_type, delay in (
        (NotificationType.APPOINTMENT_CREATED, 0),
        (NotificationType.APPOINTMENT_REMINDER, 24),
        (NotificationType.POST_APPOINTMENT, 2),
        (NotificationType.RETURN_REMINDER, 720),
        (NotificationType.APPOINTMENT_CANCELLED, 0),
    ):
        created[template_type] = await store.save_template(
            NotificationTemplate(
                type=template_type,
                message_template=f"{template_type.value}: {{client_name}} {{appointment_time}}",
                delay_hours=delay,
            )
        )
    return created


@pytest.fixture
def context(settings, store, clock):
    return BookingContext.build(settings, store=store, clock=clock)
