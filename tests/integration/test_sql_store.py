"""
Integration tests for the SQLAlchemy store.

Runs against an in-memory SQLite database (aiosqlite) with the real table
definitions, so the row <-> domain mapping, the overlap guard and the
unique constraints are exercised end to end.

Tests cover:
- Staff round trip with services, rules of every pattern, breaks and time off
- Rule/break sync by id on update, cascade delete
- Appointment overlap guard (cancelled rows ignored, touching intervals allowed)
- Datetimes come back in UTC from every read and write
- Unique client phone
- Due-notification claim: order, limit, exclusivity and lease expiry
- Messaging settings single row
"""

from datetime import date, time, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from booking.models import (
    Appointment,
    Break,
    Client,
    DateRangeRule,
    MessagingSettings,
    NotificationQueueItem,
    NotificationTemplate,
    RecurringDayRule,
    Service,
    StaffMember,
    TimeOffPeriod,
    WeeklyRule,
)
from database.connection import create_tables
from database.models import AppointmentStatus, NotificationStatus, NotificationType, Weekday
from database.sql_store import SqlAlchemyBookingStore
from shared.exceptions import ConflictError
from conftest import NOW, at

LEASE = timedelta(minutes=5)


@pytest.fixture
async def sql_store():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield SqlAlchemyBookingStore(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


@pytest.fixture
async def sql_service(sql_store):
    return await sql_store.save_service(
        Service(name="Стрижка", price="1500.00", duration=timedelta(minutes=90))
    )


@pytest.fixture
async def sql_staff(sql_store, sql_service, monday_rule):
    return await sql_store.save_staff(
        StaffMember(name="Ирина", service_ids=[sql_service.id], working_hours=[monday_rule])
    )


def _appointment(staff_id, service_id, start, end, **kwargs):
    return Appointment(
        client_id=uuid4(),
        service_id=service_id,
        staff_id=staff_id,
        start_time=start,
        end_time=end,
        **kwargs,
    )


class TestStaff:
    async def test_round_trip_all_rule_patterns(self, sql_store, sql_service, monday_rule):
        staff = StaffMember(
            name="Ирина",
            specialty="Колорист",
            telegram_bot_token="1:t",
            telegram_chat_id="2",
            service_ids=[sql_service.id],
            working_hours=[
                monday_rule,
                DateRangeRule(
                    start_date=date(2026, 12, 28),
                    end_date=date(2026, 12, 30),
                    start_time=time(10),
                    end_time=time(14),
                ),
                RecurringDayRule(
                    day_of_week=Weekday.SATURDAY,
                    week_of_month=5,
                    start_time=time(11),
                    end_time=time(15),
                ),
            ],
            time_off=[TimeOffPeriod(start_date=date(2026, 11, 2), end_date=date(2026, 11, 6))],
        )

        await sql_store.save_staff(staff)
        loaded = await sql_store.get_staff(staff.id)

        assert loaded.service_ids == staff.service_ids
        assert {rule.id for rule in loaded.working_hours} == {rule.id for rule in staff.working_hours}
        by_id = {rule.id: rule for rule in loaded.working_hours}
        for rule in staff.working_hours:
            assert by_id[rule.id] == rule
        assert loaded.time_off == staff.time_off
        assert loaded.has_bot_channel

    async def test_update_syncs_rules_and_breaks(self, sql_store, sql_staff):
        rule = sql_staff.working_hours[0]
        new_break = Break(start_time=time(16), end_time=time(16, 30))
        sql_staff.working_hours = [rule.model_copy(update={"breaks": [new_break], "end_time": time(19)})]
        sql_staff.name = "Ирина К."

        await sql_store.save_staff(sql_staff)
        loaded = await sql_store.get_staff(sql_staff.id)

        [saved_rule] = loaded.working_hours
        assert saved_rule.id == rule.id
        assert saved_rule.end_time == time(19)
        assert saved_rule.breaks == [new_break]
        assert loaded.name == "Ирина К."

    async def test_list_active_only(self, sql_store, sql_staff):
        await sql_store.save_staff(StaffMember(name="Олег", is_active=False))

        assert [s.name for s in await sql_store.list_staff(active_only=True)] == ["Ирина"]
        assert len(await sql_store.list_staff()) == 2

    async def test_delete(self, sql_store, sql_staff):
        assert await sql_store.delete_staff(sql_staff.id) is True
        assert await sql_store.get_staff(sql_staff.id) is None
        assert await sql_store.delete_staff(sql_staff.id) is False


class TestServicesAndClients:
    async def test_service_duration_and_price(self, sql_store, sql_service):
        loaded = await sql_store.get_service(sql_service.id)

        assert loaded.duration == timedelta(minutes=90)
        assert str(loaded.price) == "1500.00"

    async def test_duration_keeps_seconds(self, sql_store):
        saved = await sql_store.save_service(
            Service(name="Укладка", price="900.00", duration="00:45:30")
        )

        loaded = await sql_store.get_service(saved.id)

        assert loaded.duration == timedelta(minutes=45, seconds=30)

    async def test_client_phone_unique(self, sql_store):
        first = await sql_store.save_client(Client(name="Анна", phone="+79123456789"))

        assert (await sql_store.find_client_by_phone("+79123456789")).id == first.id
        with pytest.raises(ConflictError):
            await sql_store.save_client(Client(name="Другая Анна", phone="+79123456789"))


class TestAppointments:
    async def test_overlap_rejected(self, sql_store, sql_staff, sql_service):
        existing = await sql_store.save_appointment(
            _appointment(sql_staff.id, sql_service.id, at(10), at(11)), check_overlap=True
        )

        with pytest.raises(ConflictError) as exc_info:
            await sql_store.save_appointment(
                _appointment(sql_staff.id, sql_service.id, at(10, 30), at(11, 30)),
                check_overlap=True,
            )
        assert exc_info.value.conflicting_id == existing.id

    async def test_touching_intervals_allowed(self, sql_store, sql_staff, sql_service):
        await sql_store.save_appointment(
            _appointment(sql_staff.id, sql_service.id, at(10), at(11)), check_overlap=True
        )
        await sql_store.save_appointment(
            _appointment(sql_staff.id, sql_service.id, at(11), at(12)), check_overlap=True
        )

        assert len(await sql_store.list_appointments(staff_id=sql_staff.id)) == 2

    async def test_cancelled_rows_do_not_block(self, sql_store, sql_staff, sql_service):
        await sql_store.save_appointment(
            _appointment(
                sql_staff.id, sql_service.id, at(10), at(11), status=AppointmentStatus.CANCELLED
            )
        )
        await sql_store.save_appointment(
            _appointment(sql_staff.id, sql_service.id, at(10), at(11)), check_overlap=True
        )

        active = await sql_store.list_appointments(staff_id=sql_staff.id)
        everything = await sql_store.list_appointments(staff_id=sql_staff.id, include_cancelled=True)
        assert (len(active), len(everything)) == (1, 2)

    async def test_update_does_not_conflict_with_itself(self, sql_store, sql_staff, sql_service):
        saved = await sql_store.save_appointment(
            _appointment(sql_staff.id, sql_service.id, at(10), at(11)), check_overlap=True
        )

        moved = await sql_store.save_appointment(
            saved.model_copy(update={"end_time": at(11, 30)}), check_overlap=True
        )

        assert moved.end_time == at(11, 30)
        assert moved.start_time.utcoffset() == timedelta(0)
        loaded = await sql_store.get_appointment(saved.id)
        assert (loaded.start_time, loaded.end_time) == (moved.start_time, moved.end_time)
        assert str(loaded.start_time) == str(moved.start_time)

    async def test_window_query(self, sql_store, sql_staff, sql_service):
        await sql_store.save_appointment(_appointment(sql_staff.id, sql_service.id, at(10), at(11)))

        assert await sql_store.list_appointments(start=at(11), end=at(12)) == []
        assert len(await sql_store.list_appointments(start=at(10, 30), end=at(12))) == 1


class TestNotifications:
    async def test_claim_due_items_oldest_first_with_limit(self, sql_store):
        template = await sql_store.save_template(
            NotificationTemplate(type=NotificationType.APPOINTMENT_CREATED, message_template="x")
        )
        appointment_id = uuid4()
        items = [
            NotificationQueueItem(
                appointment_id=appointment_id,
                template_id=template.id,
                scheduled_time=NOW - timedelta(minutes=minutes),
            )
            for minutes in (5, 30, 10)
        ]
        future = NotificationQueueItem(
            appointment_id=appointment_id,
            template_id=template.id,
            scheduled_time=NOW + timedelta(hours=1),
        )
        sent = NotificationQueueItem(
            appointment_id=appointment_id,
            template_id=template.id,
            scheduled_time=NOW - timedelta(hours=1),
            status=NotificationStatus.SENT,
            sent_at=NOW,
        )
        await sql_store.save_notifications([*items, future, sent])

        due = await sql_store.claim_due_notifications(NOW, limit=2, lease=LEASE)

        assert [item.scheduled_time for item in due] == [
            NOW - timedelta(minutes=30),
            NOW - timedelta(minutes=10),
        ]
        assert all(item.claimed_until == NOW + LEASE for item in due)
        assert len(await sql_store.list_notifications(status=NotificationStatus.SENT)) == 1

    async def test_claimed_items_are_not_handed_out_twice(self, sql_store):
        item = NotificationQueueItem(appointment_id=uuid4(), template_id=uuid4(), scheduled_time=NOW)
        await sql_store.save_notifications([item])

        [claimed] = await sql_store.claim_due_notifications(NOW, limit=10, lease=LEASE)

        assert claimed.id == item.id
        assert await sql_store.claim_due_notifications(NOW, limit=10, lease=LEASE) == []
        stored = await sql_store.get_notification(item.id)
        assert stored.claimed_until == NOW + LEASE

        later = NOW + LEASE + timedelta(seconds=1)
        [retaken] = await sql_store.claim_due_notifications(later, limit=10, lease=LEASE)
        assert retaken.claimed_until == later + LEASE

    async def test_status_update(self, sql_store):
        item = NotificationQueueItem(appointment_id=uuid4(), template_id=uuid4(), scheduled_time=NOW)
        await sql_store.save_notifications([item])

        item.status = NotificationStatus.FAILED
        item.error_message = "All routes failed"
        await sql_store.save_notifications([item])

        loaded = await sql_store.get_notification(item.id)
        assert (loaded.status, loaded.error_message) == (NotificationStatus.FAILED, "All routes failed")


async def test_messaging_settings_single_row(sql_store):
    assert await sql_store.get_messaging_settings() is None

    await sql_store.save_messaging_settings(MessagingSettings(sender_name="Salon", default_route="wp-sms"))
    await sql_store.save_messaging_settings(
        MessagingSettings(sender_name="Salon", default_route="sms", test_mode=True)
    )

    loaded = await sql_store.get_messaging_settings()
    assert (loaded.default_route, loaded.test_mode) == ("sms", True)
