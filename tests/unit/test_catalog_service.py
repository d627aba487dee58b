"""
Unit tests for catalog administration (services, templates, appointment edits).
"""

from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from booking.models import Appointment, AppointmentPatch, NotificationTemplate, Service
from booking.services.appointment_ledger import AppointmentLedger
from booking.services.cancellation_service import CancellationService
from booking.services.catalog_service import CatalogService
from booking.services.notification_queue import NotificationQueueService
from database.models import AppointmentStatus, NotificationType
from shared.exceptions import ConflictError, NotFoundError, ValidationError
from shared.settings_service import MessagingSettingsService
from conftest import MOSCOW_TZ, at


@pytest.fixture
def telegram():
    client = AsyncMock()
    client.send_message.return_value = True
    return client


@pytest.fixture
def catalog(store, clock, settings, telegram):
    ledger = AppointmentLedger(store)
    cancellations = CancellationService(store, ledger, NotificationQueueService(store, clock))
    return CatalogService(
        store,
        ledger,
        cancellations,
        telegram=telegram,
        messaging=MessagingSettingsService(store, settings),
        tz=MOSCOW_TZ,
    )


@pytest.fixture
async def booked(catalog, staff, service):
    first = await catalog.ledger.insert(
        Appointment(
            client_id=uuid4(),
            service_id=service.id,
            staff_id=staff.id,
            start_time=at(10),
            end_time=at(11),
        )
    )
    second = await catalog.ledger.insert(
        Appointment(
            client_id=uuid4(),
            service_id=service.id,
            staff_id=staff.id,
            start_time=at(11),
            end_time=at(12),
        )
    )
    return first, second


class TestServices:
    async def test_crud(self, catalog):
        created = await catalog.create_service(Service(name="Маникюр", duration=timedelta(minutes=45)))

        updated = await catalog.update_service(created.id, {"price": "900", "id": uuid4()})
        assert updated.id == created.id
        assert str(updated.price) == "900"

        await catalog.delete_service(created.id)
        with pytest.raises(NotFoundError):
            await catalog.get_service(created.id)
        with pytest.raises(NotFoundError):
            await catalog.delete_service(created.id)

    async def test_invalid_update(self, catalog, service):
        with pytest.raises(ValidationError):
            await catalog.update_service(service.id, {"name": ""})


class TestTemplates:
    async def test_crud_and_filter(self, catalog, templates):
        extra = await catalog.create_template(
            NotificationTemplate(type=NotificationType.APPOINTMENT_REMINDER, message_template="Ждём вас")
        )

        reminders = await catalog.list_templates(type=NotificationType.APPOINTMENT_REMINDER)
        assert {t.id for t in reminders} == {
            templates[NotificationType.APPOINTMENT_REMINDER].id,
            extra.id,
        }

        updated = await catalog.update_template(extra.id, {"delay_hours": 3, "route": "wp-sms"})
        assert (updated.delay_hours, updated.route) == (3, "wp-sms")

        await catalog.delete_template(extra.id)
        with pytest.raises(NotFoundError):
            await catalog.update_template(extra.id, {})

    async def test_invalid_priority(self, catalog, templates):
        template = templates[NotificationType.POST_APPOINTMENT]
        with pytest.raises(ValidationError):
            await catalog.update_template(template.id, {"priority": 9})


class TestAppointments:
    async def test_move_to_occupied_interval_conflicts(self, catalog, booked):
        first, _ = booked
        with pytest.raises(ConflictError):
            await catalog.update_appointment(
                first.id, AppointmentPatch(start_time=at(11, 30), end_time=at(12, 30))
            )

    async def test_move_to_free_interval(self, catalog, booked):
        first, _ = booked
        moved = await catalog.update_appointment(
            first.id, AppointmentPatch(start_time=at(15), end_time=at(16), notes="перенос")
        )
        assert (moved.start_time, moved.notes) == (at(15), "перенос")

    async def test_status_cancelled_routes_through_cancellation(
        self, catalog, booked, store, templates
    ):
        first, _ = booked

        cancelled = await catalog.update_appointment(
            first.id,
            AppointmentPatch(status=AppointmentStatus.CANCELLED, cancellation_reason="Клиент не придёт"),
        )

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancellation_reason == "Клиент не придёт"
        [notice] = await store.list_notifications(appointment_id=first.id)
        assert notice.template_id == templates[NotificationType.APPOINTMENT_CANCELLED].id

    async def test_unknown_staff_reference(self, catalog, booked):
        first, _ = booked
        with pytest.raises(NotFoundError):
            await catalog.update_appointment(first.id, AppointmentPatch(staff_id=uuid4()))

    async def test_list_includes_cancelled(self, catalog, booked):
        first, second = booked
        await catalog.update_appointment(first.id, AppointmentPatch(status=AppointmentStatus.CANCELLED))

        listed = await catalog.list_appointments()
        assert [a.id for a in listed] == [first.id, second.id]

    async def test_delete(self, catalog, booked):
        first, _ = booked
        await catalog.delete_appointment(first.id)

        with pytest.raises(NotFoundError):
            await catalog.get_appointment(first.id)

    async def test_delete_alerts_staff(self, catalog, telegram, booked):
        first, _ = booked

        await catalog.delete_appointment(first.id)

        bot_token, chat_id, text = telegram.send_message.await_args.args
        assert (bot_token, chat_id) == ("123:bot-token", "555")
        assert "Отмена записи" in text
        assert "Стрижка" in text
        assert "19.10.2026 10:00" in text

    async def test_delete_cancelled_appointment_is_silent(self, catalog, telegram, booked):
        first, _ = booked
        await catalog.update_appointment(first.id, AppointmentPatch(status=AppointmentStatus.CANCELLED))

        await catalog.delete_appointment(first.id)

        telegram.send_message.assert_not_awaited()

    async def test_delete_survives_alert_failure(self, catalog, telegram, booked):
        first, _ = booked
        telegram.send_message.side_effect = RuntimeError("bot unreachable")

        await catalog.delete_appointment(first.id)

        with pytest.raises(NotFoundError):
            await catalog.get_appointment(first.id)

    async def test_delete_unknown(self, catalog, telegram):
        with pytest.raises(NotFoundError):
            await catalog.delete_appointment(uuid4())
        telegram.send_message.assert_not_awaited()
