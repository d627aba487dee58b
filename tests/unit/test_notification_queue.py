"""
Unit tests for notification scheduling.

Tests coverage:
- schedule_time per template type
- Enqueue on creation / cancellation (active templates only)
- Reminder skipped for an appointment that already started
- Re-arming failed items
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from booking.models import Appointment, NotificationQueueItem, NotificationTemplate
from booking.services.notification_queue import (
    LifecycleEvent,
    NotificationQueueService,
    schedule_time,
)
from database.models import NotificationStatus, NotificationType
from shared.exceptions import NotFoundError, ValidationError
from conftest import NOW, at


def _template(template_type, delay_hours=0):
    return NotificationTemplate(type=template_type, message_template="x", delay_hours=delay_hours)


@pytest.fixture
def appointment():
    return Appointment(
        client_id=uuid4(),
        service_id=uuid4(),
        staff_id=uuid4(),
        start_time=at(10),
        end_time=at(11),
    )


@pytest.fixture
def queue(store, clock):
    return NotificationQueueService(store, clock)


class TestScheduleTime:
    def test_created_is_immediate(self, appointment):
        template = _template(NotificationType.APPOINTMENT_CREATED, delay_hours=5)
        assert schedule_time(template, appointment, NOW) == NOW

    def test_reminder_before_start(self, appointment):
        template = _template(NotificationType.APPOINTMENT_REMINDER, delay_hours=24)
        assert schedule_time(template, appointment, NOW) == at(10) - timedelta(hours=24)

    def test_reminder_clamped_to_now(self, appointment):
        template = _template(NotificationType.APPOINTMENT_REMINDER, delay_hours=24)
        now = at(8)
        assert schedule_time(template, appointment, now) == now

    def test_reminder_skipped_after_start(self, appointment):
        template = _template(NotificationType.APPOINTMENT_REMINDER, delay_hours=2)
        assert schedule_time(template, appointment, at(10)) is None

    @pytest.mark.parametrize(
        "template_type", [NotificationType.POST_APPOINTMENT, NotificationType.RETURN_REMINDER]
    )
    def test_after_end(self, appointment, template_type):
        template = _template(template_type, delay_hours=3)
        assert schedule_time(template, appointment, NOW) == at(14)


class TestEnqueue:
    async def test_created_event_uses_active_templates(self, queue, store, templates, appointment):
        await store.save_template(
            templates[NotificationType.POST_APPOINTMENT].model_copy(update={"is_active": False})
        )

        items = await queue.enqueue_for_appointment(appointment, LifecycleEvent.CREATED)

        template_ids = {item.template_id for item in items}
        assert templates[NotificationType.APPOINTMENT_CREATED].id in template_ids
        assert templates[NotificationType.POST_APPOINTMENT].id not in template_ids
        assert templates[NotificationType.APPOINTMENT_CANCELLED].id not in template_ids
        assert all(item.status == NotificationStatus.PENDING for item in items)

    async def test_cancelled_event(self, queue, templates, appointment):
        items = await queue.enqueue_for_appointment(appointment, "cancelled")

        assert [item.template_id for item in items] == [
            templates[NotificationType.APPOINTMENT_CANCELLED].id
        ]

    async def test_no_templates_no_items(self, queue, appointment, store):
        assert await queue.enqueue_for_appointment(appointment, LifecycleEvent.CREATED) == []
        assert await store.list_notifications() == []


class TestRearm:
    async def test_failed_item_back_to_pending(self, queue, store, clock):
        item = NotificationQueueItem(
            appointment_id=uuid4(),
            template_id=uuid4(),
            scheduled_time=NOW - timedelta(days=1),
            status=NotificationStatus.FAILED,
            error_message="All routes failed",
            claimed_until=NOW + timedelta(minutes=5),
        )
        await store.save_notifications([item])

        rearmed = await queue.rearm(item.id)

        assert rearmed.status == NotificationStatus.PENDING
        assert rearmed.error_message is None
        assert rearmed.scheduled_time == clock()
        assert rearmed.claimed_until is None

    async def test_sent_item_cannot_be_rearmed(self, queue, store):
        item = NotificationQueueItem(
            appointment_id=uuid4(),
            template_id=uuid4(),
            scheduled_time=NOW,
            status=NotificationStatus.SENT,
            sent_at=NOW,
        )
        await store.save_notifications([item])

        with pytest.raises(ValidationError):
            await queue.rearm(item.id)

    async def test_unknown_item(self, queue):
        with pytest.raises(NotFoundError):
            await queue.rearm(uuid4())
