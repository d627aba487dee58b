"""
Notification queue producer.

Turns appointment lifecycle events into scheduled queue items, one per active
template of the matching type:

    created event
        appointment_created   -> now
        appointment_reminder  -> start - delay_hours (never before now;
                                 skipped when the appointment already started)
        post_appointment      -> end + delay_hours
        return_reminder       -> end + delay_hours
    cancelled event
        appointment_cancelled -> now

Items are picked up by booking.notifications.dispatcher.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import UUID

from booking.models import Appointment, NotificationQueueItem, NotificationTemplate
from database.models import NotificationStatus, NotificationType
from database.store import BookingStore
from shared.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class LifecycleEvent(str, Enum):
    CREATED = "created"
    CANCELLED = "cancelled"


EVENT_TEMPLATE_TYPES: dict[LifecycleEvent, tuple[NotificationType, ...]] = {
    LifecycleEvent.CREATED: (
        NotificationType.APPOINTMENT_CREATED,
        NotificationType.APPOINTMENT_REMINDER,
        NotificationType.POST_APPOINTMENT,
        NotificationType.RETURN_REMINDER,
    ),
    LifecycleEvent.CANCELLED: (NotificationType.APPOINTMENT_CANCELLED,),
}


def schedule_time(
    template: NotificationTemplate, appointment: Appointment, now: datetime
) -> datetime | None:
    """
    When a template's message for an appointment is due.

    Returns:
        Scheduled time, or None when the message no longer makes sense
        (a reminder for an appointment that already started)
    """
    delay = timedelta(hours=template.delay_hours)

    if template.type == NotificationType.APPOINTMENT_REMINDER:
        if appointment.start_time <= now:
            return None
        return max(now, appointment.start_time - delay)

    if template.type in (NotificationType.POST_APPOINTMENT, NotificationType.RETURN_REMINDER):
        return appointment.end_time + delay

    return now


class NotificationQueueService:
    """Enqueue, list and re-arm notification queue items."""

    def __init__(self, store: BookingStore, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def enqueue_for_appointment(
        self, appointment: Appointment, event: LifecycleEvent | str
    ) -> list[NotificationQueueItem]:
        """
        Schedule the notifications of one lifecycle event.

        Args:
            appointment: Persisted appointment
            event: "created" or "cancelled"

        Returns:
            Queue items written (empty when no active template applies)
        """
        event = LifecycleEvent(event)
        now = self.clock()

        items: list[NotificationQueueItem] = []
        for template_type in EVENT_TEMPLATE_TYPES[event]:
            for template in await self.store.list_templates(type=template_type, active_only=True):
                scheduled = schedule_time(template, appointment, now)
                if scheduled is None:
                    logger.info(
                        f"Skipping {template.type.value} for appointment {appointment.id}: already started",
                        extra={"appointment_id": str(appointment.id)},
                    )
                    continue
                items.append(
                    NotificationQueueItem(
                        appointment_id=appointment.id,
                        template_id=template.id,
                        scheduled_time=scheduled,
                    )
                )

        if items:
            await self.store.save_notifications(items)

        logger.info(
            f"Enqueued {len(items)} notifications for appointment {appointment.id} ({event.value})",
            extra={"appointment_id": str(appointment.id)},
        )
        return items

    async def list_notifications(
        self,
        status: NotificationStatus | None = None,
        appointment_id: UUID | None = None,
        limit: int = 100,
    ) -> list[NotificationQueueItem]:
        return await self.store.list_notifications(
            status=status, appointment_id=appointment_id, limit=limit
        )

    async def rearm(
        self, item_id: UUID, scheduled_time: datetime | None = None
    ) -> NotificationQueueItem:
        """
        Operator reset of a failed item back to pending.

        Raises:
            NotFoundError: Unknown item
            ValidationError: Item was already sent
        """
        item = await self.store.get_notification(item_id)
        if item is None:
            raise NotFoundError("notification", item_id)
        if item.status == NotificationStatus.SENT:
            raise ValidationError("status", "Sent notifications cannot be re-armed")

        item.status = NotificationStatus.PENDING
        item.error_message = None
        item.sent_at = None
        item.claimed_until = None
        item.scheduled_time = scheduled_time or self.clock()
        await self.store.save_notifications([item])

        logger.info(
            f"Notification {item_id} re-armed for {item.scheduled_time.isoformat()}",
            extra={"notification_id": str(item_id)},
        )
        return item
