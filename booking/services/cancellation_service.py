"""
Appointment cancellation service.

Cancelling keeps the appointment record: the status becomes `cancelled`, the
reason is stored and the interval is released for new bookings (the ledger
ignores cancelled appointments). An `appointment_cancelled` notification is
enqueued; pending reminders of the appointment are failed by the dispatcher
when their time comes.

Cancelling an already cancelled appointment is a no-op.
"""

import logging
from uuid import UUID

from booking.models import Appointment, AppointmentPatch
from booking.services.appointment_ledger import AppointmentLedger
from booking.services.notification_queue import LifecycleEvent, NotificationQueueService
from database.models import AppointmentStatus
from database.store import BookingStore
from shared.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class CancellationService:
    def __init__(
        self,
        store: BookingStore,
        ledger: AppointmentLedger,
        notifications: NotificationQueueService,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.notifications = notifications

    async def cancel_booking(self, appointment_id: UUID, reason: str | None = None) -> Appointment:
        """
        Cancel an appointment.

        Args:
            appointment_id: Appointment to cancel
            reason: Optional free-text reason (shown to the staff member)

        Returns:
            The cancelled appointment

        Raises:
            NotFoundError: Unknown appointment
        """
        appointment = await self.store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("appointment", appointment_id)

        if appointment.status == AppointmentStatus.CANCELLED:
            logger.info(
                f"Appointment {appointment_id} already cancelled",
                extra={"appointment_id": str(appointment_id)},
            )
            return appointment

        cancelled = await self.ledger.update(
            appointment_id,
            AppointmentPatch(status=AppointmentStatus.CANCELLED, cancellation_reason=reason),
        )
        logger.info(
            f"Appointment {appointment_id} cancelled (reason: {reason or 'n/a'})",
            extra={"appointment_id": str(appointment_id), "staff_id": str(cancelled.staff_id)},
        )

        try:
            await self.notifications.enqueue_for_appointment(cancelled, LifecycleEvent.CANCELLED)
        except Exception as e:
            logger.error(
                f"Failed to enqueue cancellation notice for {appointment_id}: {e}",
                extra={"appointment_id": str(appointment_id)},
                exc_info=True,
            )

        return cancelled
