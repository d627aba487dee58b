"""
Booking Transaction Handler.

BookingTransaction.execute() is the single entry point for creating
appointments from the public booking flow:

1. Validate the request (client fields, ids, start time, duration)
2. Upsert the client by normalized phone
3. Re-verify the slot against working hours, then insert through the
   appointment ledger (status pending); a ledger conflict becomes
   SlotUnavailableError, the caller re-queries slots
4. Enqueue lifecycle notifications (best effort, never affects the result)

Errors propagate to the caller:
- ValidationError: fix the named field and retry
- NotFoundError: unknown service or staff id
- SlotUnavailableError: the slot was taken or is outside working hours
"""

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from booking.models import Appointment, BookingRequest, Client, ClientInfo
from booking.services.appointment_ledger import AppointmentLedger
from booking.services.availability_service import AvailabilityService
from booking.services.notification_queue import (
    Clock,
    LifecycleEvent,
    NotificationQueueService,
    utcnow,
)
from booking.validators.booking_validators import (
    localize_start_time,
    validate_client,
    validate_duration,
    validate_not_in_past,
    validate_service,
    validate_staff,
)
from database.models import AppointmentStatus
from database.store import BookingStore
from shared.exceptions import ConflictError, NotFoundError, SlotUnavailableError, ValidationError

logger = logging.getLogger(__name__)


class BookingTransaction:
    """
    Orchestrates validation, client upsert, ledger insert and notification
    enqueueing for one booking request.
    """

    def __init__(
        self,
        store: BookingStore,
        availability: AvailabilityService,
        ledger: AppointmentLedger,
        notifications: NotificationQueueService,
        tz: ZoneInfo,
        phone_region: str = "RU",
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.availability = availability
        self.ledger = ledger
        self.notifications = notifications
        self.tz = tz
        self.phone_region = phone_region
        self.clock = clock

    async def execute(self, request: BookingRequest) -> Appointment:
        """
        Execute the booking.

        Args:
            request: Public booking request

        Returns:
            The persisted appointment (status pending)

        Raises:
            ValidationError, NotFoundError, SlotUnavailableError

        Example:
            >>> appointment = await transaction.execute(BookingRequest(
            ...     client=ClientInfo(name="Анна", phone="+79123456789"),
            ...     service_id=service.id,
            ...     staff_id=staff.id,
            ...     start_time=datetime(2026, 10, 19, 10, 0, tzinfo=MOSCOW_TZ),
            ... ))
            >>> appointment.status
            <AppointmentStatus.PENDING: 'pending'>
        """
        # Step 1: Validate request fields
        client_info = validate_client(request.client, self.phone_region)

        if request.service_id is None:
            raise ValidationError("service_id", "service_id is required")
        if request.staff_id is None:
            raise ValidationError("staff_id", "staff_id is required")

        start_time = localize_start_time(request.start_time, self.tz)
        validate_not_in_past(start_time, self.clock())

        service = await self.store.get_service(request.service_id)
        if service is None:
            raise NotFoundError("service", request.service_id)
        validate_service(service)

        staff = await self.store.get_staff(request.staff_id)
        if staff is None:
            raise NotFoundError("staff", request.staff_id)
        validate_staff(staff, service)

        duration = validate_duration(request.duration, service)
        end_time = start_time + duration

        trace_id = f"{staff.id}_{start_time.isoformat()}"
        logger.info(
            f"[{trace_id}] Starting booking transaction",
            extra={"staff_id": str(staff.id), "client_phone": client_info.phone},
        )

        # Step 2: Upsert client by phone
        client = await self._upsert_client(client_info)

        # Step 3: Re-verify working hours, then insert through the ledger
        if not self.availability.is_bookable(staff, start_time, duration):
            logger.warning(f"[{trace_id}] Requested time is outside working hours")
            raise SlotUnavailableError(
                "Requested time is outside the staff member's working hours",
                {"staff_id": str(staff.id), "start_time": start_time.isoformat()},
            )

        appointment = Appointment(
            client_id=client.id,
            service_id=service.id,
            staff_id=staff.id,
            start_time=start_time,
            end_time=end_time,
            status=AppointmentStatus.PENDING,
            notes=request.notes,
        )
        try:
            appointment = await self.ledger.insert(appointment)
        except ConflictError as e:
            logger.warning(f"[{trace_id}] Slot taken: {e.message}")
            raise SlotUnavailableError(
                "The selected time slot is no longer available",
                {"staff_id": str(staff.id), "start_time": start_time.isoformat(), **e.details},
            ) from e

        logger.info(
            f"[{trace_id}] Appointment created (PENDING)",
            extra={"appointment_id": str(appointment.id), "staff_id": str(staff.id)},
        )

        # Step 4: Enqueue notifications (failures never affect the booking)
        try:
            await self.notifications.enqueue_for_appointment(appointment, LifecycleEvent.CREATED)
        except Exception as e:
            logger.error(
                f"[{trace_id}] Failed to enqueue notifications (booking still valid): {e}",
                extra={"appointment_id": str(appointment.id)},
                exc_info=True,
            )

        return appointment

    async def _upsert_client(self, info: ClientInfo) -> Client:
        existing = await self.store.find_client_by_phone(info.phone)
        if existing is None:
            try:
                client = await self.store.save_client(
                    Client(name=info.name, phone=info.phone, email=info.email)
                )
            except ConflictError:
                # Same phone registered concurrently
                existing = await self.store.find_client_by_phone(info.phone)
                if existing is None:
                    raise
            else:
                logger.info(f"Created client {client.id}", extra={"client_phone": info.phone})
                return client

        existing.name = info.name
        if info.email:
            existing.email = info.email
        return await self.store.save_client(existing)
