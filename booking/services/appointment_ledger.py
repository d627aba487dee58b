"""
Appointment ledger - the single writer of appointment timing.

Guarantees that no two active (non-cancelled) appointments of the same staff
member overlap. Check-and-write runs under a per-staff asyncio.Lock, so
appointments of different staff never contend; the store repeats the overlap
check inside its own write (row lock on the staff for the SQL backend), which
keeps the guarantee across several processes.

Usage:
    ledger = AppointmentLedger(store)
    appointment = await ledger.insert(Appointment(...))   # ConflictError on overlap
    await ledger.update(appointment.id, AppointmentPatch(start_time=new_start))
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from uuid import UUID

from booking.models import Appointment, AppointmentPatch
from database.store import BookingStore
from shared.exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Patch fields that may be cleared with an explicit null
NULLABLE_FIELDS = {"notes", "cancellation_reason"}


class AppointmentLedger:
    """Conflict-checked appointment persistence."""

    def __init__(self, store: BookingStore) -> None:
        self.store = store
        self._locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, staff_id: UUID) -> asyncio.Lock:
        return self._locks[staff_id]

    async def find_conflict(
        self,
        staff_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> Appointment | None:
        """First active appointment of the staff overlapping [start, end)."""
        for appointment in await self.store.list_appointments(
            staff_id=staff_id, start=start, end=end
        ):
            if appointment.id != exclude_id and appointment.overlaps(start, end):
                return appointment
        return None

    async def conflicts(
        self,
        staff_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> bool:
        return await self.find_conflict(staff_id, start, end, exclude_id) is not None

    async def _write_checked(self, appointment: Appointment) -> Appointment:
        if appointment.is_active:
            conflict = await self.find_conflict(
                appointment.staff_id,
                appointment.start_time,
                appointment.end_time,
                exclude_id=appointment.id,
            )
            if conflict is not None:
                logger.warning(
                    f"Overlap with appointment {conflict.id} for staff {appointment.staff_id}",
                    extra={
                        "staff_id": str(appointment.staff_id),
                        "appointment_id": str(appointment.id),
                    },
                )
                raise ConflictError(
                    f"Staff {appointment.staff_id} is already booked "
                    f"{conflict.start_time.isoformat()} - {conflict.end_time.isoformat()}",
                    conflict.id,
                )
        return await self.store.save_appointment(appointment, check_overlap=True)

    async def insert(self, appointment: Appointment) -> Appointment:
        """
        Persist a new appointment.

        Raises:
            ConflictError: The interval overlaps an active appointment of the same staff
        """
        async with self.lock_for(appointment.staff_id):
            saved = await self._write_checked(appointment)

        logger.info(
            f"Appointment {saved.id} recorded for staff {saved.staff_id} "
            f"at {saved.start_time.isoformat()}",
            extra={"appointment_id": str(saved.id), "staff_id": str(saved.staff_id)},
        )
        return saved

    async def _duration_for(self, current: Appointment, service_id: UUID) -> timedelta:
        service = await self.store.get_service(service_id)
        return service.duration if service is not None else current.duration

    async def update(self, appointment_id: UUID, patch: AppointmentPatch) -> Appointment:
        """
        Apply a partial update.

        end_time always equals start_time plus the service duration: changing
        start_time or service_id recomputes it, and an explicit end_time that
        disagrees is rejected. Timing, staff and status changes are re-checked
        for overlap, so re-activating a cancelled appointment into an occupied
        interval fails too.

        Raises:
            NotFoundError: Unknown appointment
            ConflictError: The patched interval is occupied
            ValidationError: The patched record is invalid (e.g. wrong end_time)
        """
        current = await self.store.get_appointment(appointment_id)
        if current is None:
            raise NotFoundError("appointment", appointment_id)

        changes = {
            key: value
            for key, value in patch.model_dump(exclude_unset=True).items()
            if value is not None or key in NULLABLE_FIELDS
        }
        if changes.keys() & {"start_time", "service_id", "end_time"}:
            start = changes.get("start_time", current.start_time)
            expected_end = start + await self._duration_for(
                current, changes.get("service_id", current.service_id)
            )
            if "end_time" in changes and changes["end_time"] != expected_end:
                raise ValidationError(
                    "end_time",
                    f"end_time must be {expected_end.isoformat()} (start plus service duration)",
                )
            changes["end_time"] = expected_end

        try:
            updated = Appointment.model_validate({**current.model_dump(), **changes})
        except ValueError as e:
            raise ValidationError("appointment", str(e)) from e

        async with self.lock_for(updated.staff_id):
            saved = await self._write_checked(updated)

        logger.info(
            f"Appointment {appointment_id} updated: {sorted(changes)}",
            extra={"appointment_id": str(appointment_id), "staff_id": str(saved.staff_id)},
        )
        return saved

    async def remove(self, appointment_id: UUID) -> None:
        """
        Hard-delete an appointment (admin only; cancellation keeps the record).

        Raises:
            NotFoundError: Unknown appointment
        """
        if not await self.store.delete_appointment(appointment_id):
            raise NotFoundError("appointment", appointment_id)
        logger.info(
            f"Appointment {appointment_id} removed",
            extra={"appointment_id": str(appointment_id)},
        )
