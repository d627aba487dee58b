"""
Public booking endpoints used by the salon website.

- GET  /api/staff                  active staff (public profile only)
- GET  /api/services               active services
- GET  /api/staff/{id}/slots       bookable slots for a date
- POST /api/bookings               create a booking
- POST /api/bookings/{id}/cancel   cancel a booking
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, field_validator

from api.dependencies import ContextDep
from booking.models import (
    Appointment,
    BookingRequest,
    Service,
    StaffMember,
    TimeSlot,
    format_duration,
    parse_duration,
)
from booking.services.availability_service import filter_past_slots
from shared.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# =============================================================================
# Response Models
# =============================================================================


class StaffPublic(BaseModel):
    """Staff profile without contact data or bot credentials."""

    id: UUID
    name: str
    specialty: str
    bio: str | None = None
    image_url: str | None = None
    service_ids: list[UUID]

    @classmethod
    def from_staff(cls, staff: StaffMember) -> "StaffPublic":
        return cls(
            id=staff.id,
            name=staff.name,
            specialty=staff.specialty,
            bio=staff.bio,
            image_url=staff.image_url,
            service_ids=staff.service_ids,
        )


class ServicePublic(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    price: Decimal
    duration: str
    image_url: str | None = None

    @classmethod
    def from_service(cls, service: Service) -> "ServicePublic":
        return cls(
            id=service.id,
            name=service.name,
            description=service.description,
            price=service.price,
            duration=format_duration(service.duration),
            image_url=service.image_url,
        )


class CancelRequest(BaseModel):
    reason: str | None = None


class SlotsQuery(BaseModel):
    duration: timedelta | None = None

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, value):
        return parse_duration(value)


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/staff", response_model=list[StaffPublic])
async def list_staff(context: ContextDep):
    staff = await context.staff_admin.list_staff(active_only=True)
    return [StaffPublic.from_staff(member) for member in staff]


@router.get("/services", response_model=list[ServicePublic])
async def list_services(context: ContextDep):
    services = await context.catalog.list_services(active_only=True)
    return [ServicePublic.from_service(service) for service in services]


@router.get("/staff/{staff_id}/slots", response_model=list[TimeSlot])
async def get_slots(
    staff_id: UUID,
    context: ContextDep,
    day: date = Query(..., alias="date"),
    service_id: UUID | None = None,
    duration: str | None = None,
):
    """
    Bookable slots of a staff member on a date.

    The slot length is the service duration (`service_id`) or an explicit
    `duration` ("HH:MM:SS" or minutes). Slots that already started are
    omitted.
    """
    if service_id is not None:
        service = await context.store.get_service(service_id)
        if service is None:
            raise NotFoundError("service", service_id)
        slot_length = service.duration
    elif duration is not None:
        value = int(duration) if duration.isdigit() else duration
        try:
            slot_length = SlotsQuery(duration=value).duration
        except ValueError as e:
            raise ValidationError("duration", "Invalid duration") from e
        if slot_length is None or slot_length <= timedelta(0):
            raise ValidationError("duration", "Duration must be positive")
    else:
        raise ValidationError("service_id", "service_id or duration is required")

    slots = await context.availability.get_available_slots(staff_id, day, slot_length)
    return filter_past_slots(slots, context.clock())


@router.post("/bookings", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def create_booking(request: BookingRequest, context: ContextDep):
    return await context.bookings.execute(request)


@router.post("/bookings/{appointment_id}/cancel", response_model=Appointment)
async def cancel_booking(
    appointment_id: UUID,
    context: ContextDep,
    request: CancelRequest | None = None,
):
    reason = request.reason if request else None
    return await context.cancellations.cancel_booking(appointment_id, reason)
