"""
Persistence interface of the booking core.

BookingStore lists every collection operation the scheduler, the ledger and
the notification pipeline need. Two implementations exist:
- InMemoryBookingStore (this module): single process, used for development
  and tests
- SqlAlchemyBookingStore (database/sql_store.py): async SQLAlchemy sessions

All methods exchange pydantic domain objects (booking.models); callers never
see ORM instances or shared mutable state.

Usage:
    from database.store import InMemoryBookingStore

    store = InMemoryBookingStore()
    await store.save_staff(staff)
    staff = await store.get_staff(staff.id)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from uuid import UUID

from booking.models import (
    Appointment,
    Client,
    MessagingSettings,
    NotificationQueueItem,
    NotificationTemplate,
    Service,
    StaffMember,
)
from database.models import NotificationStatus, NotificationType
from shared.exceptions import ConflictError

logger = logging.getLogger(__name__)


class BookingStore(ABC):
    """Abstract persistence for staff, catalog, appointments and notifications."""

    # Staff (owns working hours, breaks and time off)

    @abstractmethod
    async def get_staff(self, staff_id: UUID) -> StaffMember | None: ...

    @abstractmethod
    async def list_staff(self, active_only: bool = False) -> list[StaffMember]: ...

    @abstractmethod
    async def save_staff(self, staff: StaffMember) -> StaffMember: ...

    @abstractmethod
    async def delete_staff(self, staff_id: UUID) -> bool: ...

    # Services

    @abstractmethod
    async def get_service(self, service_id: UUID) -> Service | None: ...

    @abstractmethod
    async def list_services(self, active_only: bool = False) -> list[Service]: ...

    @abstractmethod
    async def save_service(self, service: Service) -> Service: ...

    @abstractmethod
    async def delete_service(self, service_id: UUID) -> bool: ...

    # Clients

    @abstractmethod
    async def get_client(self, client_id: UUID) -> Client | None: ...

    @abstractmethod
    async def find_client_by_phone(self, phone: str) -> Client | None: ...

    @abstractmethod
    async def save_client(self, client: Client) -> Client: ...

    # Appointments

    @abstractmethod
    async def get_appointment(self, appointment_id: UUID) -> Appointment | None: ...

    @abstractmethod
    async def list_appointments(
        self,
        staff_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        include_cancelled: bool = False,
    ) -> list[Appointment]:
        """Appointments overlapping [start, end), ordered by start_time."""

    @abstractmethod
    async def save_appointment(
        self, appointment: Appointment, check_overlap: bool = False
    ) -> Appointment:
        """
        Insert or replace an appointment.

        With check_overlap=True, raises ConflictError when the appointment is
        active and overlaps another active appointment of the same staff.
        """

    @abstractmethod
    async def delete_appointment(self, appointment_id: UUID) -> bool: ...

    # Notification templates

    @abstractmethod
    async def get_template(self, template_id: UUID) -> NotificationTemplate | None: ...

    @abstractmethod
    async def list_templates(
        self, type: NotificationType | None = None, active_only: bool = False
    ) -> list[NotificationTemplate]: ...

    @abstractmethod
    async def save_template(self, template: NotificationTemplate) -> NotificationTemplate: ...

    @abstractmethod
    async def delete_template(self, template_id: UUID) -> bool: ...

    # Notification queue

    @abstractmethod
    async def save_notifications(
        self, items: list[NotificationQueueItem]
    ) -> list[NotificationQueueItem]: ...

    @abstractmethod
    async def get_notification(self, item_id: UUID) -> NotificationQueueItem | None: ...

    @abstractmethod
    async def claim_due_notifications(
        self, now: datetime, limit: int, lease: timedelta
    ) -> list[NotificationQueueItem]:
        """
        Claim pending items with scheduled_time <= now, oldest first.

        Items claimed by someone else (claimed_until > now) are skipped;
        returned items carry claimed_until = now + lease, written in the
        same step, so concurrent callers never receive the same item.
        """

    @abstractmethod
    async def list_notifications(
        self,
        status: NotificationStatus | None = None,
        appointment_id: UUID | None = None,
        limit: int = 100,
    ) -> list[NotificationQueueItem]: ...

    # Messaging settings

    @abstractmethod
    async def get_messaging_settings(self) -> MessagingSettings | None: ...

    @abstractmethod
    async def save_messaging_settings(self, settings: MessagingSettings) -> MessagingSettings: ...

    async def close(self) -> None:
        """Release backend resources (no-op by default)."""


def find_overlap(
    appointments: list[Appointment], candidate: Appointment
) -> Appointment | None:
    """First active appointment of the candidate's staff overlapping it."""
    for existing in appointments:
        if existing.id == candidate.id or not existing.is_active:
            continue
        if existing.staff_id != candidate.staff_id:
            continue
        if existing.overlaps(candidate.start_time, candidate.end_time):
            return existing
    return None


class InMemoryBookingStore(BookingStore):
    """
    Dictionary-backed store for a single process.

    Objects are deep-copied on the way in and out, so mutating a returned
    model never changes stored state. `latency` (seconds) is awaited before
    every operation to surface interleavings in concurrency tests.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self._staff: dict[UUID, StaffMember] = {}
        self._services: dict[UUID, Service] = {}
        self._clients: dict[UUID, Client] = {}
        self._appointments: dict[UUID, Appointment] = {}
        self._templates: dict[UUID, NotificationTemplate] = {}
        self._notifications: dict[UUID, NotificationQueueItem] = {}
        self._messaging_settings: MessagingSettings | None = None

    async def _tick(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)

    @staticmethod
    def _copy(obj):
        return obj.model_copy(deep=True) if obj is not None else None

    # ------------------------------------------------------------------ staff

    async def get_staff(self, staff_id: UUID) -> StaffMember | None:
        await self._tick()
        return self._copy(self._staff.get(staff_id))

    async def list_staff(self, active_only: bool = False) -> list[StaffMember]:
        await self._tick()
        staff = [s for s in self._staff.values() if s.is_active or not active_only]
        return [self._copy(s) for s in sorted(staff, key=lambda s: s.name)]

    async def save_staff(self, staff: StaffMember) -> StaffMember:
        await self._tick()
        self._staff[staff.id] = self._copy(staff)
        return self._copy(staff)

    async def delete_staff(self, staff_id: UUID) -> bool:
        await self._tick()
        return self._staff.pop(staff_id, None) is not None

    # --------------------------------------------------------------- services

    async def get_service(self, service_id: UUID) -> Service | None:
        await self._tick()
        return self._copy(self._services.get(service_id))

    async def list_services(self, active_only: bool = False) -> list[Service]:
        await self._tick()
        services = [s for s in self._services.values() if s.is_active or not active_only]
        return [self._copy(s) for s in sorted(services, key=lambda s: s.name)]

    async def save_service(self, service: Service) -> Service:
        await self._tick()
        self._services[service.id] = self._copy(service)
        return self._copy(service)

    async def delete_service(self, service_id: UUID) -> bool:
        await self._tick()
        return self._services.pop(service_id, None) is not None

    # ---------------------------------------------------------------- clients

    async def get_client(self, client_id: UUID) -> Client | None:
        await self._tick()
        return self._copy(self._clients.get(client_id))

    async def find_client_by_phone(self, phone: str) -> Client | None:
        await self._tick()
        for client in self._clients.values():
            if client.phone == phone:
                return self._copy(client)
        return None

    async def save_client(self, client: Client) -> Client:
        await self._tick()
        for existing in self._clients.values():
            if existing.phone == client.phone and existing.id != client.id:
                raise ConflictError(f"Client phone already registered: {client.phone}", existing.id)
        self._clients[client.id] = self._copy(client)
        return self._copy(client)

    # ----------------------------------------------------------- appointments

    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        await self._tick()
        return self._copy(self._appointments.get(appointment_id))

    async def list_appointments(
        self,
        staff_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        include_cancelled: bool = False,
    ) -> list[Appointment]:
        await self._tick()
        result = []
        for appointment in self._appointments.values():
            if staff_id is not None and appointment.staff_id != staff_id:
                continue
            if not include_cancelled and not appointment.is_active:
                continue
            if start is not None and appointment.end_time <= start:
                continue
            if end is not None and appointment.start_time >= end:
                continue
            result.append(self._copy(appointment))
        return sorted(result, key=lambda a: a.start_time)

    async def save_appointment(
        self, appointment: Appointment, check_overlap: bool = False
    ) -> Appointment:
        await self._tick()
        # No await between the overlap check and the write
        if check_overlap and appointment.is_active:
            conflict = find_overlap(list(self._appointments.values()), appointment)
            if conflict is not None:
                raise ConflictError(
                    f"Staff {appointment.staff_id} already booked "
                    f"{conflict.start_time.isoformat()} - {conflict.end_time.isoformat()}",
                    conflict.id,
                )
        self._appointments[appointment.id] = self._copy(appointment)
        return self._copy(appointment)

    async def delete_appointment(self, appointment_id: UUID) -> bool:
        await self._tick()
        return self._appointments.pop(appointment_id, None) is not None

    # -------------------------------------------------------------- templates

    async def get_template(self, template_id: UUID) -> NotificationTemplate | None:
        await self._tick()
        return self._copy(self._templates.get(template_id))

    async def list_templates(
        self, type: NotificationType | None = None, active_only: bool = False
    ) -> list[NotificationTemplate]:
        await self._tick()
        return [
            self._copy(t)
            for t in self._templates.values()
            if (type is None or t.type == type) and (t.is_active or not active_only)
        ]

    async def save_template(self, template: NotificationTemplate) -> NotificationTemplate:
        await self._tick()
        self._templates[template.id] = self._copy(template)
        return self._copy(template)

    async def delete_template(self, template_id: UUID) -> bool:
        await self._tick()
        return self._templates.pop(template_id, None) is not None

    # ---------------------------------------------------------- notifications

    async def save_notifications(
        self, items: list[NotificationQueueItem]
    ) -> list[NotificationQueueItem]:
        await self._tick()
        for item in items:
            self._notifications[item.id] = self._copy(item)
        return [self._copy(item) for item in items]

    async def get_notification(self, item_id: UUID) -> NotificationQueueItem | None:
        await self._tick()
        return self._copy(self._notifications.get(item_id))

    async def claim_due_notifications(
        self, now: datetime, limit: int, lease: timedelta
    ) -> list[NotificationQueueItem]:
        await self._tick()
        # No await between selection and claim
        due = [
            item
            for item in self._notifications.values()
            if item.status == NotificationStatus.PENDING
            and item.scheduled_time <= now
            and (item.claimed_until is None or item.claimed_until <= now)
        ]
        due.sort(key=lambda item: item.scheduled_time)
        claimed = due[:limit]
        for item in claimed:
            item.claimed_until = now + lease
        return [self._copy(item) for item in claimed]

    async def list_notifications(
        self,
        status: NotificationStatus | None = None,
        appointment_id: UUID | None = None,
        limit: int = 100,
    ) -> list[NotificationQueueItem]:
        await self._tick()
        items = [
            item
            for item in self._notifications.values()
            if (status is None or item.status == status)
            and (appointment_id is None or item.appointment_id == appointment_id)
        ]
        items.sort(key=lambda item: item.scheduled_time, reverse=True)
        return [self._copy(item) for item in items[:limit]]

    # --------------------------------------------------------------- settings

    async def get_messaging_settings(self) -> MessagingSettings | None:
        await self._tick()
        return self._copy(self._messaging_settings)

    async def save_messaging_settings(self, settings: MessagingSettings) -> MessagingSettings:
        await self._tick()
        self._messaging_settings = self._copy(settings)
        return self._copy(settings)
