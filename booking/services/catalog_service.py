"""
Catalog administration: services, notification templates and appointment
edits made from the admin panel.

Appointment edits go through the ledger (overlap-checked); a status change to
`cancelled` is routed through the cancellation service so the cancellation
notice is enqueued the same way as for a client-side cancellation.
A hard delete skips the queue and alerts the staff member directly.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from booking.models import Appointment, AppointmentPatch, NotificationTemplate, Service
from booking.notifications.templates import build_notification_data, staff_alert_text
from booking.services.appointment_ledger import AppointmentLedger
from booking.services.cancellation_service import CancellationService
from database.models import AppointmentStatus, NotificationType
from database.store import BookingStore
from shared.exceptions import NotFoundError, ValidationError
from shared.settings_service import MessagingSettingsService
from shared.telegram_client import TelegramClient

logger = logging.getLogger(__name__)


def _merge(model, changes: dict[str, Any], field: str):
    try:
        return type(model).model_validate({**model.model_dump(), **changes})
    except ValueError as e:
        raise ValidationError(field, str(e)) from e


class CatalogService:
    def __init__(
        self,
        store: BookingStore,
        ledger: AppointmentLedger,
        cancellations: CancellationService,
        telegram: TelegramClient | None = None,
        messaging: MessagingSettingsService | None = None,
        tz: ZoneInfo | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.cancellations = cancellations
        self.telegram = telegram
        self.messaging = messaging
        self.tz = tz

    # ----------------------------------------------------------------- services

    async def list_services(self, active_only: bool = False) -> list[Service]:
        return await self.store.list_services(active_only=active_only)

    async def get_service(self, service_id: UUID) -> Service:
        service = await self.store.get_service(service_id)
        if service is None:
            raise NotFoundError("service", service_id)
        return service

    async def create_service(self, service: Service) -> Service:
        saved = await self.store.save_service(service)
        logger.info(f"Created service {saved.id} ({saved.name}, {saved.duration})")
        return saved

    async def update_service(self, service_id: UUID, changes: dict[str, Any]) -> Service:
        service = await self.get_service(service_id)
        changes.pop("id", None)
        return await self.store.save_service(_merge(service, changes, "service"))

    async def delete_service(self, service_id: UUID) -> None:
        """Existing appointments keep their (now dangling) service reference."""
        if not await self.store.delete_service(service_id):
            raise NotFoundError("service", service_id)
        logger.info(f"Deleted service {service_id}")

    # ---------------------------------------------------------------- templates

    async def list_templates(
        self, type: NotificationType | None = None
    ) -> list[NotificationTemplate]:
        return await self.store.list_templates(type=type)

    async def create_template(self, template: NotificationTemplate) -> NotificationTemplate:
        saved = await self.store.save_template(template)
        logger.info(f"Created {saved.type.value} template {saved.id}")
        return saved

    async def update_template(
        self, template_id: UUID, changes: dict[str, Any]
    ) -> NotificationTemplate:
        template = await self.store.get_template(template_id)
        if template is None:
            raise NotFoundError("notification_template", template_id)
        changes.pop("id", None)
        return await self.store.save_template(_merge(template, changes, "template"))

    async def delete_template(self, template_id: UUID) -> None:
        if not await self.store.delete_template(template_id):
            raise NotFoundError("notification_template", template_id)

    # ------------------------------------------------------------- appointments

    async def list_appointments(
        self,
        staff_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        include_cancelled: bool = True,
    ) -> list[Appointment]:
        return await self.store.list_appointments(
            staff_id=staff_id, start=start, end=end, include_cancelled=include_cancelled
        )

    async def get_appointment(self, appointment_id: UUID) -> Appointment:
        appointment = await self.store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("appointment", appointment_id)
        return appointment

    async def update_appointment(
        self, appointment_id: UUID, patch: AppointmentPatch
    ) -> Appointment:
        """
        Admin edit of an appointment.

        Raises:
            NotFoundError: Unknown appointment, or a referenced staff/service
            ConflictError: The new interval is occupied
        """
        if patch.staff_id is not None and await self.store.get_staff(patch.staff_id) is None:
            raise NotFoundError("staff", patch.staff_id)
        if patch.service_id is not None and await self.store.get_service(patch.service_id) is None:
            raise NotFoundError("service", patch.service_id)

        if patch.status == AppointmentStatus.CANCELLED:
            await self.cancellations.cancel_booking(appointment_id, patch.cancellation_reason)
            remaining = patch.model_dump(exclude_unset=True, exclude={"status", "cancellation_reason"})
            if not remaining:
                return await self.get_appointment(appointment_id)
            patch = AppointmentPatch(**remaining)

        return await self.ledger.update(appointment_id, patch)

    async def delete_appointment(self, appointment_id: UUID) -> None:
        """
        Hard-delete an appointment and tell the staff member the time is free.

        The alert is best effort and only sent for active appointments; a
        cancelled one was already announced when it was cancelled.
        """
        appointment = await self.get_appointment(appointment_id)
        await self.ledger.remove(appointment_id)
        if appointment.is_active:
            await self._alert_deleted(appointment)

    async def _alert_deleted(self, appointment: Appointment) -> None:
        if self.telegram is None or self.messaging is None:
            return
        staff = await self.store.get_staff(appointment.staff_id)
        if staff is None or not staff.has_bot_channel:
            return

        try:
            data = build_notification_data(
                appointment,
                await self.store.get_client(appointment.client_id),
                await self.store.get_service(appointment.service_id),
                staff,
                await self.messaging.get(),
                self.tz,
            )
            delivered = await self.telegram.send_message(
                staff.telegram_bot_token,
                staff.telegram_chat_id,
                staff_alert_text(NotificationType.APPOINTMENT_CANCELLED, data),
            )
        except Exception as e:
            logger.warning(
                f"Deletion alert for appointment {appointment.id} raised: {e}",
                extra={"appointment_id": str(appointment.id), "staff_id": str(staff.id)},
            )
            return
        if not delivered:
            logger.warning(
                f"Deletion alert for appointment {appointment.id} not delivered",
                extra={"appointment_id": str(appointment.id), "staff_id": str(staff.id)},
            )
