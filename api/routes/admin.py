"""
Admin API Endpoints for the salon admin panel

Provides REST endpoints (bearer token) for:
- Staff profiles, performed services, working hours and time off
- Services and notification templates
- Appointments (list, edit, delete)
- Notification queue (list, re-arm, process now)
- Messaging settings and gateway balance
"""

import logging
from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Response, status
from pydantic import BaseModel, Field

from api.dependencies import ContextDep, require_admin
from api.routes.booking import ServicePublic
from booking.models import (
    Appointment,
    AppointmentPatch,
    MessagingSettings,
    NotificationQueueItem,
    NotificationTemplate,
    Service,
    StaffMember,
    TimeOffPeriod,
    working_hours_adapter,
)
from database.models import NotificationStatus, NotificationType
from shared.exceptions import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


# =============================================================================
# Request/Response Models
# =============================================================================


class ServiceAdmin(ServicePublic):
    is_active: bool

    @classmethod
    def from_service(cls, service: Service) -> "ServiceAdmin":
        public = ServicePublic.from_service(service)
        return cls(**public.model_dump(), is_active=service.is_active)


class RearmRequest(BaseModel):
    scheduled_time: datetime | None = None


class MessagingSettingsUpdate(BaseModel):
    """Partial settings update; an omitted or empty api_key keeps the stored key."""

    api_key: str | None = None
    sender_name: str | None = None
    default_route: str | None = None
    default_priority: int | None = Field(default=None, ge=1, le=4)
    test_mode: bool | None = None
    location: str | None = None
    base_url: str | None = None
    queue_check_interval: int | None = Field(default=None, ge=1)
    batch_size: int | None = Field(default=None, ge=1)


def _masked(settings: MessagingSettings) -> dict[str, Any]:
    data = settings.model_dump()
    key = data["api_key"]
    data["api_key"] = f"***{key[-4:]}" if len(key) > 4 else ("***" if key else "")
    return data


def _parse_rule(payload: dict[str, Any]):
    try:
        return working_hours_adapter.validate_python(payload)
    except ValueError as e:
        raise ValidationError("working_hours", str(e)) from e


# =============================================================================
# Staff
# =============================================================================


@router.get("/staff", response_model=list[StaffMember])
async def list_staff(context: ContextDep, active_only: bool = False):
    return await context.staff_admin.list_staff(active_only=active_only)


@router.get("/staff/{staff_id}", response_model=StaffMember)
async def get_staff(staff_id: UUID, context: ContextDep):
    return await context.staff_admin.get_staff(staff_id)


@router.post("/staff", response_model=StaffMember, status_code=status.HTTP_201_CREATED)
async def create_staff(staff: StaffMember, context: ContextDep):
    return await context.staff_admin.create_staff(staff)


@router.put("/staff/{staff_id}", response_model=StaffMember)
async def update_staff(
    staff_id: UUID,
    context: ContextDep,
    changes: Annotated[dict[str, Any], Body()],
):
    return await context.staff_admin.update_staff(staff_id, changes)


@router.delete("/staff/{staff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_staff(staff_id: UUID, context: ContextDep):
    await context.staff_admin.delete_staff(staff_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/staff/{staff_id}/services", response_model=StaffMember)
async def set_staff_services(
    staff_id: UUID,
    context: ContextDep,
    service_ids: Annotated[list[UUID], Body()],
):
    return await context.staff_admin.set_services(staff_id, service_ids)


@router.post(
    "/staff/{staff_id}/working-hours",
    response_model=StaffMember,
    status_code=status.HTTP_201_CREATED,
)
async def add_working_hours(
    staff_id: UUID,
    context: ContextDep,
    payload: Annotated[dict[str, Any], Body()],
):
    return await context.staff_admin.add_working_hours(staff_id, _parse_rule(payload))


@router.put("/staff/{staff_id}/working-hours/{rule_id}", response_model=StaffMember)
async def update_working_hours(
    staff_id: UUID,
    rule_id: UUID,
    context: ContextDep,
    payload: Annotated[dict[str, Any], Body()],
):
    return await context.staff_admin.update_working_hours(staff_id, rule_id, _parse_rule(payload))


@router.delete("/staff/{staff_id}/working-hours/{rule_id}", response_model=StaffMember)
async def delete_working_hours(staff_id: UUID, rule_id: UUID, context: ContextDep):
    return await context.staff_admin.delete_working_hours(staff_id, rule_id)


@router.post(
    "/staff/{staff_id}/time-off",
    response_model=StaffMember,
    status_code=status.HTTP_201_CREATED,
)
async def add_time_off(staff_id: UUID, period: TimeOffPeriod, context: ContextDep):
    return await context.staff_admin.add_time_off(staff_id, period)


@router.put("/staff/{staff_id}/time-off/{period_id}", response_model=StaffMember)
async def update_time_off(
    staff_id: UUID, period_id: UUID, period: TimeOffPeriod, context: ContextDep
):
    return await context.staff_admin.update_time_off(staff_id, period_id, period)


@router.delete("/staff/{staff_id}/time-off/{period_id}", response_model=StaffMember)
async def delete_time_off(staff_id: UUID, period_id: UUID, context: ContextDep):
    return await context.staff_admin.delete_time_off(staff_id, period_id)


# =============================================================================
# Services
# =============================================================================


@router.get("/services", response_model=list[ServiceAdmin])
async def list_services(context: ContextDep, active_only: bool = False):
    services = await context.catalog.list_services(active_only=active_only)
    return [ServiceAdmin.from_service(service) for service in services]


@router.get("/services/{service_id}", response_model=ServiceAdmin)
async def get_service(service_id: UUID, context: ContextDep):
    return ServiceAdmin.from_service(await context.catalog.get_service(service_id))


@router.post("/services", response_model=ServiceAdmin, status_code=status.HTTP_201_CREATED)
async def create_service(service: Service, context: ContextDep):
    return ServiceAdmin.from_service(await context.catalog.create_service(service))


@router.put("/services/{service_id}", response_model=ServiceAdmin)
async def update_service(
    service_id: UUID,
    context: ContextDep,
    changes: Annotated[dict[str, Any], Body()],
):
    return ServiceAdmin.from_service(await context.catalog.update_service(service_id, changes))


@router.delete("/services/{service_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_service(service_id: UUID, context: ContextDep):
    await context.catalog.delete_service(service_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Appointments
# =============================================================================


@router.get("/appointments", response_model=list[Appointment])
async def list_appointments(
    context: ContextDep,
    staff_id: UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    include_cancelled: bool = True,
):
    return await context.catalog.list_appointments(
        staff_id=staff_id, start=start, end=end, include_cancelled=include_cancelled
    )


@router.get("/appointments/{appointment_id}", response_model=Appointment)
async def get_appointment(appointment_id: UUID, context: ContextDep):
    return await context.catalog.get_appointment(appointment_id)


@router.patch("/appointments/{appointment_id}", response_model=Appointment)
async def update_appointment(appointment_id: UUID, patch: AppointmentPatch, context: ContextDep):
    return await context.catalog.update_appointment(appointment_id, patch)


@router.delete("/appointments/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(appointment_id: UUID, context: ContextDep):
    await context.catalog.delete_appointment(appointment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Notification templates
# =============================================================================


@router.get("/templates", response_model=list[NotificationTemplate])
async def list_templates(context: ContextDep, type: NotificationType | None = None):
    return await context.catalog.list_templates(type=type)


@router.post(
    "/templates", response_model=NotificationTemplate, status_code=status.HTTP_201_CREATED
)
async def create_template(template: NotificationTemplate, context: ContextDep):
    return await context.catalog.create_template(template)


@router.put("/templates/{template_id}", response_model=NotificationTemplate)
async def update_template(
    template_id: UUID,
    context: ContextDep,
    changes: Annotated[dict[str, Any], Body()],
):
    return await context.catalog.update_template(template_id, changes)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(template_id: UUID, context: ContextDep):
    await context.catalog.delete_template(template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Notification queue
# =============================================================================


@router.get("/notifications", response_model=list[NotificationQueueItem])
async def list_notifications(
    context: ContextDep,
    status_filter: Annotated[NotificationStatus | None, Query(alias="status")] = None,
    appointment_id: UUID | None = None,
    limit: int = 100,
):
    return await context.notifications.list_notifications(
        status=status_filter, appointment_id=appointment_id, limit=limit
    )


@router.post("/notifications/{item_id}/rearm", response_model=NotificationQueueItem)
async def rearm_notification(
    item_id: UUID,
    context: ContextDep,
    request: RearmRequest | None = None,
):
    scheduled_time = request.scheduled_time if request else None
    return await context.notifications.rearm(item_id, scheduled_time)


@router.post("/notifications/process")
async def process_notifications(context: ContextDep):
    """Run one dispatch cycle now (skipped when a cycle is already running)."""
    report = await context.dispatcher.run_cycle()
    return report.to_dict()


# =============================================================================
# Messaging settings
# =============================================================================


@router.get("/messaging-settings")
async def get_messaging_settings(context: ContextDep):
    return _masked(await context.messaging.get())


@router.put("/messaging-settings")
async def update_messaging_settings(update: MessagingSettingsUpdate, context: ContextDep):
    current = await context.messaging.get()
    changes = update.model_dump(exclude_none=True)
    if not changes.get("api_key"):
        changes.pop("api_key", None)

    try:
        merged = MessagingSettings.model_validate({**current.model_dump(), **changes})
    except ValueError as e:
        raise ValidationError("messaging_settings", str(e)) from e

    saved = await context.messaging.update(merged)
    logger.info(f"Messaging settings updated: {sorted(changes)}")
    return _masked(saved)


@router.get("/balance")
async def get_balance(context: ContextDep):
    return {"balance": await context.sms.check_balance()}
