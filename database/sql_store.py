"""
SQLAlchemy implementation of BookingStore.

Each operation runs in its own AsyncSession from the injected session
factory. ORM rows never leave this module: they are converted to and from
the pydantic domain models (booking.models) at the boundary.

Double-booking protection across processes: save_appointment(check_overlap=True)
locks the staff row with SELECT ... FOR UPDATE and re-runs the overlap query
inside the same write transaction (the lock is a no-op on SQLite, which
serializes writers anyway).

claim_due_notifications selects due rows with FOR UPDATE SKIP LOCKED and
stamps claimed_until in the same transaction, so dispatchers in different
processes never pick up the same queue item.
"""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from booking import models as domain
from database.models import (
    Appointment,
    AppointmentStatus,
    Client,
    MessagingSettings,
    NotificationQueue,
    NotificationStatus,
    NotificationTemplate,
    NotificationType,
    Service,
    Staff,
    StaffBreak,
    StaffService,
    StaffTimeOff,
    StaffWorkingHours,
    WorkingHoursPattern,
)
from database.store import BookingStore
from shared.exceptions import ConflictError

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1


# ============================================================================
# Row <-> domain conversion
# ============================================================================


def _utc(value: datetime | None) -> datetime | None:
    # Rows keep the caller's tzinfo until reloaded; reads always come back in UTC
    return value.astimezone(UTC) if value is not None else None


def _rule_to_domain(row: StaffWorkingHours):
    data = {
        "id": row.id,
        "pattern": row.pattern.value,
        "start_time": row.start_time,
        "end_time": row.end_time,
        "is_active": row.is_active,
        "breaks": [
            {"id": b.id, "start_time": b.start_time, "end_time": b.end_time} for b in row.breaks
        ],
    }
    if row.pattern == WorkingHoursPattern.WEEKLY:
        data["weekday"] = row.weekday
    elif row.pattern == WorkingHoursPattern.SPECIFIC_DATES:
        data["start_date"] = row.start_date
        data["end_date"] = row.end_date
    else:
        data["day_of_week"] = row.day_of_week
        data["week_of_month"] = row.week_of_month
    return domain.working_hours_adapter.validate_python(data)


def _apply_rule(row: StaffWorkingHours, rule) -> None:
    row.pattern = WorkingHoursPattern(rule.pattern)
    row.start_time = rule.start_time
    row.end_time = rule.end_time
    row.is_active = rule.is_active
    row.weekday = getattr(rule, "weekday", None)
    row.start_date = getattr(rule, "start_date", None)
    row.end_date = getattr(rule, "end_date", None)
    row.day_of_week = getattr(rule, "day_of_week", None)
    row.week_of_month = getattr(rule, "week_of_month", None)

    existing = {b.id: b for b in row.breaks}
    synced = []
    for item in rule.breaks:
        break_row = existing.get(item.id) or StaffBreak(id=item.id)
        break_row.start_time = item.start_time
        break_row.end_time = item.end_time
        synced.append(break_row)
    row.breaks = synced


def _staff_to_domain(row: Staff) -> domain.StaffMember:
    return domain.StaffMember(
        id=row.id,
        name=row.name,
        specialty=row.specialty,
        bio=row.bio,
        image_url=row.image_url,
        phone=row.phone,
        email=row.email,
        telegram_bot_token=row.telegram_bot_token,
        telegram_chat_id=row.telegram_chat_id,
        is_active=row.is_active,
        service_ids=[link.service_id for link in row.services],
        working_hours=[_rule_to_domain(rule) for rule in row.working_hours],
        time_off=[
            domain.TimeOffPeriod(
                id=p.id, start_date=p.start_date, end_date=p.end_date, reason=p.reason
            )
            for p in row.time_off
        ],
    )


def _service_to_domain(row: Service) -> domain.Service:
    return domain.Service(
        id=row.id,
        name=row.name,
        description=row.description,
        price=row.price,
        duration=timedelta(seconds=row.duration_seconds),
        image_url=row.image_url,
        is_active=row.is_active,
    )


def _client_to_domain(row: Client) -> domain.Client:
    return domain.Client(id=row.id, name=row.name, phone=row.phone, email=row.email)


def _appointment_to_domain(row: Appointment) -> domain.Appointment:
    return domain.Appointment(
        id=row.id,
        client_id=row.client_id,
        service_id=row.service_id,
        staff_id=row.staff_id,
        start_time=_utc(row.start_time),
        end_time=_utc(row.end_time),
        status=row.status,
        notes=row.notes,
        cancellation_reason=row.cancellation_reason,
    )


def _template_to_domain(row: NotificationTemplate) -> domain.NotificationTemplate:
    return domain.NotificationTemplate(
        id=row.id,
        type=row.type,
        message_template=row.message_template,
        route=row.route,
        priority=row.priority,
        delay_hours=row.delay_hours,
        is_active=row.is_active,
    )


def _notification_to_domain(row: NotificationQueue) -> domain.NotificationQueueItem:
    return domain.NotificationQueueItem(
        id=row.id,
        appointment_id=row.appointment_id,
        template_id=row.template_id,
        scheduled_time=_utc(row.scheduled_time),
        status=row.status,
        sent_at=_utc(row.sent_at),
        error_message=row.error_message,
        claimed_until=_utc(row.claimed_until),
    )


def _settings_to_domain(row: MessagingSettings) -> domain.MessagingSettings:
    return domain.MessagingSettings(
        api_key=row.api_key,
        sender_name=row.sender_name,
        default_route=row.default_route,
        default_priority=row.default_priority,
        test_mode=row.test_mode,
        location=row.location,
        base_url=row.base_url,
        queue_check_interval=row.queue_check_interval,
        batch_size=row.batch_size,
    )


def _staff_query():
    return select(Staff).options(
        selectinload(Staff.services),
        selectinload(Staff.working_hours).selectinload(StaffWorkingHours.breaks),
        selectinload(Staff.time_off),
    )


# ============================================================================
# Store
# ============================================================================


class SqlAlchemyBookingStore(BookingStore):
    """BookingStore on async SQLAlchemy sessions (asyncpg / aiosqlite)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    # ------------------------------------------------------------------ staff

    async def get_staff(self, staff_id: UUID) -> domain.StaffMember | None:
        async with self.session_factory() as session:
            result = await session.execute(_staff_query().where(Staff.id == staff_id))
            row = result.scalar_one_or_none()
            return _staff_to_domain(row) if row else None

    async def list_staff(self, active_only: bool = False) -> list[domain.StaffMember]:
        stmt = _staff_query().order_by(Staff.name)
        if active_only:
            stmt = stmt.where(Staff.is_active.is_(True))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_staff_to_domain(row) for row in result.scalars().all()]

    async def save_staff(self, staff: domain.StaffMember) -> domain.StaffMember:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(_staff_query().where(Staff.id == staff.id))
                row = result.scalar_one_or_none()
                if row is None:
                    row = Staff(id=staff.id, services=[], working_hours=[], time_off=[])
                    session.add(row)

                for field in (
                    "name",
                    "specialty",
                    "bio",
                    "image_url",
                    "phone",
                    "email",
                    "telegram_bot_token",
                    "telegram_chat_id",
                    "is_active",
                ):
                    setattr(row, field, getattr(staff, field))

                # Performed services
                wanted = list(dict.fromkeys(staff.service_ids))
                links = {link.service_id: link for link in row.services}
                row.services = [links.get(sid) or StaffService(service_id=sid) for sid in wanted]

                # Working hours (synced by rule id)
                rules = {rule.id: rule for rule in row.working_hours}
                synced_rules = []
                for rule in staff.working_hours:
                    rule_row = rules.get(rule.id)
                    if rule_row is None:
                        rule_row = StaffWorkingHours(id=rule.id, breaks=[])
                    _apply_rule(rule_row, rule)
                    synced_rules.append(rule_row)
                row.working_hours = synced_rules

                # Time off (synced by period id)
                periods = {p.id: p for p in row.time_off}
                synced_periods = []
                for period in staff.time_off:
                    period_row = periods.get(period.id) or StaffTimeOff(id=period.id)
                    period_row.start_date = period.start_date
                    period_row.end_date = period.end_date
                    period_row.reason = period.reason
                    synced_periods.append(period_row)
                row.time_off = synced_periods

        return await self.get_staff(staff.id)

    async def delete_staff(self, staff_id: UUID) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(_staff_query().where(Staff.id == staff_id))
                row = result.scalar_one_or_none()
                if row is None:
                    return False
                await session.delete(row)
        return True

    # --------------------------------------------------------------- services

    async def get_service(self, service_id: UUID) -> domain.Service | None:
        async with self.session_factory() as session:
            row = await session.get(Service, service_id)
            return _service_to_domain(row) if row else None

    async def list_services(self, active_only: bool = False) -> list[domain.Service]:
        stmt = select(Service).order_by(Service.name)
        if active_only:
            stmt = stmt.where(Service.is_active.is_(True))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_service_to_domain(row) for row in result.scalars().all()]

    async def save_service(self, service: domain.Service) -> domain.Service:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(Service, service.id)
                if row is None:
                    row = Service(id=service.id)
                    session.add(row)
                row.name = service.name
                row.description = service.description
                row.price = service.price
                row.duration_seconds = int(service.duration.total_seconds())
                row.image_url = service.image_url
                row.is_active = service.is_active
            return _service_to_domain(row)

    async def delete_service(self, service_id: UUID) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(Service).where(Service.id == service_id))
                return result.rowcount > 0

    # ---------------------------------------------------------------- clients

    async def get_client(self, client_id: UUID) -> domain.Client | None:
        async with self.session_factory() as session:
            row = await session.get(Client, client_id)
            return _client_to_domain(row) if row else None

    async def find_client_by_phone(self, phone: str) -> domain.Client | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Client).where(Client.phone == phone))
            row = result.scalar_one_or_none()
            return _client_to_domain(row) if row else None

    async def save_client(self, client: domain.Client) -> domain.Client:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    row = await session.get(Client, client.id)
                    if row is None:
                        row = Client(id=client.id)
                        session.add(row)
                    row.name = client.name
                    row.phone = client.phone
                    row.email = client.email
                return _client_to_domain(row)
        except IntegrityError as e:
            raise ConflictError(f"Client phone already registered: {client.phone}") from e

    # ----------------------------------------------------------- appointments

    async def get_appointment(self, appointment_id: UUID) -> domain.Appointment | None:
        async with self.session_factory() as session:
            row = await session.get(Appointment, appointment_id)
            return _appointment_to_domain(row) if row else None

    async def list_appointments(
        self,
        staff_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        include_cancelled: bool = False,
    ) -> list[domain.Appointment]:
        stmt = select(Appointment).order_by(Appointment.start_time)
        if staff_id is not None:
            stmt = stmt.where(Appointment.staff_id == staff_id)
        if not include_cancelled:
            stmt = stmt.where(Appointment.status != AppointmentStatus.CANCELLED)
        if start is not None:
            stmt = stmt.where(Appointment.end_time > start)
        if end is not None:
            stmt = stmt.where(Appointment.start_time < end)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_appointment_to_domain(row) for row in result.scalars().all()]

    async def save_appointment(
        self, appointment: domain.Appointment, check_overlap: bool = False
    ) -> domain.Appointment:
        async with self.session_factory() as session:
            async with session.begin():
                if check_overlap and appointment.is_active:
                    # Serialize writers of the same staff member
                    await session.execute(
                        select(Staff.id).where(Staff.id == appointment.staff_id).with_for_update()
                    )
                    result = await session.execute(
                        select(Appointment)
                        .where(
                            Appointment.staff_id == appointment.staff_id,
                            Appointment.id != appointment.id,
                            Appointment.status != AppointmentStatus.CANCELLED,
                            Appointment.start_time < appointment.end_time,
                            Appointment.end_time > appointment.start_time,
                        )
                        .limit(1)
                    )
                    conflict = result.scalar_one_or_none()
                    if conflict is not None:
                        raise ConflictError(
                            f"Staff {appointment.staff_id} already booked "
                            f"{conflict.start_time.isoformat()} - {conflict.end_time.isoformat()}",
                            conflict.id,
                        )

                row = await session.get(Appointment, appointment.id)
                if row is None:
                    row = Appointment(id=appointment.id)
                    session.add(row)
                row.client_id = appointment.client_id
                row.service_id = appointment.service_id
                row.staff_id = appointment.staff_id
                row.start_time = appointment.start_time
                row.end_time = appointment.end_time
                row.status = appointment.status
                row.notes = appointment.notes
                row.cancellation_reason = appointment.cancellation_reason
            return _appointment_to_domain(row)

    async def delete_appointment(self, appointment_id: UUID) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(Appointment).where(Appointment.id == appointment_id)
                )
                return result.rowcount > 0

    # -------------------------------------------------------------- templates

    async def get_template(self, template_id: UUID) -> domain.NotificationTemplate | None:
        async with self.session_factory() as session:
            row = await session.get(NotificationTemplate, template_id)
            return _template_to_domain(row) if row else None

    async def list_templates(
        self, type: NotificationType | None = None, active_only: bool = False
    ) -> list[domain.NotificationTemplate]:
        stmt = select(NotificationTemplate).order_by(NotificationTemplate.created_at)
        if type is not None:
            stmt = stmt.where(NotificationTemplate.type == type)
        if active_only:
            stmt = stmt.where(NotificationTemplate.is_active.is_(True))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_template_to_domain(row) for row in result.scalars().all()]

    async def save_template(
        self, template: domain.NotificationTemplate
    ) -> domain.NotificationTemplate:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(NotificationTemplate, template.id)
                if row is None:
                    row = NotificationTemplate(id=template.id)
                    session.add(row)
                row.type = template.type
                row.message_template = template.message_template
                row.route = template.route
                row.priority = template.priority
                row.delay_hours = template.delay_hours
                row.is_active = template.is_active
            return _template_to_domain(row)

    async def delete_template(self, template_id: UUID) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(NotificationTemplate).where(NotificationTemplate.id == template_id)
                )
                return result.rowcount > 0

    # ---------------------------------------------------------- notifications

    async def save_notifications(
        self, items: list[domain.NotificationQueueItem]
    ) -> list[domain.NotificationQueueItem]:
        async with self.session_factory() as session:
            async with session.begin():
                rows = []
                for item in items:
                    row = await session.get(NotificationQueue, item.id)
                    if row is None:
                        row = NotificationQueue(id=item.id)
                        session.add(row)
                    row.appointment_id = item.appointment_id
                    row.template_id = item.template_id
                    row.scheduled_time = item.scheduled_time
                    row.status = item.status
                    row.sent_at = item.sent_at
                    row.error_message = item.error_message
                    row.claimed_until = item.claimed_until
                    rows.append(row)
            return [_notification_to_domain(row) for row in rows]

    async def get_notification(self, item_id: UUID) -> domain.NotificationQueueItem | None:
        async with self.session_factory() as session:
            row = await session.get(NotificationQueue, item_id)
            return _notification_to_domain(row) if row else None

    async def claim_due_notifications(
        self, now: datetime, limit: int, lease: timedelta
    ) -> list[domain.NotificationQueueItem]:
        stmt = (
            select(NotificationQueue)
            .where(
                NotificationQueue.status == NotificationStatus.PENDING,
                NotificationQueue.scheduled_time <= now,
                or_(
                    NotificationQueue.claimed_until.is_(None),
                    NotificationQueue.claimed_until <= now,
                ),
            )
            .order_by(NotificationQueue.scheduled_time)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
                for row in rows:
                    row.claimed_until = now + lease
            return [_notification_to_domain(row) for row in rows]

    async def list_notifications(
        self,
        status: NotificationStatus | None = None,
        appointment_id: UUID | None = None,
        limit: int = 100,
    ) -> list[domain.NotificationQueueItem]:
        stmt = select(NotificationQueue).order_by(NotificationQueue.scheduled_time.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(NotificationQueue.status == status)
        if appointment_id is not None:
            stmt = stmt.where(NotificationQueue.appointment_id == appointment_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_notification_to_domain(row) for row in result.scalars().all()]

    # --------------------------------------------------------------- settings

    async def get_messaging_settings(self) -> domain.MessagingSettings | None:
        async with self.session_factory() as session:
            row = await session.get(MessagingSettings, SETTINGS_ROW_ID)
            return _settings_to_domain(row) if row else None

    async def save_messaging_settings(
        self, settings: domain.MessagingSettings
    ) -> domain.MessagingSettings:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(MessagingSettings, SETTINGS_ROW_ID)
                if row is None:
                    row = MessagingSettings(id=SETTINGS_ROW_ID)
                    session.add(row)
                for field, value in settings.model_dump().items():
                    setattr(row, field, value)
            return _settings_to_domain(row)
