"""
Staff administration: profiles, performed services, working-hours rules and
time-off periods.

Every schedule mutation sends a best-effort alert to the staff member's
bot chat so they see changes made from the admin panel; a failed alert never
fails the mutation.

Usage:
    staff_admin = StaffAdminService(store, telegram)

    staff = await staff_admin.create_staff(StaffMember(name="Ирина", specialty="Массаж"))
    await staff_admin.add_working_hours(
        staff.id,
        WeeklyRule(weekday=Weekday.MONDAY, start_time=time(9), end_time=time(18)),
    )
"""

import logging
from typing import Any
from uuid import UUID

from booking.models import (
    DateRangeRule,
    RecurringDayRule,
    StaffMember,
    TimeOffPeriod,
    WeeklyRule,
    WorkingHoursRule,
)
from booking.notifications.templates import schedule_alert_text
from database.store import BookingStore
from shared.exceptions import NotFoundError, ValidationError
from shared.telegram_client import TelegramClient

logger = logging.getLogger(__name__)

# Profile fields editable through update_staff
PROFILE_FIELDS = {
    "name",
    "specialty",
    "bio",
    "image_url",
    "phone",
    "email",
    "telegram_bot_token",
    "telegram_chat_id",
    "is_active",
}


def describe_rule(rule) -> str:
    """Human-readable summary of a working-hours rule (used in staff alerts)."""
    hours = f"{rule.start_time:%H:%M}-{rule.end_time:%H:%M}"
    if isinstance(rule, WeeklyRule):
        return f"{rule.weekday.value}, {hours}"
    if isinstance(rule, DateRangeRule):
        return f"{rule.start_date} - {rule.end_date}, {hours}"
    if isinstance(rule, RecurringDayRule):
        which = "last" if rule.week_of_month == 5 else f"#{rule.week_of_month}"
        return f"{which} {rule.day_of_week.value} of month, {hours}"
    return hours


def describe_time_off(period: TimeOffPeriod) -> str:
    details = f"{period.start_date} - {period.end_date}"
    if period.reason:
        details += f" ({period.reason})"
    return details


class StaffAdminService:
    def __init__(self, store: BookingStore, telegram: TelegramClient | None = None) -> None:
        self.store = store
        self.telegram = telegram

    async def _alert(self, staff: StaffMember, change_type: str, details: str) -> None:
        if self.telegram is None or not staff.has_bot_channel:
            return
        try:
            delivered = await self.telegram.send_message(
                staff.telegram_bot_token,
                staff.telegram_chat_id,
                schedule_alert_text(staff.name, change_type, details),
            )
        except Exception as e:
            logger.warning(
                f"Schedule alert for staff {staff.id} raised: {e}",
                extra={"staff_id": str(staff.id)},
            )
            return
        if not delivered:
            logger.warning(
                f"Schedule alert for staff {staff.id} not delivered",
                extra={"staff_id": str(staff.id)},
            )

    async def get_staff(self, staff_id: UUID) -> StaffMember:
        staff = await self.store.get_staff(staff_id)
        if staff is None:
            raise NotFoundError("staff", staff_id)
        return staff

    async def list_staff(self, active_only: bool = False) -> list[StaffMember]:
        return await self.store.list_staff(active_only=active_only)

    # ------------------------------------------------------------------ profile

    async def create_staff(self, staff: StaffMember) -> StaffMember:
        await self._check_services(staff.service_ids)
        saved = await self.store.save_staff(staff)
        logger.info(f"Created staff {saved.id} ({saved.name})", extra={"staff_id": str(saved.id)})
        await self._alert(saved, "staff_created", f"Новый сотрудник: {saved.specialty}")
        return saved

    async def update_staff(self, staff_id: UUID, changes: dict[str, Any]) -> StaffMember:
        """
        Apply profile changes (unknown keys are rejected).

        `service_ids`, when present, replaces the performed-service list.
        """
        staff = await self.get_staff(staff_id)

        unknown = set(changes) - PROFILE_FIELDS - {"service_ids"}
        if unknown:
            raise ValidationError(sorted(unknown)[0], "Field cannot be updated")

        if "service_ids" in changes:
            try:
                service_ids = [UUID(str(value)) for value in changes["service_ids"]]
            except (TypeError, ValueError) as e:
                raise ValidationError("service_ids", "Invalid service id") from e
            await self._check_services(service_ids)
            changes = {**changes, "service_ids": service_ids}

        try:
            updated = StaffMember.model_validate({**staff.model_dump(), **changes})
        except ValueError as e:
            raise ValidationError("staff", str(e)) from e

        saved = await self.store.save_staff(updated)
        logger.info(f"Updated staff {staff_id}: {sorted(changes)}", extra={"staff_id": str(staff_id)})
        await self._alert(saved, "staff_updated", f"Обновлена информация: {saved.specialty}")
        return saved

    async def delete_staff(self, staff_id: UUID) -> None:
        """Delete a staff member with their rules and time off; appointments are kept."""
        staff = await self.get_staff(staff_id)
        await self._alert(staff, "staff_deleted", "Сотрудник удален")
        await self.store.delete_staff(staff_id)
        logger.info(f"Deleted staff {staff_id}", extra={"staff_id": str(staff_id)})

    async def set_services(self, staff_id: UUID, service_ids: list[UUID]) -> StaffMember:
        return await self.update_staff(staff_id, {"service_ids": service_ids})

    async def _check_services(self, service_ids: list[UUID]) -> None:
        for service_id in service_ids:
            if await self.store.get_service(service_id) is None:
                raise NotFoundError("service", service_id)

    # ------------------------------------------------------------ working hours

    async def add_working_hours(self, staff_id: UUID, rule: WorkingHoursRule) -> StaffMember:
        staff = await self.get_staff(staff_id)
        staff.working_hours.append(rule)
        saved = await self.store.save_staff(staff)
        logger.info(
            f"Added {rule.pattern} working hours {rule.id} to staff {staff_id}",
            extra={"staff_id": str(staff_id)},
        )
        await self._alert(saved, "working_hours", describe_rule(rule))
        return saved

    async def update_working_hours(
        self, staff_id: UUID, rule_id: UUID, rule: WorkingHoursRule
    ) -> StaffMember:
        """Replace a rule (the pattern may change); the rule keeps its id."""
        staff = await self.get_staff(staff_id)
        for index, existing in enumerate(staff.working_hours):
            if existing.id == rule_id:
                staff.working_hours[index] = rule.model_copy(update={"id": rule_id})
                break
        else:
            raise NotFoundError("working_hours", rule_id)

        saved = await self.store.save_staff(staff)
        await self._alert(saved, "working_hours", f"Обновлено: {describe_rule(rule)}")
        return saved

    async def delete_working_hours(self, staff_id: UUID, rule_id: UUID) -> StaffMember:
        staff = await self.get_staff(staff_id)
        remaining = [rule for rule in staff.working_hours if rule.id != rule_id]
        if len(remaining) == len(staff.working_hours):
            raise NotFoundError("working_hours", rule_id)
        staff.working_hours = remaining

        saved = await self.store.save_staff(staff)
        await self._alert(saved, "working_hours", "Удалено расписание")
        return saved

    # ----------------------------------------------------------------- time off

    async def add_time_off(self, staff_id: UUID, period: TimeOffPeriod) -> StaffMember:
        staff = await self.get_staff(staff_id)
        staff.time_off.append(period)
        saved = await self.store.save_staff(staff)
        await self._alert(saved, "time_off", describe_time_off(period))
        return saved

    async def update_time_off(
        self, staff_id: UUID, period_id: UUID, period: TimeOffPeriod
    ) -> StaffMember:
        """Replace a time-off period in place; the period keeps its id."""
        staff = await self.get_staff(staff_id)
        for index, existing in enumerate(staff.time_off):
            if existing.id == period_id:
                staff.time_off[index] = period.model_copy(update={"id": period_id})
                break
        else:
            raise NotFoundError("time_off", period_id)

        saved = await self.store.save_staff(staff)
        await self._alert(saved, "time_off", f"Обновлено: {describe_time_off(period)}")
        return saved

    async def delete_time_off(self, staff_id: UUID, period_id: UUID) -> StaffMember:
        staff = await self.get_staff(staff_id)
        remaining = [period for period in staff.time_off if period.id != period_id]
        if len(remaining) == len(staff.time_off):
            raise NotFoundError("time_off", period_id)
        staff.time_off = remaining

        saved = await self.store.save_staff(staff)
        await self._alert(saved, "time_off", "Удален отпуск/выходной")
        return saved
