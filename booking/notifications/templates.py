"""
Notification rendering.

Message templates use named placeholders:

    {client_name} {service_name} {staff_name} {appointment_time}
    {location} {review_link} {booking_link}

Substitution is by name: unknown placeholders are left untouched and a
missing value renders as an empty string. Staff alerts for the chat-bot
channel are HTML texts built here as well.
"""

import html
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from booking.models import (
    Appointment,
    Client,
    MessagingSettings,
    NotificationTemplate,
    Service,
    StaffMember,
)
from database.models import NotificationType

PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

APPOINTMENT_TIME_FORMAT = "%d.%m.%Y %H:%M"

# Gateway priorities: 1 high, 2 default, 3 low, 4 mass mailing
HIGH_PRIORITY = 1
DEFAULT_PRIORITY = 2

# Last-resort route of every cascade
FALLBACK_ROUTE = "sms"

STAFF_ALERT_TYPES = {
    NotificationType.APPOINTMENT_CREATED,
    NotificationType.APPOINTMENT_REMINDER,
    NotificationType.APPOINTMENT_CANCELLED,
}


@dataclass
class NotificationData:
    """Values available to message templates."""

    client_name: str | None = None
    service_name: str | None = None
    staff_name: str | None = None
    appointment_time: str | None = None
    location: str | None = None
    review_link: str | None = None
    booking_link: str | None = None


def format_appointment_time(start_time: datetime, tz: ZoneInfo) -> str:
    return start_time.astimezone(tz).strftime(APPOINTMENT_TIME_FORMAT)


def build_notification_data(
    appointment: Appointment,
    client: Client | None,
    service: Service | None,
    staff: StaffMember | None,
    settings: MessagingSettings,
    tz: ZoneInfo,
) -> NotificationData:
    base_url = settings.base_url.rstrip("/")
    return NotificationData(
        client_name=client.name if client else None,
        service_name=service.name if service else None,
        staff_name=staff.name if staff else None,
        appointment_time=format_appointment_time(appointment.start_time, tz),
        location=settings.location,
        review_link=f"{base_url}/reviews" if base_url else None,
        booking_link=f"{base_url}/booking" if base_url else None,
    )


def render_template(template: str, data: NotificationData | dict) -> str:
    """
    Substitute named placeholders.

    Example:
        >>> render_template("Hi {client_name}, see you {appointment_time} {unknown}",
        ...                 {"client_name": "Anna", "appointment_time": None})
        'Hi Anna, see you  {unknown}'
    """
    values = asdict(data) if isinstance(data, NotificationData) else dict(data)

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in values:
            return match.group(0)
        value = values[name]
        return "" if value is None else str(value)

    return PLACEHOLDER_RE.sub(_substitute, template)


def priority_for(template: NotificationTemplate, default: int = DEFAULT_PRIORITY) -> int:
    """Reminders go out with high priority; otherwise template, then default."""
    if template.type == NotificationType.APPOINTMENT_REMINDER:
        return HIGH_PRIORITY
    if template.priority is not None:
        return template.priority
    return default


def route_cascade(route: str | None, default_route: str | None = None) -> list[str]:
    """
    Routes to try in order: the template's route (or the default one),
    then plain SMS.

    Example:
        >>> route_cascade("wp-tg-sms")
        ['wp-tg-sms', 'sms']
        >>> route_cascade(None, "sms")
        ['sms']
    """
    primary = route or default_route
    cascade = [primary] if primary else []
    if FALLBACK_ROUTE not in cascade:
        cascade.append(FALLBACK_ROUTE)
    return cascade


# ============================================================================
# Staff alerts (chat-bot channel, HTML)
# ============================================================================


def _e(value: str | None) -> str:
    return html.escape(value or "")


def staff_alert_text(
    notification_type: NotificationType,
    data: NotificationData,
    reason: str | None = None,
) -> str | None:
    """HTML alert for the staff member, or None when the type is not staff-relevant."""
    if notification_type not in STAFF_ALERT_TYPES:
        return None

    if notification_type == NotificationType.APPOINTMENT_CANCELLED:
        lines = [
            "❌ <b>Отмена записи</b>",
            "",
            f"👤 Клиент: {_e(data.client_name)}",
            f"💆 Услуга: {_e(data.service_name)}",
            f"⏰ Время: {_e(data.appointment_time)}",
        ]
        if reason:
            lines.append(f"❓ Причина: {_e(reason)}")
        lines += ["", "<i>Время освободилось для новых записей.</i>"]
        return "\n".join(lines)

    title = (
        "Новая запись"
        if notification_type == NotificationType.APPOINTMENT_CREATED
        else "Напоминание о записи"
    )
    return "\n".join(
        [
            f"🔔 <b>{title}</b>",
            "",
            f"👤 Клиент: {_e(data.client_name)}",
            f"💆 Услуга: {_e(data.service_name)}",
            f"👨‍⚕️ Специалист: {_e(data.staff_name)}",
            f"⏰ Время: {_e(data.appointment_time)}",
            f"📍 Адрес: {_e(data.location)}",
        ]
    )


SCHEDULE_CHANGE_LABELS = {
    "working_hours": "Рабочие часы",
    "time_off": "Отпуск/выходной",
    "staff_created": "Новый профиль",
    "staff_updated": "Изменение профиля",
    "staff_deleted": "Профиль удалён",
}


def schedule_alert_text(staff_name: str, change_type: str, details: str) -> str:
    """HTML alert sent to a staff member when an admin edits their schedule."""
    label = SCHEDULE_CHANGE_LABELS.get(change_type, change_type)
    return "\n".join(
        [
            "📋 <b>Обновление расписания</b>",
            "",
            f"👨‍⚕️ Специалист: {_e(staff_name)}",
            f"🔄 Тип изменения: {_e(label)}",
            f"ℹ️ Детали: {_e(details)}",
            "",
            "<i>Проверьте график в системе бронирования.</i>",
        ]
    )
