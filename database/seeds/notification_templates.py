"""
Seed data for notification templates and messaging settings.

Creates one active template per notification type (skipped when the type
already has a template) and the messaging settings row from environment
defaults when it does not exist yet.

Usage:
    python -m database.seeds
"""

import logging

from booking.models import NotificationTemplate
from database.models import NotificationType
from database.store import BookingStore
from shared.config import Settings
from shared.settings_service import settings_from_env

logger = logging.getLogger(__name__)


DEFAULT_TEMPLATES = [
    {
        "type": NotificationType.APPOINTMENT_CREATED,
        "message_template": (
            "{client_name}, вы записаны на {service_name} к мастеру {staff_name} "
            "{appointment_time}. Адрес: {location}"
        ),
        "priority": 1,
        "delay_hours": 0,
    },
    {
        "type": NotificationType.APPOINTMENT_REMINDER,
        "message_template": (
            "Напоминаем: {appointment_time} {service_name} у мастера {staff_name}. "
            "Ждем вас по адресу {location}"
        ),
        "priority": 1,
        "delay_hours": 24,
    },
    {
        "type": NotificationType.POST_APPOINTMENT,
        "message_template": (
            "{client_name}, спасибо за визит! Оставьте отзыв о мастере {staff_name}: {review_link}"
        ),
        "priority": 3,
        "delay_hours": 2,
    },
    {
        "type": NotificationType.RETURN_REMINDER,
        "message_template": (
            "{client_name}, пора обновить {service_name}! Запишитесь онлайн: {booking_link}"
        ),
        "priority": 3,
        "delay_hours": 720,
    },
    {
        "type": NotificationType.APPOINTMENT_CANCELLED,
        "message_template": (
            "{client_name}, ваша запись на {service_name} {appointment_time} отменена. "
            "Записаться снова: {booking_link}"
        ),
        "priority": 1,
        "delay_hours": 0,
    },
]


async def seed_notification_templates(store: BookingStore) -> int:
    """
    Create default templates for notification types that have none.

    Returns:
        Number of templates created
    """
    created = 0
    for data in DEFAULT_TEMPLATES:
        if await store.list_templates(type=data["type"]):
            logger.info(f"Template for {data['type'].value} already exists, skipping")
            continue
        await store.save_template(NotificationTemplate(**data))
        created += 1
        logger.info(f"Created default {data['type'].value} template")
    return created


async def seed_messaging_settings(store: BookingStore, settings: Settings) -> bool:
    """Create the messaging settings row from environment defaults (once)."""
    if await store.get_messaging_settings() is not None:
        return False
    await store.save_messaging_settings(settings_from_env(settings))
    logger.info("Created messaging settings from environment")
    return True
