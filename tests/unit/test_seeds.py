"""
Unit tests for default notification templates and messaging settings seeds.
"""

from booking.models import MessagingSettings, NotificationTemplate
from database.models import NotificationType
from database.seeds.notification_templates import (
    DEFAULT_TEMPLATES,
    seed_messaging_settings,
    seed_notification_templates,
)


async def test_one_template_per_type(store):
    assert await seed_notification_templates(store) == len(NotificationType)

    templates = await store.list_templates()
    assert {t.type for t in templates} == set(NotificationType)
    assert all(t.is_active for t in templates)


async def test_seeding_twice_creates_nothing(store):
    await seed_notification_templates(store)
    assert await seed_notification_templates(store) == 0
    assert len(await store.list_templates()) == len(DEFAULT_TEMPLATES)


async def test_existing_type_is_kept(store):
    custom = await store.save_template(
        NotificationTemplate(type=NotificationType.POST_APPOINTMENT, message_template="Спасибо!")
    )

    await seed_notification_templates(store)

    [post] = await store.list_templates(type=NotificationType.POST_APPOINTMENT)
    assert post.id == custom.id


async def test_messaging_settings_created_once(store, settings):
    assert await seed_messaging_settings(store, settings) is True
    assert (await store.get_messaging_settings()).api_key == "test-api-key"

    await store.save_messaging_settings(
        MessagingSettings(sender_name="Edited", default_route="sms")
    )
    assert await seed_messaging_settings(store, settings) is False
    assert (await store.get_messaging_settings()).sender_name == "Edited"
