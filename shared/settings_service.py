"""
Messaging Settings Service with TTL caching.

Provides the admin-editable gateway configuration (sender name, default
route and priority, test mode, salon location, site URL, dispatch interval
and batch size) with:
- 60-second TTL cache, so the dispatcher does not hit the store every item
- Fallback to environment configuration when no row has been saved yet
- Cache invalidation on update

Usage:
    from shared.settings_service import MessagingSettingsService

    service = MessagingSettingsService(store)

    current = await service.get()
    await service.update(current.model_copy(update={"test_mode": True}))
"""

import asyncio
import logging
import time
from collections.abc import Callable

from booking.models import MessagingSettings
from database.store import BookingStore
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Cache TTL in seconds
CACHE_TTL_SECONDS = 60


def settings_from_env(settings: Settings) -> MessagingSettings:
    """Messaging settings built from environment configuration."""
    return MessagingSettings(
        api_key=settings.SMS_API_KEY,
        sender_name=settings.SMS_SENDER_NAME,
        default_route=settings.SMS_DEFAULT_ROUTE,
        default_priority=settings.SMS_DEFAULT_PRIORITY,
        test_mode=settings.SMS_TEST_MODE,
        location=settings.SALON_LOCATION,
        base_url=settings.SITE_BASE_URL,
        queue_check_interval=settings.NOTIFICATION_QUEUE_INTERVAL_SECONDS,
        batch_size=settings.NOTIFICATION_BATCH_SIZE,
    )


class MessagingSettingsService:
    """
    Cached access to the single messaging settings record.

    The stored record wins over the environment; the environment is only
    the default for a fresh installation.
    """

    def __init__(
        self,
        store: BookingStore,
        settings: Settings | None = None,
        ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self._env = settings or get_settings()
        self.ttl = ttl
        self._clock = clock
        self._cached: MessagingSettings | None = None
        self._expires_at = 0.0
        self._cache_lock = asyncio.Lock()

    def _is_cache_valid(self) -> bool:
        return self._cached is not None and self._clock() < self._expires_at

    async def get(self) -> MessagingSettings:
        """Current messaging settings (cached for `ttl` seconds)."""
        async with self._cache_lock:
            if self._is_cache_valid():
                return self._cached.model_copy()

            stored = await self.store.get_messaging_settings()
            if stored is None:
                logger.debug("No stored messaging settings, using environment defaults")
                stored = settings_from_env(self._env)

            self._cached = stored
            self._expires_at = self._clock() + self.ttl
            return stored.model_copy()

    async def update(self, settings: MessagingSettings) -> MessagingSettings:
        """Persist new settings and drop the cached copy."""
        saved = await self.store.save_messaging_settings(settings)
        self.invalidate()
        logger.info(
            f"Messaging settings updated: sender={saved.sender_name}, "
            f"route={saved.default_route}, test_mode={saved.test_mode}"
        )
        return saved

    def invalidate(self) -> None:
        self._cached = None
        self._expires_at = 0.0
