"""
Service wiring for one process.

BookingContext builds the store, gateway clients and services once and hands
them to the API and the worker. Tests build it with an in-memory store,
a fixed clock and mock HTTP transports.

Usage:
    context = BookingContext.build(get_settings())
    await context.start()      # create tables, seed defaults, start dispatcher
    ...
    await context.stop()
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

import httpx

from booking.notifications.dispatcher import CycleCallback, NotificationDispatcher
from booking.services.appointment_ledger import AppointmentLedger
from booking.services.availability_service import AvailabilityService
from booking.services.cancellation_service import CancellationService
from booking.services.catalog_service import CatalogService
from booking.services.notification_queue import Clock, NotificationQueueService, utcnow
from booking.services.staff_service import StaffAdminService
from booking.transactions.booking_transaction import BookingTransaction
from database.seeds.notification_templates import (
    seed_messaging_settings,
    seed_notification_templates,
)
from database.store import BookingStore, InMemoryBookingStore
from shared.config import Settings
from shared.settings_service import MessagingSettingsService
from shared.sms_client import SmsGatewayClient
from shared.telegram_client import TelegramClient

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> BookingStore:
    """Store selected by STORAGE_BACKEND ('sql' or 'memory')."""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "memory":
        return InMemoryBookingStore()
    if backend == "sql":
        from database.connection import get_session_factory
        from database.sql_store import SqlAlchemyBookingStore

        return SqlAlchemyBookingStore(get_session_factory())
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")


@dataclass
class BookingContext:
    settings: Settings
    store: BookingStore
    messaging: MessagingSettingsService
    sms: SmsGatewayClient
    telegram: TelegramClient
    availability: AvailabilityService
    ledger: AppointmentLedger
    notifications: NotificationQueueService
    bookings: BookingTransaction
    cancellations: CancellationService
    staff_admin: StaffAdminService
    catalog: CatalogService
    dispatcher: NotificationDispatcher
    clock: Clock = utcnow

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: BookingStore | None = None,
        clock: Clock = utcnow,
        sms_transport: httpx.AsyncBaseTransport | None = None,
        telegram_transport: httpx.AsyncBaseTransport | None = None,
        on_cycle: CycleCallback | None = None,
    ) -> "BookingContext":
        store = store or build_store(settings)
        tz = settings.tz
        step = (
            timedelta(minutes=settings.SLOT_STEP_MINUTES)
            if settings.SLOT_STEP_MINUTES > 0
            else None
        )

        messaging = MessagingSettingsService(store, settings)
        sms = SmsGatewayClient(messaging, transport=sms_transport)
        telegram = TelegramClient(transport=telegram_transport)

        availability = AvailabilityService(store, tz, step)
        ledger = AppointmentLedger(store)
        notifications = NotificationQueueService(store, clock)
        cancellations = CancellationService(store, ledger, notifications)

        return cls(
            settings=settings,
            store=store,
            messaging=messaging,
            sms=sms,
            telegram=telegram,
            availability=availability,
            ledger=ledger,
            notifications=notifications,
            bookings=BookingTransaction(
                store,
                availability,
                ledger,
                notifications,
                tz,
                phone_region=settings.PHONE_DEFAULT_REGION,
                clock=clock,
            ),
            cancellations=cancellations,
            staff_admin=StaffAdminService(store, telegram),
            catalog=CatalogService(
                store, ledger, cancellations, telegram=telegram, messaging=messaging, tz=tz
            ),
            dispatcher=NotificationDispatcher(
                store, messaging, sms, telegram, tz, clock=clock, on_cycle=on_cycle
            ),
            clock=clock,
        )

    async def prepare(self) -> None:
        """Create tables (SQL backend) and seed default templates/settings."""
        if self.settings.STORAGE_BACKEND.lower() == "sql" and not isinstance(
            self.store, InMemoryBookingStore
        ):
            from database.connection import create_tables

            await create_tables()
        await seed_notification_templates(self.store)
        await seed_messaging_settings(self.store, self.settings)

    async def start(self, run_dispatcher: bool | None = None) -> None:
        await self.prepare()
        if run_dispatcher is None:
            run_dispatcher = self.settings.DISPATCHER_ENABLED
        if run_dispatcher:
            self.dispatcher.start()
            logger.info("Notification dispatcher started")

    async def stop(self) -> None:
        await self.dispatcher.stop()
        await self.store.close()
        if self.settings.STORAGE_BACKEND.lower() == "sql":
            from database.connection import dispose_engine

            await dispose_engine()
        logger.info("Booking context stopped")
