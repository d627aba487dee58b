"""
Notification dispatcher - drains the notification queue.

One cycle:
1. Skip if another cycle is still running (cycles never overlap)
2. Check the gateway balance; a zero balance or a failed check skips the
   cycle without touching any item
3. Claim up to `batch_size` due pending items, oldest first; the claim is
   stored with the item, so dispatchers in other processes skip it
4. For each item, isolated from the others:
   - load appointment, client, service, staff and template
   - fail items of cancelled appointments (except the cancellation notice)
   - render the message
   - alert the staff member through their bot (best effort)
   - deliver to the client, walking the route cascade until one succeeds
5. Record `sent` or `failed` exactly once per item

Delivery is at-least-once: a crash between a successful send and the status
write leaves the item pending and claimed; once the claim expires
(CLAIM_LEASE) the item is sent again.

Usage:
    dispatcher = NotificationDispatcher(store, settings_service, sms, telegram, tz)
    report = await dispatcher.run_cycle()

    dispatcher.start()          # periodic loop as an asyncio task
    await dispatcher.stop()
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from booking.models import MessagingSettings, NotificationQueueItem
from booking.notifications.templates import (
    build_notification_data,
    priority_for,
    render_template,
    route_cascade,
    staff_alert_text,
)
from booking.services.notification_queue import Clock, utcnow
from database.models import AppointmentStatus, NotificationStatus, NotificationType
from database.store import BookingStore
from shared.exceptions import ChannelError, DeliveryError, QuotaExhaustedError
from shared.settings_service import MessagingSettingsService
from shared.sms_client import SmsGatewayClient
from shared.telegram_client import TelegramClient

logger = logging.getLogger(__name__)

# How long a claimed item is hidden from other dispatchers
CLAIM_LEASE = timedelta(minutes=5)


@dataclass
class DispatchReport:
    """Outcome of one dispatch cycle."""

    started_at: datetime
    skipped: bool = False
    reason: str | None = None
    balance: float | None = None
    fetched: int = 0
    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.sent + self.failed

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "skipped": self.skipped,
            "reason": self.reason,
            "balance": self.balance,
            "fetched": self.fetched,
            "sent": self.sent,
            "failed": self.failed,
        }


CycleCallback = Callable[[DispatchReport], Awaitable[None] | None]


class NotificationDispatcher:
    """Periodic, non-overlapping queue processor."""

    def __init__(
        self,
        store: BookingStore,
        settings_service: MessagingSettingsService,
        sms: SmsGatewayClient,
        telegram: TelegramClient,
        tz: ZoneInfo,
        clock: Clock = utcnow,
        on_cycle: CycleCallback | None = None,
    ) -> None:
        self.store = store
        self.settings_service = settings_service
        self.sms = sms
        self.telegram = telegram
        self.tz = tz
        self.clock = clock
        self.on_cycle = on_cycle
        self._cycle_lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> DispatchReport:
        report = DispatchReport(started_at=self.clock())

        if self._cycle_lock.locked():
            logger.info("Dispatch cycle already running, skipping")
            report.skipped = True
            report.reason = "cycle_in_progress"
            return report

        async with self._cycle_lock:
            settings = await self.settings_service.get()

            try:
                report.balance = await self.sms.check_balance()
                if report.balance <= 0:
                    raise QuotaExhaustedError(report.balance)
            except QuotaExhaustedError as e:
                logger.warning(f"Dispatch cycle skipped: {e.message}")
                report.skipped = True
                report.reason = "quota_exhausted"
                return report
            except ChannelError as e:
                logger.error(f"Dispatch cycle skipped, balance check failed: {e.message}")
                report.skipped = True
                report.reason = "balance_check_failed"
                return report

            items = await self.store.claim_due_notifications(
                self.clock(), settings.batch_size, CLAIM_LEASE
            )
            report.fetched = len(items)
            if not items:
                logger.debug("No due notifications")
                return report

            logger.info(f"Processing {len(items)} due notifications (balance={report.balance})")

            for item in items:
                try:
                    route = await self._deliver(item, settings)
                except Exception as e:
                    error = getattr(e, "message", None) or str(e) or type(e).__name__
                    logger.error(
                        f"Notification {item.id} failed: {error}",
                        extra={
                            "notification_id": str(item.id),
                            "appointment_id": str(item.appointment_id),
                        },
                    )
                    report.failed += 1
                    report.errors.append(f"{item.id}: {error}")
                    await self._record(item, success=False, error=error)
                    continue

                logger.info(
                    f"Notification {item.id} sent via {route}",
                    extra={
                        "notification_id": str(item.id),
                        "appointment_id": str(item.appointment_id),
                    },
                )
                report.sent += 1
                await self._record(item, success=True)

        logger.info(
            f"Dispatch cycle complete: fetched={report.fetched}, "
            f"sent={report.sent}, failed={report.failed}"
        )
        return report

    async def _record(
        self, item: NotificationQueueItem, success: bool, error: str | None = None
    ) -> None:
        item.status = NotificationStatus.SENT if success else NotificationStatus.FAILED
        item.sent_at = self.clock() if success else None
        item.error_message = None if success else error
        item.claimed_until = None
        try:
            await self.store.save_notifications([item])
        except Exception as e:
            # Item stays pending and is retried once its claim expires
            logger.error(
                f"Failed to record status of notification {item.id}: {e}",
                extra={"notification_id": str(item.id)},
                exc_info=True,
            )

    async def _deliver(self, item: NotificationQueueItem, settings: MessagingSettings) -> str:
        """
        Deliver one queue item.

        Returns:
            The cascade route that accepted the client message

        Raises:
            DeliveryError: Missing references or cancelled appointment
            ChannelError: Every route of the cascade failed
        """
        appointment = await self.store.get_appointment(item.appointment_id)
        if appointment is None:
            raise DeliveryError(f"Appointment not found: {item.appointment_id}")

        template = await self.store.get_template(item.template_id)
        if template is None:
            raise DeliveryError(f"Template not found: {item.template_id}")

        if (
            appointment.status == AppointmentStatus.CANCELLED
            and template.type != NotificationType.APPOINTMENT_CANCELLED
        ):
            raise DeliveryError("Appointment was cancelled")

        client = await self.store.get_client(appointment.client_id)
        if client is None:
            raise DeliveryError(f"Client not found: {appointment.client_id}")
        service = await self.store.get_service(appointment.service_id)
        staff = await self.store.get_staff(appointment.staff_id)

        data = build_notification_data(appointment, client, service, staff, settings, self.tz)
        message = render_template(template.message_template, data)

        if staff is not None and staff.has_bot_channel:
            alert = staff_alert_text(template.type, data, reason=appointment.cancellation_reason)
            if alert:
                await self._alert_staff(staff.telegram_bot_token, staff.telegram_chat_id, alert, item)

        priority = priority_for(template, settings.default_priority)
        failures: list[str] = []
        for route in route_cascade(template.route, settings.default_route):
            try:
                if await self.sms.send_message(client.phone, message, priority=priority, route=route):
                    return route
                failures.append(f"{route}: rejected")
            except ChannelError as e:
                logger.warning(
                    f"Route {route} failed for notification {item.id}: {e.message}",
                    extra={"notification_id": str(item.id)},
                )
                failures.append(f"{route}: {e.message}")

        raise ChannelError("All routes failed (" + "; ".join(failures) + ")")

    async def _alert_staff(
        self, bot_token: str, chat_id: str, text: str, item: NotificationQueueItem
    ) -> None:
        try:
            delivered = await self.telegram.send_message(bot_token, chat_id, text)
        except Exception as e:
            logger.warning(
                f"Staff alert for notification {item.id} raised: {e}",
                extra={"notification_id": str(item.id)},
            )
            return
        if not delivered:
            logger.warning(
                f"Staff alert for notification {item.id} not delivered",
                extra={"notification_id": str(item.id)},
            )

    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_forever(self) -> None:
        """Run cycles every `queue_check_interval` seconds until stopped."""
        logger.info("Notification dispatcher loop started")

        while not self._stopping.is_set():
            started = time.monotonic()
            report: DispatchReport | None = None
            try:
                report = await self.run_cycle()
            except Exception as e:
                logger.error(f"Dispatch cycle crashed: {e}", exc_info=True)

            if report is not None and self.on_cycle is not None:
                try:
                    result = self.on_cycle(report)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    logger.error(f"Dispatch cycle callback failed: {e}", exc_info=True)

            try:
                interval = (await self.settings_service.get()).queue_check_interval
            except Exception as e:
                logger.error(f"Failed to read dispatch interval: {e}")
                interval = 60
            delay = max(0.0, interval - (time.monotonic() - started))

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info("Notification dispatcher loop stopped")

    def start(self) -> asyncio.Task:
        """Launch the loop as a background task (idempotent)."""
        if not self.is_running:
            self._stopping.clear()
            self._task = asyncio.create_task(self.run_forever(), name="notification-dispatcher")
        return self._task

    def request_stop(self) -> None:
        self._stopping.set()

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop the loop, letting a running cycle finish within `timeout`."""
        self.request_stop()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Dispatcher did not stop in time, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
