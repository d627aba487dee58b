"""
Notification worker - Standalone process running the dispatch loop.

Runs the NotificationDispatcher until SIGTERM/SIGINT, then lets the current
cycle finish. After every cycle a health check file is written atomically
so the container health check can verify the worker is alive:

    /tmp/health/notification_worker_health.json
    {"last_run": "...", "status": "healthy", "processed": 3, "errors": 0, ...}

Use this process when the API runs with DISPATCHER_ENABLED=false.

    python -m booking.workers.notification_worker
"""

import asyncio
import json
import logging
import signal
from datetime import UTC, datetime
from pathlib import Path

from booking.context import BookingContext
from booking.notifications.dispatcher import DispatchReport
from shared.config import get_settings
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)

HEALTH_FILE_NAME = "notification_worker_health.json"


# =============================================================================
# Health Check
# =============================================================================


def write_health_check(health_dir: Path, report: DispatchReport) -> Path:
    """
    Write the health check file for the last dispatch cycle.

    The file is written to a temp name and renamed so readers never see a
    partial document.
    """
    health_dir.mkdir(parents=True, exist_ok=True)
    health_file = health_dir / HEALTH_FILE_NAME
    temp_file = health_dir / f"{HEALTH_FILE_NAME}.tmp"

    # An exhausted balance skips the cycle but the worker itself is fine
    unhealthy = report.reason == "balance_check_failed" or (report.failed and not report.sent)
    status = "unhealthy" if unhealthy else "healthy"

    health_data = {
        "last_run": report.started_at.isoformat(),
        "status": status,
        "processed": report.processed,
        "errors": report.failed,
        "report": report.to_dict(),
        "last_updated": datetime.now(UTC).isoformat(),
    }

    temp_file.write_text(json.dumps(health_data, indent=2, ensure_ascii=False))
    temp_file.replace(health_file)
    logger.debug(f"Health check file updated: {health_file}")
    return health_file


# =============================================================================
# Main Entry Point
# =============================================================================


async def async_main() -> None:
    """Run the dispatcher until a shutdown signal arrives."""
    settings = get_settings()
    health_dir = Path(settings.HEALTH_CHECK_DIR)

    def on_cycle(report: DispatchReport) -> None:
        try:
            write_health_check(health_dir, report)
        except OSError as e:
            logger.error(f"Failed to write health check file: {e}", exc_info=True)

    context = BookingContext.build(settings, on_cycle=on_cycle)
    await context.prepare()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown, context, sig)

    logger.info("Notification worker starting...")
    try:
        task = context.dispatcher.start()
        await task
    finally:
        await context.stop()
    logger.info("Notification worker shut down gracefully")


def _request_shutdown(context: BookingContext, sig: signal.Signals) -> None:
    logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
    context.dispatcher.request_stop()


def run_notification_worker() -> None:
    """Synchronous entry point: configure logging and run the loop."""
    configure_logging()
    asyncio.run(async_main())


if __name__ == "__main__":
    run_notification_worker()
