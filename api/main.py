"""
FastAPI API Service Entry Point

    uvicorn api.main:app

The app factory wires one BookingContext per process. With
DISPATCHER_ENABLED the notification dispatcher runs inside the API process
for the lifetime of the app; otherwise run booking.workers.notification_worker.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import admin, booking
from booking.context import BookingContext
from shared.config import get_settings
from shared.exceptions import BookingError
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)


def create_app(context: BookingContext | None = None) -> FastAPI:
    """
    Build the API application.

    Args:
        context: Pre-built context (tests); built from settings when omitted
    """
    context = context or BookingContext.build(get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.start()
        logger.info("API startup complete")
        try:
            yield
        finally:
            await context.stop()

    app = FastAPI(
        title="Salon Booking API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = context

    origins = [origin.strip() for origin in context.settings.CORS_ORIGINS.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(booking.router, tags=["booking"])
    app.include_router(admin.router, tags=["admin"])

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        """Map domain errors to their HTTP status with a JSON body."""
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"{exc.code}: {exc.message}",
            extra={"request_path": request.url.path},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """
        Health check endpoint for Docker health checks and monitoring.

        Returns:
            200 OK if the store answers
            503 Service Unavailable otherwise
        """
        health_status = {
            "status": "healthy",
            "store": "unknown",
            "dispatcher": "running" if context.dispatcher.is_running else "stopped",
        }
        status_code = 200

        try:
            await context.store.get_messaging_settings()
            health_status["store"] = "connected"
        except Exception:
            logger.error("Health check: store unavailable", exc_info=True)
            health_status["store"] = "disconnected"
            health_status["status"] = "degraded"
            status_code = 503

        return JSONResponse(status_code=status_code, content=health_status)

    return app


def _create_default_app() -> FastAPI:
    configure_logging()
    return create_app()


app = _create_default_app()
