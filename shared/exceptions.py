"""
Error taxonomy shared by the booking core, the channel clients and the API.

Booking-path errors (ValidationError, SlotUnavailableError, ConflictError,
NotFoundError) propagate to the caller. Notification-path errors
(ChannelError, QuotaExhaustedError) are recorded by the dispatcher and never
reach a booking client.
"""

from typing import Any


class BookingError(Exception):
    """Base exception for all domain errors."""

    code = "BOOKING_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(BookingError):
    """Bad input shape; the caller can correct the named field and retry."""

    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message, {"field": field})


class SlotUnavailableError(BookingError):
    """The requested slot was consumed or is outside working hours; re-query slots."""

    code = "SLOT_UNAVAILABLE"
    status_code = 409


class ConflictError(BookingError):
    """Ledger-level double booking attempt."""

    code = "CONFLICT"
    status_code = 409

    def __init__(self, message: str, conflicting_id: Any = None):
        self.conflicting_id = conflicting_id
        details = {"conflicting_appointment_id": str(conflicting_id)} if conflicting_id else {}
        super().__init__(message, details)


class NotFoundError(BookingError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "id": str(entity_id)},
        )


class ChannelError(BookingError):
    """External messaging failure (gateway or chat bot)."""

    code = "CHANNEL_ERROR"
    status_code = 502

    def __init__(self, message: str, channel_code: str | None = None, details: Any = None):
        self.channel_code = channel_code
        self.channel_details = details
        super().__init__(message, {"channel_code": channel_code})


class QuotaExhaustedError(ChannelError):
    """Messaging balance depleted; pauses the current dispatch cycle only."""

    code = "QUOTA_EXHAUSTED"

    def __init__(self, balance: float):
        self.balance = balance
        super().__init__(f"Insufficient balance: {balance}", channel_code="balance")


class DeliveryError(BookingError):
    """A queued notification cannot be delivered (recorded on the item, never raised to clients)."""

    code = "DELIVERY_FAILED"
    status_code = 500
