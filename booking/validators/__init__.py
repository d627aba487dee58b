"""
Booking validators.

Checks applied to a booking request before it reaches the ledger.
"""

from booking.validators.booking_validators import (
    localize_start_time,
    normalize_phone,
    validate_client,
    validate_duration,
    validate_not_in_past,
    validate_service,
    validate_staff,
)

__all__ = [
    "localize_start_time",
    "normalize_phone",
    "validate_client",
    "validate_duration",
    "validate_not_in_past",
    "validate_service",
    "validate_staff",
]
