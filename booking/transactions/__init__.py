"""Booking transaction orchestration."""

from booking.transactions.booking_transaction import BookingTransaction

__all__ = ["BookingTransaction"]
