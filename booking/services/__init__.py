"""
Booking services.

Services:
- working_hours: working intervals of a staff member on a date
- availability_service: bookable slots (pure core + store-backed resolver)
- appointment_ledger: overlap-checked appointment writes
- notification_queue: scheduling of templated notifications
- cancellation_service: appointment cancellation
- staff_service / catalog_service: admin operations
"""

from booking.services.appointment_ledger import AppointmentLedger
from booking.services.availability_service import (
    AvailabilityService,
    compute_available_slots,
    filter_past_slots,
    is_within_working_hours,
)
from booking.services.cancellation_service import CancellationService
from booking.services.catalog_service import CatalogService
from booking.services.notification_queue import (
    LifecycleEvent,
    NotificationQueueService,
    schedule_time,
)
from booking.services.staff_service import StaffAdminService
from booking.services.working_hours import intervals_for, merge_intervals

__all__ = [
    "AppointmentLedger",
    "AvailabilityService",
    "CancellationService",
    "CatalogService",
    "LifecycleEvent",
    "NotificationQueueService",
    "StaffAdminService",
    "compute_available_slots",
    "filter_past_slots",
    "intervals_for",
    "is_within_working_hours",
    "merge_intervals",
    "schedule_time",
]
