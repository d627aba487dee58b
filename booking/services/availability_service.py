"""
Availability resolver.

Computes bookable slots for one staff member on one date from the working
intervals of that date (booking.services.working_hours) minus the busy
periods of non-cancelled appointments.

The core (`compute_available_slots`) is a pure function: same inputs, same
output, no clock and no I/O. `AvailabilityService` loads the inputs from the
store; dropping slots that already started is left to the caller
(`filter_past_slots`).

Usage:
    from booking.services.availability_service import AvailabilityService

    service = AvailabilityService(store, tz=settings.tz)
    slots = await service.get_available_slots(
        staff_id=uuid,
        day=date(2026, 10, 19),
        duration=timedelta(hours=1),
    )
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from booking.models import StaffMember, TimeSlot
from booking.services.working_hours import intervals_for
from database.store import BookingStore
from shared.exceptions import NotFoundError

logger = logging.getLogger(__name__)

BusyPeriod = tuple[datetime, datetime]


def _at(day: date, moment: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, moment, tzinfo=tz)


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """[00:00, next day 00:00) of a date in the salon time zone."""
    start = _at(day, time.min, tz)
    return start, _at(day + timedelta(days=1), time.min, tz)


def _first_collision(
    start: datetime, end: datetime, busy: Sequence[BusyPeriod]
) -> BusyPeriod | None:
    for period in busy:
        # Overlap: busy.start < slot.end AND busy.end > slot.start
        if period[0] < end and period[1] > start:
            return period
    return None


def compute_available_slots(
    staff: StaffMember,
    day: date,
    duration: timedelta,
    busy: Iterable[BusyPeriod],
    tz: ZoneInfo,
    step: timedelta | None = None,
) -> list[TimeSlot]:
    """
    Enumerate bookable slots for a staff member on a date.

    Each working interval is walked from its start. A candidate
    [start, start + duration) is kept when it fits inside the interval and
    overlaps no busy period; the walk then advances by `step` (default: the
    duration, so free time is chunked into back-to-back slots). A candidate
    that collides with a busy period jumps to that period's end.

    Args:
        staff: Staff member with working hours and time off
        day: Target date (salon time zone)
        duration: Service duration, must be positive
        busy: (start, end) pairs of non-cancelled appointments
        tz: Salon time zone used to anchor wall-clock intervals
        step: Distance between consecutive candidate starts

    Returns:
        Chronological, non-overlapping list of TimeSlot

    Example:
        >>> # Works 09:00-18:00 with a 13:00-14:00 break, 1h service, no bookings
        >>> [s.start_time.hour for s in compute_available_slots(staff, day, timedelta(hours=1), [], tz)]
        [9, 10, 11, 12, 14, 15, 16, 17]
    """
    if duration <= timedelta(0):
        raise ValueError("duration must be positive")
    step = step if step and step > timedelta(0) else duration

    busy_periods = sorted(busy)
    slots: list[TimeSlot] = []

    for interval in intervals_for(staff, day):
        window_start = _at(day, interval.start, tz)
        window_end = _at(day, interval.end, tz)
        candidate = window_start

        while candidate + duration <= window_end:
            candidate_end = candidate + duration
            collision = _first_collision(candidate, candidate_end, busy_periods)
            if collision is not None:
                candidate = collision[1]
                continue
            # Slots never overlap: a smaller step only applies after the
            # previous slot has ended.
            if slots and candidate < slots[-1].end_time:
                candidate = slots[-1].end_time
                continue
            slots.append(TimeSlot(start_time=candidate, end_time=candidate_end))
            candidate += step

    return slots


def filter_past_slots(slots: Iterable[TimeSlot], now: datetime) -> list[TimeSlot]:
    """Drop slots starting at or before `now`."""
    return [slot for slot in slots if slot.start_time > now]


def is_within_working_hours(
    staff: StaffMember, start: datetime, duration: timedelta, tz: ZoneInfo
) -> bool:
    """True when [start, start + duration) lies inside one working interval."""
    local_start = start.astimezone(tz)
    local_end = local_start + duration
    day = local_start.date()
    if local_end.date() != day:
        return False

    for interval in intervals_for(staff, day):
        window_start = _at(day, interval.start, tz)
        window_end = _at(day, interval.end, tz)
        if window_start <= local_start and local_end <= window_end:
            return True
    return False


class AvailabilityService:
    """Store-backed slot resolver."""

    def __init__(
        self,
        store: BookingStore,
        tz: ZoneInfo,
        step: timedelta | None = None,
    ) -> None:
        self.store = store
        self.tz = tz
        self.step = step

    async def get_busy_periods(self, staff_id: UUID, day: date) -> list[BusyPeriod]:
        """Intervals of non-cancelled appointments touching `day`."""
        start, end = day_bounds(day, self.tz)
        appointments = await self.store.list_appointments(
            staff_id=staff_id, start=start, end=end
        )
        return [(a.start_time, a.end_time) for a in appointments]

    async def get_available_slots(
        self, staff_id: UUID, day: date, duration: timedelta
    ) -> list[TimeSlot]:
        """
        Bookable slots for a staff member on a date.

        Raises:
            NotFoundError: Staff member does not exist
        """
        staff = await self.store.get_staff(staff_id)
        if staff is None:
            raise NotFoundError("staff", staff_id)
        if not staff.is_active:
            logger.info(f"Staff {staff_id} is inactive, no slots on {day}")
            return []

        busy = await self.get_busy_periods(staff_id, day)
        slots = compute_available_slots(staff, day, duration, busy, self.tz, self.step)

        logger.info(
            f"Found {len(slots)} available slots for staff {staff_id} on {day}",
            extra={"staff_id": str(staff_id)},
        )
        return slots

    def is_bookable(self, staff: StaffMember, start: datetime, duration: timedelta) -> bool:
        """Working-hours containment check (the ledger covers busy periods)."""
        return is_within_working_hours(staff, start, duration, self.tz)
