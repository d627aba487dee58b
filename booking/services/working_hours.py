"""
Working-hours resolution for staff members.

Turns a staff member's rule set (weekly, date-range and recurring-day rules,
each with optional breaks) plus time-off periods into the list of half-open
working intervals for one calendar date.

Resolution order:
1. Any time-off period covering the date -> no intervals at all
2. Every active rule matching the date contributes its window minus breaks
3. Contributions are unioned, sorted and merged (touching intervals coalesce)

Usage:
    from booking.services.working_hours import intervals_for

    for interval in intervals_for(staff, date(2026, 10, 19)):
        print(interval.start, interval.end)
"""

import logging
from collections.abc import Iterable
from datetime import date

from booking.models import StaffMember, TimeInterval

logger = logging.getLogger(__name__)


def merge_intervals(intervals: Iterable[TimeInterval]) -> list[TimeInterval]:
    """Sort intervals and coalesce the ones that overlap or touch."""
    merged: list[TimeInterval] = []
    for interval in sorted(intervals):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = TimeInterval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def is_on_time_off(staff: StaffMember, day: date) -> bool:
    return any(period.covers(day) for period in staff.time_off)


def matching_rules(staff: StaffMember, day: date) -> list:
    """Active rules of the staff member that apply on `day`."""
    return [rule for rule in staff.working_hours if rule.is_active and rule.matches(day)]


def intervals_for(staff: StaffMember, day: date) -> list[TimeInterval]:
    """
    Working intervals of a staff member on one date.

    When several rules match the same date their windows are unioned, so a
    date-range rule can extend a weekly rule but never shrink it. Use a
    time-off period to close a day.

    Args:
        staff: Staff member with working_hours and time_off loaded
        day: Calendar date in the salon time zone

    Returns:
        Chronological, non-overlapping list of TimeInterval (may be empty)
    """
    if is_on_time_off(staff, day):
        logger.debug(f"Staff {staff.id} is on time off on {day}")
        return []

    collected: list[TimeInterval] = []
    for rule in matching_rules(staff, day):
        collected.extend(rule.intervals())

    return merge_intervals(collected)
