from __future__ import annotations

import datetime as dt
from bisect import bisect_left
from typing import Sequence

from apptscheduler.config import SchedulingRules

_ONE_HOUR = dt.timedelta(hours=1)
_ONE_DAY = dt.timedelta(hours=24)
_SATURDAY = 5


def days_between(a: dt.datetime, b: dt.datetime) -> int:
    """Whole calendar days between two timestamps; time of day is ignored."""
    return abs(a.date().toordinal() - b.date().toordinal())


def can_be_booked(
    rules: SchedulingRules,
    appointments_sorted: Sequence[dt.datetime],
    candidate: dt.datetime,
    is_new_patient: bool,
) -> bool:
    """Whether a person with the given (ascending) appointments may take ``candidate``.

    New patients are limited to the afternoon hours. Everyone must keep the
    minimum separation to both chronological neighbours of the candidate.
    """
    if is_new_patient and not rules.new_patient_first_hour <= candidate.hour <= rules.last_hour:
        return False

    if not appointments_sorted:
        return True

    gap = rules.min_days_between_appointments
    # First existing appointment that is >= candidate
    index = bisect_left(appointments_sorted, candidate)

    if index == len(appointments_sorted):
        return days_between(appointments_sorted[-1], candidate) >= gap
    if index == 0:
        return days_between(appointments_sorted[0], candidate) >= gap

    return (
        days_between(appointments_sorted[index], candidate) >= gap
        and days_between(appointments_sorted[index - 1], candidate) >= gap
    )


def _at_hour(value: dt.datetime, hour: int) -> dt.datetime:
    return dt.datetime(value.year, value.month, value.day, hour)


def _next_morning(rules: SchedulingRules, current: dt.datetime) -> dt.datetime:
    # Opening hour of the next weekday after ``current``.
    current += _ONE_DAY
    while current.weekday() >= _SATURDAY:
        current += _ONE_DAY
    return _at_hour(current, rules.first_hour)


def next_candidate(
    rules: SchedulingRules,
    current: dt.datetime,
    was_bookable: bool,
    is_new_patient: bool,
) -> dt.datetime:
    """Next timestamp worth testing after ``current``.

    Weekends roll to Monday morning, the end of the business day rolls to the
    next weekday morning, and an unbookable slot skips the rest of the day (or,
    for new patients, jumps straight to the afternoon window).
    """
    if current.weekday() >= _SATURDAY:
        while current.weekday() != 0:
            current += _ONE_DAY
        return _at_hour(current, rules.first_hour)

    if current.hour >= rules.last_hour:
        return _next_morning(rules, current)

    if not was_bookable:
        if is_new_patient:
            if current.hour >= rules.new_patient_first_hour:
                return current + _ONE_HOUR
            return _at_hour(current, rules.new_patient_first_hour)

        return _next_morning(rules, current)

    return current + _ONE_HOUR


def first_candidate(rules: SchedulingRules) -> dt.datetime:
    """Where the fallback search starts: the window's first weekday at opening time."""
    start = rules.first_slot
    if start.weekday() >= _SATURDAY:
        return next_candidate(rules, start, True, False)
    return start
