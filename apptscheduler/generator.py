"""
Slot search: pick a time and a doctor for one appointment request.

The search runs in two phases. The preferred-date phase walks each requested
day in the caller's order and returns the first bookable hour that one of the
preferred doctors can take. When no requested day works, the fallback phase
walks the whole scheduling window chronologically: the first bookable slot
with a preferred doctor wins outright; otherwise the latest bookable slot on a
preferred day is kept, or else the first bookable slot of the window.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Collection, Sequence

from apptscheduler.calendar_state import CalendarState
from apptscheduler.config import SchedulingRules
from apptscheduler.domain import AppointmentRequest, NoSlotAvailableError, Slot
from apptscheduler.rules import can_be_booked, first_candidate, next_candidate

logger = logging.getLogger(__name__)


def _preferred_available(available: Sequence[int], preferred_doctor_ids: Sequence[int]) -> list[int]:
    # Ordered by the caller's preference, not by doctor id.
    return [d for d in preferred_doctor_ids if d in available]


class AppointmentGenerator:
    def __init__(self, rules: SchedulingRules):
        self.rules = rules

    def _in_window(self, day: dt.date) -> bool:
        return self.rules.window_start <= day <= self.rules.window_end and day.weekday() < 5

    def _search_preferred_days(
        self,
        state: CalendarState,
        history: Sequence[dt.datetime],
        preferred_timestamps: Sequence[dt.datetime],
        preferred_doctor_ids: Sequence[int],
        is_new_patient: bool,
    ) -> Slot | None:
        for preferred in preferred_timestamps:
            day = preferred.date()
            if not self._in_window(day):
                logger.debug("Preferred day %s is outside the scheduling window, skipping", day)
                continue

            candidate = self.rules.day_start(day, is_new_patient=is_new_patient)
            while candidate.date() == day:
                doctors = _preferred_available(state.available_doctors(candidate), preferred_doctor_ids)
                bookable = can_be_booked(self.rules, history, candidate, is_new_patient)

                if bookable and doctors:
                    return Slot(timestamp=candidate, doctor_id=doctors[0])

                candidate = next_candidate(self.rules, candidate, bookable, is_new_patient)

        return None

    def _search_window(
        self,
        state: CalendarState,
        history: Sequence[dt.datetime],
        preferred_days: Collection[dt.date],
        preferred_doctor_ids: Sequence[int],
        is_new_patient: bool,
    ) -> Slot | None:
        best: Slot | None = None
        candidate = first_candidate(self.rules)
        end = self.rules.last_slot

        while candidate <= end:
            bookable = can_be_booked(self.rules, history, candidate, is_new_patient)
            if bookable and not state.is_fully_booked(candidate):
                available = state.available_doctors(candidate)
                doctors = _preferred_available(available, preferred_doctor_ids)
                if doctors:
                    return Slot(timestamp=candidate, doctor_id=doctors[0])

                if best is None or candidate.date() in preferred_days:
                    best = Slot(timestamp=candidate, doctor_id=available[0])

            candidate = next_candidate(self.rules, candidate, bookable, is_new_patient)

        return best

    def generate(self, state: CalendarState, request: AppointmentRequest) -> Slot:
        """Choose the slot for ``request`` against the current calendar. Does not book it."""
        history = state.person_history(request.person_id)

        slot = self._search_preferred_days(
            state,
            history,
            request.preferred_timestamps,
            request.preferred_doctor_ids,
            request.is_new_patient,
        )
        if slot is not None:
            logger.debug("Request %s: preferred-day match %s", request.request_id, slot)
            return slot

        slot = self._search_window(
            state,
            history,
            request.preferred_days,
            request.preferred_doctor_ids,
            request.is_new_patient,
        )
        if slot is None:
            raise NoSlotAvailableError(request.person_id)

        logger.debug("Request %s: fallback match %s", request.request_id, slot)
        return slot
