from __future__ import annotations

import datetime as dt
from bisect import insort
from typing import Iterable

from apptscheduler.domain import Appointment


class CalendarState:
    """Who is booked where, for the lifetime of one scheduling run.

    Keeps each person's appointment times in ascending order and, per slot,
    the set of doctors already taken. A slot missing from the index has every
    doctor free.
    """

    def __init__(self, doctor_ids: Iterable[int]) -> None:
        self._doctor_ids = tuple(doctor_ids)
        self._person_appointments: dict[int, list[dt.datetime]] = {}
        self._slot_doctors: dict[dt.datetime, set[int]] = {}

    @classmethod
    def from_schedule(cls, doctor_ids: Iterable[int], schedule: Iterable[Appointment]) -> CalendarState:
        state = cls(doctor_ids)
        for appointment in schedule:
            state.record_appointment(appointment)
        return state

    @property
    def doctor_ids(self) -> tuple[int, ...]:
        return self._doctor_ids

    def record_appointment(self, appointment: Appointment) -> None:
        insort(self._person_appointments.setdefault(appointment.person_id, []), appointment.timestamp)
        self._slot_doctors.setdefault(appointment.timestamp, set()).add(appointment.doctor_id)

    def person_history(self, person_id: int) -> tuple[dt.datetime, ...]:
        return tuple(self._person_appointments.get(person_id, ()))

    def available_doctors(self, timestamp: dt.datetime) -> tuple[int, ...]:
        """Configured doctors not yet booked at exactly ``timestamp``, in configured order."""
        booked = self._slot_doctors.get(timestamp)
        if not booked:
            return self._doctor_ids
        return tuple(d for d in self._doctor_ids if d not in booked)

    def is_fully_booked(self, timestamp: dt.datetime) -> bool:
        return not self.available_doctors(timestamp)

    def __len__(self) -> int:
        return sum(len(v) for v in self._person_appointments.values())
