from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field


@dataclass(frozen=True, order=True)
class Slot:
    """A chosen appointment time together with the doctor who takes it."""

    timestamp: dt.datetime
    doctor_id: int


@dataclass(frozen=True)
class Appointment:
    """One booked slot: a person seeing a doctor at an hour-aligned time."""

    doctor_id: int
    person_id: int
    timestamp: dt.datetime
    is_new_patient: bool = False


@dataclass(frozen=True)
class AppointmentRequest:
    request_id: int
    person_id: int
    # Only the calendar day of each preferred timestamp matters.
    preferred_timestamps: tuple[dt.datetime, ...] = field(default_factory=tuple)
    preferred_doctor_ids: tuple[int, ...] = field(default_factory=tuple)
    is_new_patient: bool = False

    @property
    def preferred_days(self) -> frozenset[dt.date]:
        return frozenset(ts.date() for ts in self.preferred_timestamps)


class TransportError(RuntimeError):
    """The scheduling API could not be reached or answered with an unexpected status."""


class PayloadError(TransportError):
    """The scheduling API answered, but the body could not be decoded into our records."""


class NoSlotAvailableError(RuntimeError):
    """The fallback search walked the whole window without finding a bookable slot.

    The API guarantees every request is schedulable, so this means either the
    guarantee was broken or the initial schedule is inconsistent.
    """

    def __init__(self, person_id: int) -> None:
        super().__init__(f"No bookable slot in the scheduling window for person {person_id}")
        self.person_id = person_id


class SchedulingRunError(RuntimeError):
    """A scheduling run aborted. Appointments published before the failure stay published."""

    def __init__(self, message: str, *, request_id: int | None, scheduled_count: int) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.scheduled_count = scheduled_count
