from __future__ import annotations

from typing import Protocol, Sequence

from apptscheduler.domain import Appointment, AppointmentRequest


class SchedulingTransport(Protocol):
    """Where a scheduling run reads its input and sends its decisions."""

    def fetch_initial_schedule(self) -> Sequence[Appointment]:
        ...

    def fetch_next_request(self) -> AppointmentRequest | None:
        ...

    def publish_appointment(self, request_id: int, appointment: Appointment) -> None:
        ...
