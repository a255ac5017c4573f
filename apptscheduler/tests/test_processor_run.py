from __future__ import annotations

import datetime as dt
from unittest.mock import patch

import pytest

from apptscheduler.config import SchedulingRules
from apptscheduler.domain import (
    Appointment,
    AppointmentRequest,
    NoSlotAvailableError,
    SchedulingRunError,
    TransportError,
)
from apptscheduler.processor import process_requests

RULES = SchedulingRules()


class _FakeTransport:
    """In-memory stand-in for the scheduling API."""

    def __init__(
        self,
        *,
        schedule: list[Appointment] | None = None,
        requests: list[AppointmentRequest] | None = None,
        fail_publish_on: int | None = None,
    ):
        self.schedule = schedule or []
        self.requests = list(requests or [])
        self.fail_publish_on = fail_publish_on
        self.published: list[tuple[int, Appointment]] = []
        self.schedule_fetches = 0

    def fetch_initial_schedule(self) -> list[Appointment]:
        self.schedule_fetches += 1
        return self.schedule

    def fetch_next_request(self) -> AppointmentRequest | None:
        if not self.requests:
            return None
        return self.requests.pop(0)

    def publish_appointment(self, request_id: int, appointment: Appointment) -> None:
        if request_id == self.fail_publish_on:
            raise TransportError("POST /api/Scheduling/Schedule returned HTTP 500")
        self.published.append((request_id, appointment))


def _ts(day: int, hour: int = 8) -> dt.datetime:
    return dt.datetime(2021, 11, day, hour)


def _request(request_id: int, person_id: int, *, day: int = 1, doctor: int = 1, new: bool = False) -> AppointmentRequest:
    return AppointmentRequest(
        request_id=request_id,
        person_id=person_id,
        preferred_timestamps=(_ts(day),),
        preferred_doctor_ids=(doctor,),
        is_new_patient=new,
    )


def test_no_requests_publishes_nothing() -> None:
    transport = _FakeTransport()
    assert process_requests(transport, RULES) == 0
    assert transport.published == []
    assert transport.schedule_fetches == 1


def test_initial_schedule_is_respected() -> None:
    transport = _FakeTransport(
        schedule=[Appointment(doctor_id=1, person_id=9, timestamp=_ts(1, 8))],
        requests=[_request(1, person_id=5)],
    )

    process_requests(transport, RULES)

    assert transport.published == [
        (1, Appointment(doctor_id=1, person_id=5, timestamp=_ts(1, 9), is_new_patient=False)),
    ]


def test_each_request_sees_earlier_decisions() -> None:
    transport = _FakeTransport(requests=[_request(1, person_id=5), _request(2, person_id=5), _request(3, person_id=6)])

    assert process_requests(transport, RULES) == 3

    assert [a.timestamp for _, a in transport.published] == [_ts(1, 8), _ts(8, 8), _ts(1, 9)]
    assert [rid for rid, _ in transport.published] == [1, 2, 3]


def test_new_patient_flag_is_carried_to_published_appointment() -> None:
    transport = _FakeTransport(requests=[_request(1, person_id=5, day=3, doctor=2, new=True)])

    process_requests(transport, RULES)

    assert transport.published == [
        (1, Appointment(doctor_id=2, person_id=5, timestamp=_ts(3, 15), is_new_patient=True)),
    ]


def test_no_doctor_is_double_booked_across_a_busy_run() -> None:
    requests = [_request(i, person_id=i, day=1 + i % 3, doctor=1 + i % 2) for i in range(1, 80)]
    transport = _FakeTransport(requests=requests)

    process_requests(transport, RULES)

    taken = [(a.timestamp, a.doctor_id) for _, a in transport.published]
    assert len(taken) == len(requests)
    assert len(set(taken)) == len(taken)


def test_publish_failure_aborts_run_with_request_context() -> None:
    transport = _FakeTransport(requests=[_request(1, 5), _request(2, 6), _request(3, 7)], fail_publish_on=2)

    with pytest.raises(SchedulingRunError) as exc_info:
        process_requests(transport, RULES)

    err = exc_info.value
    assert err.request_id == 2
    assert err.scheduled_count == 1
    assert isinstance(err.__cause__, TransportError)
    # Already published appointments stay; nothing after the failure is attempted.
    assert [rid for rid, _ in transport.published] == [1]
    assert [r.request_id for r in transport.requests] == [3]


def test_schedule_fetch_failure_has_no_request_in_progress() -> None:
    transport = _FakeTransport()

    with patch.object(transport, "fetch_initial_schedule", side_effect=TransportError("HTTP 503")):
        with pytest.raises(SchedulingRunError) as exc_info:
            process_requests(transport, RULES)

    assert exc_info.value.request_id is None
    assert exc_info.value.scheduled_count == 0


def test_request_fetch_failure_has_no_request_in_progress() -> None:
    transport = _FakeTransport(requests=[_request(1, 5)])
    real_fetch = transport.fetch_next_request
    calls = iter([real_fetch, TransportError("HTTP 500")])

    def _fetch() -> AppointmentRequest | None:
        step = next(calls)
        if isinstance(step, Exception):
            raise step
        return step()

    with patch.object(transport, "fetch_next_request", side_effect=_fetch):
        with pytest.raises(SchedulingRunError) as exc_info:
            process_requests(transport, RULES)

    assert exc_info.value.request_id is None
    assert exc_info.value.scheduled_count == 1


def test_unschedulable_request_fails_loudly() -> None:
    transport = _FakeTransport(requests=[_request(7, 5)])

    with (
        patch("apptscheduler.processor.AppointmentGenerator.generate", side_effect=NoSlotAvailableError(5)),
        pytest.raises(SchedulingRunError) as exc_info,
    ):
        process_requests(transport, RULES)

    assert exc_info.value.request_id == 7
    assert isinstance(exc_info.value.__cause__, NoSlotAvailableError)
    assert transport.published == []
