from __future__ import annotations

import logging

from apptscheduler.calendar_state import CalendarState
from apptscheduler.config import SchedulingRules
from apptscheduler.domain import Appointment, SchedulingRunError
from apptscheduler.generator import AppointmentGenerator
from apptscheduler.transport import SchedulingTransport

logger = logging.getLogger(__name__)


def _describe(e: BaseException) -> str:
    msg = str(e).strip()
    return f"{type(e).__name__}: {msg}" if msg else type(e).__name__


def process_requests(transport: SchedulingTransport, rules: SchedulingRules) -> int:
    """Schedule every queued request, one at a time. Returns how many were published.

    Each chosen slot is recorded in the calendar before it is published, so the
    next request already sees it. Any failure aborts the run with a single
    SchedulingRunError; appointments published so far are not rolled back.
    """
    generator = AppointmentGenerator(rules)
    scheduled = 0
    request_id: int | None = None

    try:
        schedule = transport.fetch_initial_schedule()
        state = CalendarState.from_schedule(rules.doctor_ids, schedule)
        logger.info("Loaded initial schedule: %d appointments", len(schedule))

        while True:
            request_id = None
            request = transport.fetch_next_request()
            if request is None:
                break
            request_id = request.request_id

            slot = generator.generate(state, request)
            appointment = Appointment(
                doctor_id=slot.doctor_id,
                person_id=request.person_id,
                timestamp=slot.timestamp,
                is_new_patient=request.is_new_patient,
            )

            state.record_appointment(appointment)
            transport.publish_appointment(request.request_id, appointment)
            scheduled += 1

            logger.info(
                "Scheduled person [%s] with doctor [%s] on %s (request %s).",
                appointment.person_id,
                appointment.doctor_id,
                appointment.timestamp.isoformat(),
                request_id,
            )

    except Exception as e:
        where = f"request {request_id}" if request_id is not None else "no request in progress"
        # No traceback here; it is chained onto SchedulingRunError for the caller.
        logger.error("Scheduling run failed (%s; %s)", where, _describe(e))
        raise SchedulingRunError(
            f"Scheduling run aborted after {scheduled} appointment(s) ({where}): {_describe(e)}",
            request_id=request_id,
            scheduled_count=scheduled,
        ) from e

    logger.info("Scheduling run finished: %d appointment(s) scheduled", scheduled)
    return scheduled
