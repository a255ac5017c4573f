from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Callable, TypeVar

import httpx
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

from apptscheduler.config import Settings
from apptscheduler.domain import Appointment, AppointmentRequest, PayloadError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEDULE_PATH = "/api/Scheduling/Schedule"
REQUEST_PATH = "/api/Scheduling/AppointmentRequest"

_FRACTION = re.compile(r"\.(\d+)")


def _parse_iso(raw: Any) -> dt.datetime:
    if not isinstance(raw, str):
        raise PayloadError(f"Expected ISO timestamp string, got {raw!r}")
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # .NET writes up to 7 fractional digits; fromisoformat wants 3 or 6.
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
    try:
        return dt.datetime.fromisoformat(text)
    except ValueError as e:
        raise PayloadError(f"Invalid timestamp: {raw!r}") from e


def parse_timestamp(raw: Any) -> dt.datetime:
    """ISO-8601 from the API; offsets are folded into naive UTC."""
    value = _parse_iso(raw)
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return value


def parse_day(raw: Any) -> dt.datetime:
    """Midnight of the calendar day as written; the offset and time of day are dropped."""
    return dt.datetime.combine(_parse_iso(raw).date(), dt.time())


def format_timestamp(value: dt.datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _field(data: dict[str, Any], name: str, kind: type) -> Any:
    if name not in data:
        raise PayloadError(f"Missing field {name!r} in {data!r}")
    value = data[name]
    # bool is an int subclass; don't accept it as one.
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise PayloadError(f"Field {name!r} must be {kind.__name__}, got {value!r}")
    return value


def parse_appointment(data: Any) -> Appointment:
    if not isinstance(data, dict):
        raise PayloadError(f"Expected appointment object, got {data!r}")
    return Appointment(
        doctor_id=_field(data, "doctorId", int),
        person_id=_field(data, "personId", int),
        timestamp=parse_timestamp(data.get("appointmentTime")),
        is_new_patient=_field(data, "isNewPatientAppointment", bool),
    )


def parse_request(data: Any) -> AppointmentRequest:
    if not isinstance(data, dict):
        raise PayloadError(f"Expected appointment request object, got {data!r}")

    # Missing or null lists mean "no preference".
    preferred_days = data.get("preferredDays")
    preferred_docs = data.get("preferredDocs")
    preferred_days = [] if preferred_days is None else preferred_days
    preferred_docs = [] if preferred_docs is None else preferred_docs
    if not isinstance(preferred_days, list) or not isinstance(preferred_docs, list):
        raise PayloadError(f"preferredDays/preferredDocs must be lists in {data!r}")
    if any(not isinstance(d, int) or isinstance(d, bool) for d in preferred_docs):
        raise PayloadError(f"preferredDocs must contain integers, got {preferred_docs!r}")

    is_new = data.get("isNew", False)
    if not isinstance(is_new, bool):
        raise PayloadError(f"Field 'isNew' must be bool, got {is_new!r}")

    return AppointmentRequest(
        request_id=_field(data, "requestId", int),
        person_id=_field(data, "personId", int),
        preferred_timestamps=tuple(parse_day(d) for d in preferred_days),
        preferred_doctor_ids=tuple(preferred_docs),
        is_new_patient=is_new,
    )


def appointment_payload(request_id: int, appointment: Appointment) -> dict[str, Any]:
    return {
        "requestId": request_id,
        "personId": appointment.person_id,
        "doctorId": appointment.doctor_id,
        "appointmentTime": format_timestamp(appointment.timestamp),
        "isNewPatientAppointment": appointment.is_new_patient,
    }


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    # Type and message only; the final failure is reported by the caller.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _is_retryable(exc: BaseException) -> bool:
    # Malformed payloads won't fix themselves on a second read.
    return isinstance(exc, TransportError) and not isinstance(exc, PayloadError)


def _log_before_attempt(retry_state: RetryCallState) -> None:
    logger.debug("Attempt %s: start", retry_state.attempt_number)


def _log_after_attempt(retry_state: RetryCallState) -> None:
    # Runs after each attempt that failed with a retryable error.
    reason = _short_exc(retry_state)
    if reason:
        logger.warning("Attempt %s: failed (%s)", retry_state.attempt_number, reason)
    else:
        logger.warning("Attempt %s: failed", retry_state.attempt_number)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", 0.0)
    reason = _short_exc(retry_state)
    logger.info(
        "Attempt %s failed, retrying in %.0f s (reason: %s)",
        retry_state.attempt_number,
        sleep_seconds,
        reason,
    )


class SchedulingApiClient:
    """Scheduling REST API over httpx.

    Owns its ``httpx.Client`` unless one is passed in; use as a context manager
    so the connection pool is closed at the end of a run.
    """

    def __init__(self, settings: Settings, *, http_client: httpx.Client | None = None) -> None:
        self.settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )
        self._headers = {
            "Accept": "text/plain",
            "User-Agent": settings.user_agent,
        }

    def __enter__(self) -> SchedulingApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _send(self, method: str, path: str, *, json: Any = None) -> httpx.Response:
        try:
            return self._client.request(
                method,
                path,
                params={"token": self.settings.api_token},
                headers=self._headers,
                json=json,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed ({type(e).__name__}: {e})") from e

    def _with_retry(self, fn: Callable[[], T]) -> T:
        decorated = retry(
            stop=stop_after_attempt(self.settings.fetch_retry_attempts),
            wait=wait_exponential(multiplier=2, min=2, max=4),
            retry=retry_if_exception(_is_retryable),
            before=_log_before_attempt,
            after=_log_after_attempt,
            before_sleep=_log_before_sleep,
            reraise=True,
        )(fn)
        return decorated()

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise PayloadError(f"Response from {response.request.url.path} is not valid JSON") from e

    def _fetch_initial_schedule(self) -> list[Appointment]:
        response = self._send("GET", SCHEDULE_PATH)
        if not response.is_success:
            raise TransportError(f"GET {SCHEDULE_PATH} returned HTTP {response.status_code}")

        data = self._json(response)
        if not isinstance(data, list):
            raise PayloadError(f"Expected a JSON array of appointments, got {type(data).__name__}")
        return [parse_appointment(item) for item in data]

    def fetch_initial_schedule(self) -> list[Appointment]:
        return self._with_retry(self._fetch_initial_schedule)

    def _fetch_next_request(self) -> AppointmentRequest | None:
        response = self._send("GET", REQUEST_PATH)
        if response.status_code == httpx.codes.NO_CONTENT:
            return None
        if response.status_code != httpx.codes.OK:
            raise TransportError(f"GET {REQUEST_PATH} returned HTTP {response.status_code}")
        return parse_request(self._json(response))

    def fetch_next_request(self) -> AppointmentRequest | None:
        return self._with_retry(self._fetch_next_request)

    def publish_appointment(self, request_id: int, appointment: Appointment) -> None:
        response = self._send("POST", SCHEDULE_PATH, json=appointment_payload(request_id, appointment))
        if not response.is_success:
            raise TransportError(
                f"POST {SCHEDULE_PATH} for request {request_id} returned HTTP {response.status_code}"
            )
