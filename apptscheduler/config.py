from __future__ import annotations

import datetime as dt
import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "http://scheduling-interview-2021-265534043.us-west-2.elb.amazonaws.com"


@dataclass(frozen=True)
class SchedulingRules:
    """Business constants the generator works against.

    Defaults describe the November-December 2021 booking window: three doctors,
    appointments on the hour from 08:00 to 16:00 (inclusive), weekdays only,
    new patients only at 15:00 or 16:00, one week between visits of the same person.
    """

    doctor_ids: tuple[int, ...] = (1, 2, 3)
    first_hour: int = 8
    last_hour: int = 16
    new_patient_first_hour: int = 15
    min_days_between_appointments: int = 7
    window_start: dt.date = dt.date(2021, 11, 1)
    window_end: dt.date = dt.date(2021, 12, 31)

    def day_start(self, day: dt.date, *, is_new_patient: bool) -> dt.datetime:
        hour = self.new_patient_first_hour if is_new_patient else self.first_hour
        return dt.datetime(day.year, day.month, day.day, hour)

    @property
    def first_slot(self) -> dt.datetime:
        return dt.datetime.combine(self.window_start, dt.time(self.first_hour))

    @property
    def last_slot(self) -> dt.datetime:
        return dt.datetime.combine(self.window_end, dt.time(self.last_hour))


def _parse_doctor_ids(raw: str) -> tuple[int, ...]:
    # DOCTOR_IDS is a comma-separated list, e.g. DOCTOR_IDS=1,2,3
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    result: list[int] = []
    for p in parts:
        try:
            doctor_id = int(p)
        except ValueError as e:
            raise RuntimeError(f"Invalid DOCTOR_IDS value: {p!r}. Expected integer doctor id.") from e

        if doctor_id in result:
            continue
        result.append(doctor_id)

    if not result:
        raise RuntimeError("DOCTOR_IDS is empty. Provide at least one doctor id.")

    return tuple(result)


@dataclass(frozen=True)
class Settings:
    api_token: str
    api_base_url: str = DEFAULT_API_BASE_URL
    user_agent: str = "SchedulerApplication"

    request_timeout_seconds: float = 20.0

    # Retry tuning
    # Only idempotent fetches are retried; publishing an appointment never is.
    fetch_retry_attempts: int = 1

    doctor_ids: tuple[int, ...] = (1, 2, 3)

    def rules(self) -> SchedulingRules:
        return SchedulingRules(doctor_ids=self.doctor_ids)


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    api_base_url = os.getenv("SCHEDULER_API_BASE_URL", DEFAULT_API_BASE_URL).strip().rstrip("/")
    user_agent = os.getenv("SCHEDULER_USER_AGENT", "SchedulerApplication")

    try:
        request_timeout_seconds = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "20"))
    except ValueError as e:
        raise RuntimeError("REQUEST_TIMEOUT_SECONDS must be a number") from e
    if request_timeout_seconds <= 0:
        raise RuntimeError("REQUEST_TIMEOUT_SECONDS must be > 0")

    try:
        fetch_retry_attempts = int(os.getenv("FETCH_RETRY_ATTEMPTS", "1"))
    except ValueError as e:
        raise RuntimeError("FETCH_RETRY_ATTEMPTS must be an integer") from e
    if fetch_retry_attempts < 1:
        raise RuntimeError("FETCH_RETRY_ATTEMPTS must be >= 1")

    return Settings(
        api_token=_require("SCHEDULER_API_TOKEN"),
        api_base_url=api_base_url,
        user_agent=user_agent,
        request_timeout_seconds=request_timeout_seconds,
        fetch_retry_attempts=fetch_retry_attempts,
        doctor_ids=_parse_doctor_ids(os.getenv("DOCTOR_IDS", "1,2,3")),
    )
