import argparse
import logging

from apptscheduler.api_client import SchedulingApiClient
from apptscheduler.config import load_settings
from apptscheduler.domain import SchedulingRunError
from apptscheduler.processor import process_requests


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Appointment scheduler: assigns a slot to every queued request")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--dotenv", default=None, help="Path to an alternative .env file")
    args = parser.parse_args()

    _setup_logging(args.log_level)
    settings = load_settings(dotenv_path=args.dotenv)
    log = logging.getLogger(__name__)

    log.info("Starting scheduling run against %s", settings.api_base_url)

    try:
        with SchedulingApiClient(settings) as client:
            scheduled = process_requests(client, settings.rules())
    except SchedulingRunError as e:
        # Already logged by the processor; add the resume hint only.
        log.error(
            "Run aborted: %d appointment(s) were published before the failure (request in progress: %s)",
            e.scheduled_count,
            e.request_id,
        )
        return 1

    log.info("Done: %d appointment(s) scheduled", scheduled)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
