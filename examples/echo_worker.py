import json
import logging
import sys
import time

from lambda_runtime_client import HandlerError, RuntimeApiError, RuntimeClient
from lambda_runtime_client.context import EventContext

LOGGER = logging.getLogger("echo_worker")

POLL_RETRY_INITIAL_SECONDS = 0.5
POLL_RETRY_MAX_SECONDS = 5.0


def handle(payload: bytes, context: EventContext) -> bytes:
    event = json.loads(payload or b"null")
    return json.dumps(
        {
            "request_id": context.request_id,
            "remaining_ms": context.remaining_time_ms(),
            "echo": event,
        }
    ).encode("utf-8")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        client = RuntimeClient.from_env()
    except RuntimeApiError as exc:
        LOGGER.error("cannot start worker: %s", exc)
        return 2

    retry_delay = POLL_RETRY_INITIAL_SECONDS
    while True:
        try:
            payload, context = client.poll_next_event()
        except RuntimeApiError as exc:
            if exc.unrecoverable:
                LOGGER.critical("stopping worker: %s", exc)
                return 1
            LOGGER.warning("poll failed, retrying in %.1fs: %s", retry_delay, exc)
            time.sleep(retry_delay)
            retry_delay = min(retry_delay * 2, POLL_RETRY_MAX_SECONDS)
            continue
        retry_delay = POLL_RETRY_INITIAL_SECONDS

        try:
            output = handle(payload, context)
        except Exception as exc:
            try:
                client.post_error(context.request_id, HandlerError.from_exception(exc))
            except RuntimeApiError:
                LOGGER.exception("failed to report error for request %s", context.request_id)
            continue

        try:
            client.post_response(context.request_id, output)
        except RuntimeApiError:
            LOGGER.exception("failed to post response for request %s", context.request_id)


if __name__ == "__main__":
    sys.exit(main())
