import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class RetryExhaustedError(RuntimeError):
    pass


def run_with_retries(
    fn: Callable[[], Any],
    *,
    max_retries: int,
    backoff_seconds: float,
    on_attempt_failure: Optional[Callable[[int, Exception], None]] = None,
    should_retry: Optional[Callable[[Exception], bool]] = None,
) -> Any:
    """
    Call ``fn`` until it succeeds or retries run out.

    Errors rejected by ``should_retry`` are re-raised unchanged on the first
    attempt. Retryable errors that outlast ``max_retries`` raise
    RetryExhaustedError chained to the last failure.
    """
    last_error: Optional[Exception] = None

    for attempt in range(1, max_retries + 2):
        try:
            return fn()
        except Exception as exc:
            last_error = exc
            if on_attempt_failure:
                on_attempt_failure(attempt, exc)

            retry_allowed = True if should_retry is None else should_retry(exc)
            if not retry_allowed:
                raise
            if attempt > max_retries:
                break
            logger.debug(f"Retrying after attempt {attempt} failed: {exc}")
            time.sleep(backoff_seconds * attempt)

    raise RetryExhaustedError(str(last_error)) from last_error
