"""Bounded concurrent execution of independent org calls."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .errors import RateLimitError
from .retry import run_with_retries

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative abort signal shared by a stage and its sub-tasks."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class TaskOutcome:
    """Result of one concurrently executed sub-task."""
    key: str
    result: Any = None
    error: Optional[Exception] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


def _is_rate_limited(exc: Exception) -> bool:
    return isinstance(exc, RateLimitError)


def run_concurrently(
    tasks: Dict[str, Callable[[], Any]],
    max_concurrency: int = 4,
    max_retries: int = 3,
    backoff_seconds: float = 2.0,
    cancel_token: Optional[CancellationToken] = None,
) -> Dict[str, TaskOutcome]:
    """
    Run independent callables on a bounded thread pool.

    Rate-limit errors are retried with backoff; any other error is captured
    in the task's outcome. Outcomes are gathered by the calling thread only,
    after each future completes, and are returned in the order of ``tasks``.

    Args:
        tasks: Mapping of task key to zero-argument callable
        max_concurrency: Maximum number of tasks in flight
        max_retries: Retries allowed for a rate-limited task
        backoff_seconds: Linear backoff step between retries
        cancel_token: Tasks that have not started when the token is set
            are not run

    Returns:
        Dictionary of task key -> TaskOutcome
    """
    outcomes: Dict[str, TaskOutcome] = {}
    if not tasks:
        return outcomes

    def _run(key: str, fn: Callable[[], Any]) -> TaskOutcome:
        if cancel_token is not None and cancel_token.cancelled:
            return TaskOutcome(key=key, cancelled=True)
        try:
            result = run_with_retries(
                fn,
                max_retries=max_retries,
                backoff_seconds=backoff_seconds,
                should_retry=_is_rate_limited,
                on_attempt_failure=lambda attempt, exc: logger.warning(
                    f"{key}: attempt {attempt} failed: {exc}"
                ) if _is_rate_limited(exc) else None,
            )
            return TaskOutcome(key=key, result=result)
        except Exception as e:
            return TaskOutcome(key=key, error=e)

    workers = max(1, min(max_concurrency, len(tasks)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {key: executor.submit(_run, key, fn) for key, fn in tasks.items()}
        for key, future in futures.items():
            outcomes[key] = future.result()

    return outcomes
