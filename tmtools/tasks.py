"""Task bundles: a unit of stage work with exactly one status record."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import ConnectorError, PipelineAbortedError, wrap_connector_error
from .models.status import StatusMessage, StatusSink, StatusType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskBundle:
    """
    A piece of work wrapped with its console messaging.

    Attributes:
        pre_message: Logged before the task starts
        task: Zero-argument callable; raising means failure
        success: Status emitted when the task returns
        failure: Status emitted when the task raises
        throw_on_failure: Abort the pipeline when the task fails
        stage: Stage name used to give connector errors context
    """
    pre_message: str
    task: Callable[[], Any]
    success: StatusMessage
    failure: StatusMessage
    throw_on_failure: bool = False
    stage: str = ""


@dataclass
class BundleOutcome:
    """What happened when a bundle ran."""
    status: StatusMessage
    result: Any = None
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def success(title: str, message: str) -> StatusMessage:
    return StatusMessage(type=StatusType.SUCCESS, title=title, message=message)


def warning(title: str, message: str) -> StatusMessage:
    return StatusMessage(type=StatusType.WARNING, title=title, message=message)


def error(title: str, message: str) -> StatusMessage:
    return StatusMessage(type=StatusType.ERROR, title=title, message=message)


def run_bundle(bundle: TaskBundle, sink: StatusSink) -> BundleOutcome:
    """
    Run a task bundle and emit exactly one status record.

    Args:
        bundle: Bundle to run
        sink: Receives the success or failure status

    Returns:
        BundleOutcome for a successful task, or for a failed task whose
        bundle does not throw on failure

    Raises:
        PipelineAbortedError: If the task failed and ``throw_on_failure`` is set
    """
    logger.info(bundle.pre_message)
    try:
        result = bundle.task()
    except Exception as e:
        if isinstance(e, ConnectorError):
            e = wrap_connector_error(e, bundle.stage or "pipeline", bundle.failure.title)
        status = StatusMessage(
            type=bundle.failure.type,
            title=bundle.failure.title,
            message=f"{bundle.failure.message}: {e}" if str(e) else bundle.failure.message,
        )
        sink.emit(status)
        if bundle.throw_on_failure:
            raise PipelineAbortedError(status.message) from e
        return BundleOutcome(status=status, error=e)

    sink.emit(bundle.success)
    return BundleOutcome(status=bundle.success, result=result)
