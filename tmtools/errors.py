"""Error types raised by the migration pipeline."""

from typing import Optional


class TMToolsError(Exception):
    """Base class for all pipeline errors."""
    kind = "error"


# Precondition errors are fatal to the current transition.

class PreconditionError(TMToolsError):
    kind = "precondition"


class ReportNotFoundError(PreconditionError):
    def __init__(self, report_name: str, path: str):
        super().__init__(
            f"The {report_name} report could not be found at {path}. "
            f"Run the stage that produces it before continuing."
        )
        self.report_name = report_name
        self.path = path


class ReportValidationError(PreconditionError):
    pass


class OrgMismatchError(PreconditionError):
    pass


class ModelNotActiveError(PreconditionError):
    pass


class InvalidTransitionError(TMToolsError):
    kind = "state"


class StageTaskError(TMToolsError):
    """A deploy or load sub-task reported failure."""
    kind = "stage_task"


class PipelineAbortedError(TMToolsError):
    kind = "aborted"


# Connector errors

class ConnectorError(TMToolsError):
    kind = "connector"

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AuthError(ConnectorError):
    kind = "auth"


class RateLimitError(ConnectorError):
    kind = "rate_limit"


class NetworkError(ConnectorError):
    kind = "network"


def wrap_connector_error(error: ConnectorError, stage: str, operation: str) -> ConnectorError:
    """
    Re-create a connector error with stage and operation context.

    The returned error keeps the original type so callers can still
    distinguish auth, rate-limit and network failures.
    """
    wrapped = type(error)(
        f"[{stage}] {operation} failed ({error.kind}): {error}",
        status_code=error.status_code,
        error_code=error.error_code,
    )
    wrapped.__cause__ = error
    return wrapped
