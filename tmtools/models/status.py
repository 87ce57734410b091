"""Status records emitted at each stage boundary."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class StatusType(str, Enum):
    """Severity of a status record."""
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"

    @property
    def rank(self) -> int:
        return {"SUCCESS": 0, "WARNING": 1, "ERROR": 2}[self.value]


@dataclass(frozen=True)
class StatusMessage:
    """A single status record for the console and the final report."""
    type: StatusType
    title: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
        }


def worst_status(messages: List[StatusMessage]) -> StatusType:
    """Get the most severe status type in a list (SUCCESS if empty)."""
    worst = StatusType.SUCCESS
    for message in messages:
        if message.type.rank > worst.rank:
            worst = message.type
    return worst


class StatusSink:
    """Receives status records emitted by task bundles."""

    def emit(self, message: StatusMessage) -> None:
        raise NotImplementedError


class ListStatusSink(StatusSink):
    """Collects status records so they can be embedded in a report."""

    def __init__(self):
        self.messages: List[StatusMessage] = []

    def emit(self, message: StatusMessage) -> None:
        self.messages.append(message)


class LoggingStatusSink(StatusSink):
    """Forwards status records to the log, optionally teeing into another sink."""

    LEVELS = {
        StatusType.SUCCESS: logging.INFO,
        StatusType.WARNING: logging.WARNING,
        StatusType.ERROR: logging.ERROR,
    }

    def __init__(self, inner: StatusSink = None):
        self.inner = inner

    def emit(self, message: StatusMessage) -> None:
        logger.log(self.LEVELS[message.type], f"{message.title}: {message.message}")
        if self.inner is not None:
            self.inner.emit(message)
