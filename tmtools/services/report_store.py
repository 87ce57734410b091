"""JSON report persistence with atomic writes."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

from ..errors import ReportNotFoundError, ReportValidationError
from ..models.reports import (
    AnalysisReport,
    CleanupReport,
    DeploymentReport,
    ExtractionReport,
    ImportReport,
    LoadReport,
    TransformationReport,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Stage name -> report class, in pipeline order
STAGE_REPORTS = {
    "analyze": AnalysisReport,
    "extract": ExtractionReport,
    "transform": TransformationReport,
    "import": ImportReport,
    "deploy": DeploymentReport,
    "load": LoadReport,
    "clean": CleanupReport,
}


class ReportStore:
    """
    Reads and writes stage reports.

    A report that is missing, unreadable, or fails schema validation is
    treated as absent: the stage that should have produced it did not
    complete.
    """

    def read_report(self, path: Path, report_cls: Type[R]) -> Optional[R]:
        """
        Read and validate a report.

        Args:
            path: Report file path
            report_cls: Report class providing ``from_dict``

        Returns:
            The report, or None if absent or invalid
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"Report not found: {path}")
            return None

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return report_cls.from_dict(data)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable report {path}: {e}")
            return None
        except ReportValidationError as e:
            logger.warning(f"Ignoring invalid report {path}: {e}")
            return None

    def require_report(self, path: Path, report_cls: Type[R], report_name: str) -> R:
        """Read a report, raising ReportNotFoundError if it is absent or invalid."""
        report = self.read_report(path, report_cls)
        if report is None:
            raise ReportNotFoundError(report_name, str(path))
        return report

    def write_report(self, path: Path, report: Any) -> Path:
        """
        Write a report atomically.

        The JSON is written to a temporary file in the destination directory
        and moved into place with ``os.replace``, so a concurrent reader sees
        either the previous file or the complete new one.

        Args:
            path: Destination path
            report: Report object providing ``to_dict``

        Returns:
            The written path
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(report.to_dict(), f, indent=2, default=str)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(f"Saved report to {path}")
        return path

    def read_all(self, file_paths) -> Dict[str, Optional[Any]]:
        """
        Read every stage report under a base directory.

        Returns:
            Stage name -> report, or None for stages without a valid report
        """
        reports = file_paths.reports()
        return {stage: self.read_report(path, STAGE_REPORTS[stage]) for stage, path in reports.items()}
