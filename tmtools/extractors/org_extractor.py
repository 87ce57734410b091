"""Extractors that pull TM1 records and sharing rule metadata from an org."""

import csv
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .base import BaseExtractor, ExtractionResult
from ..concurrency import CancellationToken, run_concurrently
from ..connectors.base import OrgConnector
from ..errors import ConnectorError, wrap_connector_error
from ..models.records import TM1_RECORD_TYPES
from ..models.reports import TM1RecordCounts
from ..services.sharing_rules import SHARING_RULE_OBJECTS, sharing_rules_file

logger = logging.getLogger(__name__)

# Report entity name -> record class, in extraction order
TM1_ENTITIES = dict(zip(TM1RecordCounts.ENTITIES, TM1_RECORD_TYPES))


def record_query(record_cls) -> str:
    soql = f"SELECT {', '.join(record_cls.SOQL_FIELDS)} FROM {record_cls.SOBJECT}"
    soql_filter = getattr(record_cls, "SOQL_FILTER", None)
    if soql_filter:
        soql += f" WHERE {soql_filter}"
    return soql + " ORDER BY Id"


def csv_file_name(record_cls) -> str:
    return f"{record_cls.SOBJECT}.csv"


def _csv_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def write_records_csv(path: Path, fields: Iterable[str], rows: List[Dict[str, Any]]) -> Path:
    """Write query rows to CSV using a fixed column order."""
    fields = list(fields)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(fields)
        for row in rows:
            writer.writerow([_csv_value(row.get(name)) for name in fields])
    return path


class TM1DataExtractor(BaseExtractor):
    """
    Extracts every TM1 record set to CSV.

    Record queries run concurrently. Any failed query fails the extraction,
    since a missing record set cannot be reconstructed later.
    """

    def __init__(
        self,
        connector: OrgConnector,
        target_dir: Path,
        max_concurrency: int = 4,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        cancel_token: Optional[CancellationToken] = None,
    ):
        super().__init__(target_dir)
        self.connector = connector
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.cancel_token = cancel_token

    def extract(self) -> ExtractionResult:
        """Query each TM1 object and write one CSV per object."""
        self.reset()
        outcomes = run_concurrently(
            {
                entity: (lambda cls=record_cls: self.connector.query(record_query(cls)))
                for entity, record_cls in TM1_ENTITIES.items()
            },
            max_concurrency=self.max_concurrency,
            max_retries=self.max_retries,
            backoff_seconds=self.backoff_seconds,
            cancel_token=self.cancel_token,
        )

        result = ExtractionResult()
        for entity, record_cls in TM1_ENTITIES.items():
            outcome = outcomes[entity]
            if outcome.cancelled:
                raise RuntimeError(f"Extraction of {record_cls.SOBJECT} was cancelled")
            if outcome.error is not None:
                if isinstance(outcome.error, ConnectorError):
                    raise wrap_connector_error(outcome.error, "extract", f"query {record_cls.SOBJECT}")
                raise outcome.error

            path = write_records_csv(
                self.target_dir / csv_file_name(record_cls),
                record_cls.SOQL_FIELDS,
                outcome.result,
            )
            result.files.append(path)
            result.row_counts[entity] = len(outcome.result)
            logger.info(f"Extracted {len(outcome.result)} {record_cls.SOBJECT} records to {path}")

        result.warnings = self._warnings.copy()
        return result


class SharingRulesExtractor(BaseExtractor):
    """
    Retrieves the sharing rule metadata of each object TM1 shares through.

    A retrieve failure for one object is logged and that object is skipped;
    the remaining objects are still retrieved.
    """

    def __init__(self, connector: OrgConnector, target_dir: Path, objects=SHARING_RULE_OBJECTS):
        super().__init__(target_dir)
        self.connector = connector
        self.objects = tuple(objects)

    def extract(self) -> ExtractionResult:
        """Retrieve ``SharingRules`` for each object, one retrieve per object."""
        self.reset()
        result = ExtractionResult()

        for object_name in self.objects:
            try:
                self.connector.retrieve_metadata({"SharingRules": [object_name]}, self.target_dir)
            except ConnectorError as e:
                self.add_warning(f"Could not retrieve sharing rules for {object_name}, skipping: {e}")
                result.skipped.append(object_name)
                continue

            path = sharing_rules_file(self.target_dir, object_name)
            if path.exists():
                result.files.append(path)
            else:
                logger.info(f"{object_name} has no sharing rules")

        result.warnings = self._warnings.copy()
        return result
