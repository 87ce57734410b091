"""Bulk loading of user-to-territory assignments into the TM2 model."""

import csv
import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Tuple

from .base import BaseLoader
from ..connectors.base import OrgConnector
from ..extractors.csv_reader import read_csv_rows
from ..models.reports import DataLoadResult
from ..services.file_paths import FilePaths
from ..services.transformer import MODEL_DEVELOPER_NAME, USER_ASSOCIATION_CSV

logger = logging.getLogger(__name__)

TERRITORY2_ID_QUERY = (
    "SELECT Id, DeveloperName, ParentTerritory2Id FROM Territory2 "
    "WHERE Territory2Model.DeveloperName = '{model}'"
)
LOAD_OBJECT = "UserTerritory2Association"
LOAD_FIELDS = ("UserId", "Territory2Id")


class UserTerritory2AssociationLoader(BaseLoader):
    """
    Loads UserTerritory2Association records with the Bulk API.

    The transformed CSV refers to territories by DeveloperName; the ids
    assigned by the target org are looked up right before the load.
    """

    def __init__(self, connector: OrgConnector, file_paths: FilePaths, model_developer_name: str = MODEL_DEVELOPER_NAME):
        super().__init__(connector)
        self.file_paths = file_paths
        self.model_developer_name = model_developer_name

    @property
    def source_csv(self) -> Path:
        return self.file_paths.transformed_data_dir / USER_ASSOCIATION_CSV

    @property
    def load_csv(self) -> Path:
        return self.file_paths.load_data_dir / f"{LOAD_OBJECT}.csv"

    def resolve_territory2_ids(self) -> Dict[str, str]:
        """Get Territory2 DeveloperName -> Id for the imported model."""
        rows = self.connector.query(TERRITORY2_ID_QUERY.format(model=self.model_developer_name))
        ids = {row["DeveloperName"]: row["Id"] for row in rows}
        logger.info(f"Resolved {len(ids)} Territory2 ids in model {self.model_developer_name}")
        return ids

    def prepare(self) -> Tuple[int, int]:
        """
        Write the bulk-ready CSV.

        Returns:
            Tuple of (rows written, rows whose territory was not found)
        """
        territory2_ids = self.resolve_territory2_ids()
        written = 0
        unresolved = 0

        self.load_csv.parent.mkdir(parents=True, exist_ok=True)
        with open(self.load_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f, lineterminator="\n")
            writer.writerow(LOAD_FIELDS)
            for row in read_csv_rows(self.source_csv):
                developer_name = row["Territory2DeveloperName"]
                territory2_id = territory2_ids.get(developer_name)
                if territory2_id is None:
                    logger.warning(f"Territory2 {developer_name} was not found in the target org; skipping user {row['UserId']}")
                    unresolved += 1
                    continue
                writer.writerow([row["UserId"], territory2_id])
                written += 1

        return written, unresolved

    def load(self) -> List[DataLoadResult]:
        """Resolve ids, write the load file and submit the bulk job."""
        written, unresolved = self.prepare()
        csv_path = self.file_paths.relative(self.load_csv)

        if written == 0:
            logger.info(f"No {LOAD_OBJECT} records to load")
            result = DataLoadResult(object_name=LOAD_OBJECT, csv_path=csv_path, success=True)
        else:
            result = self.connector.bulk_load(self.load_csv, LOAD_OBJECT, operation="insert")
            result = replace(result, csv_path=csv_path)
            logger.info(
                f"Loaded {LOAD_OBJECT}: {result.records_processed - result.records_failed}/"
                f"{result.records_processed} succeeded"
            )

        if unresolved:
            message = f"{unresolved} rows referenced territories missing from the target org"
            result = replace(
                result,
                records_failed=result.records_failed + unresolved,
                success=False,
                error=f"{result.error}; {message}" if result.error else message,
            )
        return [result]
