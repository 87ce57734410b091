"""Reads an extraction back from disk."""

import csv
import logging
from pathlib import Path
from typing import Any, Dict, List

from .org_extractor import TM1_ENTITIES, csv_file_name
from ..errors import PreconditionError
from ..models.records import TM1Dataset
from ..services.sharing_rules import load_sharing_rules

logger = logging.getLogger(__name__)

# Report entity name -> TM1Dataset attribute
DATASET_FIELDS = {
    "territory": "territories",
    "user_territory": "user_territories",
    "ata_rule": "ata_rules",
    "ata_rule_item": "ata_rule_items",
    "account_share": "account_shares",
    "group": "groups",
}


def read_csv_rows(path: Path, encoding: str = "utf-8") -> List[Dict[str, Any]]:
    """Read a CSV file into a list of row dictionaries."""
    with open(path, newline="", encoding=encoding) as f:
        return list(csv.DictReader(f))


def read_records(path: Path, record_cls) -> List[Any]:
    """
    Read one extracted CSV into record objects.

    Raises:
        PreconditionError: If the file is missing or a row lacks a required column
    """
    if not path.exists():
        raise PreconditionError(f"Extracted file {path} is missing. Run extract before transform.")

    records = []
    for line_number, row in enumerate(read_csv_rows(path), start=2):
        try:
            records.append(record_cls.from_row(row))
        except (KeyError, ValueError) as e:
            raise PreconditionError(f"{path}:{line_number} could not be read as {record_cls.SOBJECT}: {e}") from e
    logger.debug(f"Read {len(records)} {record_cls.SOBJECT} records from {path}")
    return records


def read_tm1_dataset(data_dir: Path, metadata_dir: Path) -> TM1Dataset:
    """
    Load every extracted record set and sharing rule file.

    Args:
        data_dir: Directory holding the extracted CSV files
        metadata_dir: Directory holding retrieved metadata

    Returns:
        TM1Dataset ready for transformation
    """
    data_dir = Path(data_dir)
    values = {
        DATASET_FIELDS[entity]: read_records(data_dir / csv_file_name(record_cls), record_cls)
        for entity, record_cls in TM1_ENTITIES.items()
    }
    return TM1Dataset(sharing_rules=load_sharing_rules(metadata_dir), **values)
