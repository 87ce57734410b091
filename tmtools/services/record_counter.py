"""Aggregate record counting and cross-stage reconciliation."""

import logging
import re
from typing import Dict, List, Mapping, Optional

from ..concurrency import CancellationToken, run_concurrently
from ..connectors.base import OrgConnector
from ..models.reports import Discrepancy

logger = logging.getLogger(__name__)

COUNT_QUERY_PATTERN = re.compile(r"^\s*SELECT\s+count\(\s*\)\s+FROM\s+", re.IGNORECASE)

TM1_COUNT_QUERIES: Dict[str, str] = {
    "territory": "SELECT count() FROM Territory",
    "user_territory": "SELECT count() FROM UserTerritory",
    "ata_rule": "SELECT count() FROM AccountTerritoryAssignmentRule",
    "ata_rule_item": "SELECT count() FROM AccountTerritoryAssignmentRuleItem",
    "account_share": "SELECT count() FROM AccountShare WHERE RowCause = 'TerritoryManual'",
    "group": "SELECT count() FROM Group WHERE Type IN ('Territory', 'TerritoryAndSubordinates')",
}


class RecordCounter:
    """
    Counts records with aggregate queries only.

    Full record sets are never materialized for counting.
    """

    def __init__(
        self,
        connector: OrgConnector,
        max_concurrency: int = 4,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.connector = connector
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.cancel_token = cancel_token

    def count(self, soql: str) -> int:
        """
        Count records matching an aggregate query.

        Args:
            soql: A ``SELECT count() FROM ...`` query

        Returns:
            Record count
        """
        if not COUNT_QUERY_PATTERN.match(soql):
            raise ValueError(f"Only aggregate 'SELECT count() FROM ...' queries are allowed: {soql}")
        return self.connector.query_count(soql)

    def count_all(self, queries: Mapping[str, str]) -> Dict[str, int]:
        """
        Run independent count queries concurrently.

        Args:
            queries: Entity name -> aggregate query

        Returns:
            Entity name -> count

        Raises:
            The first sub-query error, in ``queries`` order
        """
        outcomes = run_concurrently(
            {entity: (lambda q=soql: self.count(q)) for entity, soql in queries.items()},
            max_concurrency=self.max_concurrency,
            max_retries=self.max_retries,
            backoff_seconds=self.backoff_seconds,
            cancel_token=self.cancel_token,
        )

        counts: Dict[str, int] = {}
        for entity, outcome in outcomes.items():
            if outcome.error is not None:
                raise outcome.error
            if outcome.cancelled:
                raise RuntimeError(f"Counting {entity} was cancelled")
            counts[entity] = outcome.result
            logger.info(f"Counted {outcome.result} {entity} records")
        return counts


def reconcile(expected: Mapping[str, int], actual: Mapping[str, int]) -> List[Discrepancy]:
    """
    Compare expected and actual counts per entity.

    An entity present on only one side is compared against zero. The result
    is ordered by entity name; an empty list means the counts agree.
    """
    discrepancies = []
    for entity in sorted(set(expected) | set(actual)):
        exp = expected.get(entity, 0)
        act = actual.get(entity, 0)
        if exp != act:
            discrepancies.append(Discrepancy(entity=entity, expected=exp, actual=act))
            if act > exp:
                logger.warning(f"Count for {entity} increased from {exp} to {act}")
            else:
                logger.warning(f"Count for {entity} decreased from {exp} to {act}")
    return discrepancies
