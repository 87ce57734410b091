"""Org connector interface."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List

from ..models.reports import DataLoadResult, DeployResultSummary, OrgInfo


class OrgConnector(ABC):
    """
    Base class for authenticated access to a Salesforce org.

    The pipeline only talks to an org through this interface. Implementations
    must raise AuthError, RateLimitError or NetworkError (all ConnectorError
    subclasses) so callers can tell the failure kinds apart.
    """

    @abstractmethod
    def get_org_info(self) -> OrgInfo:
        """
        Get the identity of the connected org.

        Returns:
            OrgInfo for the current session
        """
        pass

    @abstractmethod
    def query(self, soql: str) -> List[Dict[str, Any]]:
        """
        Run a SOQL query and return every record.

        Args:
            soql: SOQL query string

        Returns:
            List of record dictionaries (``attributes`` removed)
        """
        pass

    @abstractmethod
    def query_count(self, soql: str) -> int:
        """
        Run an aggregate ``SELECT count()`` query.

        Args:
            soql: Aggregate SOQL query string

        Returns:
            Total number of matching records
        """
        pass

    @abstractmethod
    def tooling_query(self, soql: str) -> List[Dict[str, Any]]:
        """
        Run a query against the Tooling API.

        Args:
            soql: SOQL query string

        Returns:
            List of record dictionaries
        """
        pass

    @abstractmethod
    def retrieve_metadata(self, component_types: Dict[str, List[str]], target_dir: Path) -> List[Path]:
        """
        Retrieve metadata components into a local directory.

        Args:
            component_types: Metadata type -> member names
            target_dir: Directory the retrieved files are unpacked into

        Returns:
            Paths of the retrieved files
        """
        pass

    @abstractmethod
    def deploy_metadata(self, source_dir: Path) -> DeployResultSummary:
        """
        Deploy a metadata package directory (containing package.xml).

        Args:
            source_dir: Directory holding the package to deploy

        Returns:
            DeployResultSummary; a rejected deployment is returned, not raised
        """
        pass

    @abstractmethod
    def bulk_load(self, csv_path: Path, object_name: str, operation: str = "insert") -> DataLoadResult:
        """
        Load a CSV file into an object with the Bulk API.

        Args:
            csv_path: Path to the CSV file
            object_name: Target sObject API name
            operation: Bulk operation (insert, upsert, delete)

        Returns:
            DataLoadResult with processed and failed record counts
        """
        pass
