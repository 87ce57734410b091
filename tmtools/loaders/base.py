"""Base loader interface for the target org."""

from abc import ABC, abstractmethod
from typing import List

from ..connectors.base import OrgConnector
from ..models.reports import DataLoadResult


class BaseLoader(ABC):
    """
    Base class for data loaders.

    Loaders push transformed records into the target org and report one
    DataLoadResult per object loaded.
    """

    def __init__(self, connector: OrgConnector):
        """
        Initialize the loader.

        Args:
            connector: Connector for the target org
        """
        self.connector = connector

    @abstractmethod
    def load(self) -> List[DataLoadResult]:
        """
        Load every object this loader is responsible for.

        Returns:
            One DataLoadResult per object
        """
        pass
