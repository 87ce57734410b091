"""Org connectors."""

from .base import OrgConnector
from .salesforce import SalesforceConnector

__all__ = [
    "OrgConnector",
    "SalesforceConnector",
]
