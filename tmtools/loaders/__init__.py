"""Data loaders for the target org."""

from .base import BaseLoader
from .bulk_loader import UserTerritory2AssociationLoader

__all__ = [
    "BaseLoader",
    "UserTerritory2AssociationLoader",
]
