"""Service layer for the migration pipeline."""

from .dependency_analyzer import DependencyAnalyzer
from .file_paths import FilePaths
from .record_counter import RecordCounter, reconcile
from .report_store import ReportStore
from .transformer import SchemaTransformer

__all__ = [
    "DependencyAnalyzer",
    "FilePaths",
    "RecordCounter",
    "reconcile",
    "ReportStore",
    "SchemaTransformer",
]
