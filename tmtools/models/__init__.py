"""Data models for the migration pipeline."""

from .status import (
    StatusType,
    StatusMessage,
    StatusSink,
    ListStatusSink,
    LoggingStatusSink,
    worst_status,
)
from .reports import (
    SCHEMA_VERSION,
    OrgInfo,
    TM1RecordCounts,
    SharingRulesCount,
    TM1MetadataCounts,
    Dependency,
    DependencySet,
    Discrepancy,
    UntranslatableItem,
    ComponentStatus,
    DeployResultSummary,
    DataLoadResult,
    AnalysisReport,
    ExtractionReport,
    TM2RecordCounts,
    TransformationReport,
    ImportReport,
    DeploymentReport,
    LoadReport,
    CleanupReport,
)
from .records import (
    TerritoryRecord,
    UserTerritoryRecord,
    AtaRuleRecord,
    AtaRuleItemRecord,
    AccountShareRecord,
    GroupRecord,
    TM1_RECORD_TYPES,
    RuleAssociation,
    Territory2,
    Territory2Rule,
    Territory2RuleItem,
    UserTerritory2AssociationRow,
    TM1Dataset,
)

__all__ = [
    "StatusType",
    "StatusMessage",
    "StatusSink",
    "ListStatusSink",
    "LoggingStatusSink",
    "worst_status",
    "SCHEMA_VERSION",
    "OrgInfo",
    "TM1RecordCounts",
    "SharingRulesCount",
    "TM1MetadataCounts",
    "Dependency",
    "DependencySet",
    "Discrepancy",
    "UntranslatableItem",
    "ComponentStatus",
    "DeployResultSummary",
    "DataLoadResult",
    "AnalysisReport",
    "ExtractionReport",
    "TM2RecordCounts",
    "TransformationReport",
    "ImportReport",
    "DeploymentReport",
    "LoadReport",
    "CleanupReport",
    "TerritoryRecord",
    "UserTerritoryRecord",
    "AtaRuleRecord",
    "AtaRuleItemRecord",
    "AccountShareRecord",
    "GroupRecord",
    "TM1_RECORD_TYPES",
    "RuleAssociation",
    "Territory2",
    "Territory2Rule",
    "Territory2RuleItem",
    "UserTerritory2AssociationRow",
    "TM1Dataset",
]
