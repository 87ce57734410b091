"""Record models for TM1 source data and generated TM2 structures."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def as_bool(value: Any) -> bool:
    """Interpret a CSV or JSON boolean value."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


# ---------------------------------------------------------------------------
# TM1 source records (one class per extracted CSV)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TerritoryRecord:
    """A TM1 Territory row."""
    id: str
    name: str
    developer_name: Optional[str] = None
    parent_territory_id: Optional[str] = None
    description: Optional[str] = None
    account_access_level: Optional[str] = None
    case_access_level: Optional[str] = None
    contact_access_level: Optional[str] = None
    opportunity_access_level: Optional[str] = None
    restrict_opportunity_transfer: bool = False
    forecast_user_id: Optional[str] = None
    may_forecast_manager_share: bool = False

    SOBJECT = "Territory"
    SOQL_FIELDS = (
        "Id", "Name", "DeveloperName", "ParentTerritoryId", "Description",
        "AccountAccessLevel", "CaseAccessLevel", "ContactAccessLevel",
        "OpportunityAccessLevel", "RestrictOpportunityTransfer",
        "ForecastUserId", "MayForecastManagerShare",
    )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TerritoryRecord":
        return cls(
            id=row["Id"],
            name=row.get("Name") or "",
            developer_name=_blank_to_none(row.get("DeveloperName")),
            parent_territory_id=_blank_to_none(row.get("ParentTerritoryId")),
            description=_blank_to_none(row.get("Description")),
            account_access_level=_blank_to_none(row.get("AccountAccessLevel")),
            case_access_level=_blank_to_none(row.get("CaseAccessLevel")),
            contact_access_level=_blank_to_none(row.get("ContactAccessLevel")),
            opportunity_access_level=_blank_to_none(row.get("OpportunityAccessLevel")),
            restrict_opportunity_transfer=as_bool(row.get("RestrictOpportunityTransfer", False)),
            forecast_user_id=_blank_to_none(row.get("ForecastUserId")),
            may_forecast_manager_share=as_bool(row.get("MayForecastManagerShare", False)),
        )


@dataclass(frozen=True)
class UserTerritoryRecord:
    """A TM1 UserTerritory row (user assigned to a territory)."""
    id: str
    user_id: str
    territory_id: str
    is_active: bool = True

    SOBJECT = "UserTerritory"
    SOQL_FIELDS = ("Id", "UserId", "TerritoryId", "IsActive")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UserTerritoryRecord":
        return cls(
            id=row["Id"],
            user_id=row["UserId"],
            territory_id=row["TerritoryId"],
            is_active=as_bool(row.get("IsActive", True)),
        )


@dataclass(frozen=True)
class AtaRuleRecord:
    """A TM1 AccountTerritoryAssignmentRule row."""
    id: str
    name: str
    territory_id: Optional[str]
    is_active: bool = True
    is_inherited: bool = False
    boolean_filter: Optional[str] = None

    SOBJECT = "AccountTerritoryAssignmentRule"
    SOQL_FIELDS = ("Id", "Name", "TerritoryId", "IsActive", "IsInherited", "BooleanFilter")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AtaRuleRecord":
        return cls(
            id=row["Id"],
            name=row.get("Name") or "",
            territory_id=_blank_to_none(row.get("TerritoryId")),
            is_active=as_bool(row.get("IsActive", True)),
            is_inherited=as_bool(row.get("IsInherited", False)),
            boolean_filter=_blank_to_none(row.get("BooleanFilter")),
        )


@dataclass(frozen=True)
class AtaRuleItemRecord:
    """A TM1 AccountTerritoryAssignmentRuleItem row."""
    id: str
    rule_id: str
    sort_order: int
    field: str
    operation: str
    value: Optional[str] = None

    SOBJECT = "AccountTerritoryAssignmentRuleItem"
    SOQL_FIELDS = ("Id", "RuleId", "SortOrder", "Field", "Operation", "Value")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AtaRuleItemRecord":
        return cls(
            id=row["Id"],
            rule_id=row["RuleId"],
            sort_order=int(row.get("SortOrder") or 0),
            field=row.get("Field") or "",
            operation=row.get("Operation") or "",
            value=_blank_to_none(row.get("Value")),
        )


@dataclass(frozen=True)
class AccountShareRecord:
    """An AccountShare row created by a manual TM1 territory assignment."""
    id: str
    account_id: str
    user_or_group_id: str
    row_cause: str
    account_access_level: Optional[str] = None
    case_access_level: Optional[str] = None
    contact_access_level: Optional[str] = None
    opportunity_access_level: Optional[str] = None

    SOBJECT = "AccountShare"
    SOQL_FIELDS = (
        "Id", "AccountId", "UserOrGroupId", "RowCause", "AccountAccessLevel",
        "CaseAccessLevel", "ContactAccessLevel", "OpportunityAccessLevel",
    )
    SOQL_FILTER = "RowCause = 'TerritoryManual'"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AccountShareRecord":
        return cls(
            id=row["Id"],
            account_id=row["AccountId"],
            user_or_group_id=row["UserOrGroupId"],
            row_cause=row.get("RowCause") or "",
            account_access_level=_blank_to_none(row.get("AccountAccessLevel")),
            case_access_level=_blank_to_none(row.get("CaseAccessLevel")),
            contact_access_level=_blank_to_none(row.get("ContactAccessLevel")),
            opportunity_access_level=_blank_to_none(row.get("OpportunityAccessLevel")),
        )


@dataclass(frozen=True)
class GroupRecord:
    """A Group row generated by TM1 for a territory."""
    id: str
    name: str
    developer_name: Optional[str]
    related_id: Optional[str]
    type: str

    SOBJECT = "Group"
    SOQL_FIELDS = ("Id", "Name", "DeveloperName", "RelatedId", "Type")
    SOQL_FILTER = "Type IN ('Territory', 'TerritoryAndSubordinates')"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "GroupRecord":
        return cls(
            id=row["Id"],
            name=row.get("Name") or "",
            developer_name=_blank_to_none(row.get("DeveloperName")),
            related_id=_blank_to_none(row.get("RelatedId")),
            type=row.get("Type") or "",
        )


TM1_RECORD_TYPES = (
    TerritoryRecord,
    UserTerritoryRecord,
    AtaRuleRecord,
    AtaRuleItemRecord,
    AccountShareRecord,
    GroupRecord,
)


# ---------------------------------------------------------------------------
# TM2 structures produced by the transformer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RuleAssociation:
    """Link between a Territory2 and a Territory2Rule."""
    rule_name: str
    inherited: bool = False


@dataclass(frozen=True)
class Territory2:
    """A Territory2 record to be deployed as metadata."""
    developer_name: str
    name: str
    source_id: str
    parent_developer_name: Optional[str] = None
    description: Optional[str] = None
    account_access_level: Optional[str] = None
    case_access_level: Optional[str] = None
    contact_access_level: Optional[str] = None
    opportunity_access_level: Optional[str] = None
    depth: int = 0
    rule_associations: List[RuleAssociation] = field(default_factory=list)


@dataclass(frozen=True)
class Territory2RuleItem:
    """A single criterion of a Territory2Rule."""
    field: str
    operation: str
    value: Optional[str] = None


@dataclass(frozen=True)
class Territory2Rule:
    """An object assignment rule attached to territories in the model."""
    developer_name: str
    name: str
    source_id: str
    active: bool = True
    boolean_filter: Optional[str] = None
    object_type: str = "Account"
    items: List[Territory2RuleItem] = field(default_factory=list)


@dataclass(frozen=True)
class UserTerritory2AssociationRow:
    """A bulk-loadable user-to-territory assignment."""
    user_id: str
    territory2_developer_name: str
    is_active: bool
    source_id: str


@dataclass(frozen=True)
class TM1Dataset:
    """Everything the transformer reads from an extraction."""
    territories: List[TerritoryRecord] = field(default_factory=list)
    user_territories: List[UserTerritoryRecord] = field(default_factory=list)
    ata_rules: List[AtaRuleRecord] = field(default_factory=list)
    ata_rule_items: List[AtaRuleItemRecord] = field(default_factory=list)
    account_shares: List[AccountShareRecord] = field(default_factory=list)
    groups: List[GroupRecord] = field(default_factory=list)
    # object name -> parsed sharing rules
    sharing_rules: Dict[str, List[Any]] = field(default_factory=dict)
