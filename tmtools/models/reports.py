"""Versioned report models exchanged between pipeline stages.

Reports are frozen value objects. ``from_dict`` is strict: a missing field,
an unknown field, a wrongly typed value or an unsupported schema version
raises ReportValidationError, so a half-written or hand-edited report is
never mistaken for a completed stage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import ReportValidationError
from .status import StatusMessage, StatusType

SCHEMA_VERSION = 1
SUPPORTED_SCHEMA_VERSIONS = (1,)


def _now() -> str:
    return datetime.utcnow().isoformat()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _check_fields(data: Any, name: str, fields: Iterable[str]) -> None:
    if not isinstance(data, dict):
        raise ReportValidationError(f"{name} must be a JSON object, got {type(data).__name__}")
    fields = tuple(fields)
    missing = [f for f in fields if f not in data]
    if missing:
        raise ReportValidationError(f"{name} is missing required field(s): {', '.join(missing)}")
    unknown = sorted(set(data) - set(fields))
    if unknown:
        raise ReportValidationError(f"{name} has unknown field(s): {', '.join(unknown)}")


def _int(data: Dict[str, Any], key: str, name: str) -> int:
    value = data[key]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ReportValidationError(f"{name}.{key} must be an integer, got {value!r}")
    if value < 0:
        raise ReportValidationError(f"{name}.{key} must not be negative, got {value}")
    return value


def _str(data: Dict[str, Any], key: str, name: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise ReportValidationError(f"{name}.{key} must be a string, got {value!r}")
    return value


def _opt_str(data: Dict[str, Any], key: str, name: str) -> Optional[str]:
    if data[key] is None:
        return None
    return _str(data, key, name)


def _bool(data: Dict[str, Any], key: str, name: str) -> bool:
    value = data[key]
    if not isinstance(value, bool):
        raise ReportValidationError(f"{name}.{key} must be a boolean, got {value!r}")
    return value


def _list(data: Dict[str, Any], key: str, name: str) -> List[Any]:
    value = data[key]
    if not isinstance(value, list):
        raise ReportValidationError(f"{name}.{key} must be a list, got {type(value).__name__}")
    return value


def _check_header(data: Dict[str, Any], name: str, report_type: str) -> None:
    version = _int(data, "schema_version", name)
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ReportValidationError(f"{name} has unsupported schema_version {version}")
    if _str(data, "report_type", name) != report_type:
        raise ReportValidationError(
            f"{name} has report_type {data['report_type']!r}, expected {report_type!r}"
        )
    _str(data, "generated_at", name)


_HEADER = ("schema_version", "report_type", "generated_at")


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrgInfo:
    """Identity of the org a stage acted upon."""
    org_id: str
    username: str
    alias: Optional[str] = None
    login_url: str = ""
    instance: str = ""

    FIELDS = ("org_id", "username", "alias", "login_url", "instance")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "org_id": self.org_id,
            "username": self.username,
            "alias": self.alias,
            "login_url": self.login_url,
            "instance": self.instance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrgInfo":
        name = "org_info"
        _check_fields(data, name, cls.FIELDS)
        return cls(
            org_id=_str(data, "org_id", name),
            username=_str(data, "username", name),
            alias=_opt_str(data, "alias", name),
            login_url=_str(data, "login_url", name),
            instance=_str(data, "instance", name),
        )

    def same_org(self, other: "OrgInfo") -> bool:
        """Compare org identity (15 and 18 character ids are equivalent)."""
        return self.org_id[:15] == other.org_id[:15]


@dataclass(frozen=True)
class TM1RecordCounts:
    """Snapshot of TM1 record volumes."""
    territory: int = 0
    user_territory: int = 0
    ata_rule: int = 0
    ata_rule_item: int = 0
    account_share: int = 0
    group: int = 0

    ENTITIES = ("territory", "user_territory", "ata_rule", "ata_rule_item", "account_share", "group")

    def to_dict(self) -> Dict[str, Any]:
        return {entity: getattr(self, entity) for entity in self.ENTITIES}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TM1RecordCounts":
        name = "record_counts"
        _check_fields(data, name, cls.ENTITIES)
        return cls(**{entity: _int(data, entity, name) for entity in cls.ENTITIES})


@dataclass(frozen=True)
class SharingRulesCount:
    """Count of sharing rules on one object by rule kind."""
    criteria: int = 0
    owner: int = 0
    territory: int = 0

    @property
    def total(self) -> int:
        return self.criteria + self.owner + self.territory

    def to_dict(self) -> Dict[str, Any]:
        return {"criteria": self.criteria, "owner": self.owner, "territory": self.territory}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], name: str = "sharing_rules_count") -> "SharingRulesCount":
        _check_fields(data, name, ("criteria", "owner", "territory"))
        return cls(
            criteria=_int(data, "criteria", name),
            owner=_int(data, "owner", name),
            territory=_int(data, "territory", name),
        )


@dataclass(frozen=True)
class TM1MetadataCounts:
    """Sharing rule inventory for the objects TM1 shares through."""
    account: SharingRulesCount = field(default_factory=SharingRulesCount)
    lead: SharingRulesCount = field(default_factory=SharingRulesCount)
    opportunity: SharingRulesCount = field(default_factory=SharingRulesCount)
    skipped_objects: Tuple[str, ...] = ()

    OBJECTS = ("account", "lead", "opportunity")
    FIELDS = OBJECTS + ("skipped_objects",)

    def by_object(self) -> Dict[str, SharingRulesCount]:
        return {obj: getattr(self, obj) for obj in self.OBJECTS}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {obj: count.to_dict() for obj, count in self.by_object().items()}
        data["skipped_objects"] = list(self.skipped_objects)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TM1MetadataCounts":
        name = "metadata_counts"
        _check_fields(data, name, cls.FIELDS)
        skipped = _list(data, "skipped_objects", name)
        for obj in skipped:
            if not isinstance(obj, str) or obj.lower() not in cls.OBJECTS:
                raise ReportValidationError(f"{name}.skipped_objects has an unknown object {obj!r}")
        counts = {
            obj: SharingRulesCount.from_dict(data[obj], f"{name}.{obj}") for obj in cls.OBJECTS
        }
        return cls(skipped_objects=tuple(skipped), **counts)


@dataclass(frozen=True)
class Dependency:
    """An artifact that references a TM1 construct."""
    type: str
    name: str
    reference_detail: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "name": self.name, "reference_detail": self.reference_detail}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dependency":
        name = "dependency"
        _check_fields(data, name, ("type", "name", "reference_detail"))
        return cls(
            type=_str(data, "type", name),
            name=_str(data, "name", name),
            reference_detail=_str(data, "reference_detail", name),
        )

    @property
    def sort_key(self) -> Tuple[str, str, str]:
        return (self.type, self.name, self.reference_detail)


@dataclass(frozen=True)
class DependencySet:
    """A sorted, de-duplicated list of dependencies."""
    dependencies: Tuple[Dependency, ...] = ()
    skipped_count: int = 0

    @classmethod
    def build(cls, dependencies: Iterable[Dependency], skipped_count: int = 0) -> "DependencySet":
        unique = {dep.sort_key: dep for dep in dependencies}
        ordered = tuple(unique[key] for key in sorted(unique))
        return cls(dependencies=ordered, skipped_count=skipped_count)

    @property
    def count(self) -> int:
        return len(self.dependencies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "dependencies": [d.to_dict() for d in self.dependencies],
            "skipped_count": self.skipped_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], name: str = "dependency_set") -> "DependencySet":
        _check_fields(data, name, ("count", "dependencies", "skipped_count"))
        dependencies = tuple(Dependency.from_dict(d) for d in _list(data, "dependencies", name))
        if _int(data, "count", name) != len(dependencies):
            raise ReportValidationError(f"{name}.count does not match the number of dependencies")
        return cls(dependencies=dependencies, skipped_count=_int(data, "skipped_count", name))


@dataclass(frozen=True)
class Discrepancy:
    """A record count that differs between two stages."""
    entity: str
    expected: int
    actual: int

    @property
    def delta(self) -> int:
        return self.actual - self.expected

    def to_dict(self) -> Dict[str, Any]:
        return {"entity": self.entity, "expected": self.expected, "actual": self.actual}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Discrepancy":
        name = "discrepancy"
        _check_fields(data, name, ("entity", "expected", "actual"))
        return cls(
            entity=_str(data, "entity", name),
            expected=_int(data, "expected", name),
            actual=_int(data, "actual", name),
        )


@dataclass(frozen=True)
class UntranslatableItem:
    """A TM1 record that could not be expressed in TM2."""
    entity: str
    source_id: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"entity": self.entity, "source_id": self.source_id, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UntranslatableItem":
        name = "untranslatable"
        _check_fields(data, name, ("entity", "source_id", "reason"))
        return cls(
            entity=_str(data, "entity", name),
            source_id=_str(data, "source_id", name),
            reason=_str(data, "reason", name),
        )


@dataclass(frozen=True)
class ComponentStatus:
    """Deploy outcome of a single metadata component."""
    component_type: str
    full_name: str
    success: bool
    problem: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component_type": self.component_type,
            "full_name": self.full_name,
            "success": self.success,
            "problem": self.problem,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComponentStatus":
        name = "component"
        _check_fields(data, name, ("component_type", "full_name", "success", "problem"))
        return cls(
            component_type=_str(data, "component_type", name),
            full_name=_str(data, "full_name", name),
            success=_bool(data, "success", name),
            problem=_opt_str(data, "problem", name),
        )


@dataclass(frozen=True)
class DeployResultSummary:
    """Outcome of one metadata deployment."""
    deploy_id: Optional[str]
    status: str
    success: bool
    components: Tuple[ComponentStatus, ...] = ()
    error_message: Optional[str] = None

    FIELDS = ("deploy_id", "status", "success", "components", "error_message")

    @property
    def failed_components(self) -> List[ComponentStatus]:
        return [c for c in self.components if not c.success]

    @classmethod
    def failed(cls, message: str, deploy_id: Optional[str] = None) -> "DeployResultSummary":
        return cls(deploy_id=deploy_id, status="Failed", success=False, error_message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deploy_id": self.deploy_id,
            "status": self.status,
            "success": self.success,
            "components": [c.to_dict() for c in self.components],
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeployResultSummary":
        name = "deployment"
        _check_fields(data, name, cls.FIELDS)
        return cls(
            deploy_id=_opt_str(data, "deploy_id", name),
            status=_str(data, "status", name),
            success=_bool(data, "success", name),
            components=tuple(ComponentStatus.from_dict(c) for c in _list(data, "components", name)),
            error_message=_opt_str(data, "error_message", name),
        )


@dataclass(frozen=True)
class DataLoadResult:
    """Outcome of one bulk load job."""
    object_name: str
    csv_path: str
    records_processed: int = 0
    records_failed: int = 0
    success: bool = False
    job_id: Optional[str] = None
    error: Optional[str] = None

    FIELDS = ("object_name", "csv_path", "records_processed", "records_failed", "success", "job_id", "error")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "object_name": self.object_name,
            "csv_path": self.csv_path,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "success": self.success,
            "job_id": self.job_id,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataLoadResult":
        name = "load_result"
        _check_fields(data, name, cls.FIELDS)
        return cls(
            object_name=_str(data, "object_name", name),
            csv_path=_str(data, "csv_path", name),
            records_processed=_int(data, "records_processed", name),
            records_failed=_int(data, "records_failed", name),
            success=_bool(data, "success", name),
            job_id=_opt_str(data, "job_id", name),
            error=_opt_str(data, "error", name),
        )


def status_message_from_dict(data: Dict[str, Any]) -> StatusMessage:
    name = "status_message"
    _check_fields(data, name, ("type", "title", "message"))
    try:
        status_type = StatusType(_str(data, "type", name))
    except ValueError:
        raise ReportValidationError(f"{name}.type has unknown value {data['type']!r}")
    return StatusMessage(
        type=status_type,
        title=_str(data, "title", name),
        message=_str(data, "message", name),
    )


# ---------------------------------------------------------------------------
# Stage reports
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisReport:
    """Output of the Analyze stage."""
    org_info: OrgInfo
    record_counts: TM1RecordCounts
    metadata_counts: TM1MetadataCounts
    hard_dependencies: DependencySet
    soft_dependencies: DependencySet
    generated_at: str = field(default_factory=_now)
    schema_version: int = SCHEMA_VERSION

    REPORT_TYPE = "tm1-analysis"
    FIELDS = _HEADER + ("org_info", "record_counts", "metadata_counts", "hard_dependencies", "soft_dependencies")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "report_type": self.REPORT_TYPE,
            "generated_at": self.generated_at,
            "org_info": self.org_info.to_dict(),
            "record_counts": self.record_counts.to_dict(),
            "metadata_counts": self.metadata_counts.to_dict(),
            "hard_dependencies": self.hard_dependencies.to_dict(),
            "soft_dependencies": self.soft_dependencies.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisReport":
        name = cls.REPORT_TYPE
        _check_fields(data, name, cls.FIELDS)
        _check_header(data, name, cls.REPORT_TYPE)
        return cls(
            org_info=OrgInfo.from_dict(data["org_info"]),
            record_counts=TM1RecordCounts.from_dict(data["record_counts"]),
            metadata_counts=TM1MetadataCounts.from_dict(data["metadata_counts"]),
            hard_dependencies=DependencySet.from_dict(data["hard_dependencies"], "hard_dependencies"),
            soft_dependencies=DependencySet.from_dict(data["soft_dependencies"], "soft_dependencies"),
            generated_at=data["generated_at"],
            schema_version=data["schema_version"],
        )


@dataclass(frozen=True)
class ExtractionReport:
    """Output of the Extract stage."""
    org_info: OrgInfo
    record_counts: TM1RecordCounts
    metadata_counts: TM1MetadataCounts
    discrepancies: Tuple[Discrepancy, ...] = ()
    extracted_files: Tuple[str, ...] = ()
    generated_at: str = field(default_factory=_now)
    schema_version: int = SCHEMA_VERSION

    REPORT_TYPE = "tm1-extraction"
    FIELDS = _HEADER + ("org_info", "record_counts", "metadata_counts", "discrepancies", "extracted_files")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "report_type": self.REPORT_TYPE,
            "generated_at": self.generated_at,
            "org_info": self.org_info.to_dict(),
            "record_counts": self.record_counts.to_dict(),
            "metadata_counts": self.metadata_counts.to_dict(),
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "extracted_files": list(self.extracted_files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionReport":
        name = cls.REPORT_TYPE
        _check_fields(data, name, cls.FIELDS)
        _check_header(data, name, cls.REPORT_TYPE)
        files = _list(data, "extracted_files", name)
        if not all(isinstance(f, str) for f in files):
            raise ReportValidationError(f"{name}.extracted_files must contain strings")
        return cls(
            org_info=OrgInfo.from_dict(data["org_info"]),
            record_counts=TM1RecordCounts.from_dict(data["record_counts"]),
            metadata_counts=TM1MetadataCounts.from_dict(data["metadata_counts"]),
            discrepancies=tuple(Discrepancy.from_dict(d) for d in _list(data, "discrepancies", name)),
            extracted_files=tuple(files),
            generated_at=data["generated_at"],
            schema_version=data["schema_version"],
        )


@dataclass(frozen=True)
class TM2RecordCounts:
    """Volumes of generated TM2 entities."""
    territory2: int = 0
    territory2_rule: int = 0
    territory2_rule_item: int = 0
    user_territory2_association: int = 0
    sharing_rules_rewritten: int = 0
    sharing_rules_dropped: int = 0

    FIELDS = (
        "territory2",
        "territory2_rule",
        "territory2_rule_item",
        "user_territory2_association",
        "sharing_rules_rewritten",
        "sharing_rules_dropped",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {f: getattr(self, f) for f in self.FIELDS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TM2RecordCounts":
        name = "tm2_counts"
        _check_fields(data, name, cls.FIELDS)
        return cls(**{f: _int(data, f, name) for f in cls.FIELDS})


@dataclass(frozen=True)
class TransformationReport:
    """Output of the Transform stage."""
    org_info: OrgInfo
    tm2_counts: TM2RecordCounts
    territory_manual_share_count: int = 0
    untranslatable: Tuple[UntranslatableItem, ...] = ()
    discrepancies: Tuple[Discrepancy, ...] = ()
    output_files: Tuple[str, ...] = ()
    generated_at: str = field(default_factory=_now)
    schema_version: int = SCHEMA_VERSION

    REPORT_TYPE = "tm1-transformation"
    FIELDS = _HEADER + (
        "org_info",
        "tm2_counts",
        "territory_manual_share_count",
        "untranslatable_count",
        "untranslatable",
        "discrepancies",
        "output_files",
    )

    @property
    def untranslatable_count(self) -> int:
        return len(self.untranslatable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "report_type": self.REPORT_TYPE,
            "generated_at": self.generated_at,
            "org_info": self.org_info.to_dict(),
            "tm2_counts": self.tm2_counts.to_dict(),
            "territory_manual_share_count": self.territory_manual_share_count,
            "untranslatable_count": self.untranslatable_count,
            "untranslatable": [u.to_dict() for u in self.untranslatable],
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "output_files": list(self.output_files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransformationReport":
        name = cls.REPORT_TYPE
        _check_fields(data, name, cls.FIELDS)
        _check_header(data, name, cls.REPORT_TYPE)
        untranslatable = tuple(UntranslatableItem.from_dict(u) for u in _list(data, "untranslatable", name))
        if _int(data, "untranslatable_count", name) != len(untranslatable):
            raise ReportValidationError(f"{name}.untranslatable_count does not match untranslatable")
        files = _list(data, "output_files", name)
        if not all(isinstance(f, str) for f in files):
            raise ReportValidationError(f"{name}.output_files must contain strings")
        return cls(
            org_info=OrgInfo.from_dict(data["org_info"]),
            tm2_counts=TM2RecordCounts.from_dict(data["tm2_counts"]),
            territory_manual_share_count=_int(data, "territory_manual_share_count", name),
            untranslatable=untranslatable,
            discrepancies=tuple(Discrepancy.from_dict(d) for d in _list(data, "discrepancies", name)),
            output_files=tuple(files),
            generated_at=data["generated_at"],
            schema_version=data["schema_version"],
        )


@dataclass(frozen=True)
class ImportReport:
    """Output of the main TM2 metadata import."""
    org_info: OrgInfo
    deployment: DeployResultSummary
    model_state: Optional[str] = None
    generated_at: str = field(default_factory=_now)
    schema_version: int = SCHEMA_VERSION

    REPORT_TYPE = "tm2-import"
    FIELDS = _HEADER + ("org_info", "deployment", "model_state")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "report_type": self.REPORT_TYPE,
            "generated_at": self.generated_at,
            "org_info": self.org_info.to_dict(),
            "deployment": self.deployment.to_dict(),
            "model_state": self.model_state,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportReport":
        name = cls.REPORT_TYPE
        _check_fields(data, name, cls.FIELDS)
        _check_header(data, name, cls.REPORT_TYPE)
        return cls(
            org_info=OrgInfo.from_dict(data["org_info"]),
            deployment=DeployResultSummary.from_dict(data["deployment"]),
            model_state=_opt_str(data, "model_state", name),
            generated_at=data["generated_at"],
            schema_version=data["schema_version"],
        )


@dataclass(frozen=True)
class DeploymentReport:
    """Outcome of the TM2 sharing rule deployment."""
    org_info: OrgInfo
    model_state: str
    deployment: DeployResultSummary
    generated_at: str = field(default_factory=_now)
    schema_version: int = SCHEMA_VERSION

    REPORT_TYPE = "tm2-deployment"
    FIELDS = _HEADER + ("org_info", "model_state", "deployment")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "report_type": self.REPORT_TYPE,
            "generated_at": self.generated_at,
            "org_info": self.org_info.to_dict(),
            "model_state": self.model_state,
            "deployment": self.deployment.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentReport":
        name = cls.REPORT_TYPE
        _check_fields(data, name, cls.FIELDS)
        _check_header(data, name, cls.REPORT_TYPE)
        return cls(
            org_info=OrgInfo.from_dict(data["org_info"]),
            model_state=_str(data, "model_state", name),
            deployment=DeployResultSummary.from_dict(data["deployment"]),
            generated_at=data["generated_at"],
            schema_version=data["schema_version"],
        )


@dataclass(frozen=True)
class LoadReport:
    """Final outcome of the deploy/load run."""
    org_info: OrgInfo
    status: StatusType
    final_state: str
    sharing_rules_deployed: bool = False
    data_load_skipped: bool = False
    load_results: Tuple[DataLoadResult, ...] = ()
    status_messages: Tuple[StatusMessage, ...] = ()
    generated_at: str = field(default_factory=_now)
    schema_version: int = SCHEMA_VERSION

    REPORT_TYPE = "tm2-dataload"
    FIELDS = _HEADER + (
        "org_info",
        "status",
        "final_state",
        "sharing_rules_deployed",
        "data_load_skipped",
        "load_results",
        "status_messages",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "report_type": self.REPORT_TYPE,
            "generated_at": self.generated_at,
            "org_info": self.org_info.to_dict(),
            "status": self.status.value,
            "final_state": self.final_state,
            "sharing_rules_deployed": self.sharing_rules_deployed,
            "data_load_skipped": self.data_load_skipped,
            "load_results": [r.to_dict() for r in self.load_results],
            "status_messages": [m.to_dict() for m in self.status_messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoadReport":
        name = cls.REPORT_TYPE
        _check_fields(data, name, cls.FIELDS)
        _check_header(data, name, cls.REPORT_TYPE)
        try:
            status = StatusType(_str(data, "status", name))
        except ValueError:
            raise ReportValidationError(f"{name}.status has unknown value {data['status']!r}")
        return cls(
            org_info=OrgInfo.from_dict(data["org_info"]),
            status=status,
            final_state=_str(data, "final_state", name),
            sharing_rules_deployed=_bool(data, "sharing_rules_deployed", name),
            data_load_skipped=_bool(data, "data_load_skipped", name),
            load_results=tuple(DataLoadResult.from_dict(r) for r in _list(data, "load_results", name)),
            status_messages=tuple(status_message_from_dict(m) for m in _list(data, "status_messages", name)),
            generated_at=data["generated_at"],
            schema_version=data["schema_version"],
        )


@dataclass(frozen=True)
class CleanupReport:
    """Outcome of removing territory-based sharing rules from the TM1 org."""
    org_info: OrgInfo
    deployment: DeployResultSummary
    rules_removed: int = 0
    generated_at: str = field(default_factory=_now)
    schema_version: int = SCHEMA_VERSION

    REPORT_TYPE = "tm1-cleanup"
    FIELDS = _HEADER + ("org_info", "deployment", "rules_removed")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "report_type": self.REPORT_TYPE,
            "generated_at": self.generated_at,
            "org_info": self.org_info.to_dict(),
            "deployment": self.deployment.to_dict(),
            "rules_removed": self.rules_removed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CleanupReport":
        name = cls.REPORT_TYPE
        _check_fields(data, name, cls.FIELDS)
        _check_header(data, name, cls.REPORT_TYPE)
        return cls(
            org_info=OrgInfo.from_dict(data["org_info"]),
            deployment=DeployResultSummary.from_dict(data["deployment"]),
            rules_removed=_int(data, "rules_removed", name),
            generated_at=data["generated_at"],
            schema_version=data["schema_version"],
        )
