"""Detection of code and metadata that depends on TM1 objects."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..concurrency import CancellationToken, run_concurrently
from ..connectors.base import OrgConnector
from ..models.reports import Dependency, DependencySet

logger = logging.getLogger(__name__)

TM1_TYPE_NAMES = (
    "Territory",
    "UserTerritory",
    "AccountTerritoryAssignmentRule",
    "AccountTerritoryAssignmentRuleItem",
)

# API names searched for in artifact bodies. RowCause values cover code that
# filters AccountShare rows created by TM1.
TM1_SCAN_NAMES = TM1_TYPE_NAMES + ("TerritoryManual", "TerritoryRule")

_CANONICAL = {name.lower(): name for name in TM1_SCAN_NAMES}
_NAME_PATTERN = re.compile(
    r"\b(" + "|".join(sorted(TM1_SCAN_NAMES, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
_STRING_LITERAL = re.compile(r"'(?:[^'\\\n]|\\.)*'")

DEPENDENCY_INDEX_QUERY = (
    "SELECT MetadataComponentId, MetadataComponentName, MetadataComponentType, "
    "RefMetadataComponentName, RefMetadataComponentType "
    "FROM MetadataComponentDependency "
    "WHERE RefMetadataComponentType IN ('StandardEntity', 'CustomField', 'StandardField')"
)


@dataclass(frozen=True)
class Artifact:
    """A scannable piece of user-authored logic."""
    type: str
    id: str
    name: str


@dataclass(frozen=True)
class ArtifactSource:
    """How to list one kind of artifact and fetch its body."""
    type: str
    list_query: str
    body_query: str
    name_of: Callable[[Dict[str, Any]], str]
    body_of: Callable[[Dict[str, Any]], Optional[str]]
    detail_kind: str


def _flow_name(record: Dict[str, Any]) -> str:
    definition = record.get("Definition") or {}
    name = definition.get("DeveloperName") or record.get("Id", "")
    version = record.get("VersionNumber")
    return f"{name}-{version}" if version is not None else name


def _metadata_json(record: Dict[str, Any]) -> Optional[str]:
    metadata = record.get("Metadata")
    if metadata is None:
        return None
    return json.dumps(metadata, sort_keys=True)


def _formula(record: Dict[str, Any]) -> Optional[str]:
    metadata = record.get("Metadata") or {}
    return metadata.get("formula")


def _field_name(record: Dict[str, Any]) -> str:
    return f"{record.get('TableEnumOrId', '')}.{record.get('DeveloperName', '')}__c"


ARTIFACT_SOURCES = (
    ArtifactSource(
        type="ApexClass",
        list_query="SELECT Id, Name FROM ApexClass WHERE NamespacePrefix = null",
        body_query="SELECT Id, Name, Body FROM ApexClass WHERE Id = '{id}'",
        name_of=lambda r: r.get("Name", ""),
        body_of=lambda r: r.get("Body"),
        detail_kind="source",
    ),
    ArtifactSource(
        type="ApexTrigger",
        list_query="SELECT Id, Name FROM ApexTrigger WHERE NamespacePrefix = null",
        body_query="SELECT Id, Name, Body FROM ApexTrigger WHERE Id = '{id}'",
        name_of=lambda r: r.get("Name", ""),
        body_of=lambda r: r.get("Body"),
        detail_kind="source",
    ),
    ArtifactSource(
        type="Flow",
        list_query="SELECT Id, Definition.DeveloperName, VersionNumber FROM Flow WHERE Status = 'Active'",
        body_query="SELECT Id, Metadata FROM Flow WHERE Id = '{id}'",
        name_of=_flow_name,
        body_of=_metadata_json,
        detail_kind="source",
    ),
    ArtifactSource(
        type="CustomField",
        list_query="SELECT Id, DeveloperName, TableEnumOrId FROM CustomField WHERE NamespacePrefix = null",
        body_query="SELECT Id, Metadata FROM CustomField WHERE Id = '{id}'",
        name_of=_field_name,
        body_of=_formula,
        detail_kind="formula",
    ),
)


def references_tm1(component_name: str) -> bool:
    """Check whether a component name is a TM1 object or a field on one."""
    if not component_name:
        return False
    return component_name.split(".")[0] in TM1_TYPE_NAMES


def scan_body(artifact_type: str, name: str, body: str, detail_kind: str = "source") -> List[Dependency]:
    """
    Scan an artifact body for TM1 API names.

    Matches inside single-quoted string literals are reported as dynamic
    SOQL; other matches as source or formula references.
    """
    if not body:
        return []

    literal_spans = []
    if detail_kind == "source":
        literal_spans = [m.span() for m in _STRING_LITERAL.finditer(body)]

    found = set()
    for match in _NAME_PATTERN.finditer(body):
        api_name = _CANONICAL[match.group(1).lower()]
        in_literal = any(start <= match.start() < end for start, end in literal_spans)
        if in_literal:
            detail = f"dynamic SOQL: {api_name}"
        else:
            detail = f"{detail_kind} reference: {api_name}"
        found.add(detail)

    return [Dependency(type=artifact_type, name=name, reference_detail=d) for d in sorted(found)]


class DependencyAnalyzer:
    """
    Finds hard and soft TM1 dependencies in an org.

    Hard dependencies come from the org's dependency index and are
    authoritative; a failure to read the index is raised. Soft dependencies
    come from scanning artifact bodies and are advisory; an artifact whose
    body cannot be fetched is logged and counted as skipped.
    """

    def __init__(
        self,
        connector: OrgConnector,
        max_concurrency: int = 4,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        cancel_token: Optional[CancellationToken] = None,
        artifact_sources: Tuple[ArtifactSource, ...] = ARTIFACT_SOURCES,
    ):
        self.connector = connector
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.cancel_token = cancel_token
        self.artifact_sources = artifact_sources

    def analyze(self) -> Tuple[DependencySet, DependencySet]:
        """
        Run both dependency scans.

        Returns:
            Tuple of (hard dependencies, soft dependencies)
        """
        return self.analyze_hard(), self.analyze_soft()

    def analyze_hard(self) -> DependencySet:
        """Query the dependency index for components referencing TM1 objects."""
        rows = self.connector.tooling_query(DEPENDENCY_INDEX_QUERY)
        dependencies = []
        for row in rows:
            ref_name = row.get("RefMetadataComponentName") or ""
            if not references_tm1(ref_name):
                continue
            dependencies.append(Dependency(
                type=row.get("MetadataComponentType") or "Unknown",
                name=row.get("MetadataComponentName") or row.get("MetadataComponentId") or "",
                reference_detail=f"{row.get('RefMetadataComponentType') or 'Component'}: {ref_name}",
            ))

        result = DependencySet.build(dependencies)
        logger.info(f"Found {result.count} hard TM1 dependencies")
        return result

    def _list_artifacts(self) -> Tuple[List[Tuple[Artifact, ArtifactSource]], int]:
        artifacts = []
        skipped = 0
        for source in self.artifact_sources:
            try:
                rows = self.connector.tooling_query(source.list_query)
            except Exception as e:
                logger.warning(f"Could not list {source.type} artifacts, skipping them: {e}")
                skipped += 1
                continue
            for row in rows:
                artifact = Artifact(type=source.type, id=row.get("Id", ""), name=source.name_of(row))
                artifacts.append((artifact, source))
        return artifacts, skipped

    def analyze_soft(self) -> DependencySet:
        """Scan Apex, Flow and formula bodies for TM1 API names."""
        artifacts, skipped = self._list_artifacts()

        def _fetch(artifact: Artifact, source: ArtifactSource) -> Optional[str]:
            rows = self.connector.tooling_query(source.body_query.format(id=artifact.id))
            if not rows:
                raise LookupError(f"{artifact.type} {artifact.name} was not returned")
            return source.body_of(rows[0])

        tasks = {
            f"{artifact.type}:{artifact.id}": (lambda a=artifact, s=source: _fetch(a, s))
            for artifact, source in artifacts
        }
        outcomes = run_concurrently(
            tasks,
            max_concurrency=self.max_concurrency,
            max_retries=self.max_retries,
            backoff_seconds=self.backoff_seconds,
            cancel_token=self.cancel_token,
        )

        dependencies: List[Dependency] = []
        for artifact, source in artifacts:
            outcome = outcomes[f"{artifact.type}:{artifact.id}"]
            if not outcome.ok:
                skipped += 1
                reason = "cancelled" if outcome.cancelled else outcome.error
                logger.warning(f"Skipping {artifact.type} {artifact.name}: {reason}")
                continue
            dependencies.extend(scan_body(artifact.type, artifact.name, outcome.result, source.detail_kind))

        result = DependencySet.build(dependencies, skipped_count=skipped)
        logger.info(f"Found {result.count} soft TM1 dependencies ({skipped} artifacts skipped)")
        return result
