"""Translation of TM1 records and metadata into TM2 structures."""

import csv
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..models.records import (
    AtaRuleItemRecord,
    AtaRuleRecord,
    RuleAssociation,
    TerritoryRecord,
    Territory2,
    Territory2Rule,
    Territory2RuleItem,
    TM1Dataset,
    UserTerritory2AssociationRow,
)
from ..models.reports import (
    AnalysisReport,
    ExtractionReport,
    TM2RecordCounts,
    TransformationReport,
    UntranslatableItem,
)
from . import metadata_xml
from .file_paths import FilePaths
from .record_counter import reconcile
from .sharing_rules import SharingRuleTranslation, cleanup_members, rewritten_members, translate_sharing_rules

logger = logging.getLogger(__name__)

MODEL_DEVELOPER_NAME = "IMPORTED_TERRITORY"
MODEL_LABEL = "Imported Territory"
MODEL_DESCRIPTION = (
    "Auto-generated Territory Model. Created as part of the TM1 to TM2 migration process."
)
TYPE_DEVELOPER_NAME = "Imported_Territory"
TYPE_DESCRIPTION = "Territory type assigned to every territory imported from TM1."
TYPE_PRIORITY = 1

MAX_DEVELOPER_NAME_LENGTH = 80

TERRITORY2_CSV = "Territory2.csv"
USER_ASSOCIATION_CSV = "UserTerritory2Association.csv"
DEVNAME_MAP_CSV = "TerritoryDevNameMap.csv"

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_]")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


def sanitize_developer_name(raw: Optional[str], fallback: str = "Territory") -> str:
    """
    Make a string usable as a metadata DeveloperName.

    Only letters, digits and single underscores are kept, the name starts
    with a letter, does not end with an underscore, and fits in 80
    characters.
    """
    name = _INVALID_CHARS.sub("_", raw or "")
    name = _REPEATED_UNDERSCORES.sub("_", name).strip("_")
    if not name:
        name = fallback
    elif not name[0].isalpha():
        name = f"{fallback[0]}_{name}"
    return name[:MAX_DEVELOPER_NAME_LENGTH].rstrip("_")


def unique_developer_name(base: str, used: Set[str]) -> str:
    """
    Add a numeric suffix until ``base`` is not in ``used``.

    Names are compared case-insensitively; the chosen name is added to
    ``used``.
    """
    candidate = base
    counter = 2
    while candidate.lower() in used:
        suffix = f"_{counter}"
        candidate = base[:MAX_DEVELOPER_NAME_LENGTH - len(suffix)].rstrip("_") + suffix
        counter += 1
    used.add(candidate.lower())
    return candidate


def qualify_field(field_name: str) -> str:
    return field_name if "." in field_name else f"Account.{field_name}"


@dataclass
class TerritoryHierarchy:
    """Territories in emission order with their depth, plus the ones left out."""
    ordered: List[Tuple[TerritoryRecord, int]] = field(default_factory=list)
    untranslatable: List[UntranslatableItem] = field(default_factory=list)


def order_territories(territories: Sequence[TerritoryRecord]) -> TerritoryHierarchy:
    """
    Order territories so that every parent precedes its children.

    Roots and siblings are visited in TM1 Id order. A territory whose parent
    was not extracted becomes a root. Territories caught in a parent cycle,
    and everything below them, are reported as untranslatable.
    """
    by_id = {t.id: t for t in territories}
    children: Dict[str, List[TerritoryRecord]] = {}
    roots = []
    for territory in sorted(territories, key=lambda t: t.id):
        parent_id = territory.parent_territory_id
        if parent_id is None:
            roots.append(territory)
        elif parent_id not in by_id:
            logger.warning(f"Parent {parent_id} of territory {territory.id} was not found, treating it as a root")
            roots.append(territory)
        else:
            children.setdefault(parent_id, []).append(territory)

    hierarchy = TerritoryHierarchy()
    visited: Set[str] = set()
    stack = [(root, 0) for root in reversed(roots)]
    while stack:
        territory, depth = stack.pop()
        visited.add(territory.id)
        hierarchy.ordered.append((territory, depth))
        for child in reversed(children.get(territory.id, [])):
            stack.append((child, depth + 1))

    for territory in sorted(territories, key=lambda t: t.id):
        if territory.id in visited:
            continue
        if _in_cycle(territory, by_id):
            reason = "territory is part of a parent hierarchy cycle"
        else:
            reason = "territory descends from a parent hierarchy cycle"
        logger.warning(f"Excluding territory {territory.id}: {reason}")
        hierarchy.untranslatable.append(UntranslatableItem(entity="Territory", source_id=territory.id, reason=reason))

    return hierarchy


def _in_cycle(territory: TerritoryRecord, by_id: Dict[str, TerritoryRecord]) -> bool:
    seen = set()
    current = territory
    while current is not None and current.id not in seen:
        seen.add(current.id)
        parent_id = current.parent_territory_id
        if parent_id == territory.id:
            return True
        current = by_id.get(parent_id) if parent_id else None
    return False


@dataclass
class TransformResult:
    """In-memory TM2 structures produced from one dataset."""
    territories: List[Territory2] = field(default_factory=list)
    rules: List[Territory2Rule] = field(default_factory=list)
    user_associations: List[UserTerritory2AssociationRow] = field(default_factory=list)
    # TM1 territory Id -> Territory2 DeveloperName
    devname_by_id: Dict[str, str] = field(default_factory=dict)
    sharing: SharingRuleTranslation = field(default_factory=SharingRuleTranslation)
    untranslatable: List[UntranslatableItem] = field(default_factory=list)

    @property
    def rule_item_count(self) -> int:
        return sum(len(rule.items) for rule in self.rules)


class SchemaTransformer:
    """
    Converts an extracted TM1 dataset into TM2 metadata and load files.

    The transformer reads its inputs and never modifies them. Given the same
    inputs it writes byte-identical files.
    """

    def __init__(self, file_paths: FilePaths, api_version: str = "59.0"):
        self.file_paths = file_paths
        self.api_version = api_version

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    def build(self, dataset: TM1Dataset) -> TransformResult:
        """Translate a dataset without touching the filesystem."""
        result = TransformResult()

        hierarchy = order_territories(dataset.territories)
        result.untranslatable.extend(hierarchy.untranslatable)

        used_names: Set[str] = set()
        for territory, _depth in hierarchy.ordered:
            base = sanitize_developer_name(territory.developer_name or territory.name)
            result.devname_by_id[territory.id] = unique_developer_name(base, used_names)

        associations = self._build_rules(dataset.ata_rules, dataset.ata_rule_items, result)

        for territory, depth in hierarchy.ordered:
            parent_id = territory.parent_territory_id
            result.territories.append(Territory2(
                developer_name=result.devname_by_id[territory.id],
                name=territory.name,
                source_id=territory.id,
                parent_developer_name=result.devname_by_id.get(parent_id) if parent_id else None,
                description=territory.description,
                account_access_level=territory.account_access_level,
                case_access_level=territory.case_access_level,
                contact_access_level=territory.contact_access_level,
                opportunity_access_level=territory.opportunity_access_level,
                depth=depth,
                rule_associations=sorted(associations.get(territory.id, []), key=lambda a: a.rule_name),
            ))

        for user_territory in sorted(dataset.user_territories, key=lambda u: u.id):
            developer_name = result.devname_by_id.get(user_territory.territory_id)
            if developer_name is None:
                result.untranslatable.append(UntranslatableItem(
                    entity="UserTerritory",
                    source_id=user_territory.id,
                    reason=f"territory {user_territory.territory_id} has no Territory2 counterpart",
                ))
                continue
            result.user_associations.append(UserTerritory2AssociationRow(
                user_id=user_territory.user_id,
                territory2_developer_name=developer_name,
                is_active=user_territory.is_active,
                source_id=user_territory.id,
            ))

        # Sharing rules reference territories by their TM1 DeveloperName
        tm1_names = {
            t.developer_name: result.devname_by_id[t.id]
            for t, _depth in hierarchy.ordered
            if t.developer_name
        }
        result.sharing = translate_sharing_rules(dataset.sharing_rules, tm1_names)

        result.untranslatable.sort(key=lambda u: (u.entity, u.source_id))
        return result

    def _build_rules(
        self,
        rules: Sequence[AtaRuleRecord],
        items: Sequence[AtaRuleItemRecord],
        result: TransformResult,
    ) -> Dict[str, List[RuleAssociation]]:
        rule_ids = {rule.id for rule in rules}
        items_by_rule: Dict[str, List[AtaRuleItemRecord]] = {}
        for item in items:
            if item.rule_id not in rule_ids:
                result.untranslatable.append(UntranslatableItem(
                    entity="AccountTerritoryAssignmentRuleItem",
                    source_id=item.id,
                    reason=f"rule {item.rule_id} does not exist",
                ))
                continue
            items_by_rule.setdefault(item.rule_id, []).append(item)

        associations: Dict[str, List[RuleAssociation]] = {}
        used_names: Set[str] = set()
        for rule in sorted(rules, key=lambda r: r.id):
            if rule.territory_id not in result.devname_by_id:
                # The rule's items go with it and are not reported separately
                result.untranslatable.append(UntranslatableItem(
                    entity="AccountTerritoryAssignmentRule",
                    source_id=rule.id,
                    reason=f"territory {rule.territory_id} has no Territory2 counterpart",
                ))
                continue

            developer_name = unique_developer_name(sanitize_developer_name(rule.name, "Rule"), used_names)
            rule_items = sorted(items_by_rule.get(rule.id, []), key=lambda i: (i.sort_order, i.id))
            result.rules.append(Territory2Rule(
                developer_name=developer_name,
                name=rule.name or developer_name,
                source_id=rule.id,
                active=rule.is_active,
                boolean_filter=rule.boolean_filter,
                items=[
                    Territory2RuleItem(field=qualify_field(i.field), operation=i.operation, value=i.value)
                    for i in rule_items
                ],
            ))
            associations.setdefault(rule.territory_id, []).append(
                RuleAssociation(rule_name=developer_name, inherited=rule.is_inherited)
            )
        return associations

    # ------------------------------------------------------------------
    # Stage entry point
    # ------------------------------------------------------------------

    def transform(
        self,
        analysis: AnalysisReport,
        extraction: ExtractionReport,
        dataset: TM1Dataset,
    ) -> TransformationReport:
        """
        Translate an extraction and write every TM2 output file.

        Args:
            analysis: Analyze stage report
            extraction: Extract stage report (provides the expected counts)
            dataset: Records and sharing rules read from the extraction

        Returns:
            Transformation report, not yet persisted
        """
        result = self.build(dataset)
        output_files = self.write_outputs(result)

        tm2_counts = TM2RecordCounts(
            territory2=len(result.territories),
            territory2_rule=len(result.rules),
            territory2_rule_item=result.rule_item_count,
            user_territory2_association=len(result.user_associations),
            sharing_rules_rewritten=result.sharing.rewritten_count,
            sharing_rules_dropped=len(result.sharing.dropped),
        )

        expected = extraction.record_counts
        discrepancies = reconcile(
            {
                "territory": expected.territory,
                "user_territory": expected.user_territory,
                "ata_rule": expected.ata_rule,
                "ata_rule_item": expected.ata_rule_item,
                "account_share": expected.account_share,
            },
            {
                "territory": tm2_counts.territory2,
                "user_territory": tm2_counts.user_territory2_association,
                "ata_rule": tm2_counts.territory2_rule,
                "ata_rule_item": tm2_counts.territory2_rule_item,
                "account_share": len(dataset.account_shares),
            },
        )

        logger.info(
            f"Transformed {tm2_counts.territory2} territories, {tm2_counts.territory2_rule} rules, "
            f"{tm2_counts.user_territory2_association} user associations; "
            f"{len(result.untranslatable)} items could not be translated"
        )

        return TransformationReport(
            org_info=analysis.org_info,
            tm2_counts=tm2_counts,
            territory_manual_share_count=len(dataset.account_shares),
            untranslatable=tuple(result.untranslatable),
            discrepancies=tuple(discrepancies),
            output_files=tuple(output_files),
        )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def write_outputs(self, result: TransformResult) -> List[str]:
        """
        Write TM2 data and metadata files, replacing any previous output.

        Returns:
            Written files relative to the base directory, sorted
        """
        paths = self.file_paths
        for directory in (paths.transformed_data_dir, paths.transformed_metadata_dir):
            if directory.exists():
                shutil.rmtree(directory)

        written: List[Path] = []
        written.extend(self._write_data(result))
        written.extend(self._write_main_deployment(result))
        written.extend(self._write_sharing_deployment(result))
        written.extend(self._write_cleanup(result))
        return sorted(paths.relative(p) for p in written)

    @staticmethod
    def _write_csv(path: Path, header: Sequence[str], rows: Iterable[Sequence]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f, lineterminator="\n")
            writer.writerow(header)
            for row in rows:
                writer.writerow(["" if v is None else v for v in row])
        return path

    def _write_data(self, result: TransformResult) -> List[Path]:
        data_dir = self.file_paths.transformed_data_dir
        by_source = {t.source_id: t for t in result.territories}
        return [
            self._write_csv(
                data_dir / TERRITORY2_CSV,
                ["DeveloperName", "Name", "ParentTerritory2DeveloperName", "Depth", "SourceTerritoryId"],
                ((t.developer_name, t.name, t.parent_developer_name, t.depth, t.source_id) for t in result.territories),
            ),
            self._write_csv(
                data_dir / USER_ASSOCIATION_CSV,
                ["UserId", "Territory2DeveloperName", "IsActive", "SourceUserTerritoryId"],
                (
                    (a.user_id, a.territory2_developer_name, "true" if a.is_active else "false", a.source_id)
                    for a in result.user_associations
                ),
            ),
            self._write_csv(
                data_dir / DEVNAME_MAP_CSV,
                ["TerritoryId", "TerritoryName", "Territory2DeveloperName"],
                (
                    (source_id, by_source[source_id].name, developer_name)
                    for source_id, developer_name in sorted(result.devname_by_id.items())
                ),
            ),
        ]

    def _write_main_deployment(self, result: TransformResult) -> List[Path]:
        root = self.file_paths.tm2_main_deployment_dir
        model_dir = root / "territory2Models" / MODEL_DEVELOPER_NAME
        written = [
            metadata_xml.write_xml(
                metadata_xml.territory2_model_xml(MODEL_LABEL, MODEL_DESCRIPTION),
                model_dir / f"{MODEL_DEVELOPER_NAME}.territory2Model",
            ),
            metadata_xml.write_xml(
                metadata_xml.territory2_type_xml(TYPE_DEVELOPER_NAME.replace("_", " "), TYPE_DESCRIPTION, TYPE_PRIORITY),
                root / "territory2Types" / f"{TYPE_DEVELOPER_NAME}.territory2Type",
            ),
        ]
        for territory in result.territories:
            written.append(metadata_xml.write_xml(
                metadata_xml.territory2_xml(territory, TYPE_DEVELOPER_NAME),
                model_dir / "territories" / f"{territory.developer_name}.territory2",
            ))
        for rule in result.rules:
            written.append(metadata_xml.write_xml(
                metadata_xml.territory2_rule_xml(rule),
                model_dir / "rules" / f"{rule.developer_name}.territory2Rule",
            ))

        # Territory2 members stay in hierarchy order
        members = {
            "Territory2Model": [MODEL_DEVELOPER_NAME],
            "Territory2Type": [TYPE_DEVELOPER_NAME],
            "Territory2": [f"{MODEL_DEVELOPER_NAME}.{t.developer_name}" for t in result.territories],
            "Territory2Rule": [f"{MODEL_DEVELOPER_NAME}.{r.developer_name}" for r in result.rules],
        }
        written.append(metadata_xml.write_xml(
            metadata_xml.package_xml(members, self.api_version), root / "package.xml"
        ))
        return written

    def _write_sharing_deployment(self, result: TransformResult) -> List[Path]:
        root = self.file_paths.tm2_sharing_rules_deployment_dir
        written = []
        for object_name in sorted(result.sharing.rewritten):
            written.append(metadata_xml.write_xml(
                metadata_xml.sharing_rules_xml(result.sharing.rewritten[object_name]),
                root / "sharingRules" / f"{object_name}.sharingRules",
            ))
        written.append(metadata_xml.write_xml(
            metadata_xml.package_xml(rewritten_members(result.sharing.rewritten), self.api_version),
            root / "package.xml",
        ))
        return written

    def _write_cleanup(self, result: TransformResult) -> List[Path]:
        root = self.file_paths.tm1_sharing_rules_cleanup_dir
        return [
            metadata_xml.write_xml(metadata_xml.package_xml({}, self.api_version), root / "package.xml"),
            metadata_xml.write_xml(
                metadata_xml.package_xml(cleanup_members(result.sharing.cleanup)),
                root / "destructiveChanges.xml",
            ),
        ]
