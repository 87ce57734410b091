"""Parsing and TM2 rewriting of sharing rule metadata."""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..models.reports import SharingRulesCount, TM1MetadataCounts

logger = logging.getLogger(__name__)

SHARING_RULE_OBJECTS = ("Account", "Lead", "Opportunity")

RULE_TAGS = {
    "sharingCriteriaRules": "criteria",
    "sharingOwnerRules": "owner",
    "sharingTerritoryRules": "territory",
}
METADATA_TYPES = {
    "criteria": "SharingCriteriaRule",
    "owner": "SharingOwnerRule",
    "territory": "SharingTerritoryRule",
}

# TM1 group type -> TM2 group type
TERRITORY_GROUP_TYPES = {
    "territory": "territory2",
    "territoryAndSubordinates": "territory2AndSubordinates",
}


@dataclass(frozen=True)
class GroupRef:
    """A ``sharedTo`` or ``sharedFrom`` target."""
    group_type: str
    member: str

    @property
    def is_territory(self) -> bool:
        return self.group_type in TERRITORY_GROUP_TYPES


@dataclass(frozen=True)
class SharingRule:
    """One sharing rule as found in a ``.sharingRules`` file."""
    object_name: str
    kind: str
    full_name: str
    label: Optional[str] = None
    access_level: Optional[str] = None
    description: Optional[str] = None
    account_settings: Dict[str, str] = field(default_factory=dict)
    shared_to: Optional[GroupRef] = None
    shared_from: Optional[GroupRef] = None
    criteria_items: Tuple[Dict[str, str], ...] = ()
    boolean_filter: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.object_name}.{self.full_name}"

    @property
    def metadata_type(self) -> str:
        return METADATA_TYPES[self.kind]

    @property
    def territory_refs(self) -> List[GroupRef]:
        return [ref for ref in (self.shared_to, self.shared_from) if ref is not None and ref.is_territory]

    @property
    def references_territory(self) -> bool:
        return bool(self.territory_refs)


def _local(tag: str) -> str:
    return tag.split("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local(child.tag) == name:
            return child.text
    return None


def _group_ref(element: ET.Element, name: str) -> Optional[GroupRef]:
    for child in element:
        if _local(child.tag) == name:
            for target in child:
                return GroupRef(group_type=_local(target.tag), member=(target.text or "").strip())
    return None


def _parse_rule(element: ET.Element, object_name: str, kind: str) -> SharingRule:
    account_settings: Dict[str, str] = {}
    criteria_items = []
    for child in element:
        tag = _local(child.tag)
        if tag == "accountSettings":
            account_settings = {_local(s.tag): s.text or "" for s in child}
        elif tag == "criteriaItems":
            criteria_items.append({_local(i.tag): i.text or "" for i in child})

    return SharingRule(
        object_name=object_name,
        kind=kind,
        full_name=_child_text(element, "fullName") or "",
        label=_child_text(element, "label"),
        access_level=_child_text(element, "accessLevel"),
        description=_child_text(element, "description"),
        account_settings=account_settings,
        shared_to=_group_ref(element, "sharedTo"),
        shared_from=_group_ref(element, "sharedFrom"),
        criteria_items=tuple(criteria_items),
        boolean_filter=_child_text(element, "booleanFilter"),
    )


def parse_sharing_rules(content: bytes, object_name: str) -> List[SharingRule]:
    """
    Parse a ``SharingRules`` document.

    Args:
        content: Raw XML of ``<Object>.sharingRules``
        object_name: The object the file belongs to

    Returns:
        Rules in document order
    """
    root = ET.fromstring(content)
    rules = []
    for element in root:
        kind = RULE_TAGS.get(_local(element.tag))
        if kind is not None:
            rules.append(_parse_rule(element, object_name, kind))
    return rules


def sharing_rules_file(metadata_dir: Path, object_name: str) -> Path:
    return Path(metadata_dir) / "sharingRules" / f"{object_name}.sharingRules"


def load_sharing_rules(metadata_dir: Path) -> Dict[str, List[SharingRule]]:
    """
    Load every retrieved sharing rule file under a metadata directory.

    Objects without a file map to an empty list.
    """
    rules: Dict[str, List[SharingRule]] = {}
    for object_name in SHARING_RULE_OBJECTS:
        path = sharing_rules_file(metadata_dir, object_name)
        if not path.exists():
            rules[object_name] = []
            continue
        rules[object_name] = parse_sharing_rules(path.read_bytes(), object_name)
        logger.debug(f"Loaded {len(rules[object_name])} sharing rules for {object_name}")
    return rules


def count_rules(rules: List[SharingRule]) -> SharingRulesCount:
    return SharingRulesCount(
        criteria=sum(1 for r in rules if r.kind == "criteria"),
        owner=sum(1 for r in rules if r.kind == "owner"),
        territory=sum(1 for r in rules if r.kind == "territory"),
    )


def count_metadata(
    rules_by_object: Mapping[str, List[SharingRule]],
    skipped: Iterable[str] = (),
) -> TM1MetadataCounts:
    """
    Summarize sharing rules per object for the stage reports.

    Objects in ``skipped`` could not be retrieved; their counts are unknown
    and they are listed in ``skipped_objects`` rather than counted as empty.
    """
    unknown = set(skipped)
    return TM1MetadataCounts(
        skipped_objects=tuple(obj for obj in SHARING_RULE_OBJECTS if obj in unknown),
        **{obj.lower(): count_rules(rules_by_object.get(obj, [])) for obj in SHARING_RULE_OBJECTS},
    )


def rewrite_rule(rule: SharingRule, devname_map: Mapping[str, str]) -> Tuple[Optional[SharingRule], Optional[str]]:
    """
    Rewrite a TM1 rule's territory references for TM2.

    Territory rules become owner rules shared from the Territory2 group.

    Args:
        rule: A rule that references at least one territory
        devname_map: TM1 territory DeveloperName -> Territory2 DeveloperName

    Returns:
        Tuple of (rewritten rule, None) or (None, reason for dropping it)
    """
    def _rewrite(ref: Optional[GroupRef]) -> Tuple[Optional[GroupRef], Optional[str]]:
        if ref is None or not ref.is_territory:
            return ref, None
        mapped = devname_map.get(ref.member)
        if mapped is None:
            return None, f"territory {ref.member} has no Territory2 counterpart"
        return GroupRef(group_type=TERRITORY_GROUP_TYPES[ref.group_type], member=mapped), None

    shared_to, problem = _rewrite(rule.shared_to)
    if problem:
        return None, problem
    shared_from, problem = _rewrite(rule.shared_from)
    if problem:
        return None, problem

    kind = "owner" if rule.kind == "territory" else rule.kind
    return replace(rule, kind=kind, shared_to=shared_to, shared_from=shared_from), None


@dataclass
class SharingRuleTranslation:
    """Result of translating the TM1 sharing rules of every object."""
    rewritten: Dict[str, List[SharingRule]] = field(default_factory=dict)
    dropped: List[Tuple[SharingRule, str]] = field(default_factory=list)
    cleanup: List[SharingRule] = field(default_factory=list)

    @property
    def rewritten_count(self) -> int:
        return sum(len(rules) for rules in self.rewritten.values())


def translate_sharing_rules(
    rules_by_object: Mapping[str, List[SharingRule]],
    devname_map: Mapping[str, str],
) -> SharingRuleTranslation:
    """
    Translate territory-based sharing rules for every object.

    Rules without a territory reference are left alone. Every rule with one
    is scheduled for removal from TM1, whether or not it could be rewritten.
    """
    translation = SharingRuleTranslation()
    for object_name in SHARING_RULE_OBJECTS:
        rewritten = []
        for rule in rules_by_object.get(object_name, []):
            if not rule.references_territory:
                continue
            translation.cleanup.append(rule)
            new_rule, reason = rewrite_rule(rule, devname_map)
            if new_rule is None:
                logger.warning(f"Dropping sharing rule {rule.qualified_name}: {reason}")
                translation.dropped.append((rule, reason))
                continue
            rewritten.append(new_rule)
        if rewritten:
            translation.rewritten[object_name] = rewritten
    return translation


def cleanup_members(rules: List[SharingRule]) -> Dict[str, List[str]]:
    """Group rules into destructive-change members by metadata type."""
    members: Dict[str, List[str]] = {}
    for rule in rules:
        members.setdefault(rule.metadata_type, []).append(rule.qualified_name)
    return {type_name: sorted(names) for type_name, names in members.items()}


def rewritten_members(rewritten: Mapping[str, List[SharingRule]]) -> Dict[str, List[str]]:
    """Package members for the TM2 sharing rule deployment."""
    members: Dict[str, List[str]] = {}
    for object_name in sorted(rewritten):
        members.setdefault("SharingRules", []).append(object_name)
        for rule in rewritten[object_name]:
            members.setdefault(rule.metadata_type, []).append(rule.qualified_name)
    return {type_name: sorted(names) for type_name, names in members.items()}

