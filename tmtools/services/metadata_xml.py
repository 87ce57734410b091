"""Builders for Metadata API XML files."""

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..models.records import Territory2, Territory2Rule

METADATA_NS = "http://soap.sforce.com/2006/04/metadata"


def new_root(tag: str) -> ET.Element:
    return ET.Element(tag, {"xmlns": METADATA_NS})


def add_text(parent: ET.Element, tag: str, value) -> Optional[ET.Element]:
    """Append ``<tag>value</tag>`` unless value is None or empty."""
    if value is None or value == "":
        return None
    element = ET.SubElement(parent, tag)
    if isinstance(value, bool):
        element.text = "true" if value else "false"
    else:
        element.text = str(value)
    return element


def to_bytes(root: ET.Element) -> bytes:
    ET.indent(root, space="    ")
    return ET.tostring(root, encoding="UTF-8", xml_declaration=True) + b"\n"


def write_xml(root: ET.Element, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(to_bytes(root))
    return path


def package_xml(types: Dict[str, List[str]], api_version: Optional[str] = None) -> ET.Element:
    """
    Build a package manifest.

    Type blocks are sorted by name; members keep the given order so that a
    manifest can also record deployment order.
    """
    root = new_root("Package")
    for type_name in sorted(types):
        members = types[type_name]
        if not members:
            continue
        block = ET.SubElement(root, "types")
        for member in members:
            add_text(block, "members", member)
        add_text(block, "name", type_name)
    add_text(root, "version", api_version)
    return root


def territory2_model_xml(name: str, description: str) -> ET.Element:
    root = new_root("Territory2Model")
    add_text(root, "description", description)
    add_text(root, "name", name)
    return root


def territory2_type_xml(name: str, description: str, priority: int) -> ET.Element:
    root = new_root("Territory2Type")
    add_text(root, "description", description)
    add_text(root, "name", name)
    add_text(root, "priority", priority)
    return root


def territory2_xml(territory: Territory2, type_name: str) -> ET.Element:
    root = new_root("Territory2")
    add_text(root, "accountAccessLevel", territory.account_access_level)
    add_text(root, "caseAccessLevel", territory.case_access_level)
    add_text(root, "contactAccessLevel", territory.contact_access_level)
    add_text(root, "description", territory.description)
    add_text(root, "name", territory.name)
    add_text(root, "opportunityAccessLevel", territory.opportunity_access_level)
    add_text(root, "parentTerritory", territory.parent_developer_name)
    for association in territory.rule_associations:
        block = ET.SubElement(root, "ruleAssociations")
        add_text(block, "inherited", association.inherited)
        add_text(block, "ruleName", association.rule_name)
    add_text(root, "territory2Type", type_name)
    return root


def territory2_rule_xml(rule: Territory2Rule) -> ET.Element:
    root = new_root("Territory2Rule")
    add_text(root, "active", rule.active)
    add_text(root, "booleanFilter", rule.boolean_filter)
    add_text(root, "name", rule.name)
    add_text(root, "objectType", rule.object_type)
    for item in rule.items:
        block = ET.SubElement(root, "ruleItems")
        add_text(block, "field", item.field)
        add_text(block, "operation", item.operation)
        add_text(block, "value", item.value)
    return root


def _group_ref(parent: ET.Element, tag: str, group_type: str, member: str) -> None:
    block = ET.SubElement(parent, tag)
    add_text(block, group_type, member)


def sharing_rules_xml(rules: Iterable) -> ET.Element:
    """
    Build a ``SharingRules`` document from rewritten sharing rules.

    Criteria rules are written before owner rules; each group keeps the
    order it was given in.
    """
    root = new_root("SharingRules")
    rules = list(rules)
    for kind, tag in (("criteria", "sharingCriteriaRules"), ("owner", "sharingOwnerRules")):
        for rule in (r for r in rules if r.kind == kind):
            block = ET.SubElement(root, tag)
            add_text(block, "fullName", rule.full_name)
            add_text(block, "accessLevel", rule.access_level)
            if rule.account_settings:
                settings = ET.SubElement(block, "accountSettings")
                for key in sorted(rule.account_settings):
                    add_text(settings, key, rule.account_settings[key])
            add_text(block, "description", rule.description)
            add_text(block, "label", rule.label)
            if rule.shared_to is not None:
                _group_ref(block, "sharedTo", rule.shared_to.group_type, rule.shared_to.member)
            if kind == "criteria":
                add_text(block, "booleanFilter", rule.boolean_filter)
                for item in rule.criteria_items:
                    items = ET.SubElement(block, "criteriaItems")
                    for key in ("field", "operation", "value", "valueField"):
                        add_text(items, key, item.get(key))
            elif rule.shared_from is not None:
                _group_ref(block, "sharedFrom", rule.shared_from.group_type, rule.shared_from.member)
    return root
