import csv
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from tmtools.config import Settings
from tmtools.connectors.base import OrgConnector
from tmtools.errors import ConnectorError
from tmtools.models.reports import ComponentStatus, DataLoadResult, DeployResultSummary, OrgInfo
from tmtools.orchestrator import MigrationOrchestrator, StageContext
from tmtools.services.file_paths import FilePaths

ORG_ID = "00D5g000000ABCDEAA"

ACCOUNT_SHARING_RULES = b"""<?xml version="1.0" encoding="UTF-8"?>
<SharingRules xmlns="http://soap.sforce.com/2006/04/metadata">
    <sharingCriteriaRules>
        <fullName>Key_Accounts_To_West</fullName>
        <accessLevel>Edit</accessLevel>
        <accountSettings>
            <caseAccessLevel>Read</caseAccessLevel>
            <contactAccessLevel>Read</contactAccessLevel>
            <opportunityAccessLevel>None</opportunityAccessLevel>
        </accountSettings>
        <label>Key Accounts To West</label>
        <sharedTo>
            <territory>West</territory>
        </sharedTo>
        <criteriaItems>
            <field>Type</field>
            <operation>equals</operation>
            <value>Key Account</value>
        </criteriaItems>
    </sharingCriteriaRules>
    <sharingOwnerRules>
        <fullName>Sales_To_Support</fullName>
        <accessLevel>Read</accessLevel>
        <label>Sales To Support</label>
        <sharedTo>
            <role>Support</role>
        </sharedTo>
        <sharedFrom>
            <role>Sales</role>
        </sharedFrom>
    </sharingOwnerRules>
    <sharingTerritoryRules>
        <fullName>West_To_East</fullName>
        <accessLevel>Read</accessLevel>
        <label>West To East</label>
        <sharedTo>
            <territoryAndSubordinates>East</territoryAndSubordinates>
        </sharedTo>
        <sharedFrom>
            <territory>West</territory>
        </sharedFrom>
    </sharingTerritoryRules>
</SharingRules>
"""

_FROM = re.compile(r"\bFROM\s+(\w+)", re.IGNORECASE)
_ID_FILTER = re.compile(r"WHERE Id = '([^']*)'")


def _sobject(soql: str) -> str:
    return _FROM.search(soql).group(1)


def make_tm1_records(territories: int = 3, assignments: int = 4) -> Dict[str, List[Dict[str, Any]]]:
    """
    Build a small TM1 org: one root territory with the rest as children,
    one assignment rule on the first child and users spread over territories.
    """
    territory_rows = [{
        "Id": "0MI000000000001",
        "Name": "North America",
        "DeveloperName": "North_America",
        "ParentTerritoryId": None,
        "AccountAccessLevel": "Edit",
        "CaseAccessLevel": "Read",
        "ContactAccessLevel": "Read",
        "OpportunityAccessLevel": "Read",
    }]
    names = ["West", "East"] + [f"Region {n}" for n in range(3, territories + 1)]
    for n in range(2, territories + 1):
        name = names[n - 2]
        territory_rows.append({
            "Id": f"0MI0000000000{n:02d}",
            "Name": name,
            "DeveloperName": name.replace(" ", "_"),
            "ParentTerritoryId": "0MI000000000001",
            "AccountAccessLevel": "Read",
        })

    user_rows = [
        {
            "Id": f"0R0000000000{n:03d}",
            "UserId": f"005000000000{n:03d}",
            "TerritoryId": territory_rows[n % len(territory_rows)]["Id"],
            "IsActive": True,
        }
        for n in range(1, assignments + 1)
    ]

    return {
        "Territory": territory_rows,
        "UserTerritory": user_rows,
        "AccountTerritoryAssignmentRule": [{
            "Id": "0Mx000000000001",
            "Name": "West Accounts",
            "TerritoryId": territory_rows[min(1, len(territory_rows) - 1)]["Id"],
            "IsActive": True,
            "IsInherited": False,
            "BooleanFilter": None,
        }],
        "AccountTerritoryAssignmentRuleItem": [{
            "Id": "0My000000000001",
            "RuleId": "0Mx000000000001",
            "SortOrder": 1,
            "Field": "BillingState",
            "Operation": "equals",
            "Value": "CA",
        }],
        "AccountShare": [{
            "Id": "00r000000000001",
            "AccountId": "001000000000001",
            "UserOrGroupId": "00G000000000001",
            "RowCause": "TerritoryManual",
            "AccountAccessLevel": "Edit",
        }],
        "Group": [
            {
                "Id": f"00G0000000000{n:02d}",
                "Name": "",
                "DeveloperName": None,
                "RelatedId": row["Id"],
                "Type": "Territory",
            }
            for n, row in enumerate(territory_rows, start=1)
        ],
    }


class FakeOrgConnector(OrgConnector):
    """Scriptable in-memory org. Every call is recorded in ``calls``."""

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.org_info = OrgInfo(
            org_id=ORG_ID,
            username="admin@acme.example",
            alias="acme",
            login_url="https://login.salesforce.com",
            instance="NA42",
        )
        self.records = records if records is not None else make_tm1_records()
        self.count_overrides: Dict[str, int] = {}
        self.failing_counts: set = set()
        self.count_errors: Dict[str, List[Exception]] = {}
        self.sharing_rules: Dict[str, bytes] = {"Account": ACCOUNT_SHARING_RULES}
        self.failing_retrieves: set = set()
        self.dependency_rows: List[Dict[str, Any]] = []
        self.artifacts: Dict[str, List[Dict[str, Any]]] = {}
        self.failing_bodies: set = set()
        self.model_state: Optional[str] = "Active"
        self.territory2_rows: List[Dict[str, Any]] = []
        self.deploy_results: Dict[str, DeployResultSummary] = {}
        self.bulk_failures = 0
        self.calls: List[tuple] = []

    def calls_to(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    def get_org_info(self) -> OrgInfo:
        self.calls.append(("get_org_info",))
        return self.org_info

    def query(self, soql: str) -> List[Dict[str, Any]]:
        self.calls.append(("query", soql))
        sobject = _sobject(soql)
        if sobject == "Territory2Model":
            if self.model_state is None:
                return []
            return [{"Id": "0MA000000000001", "DeveloperName": "IMPORTED_TERRITORY", "State": self.model_state}]
        if sobject == "Territory2":
            return list(self.territory2_rows)
        return [dict(r) for r in self.records.get(sobject, [])]

    def query_count(self, soql: str) -> int:
        self.calls.append(("query_count", soql))
        sobject = _sobject(soql)
        queued = self.count_errors.get(sobject)
        if queued:
            raise queued.pop(0)
        if sobject in self.failing_counts:
            raise ConnectorError(f"sObject type '{sobject}' is not supported.", status_code=400, error_code="INVALID_TYPE")
        if sobject in self.count_overrides:
            return self.count_overrides[sobject]
        return len(self.records.get(sobject, []))

    def tooling_query(self, soql: str) -> List[Dict[str, Any]]:
        self.calls.append(("tooling_query", soql))
        sobject = _sobject(soql)
        if sobject == "MetadataComponentDependency":
            return list(self.dependency_rows)
        rows = self.artifacts.get(sobject, [])
        match = _ID_FILTER.search(soql)
        if match is None:
            return [dict(r) for r in rows]
        artifact_id = match.group(1)
        if artifact_id in self.failing_bodies:
            raise ConnectorError(f"{sobject} {artifact_id} could not be read", status_code=500)
        return [dict(r) for r in rows if r["Id"] == artifact_id]

    def retrieve_metadata(self, component_types: Dict[str, List[str]], target_dir: Path) -> List[Path]:
        self.calls.append(("retrieve_metadata", component_types, Path(target_dir)))
        written = []
        for object_name in component_types.get("SharingRules", []):
            if object_name in self.failing_retrieves:
                raise ConnectorError(f"Retrieve of {object_name} failed", status_code=500)
            content = self.sharing_rules.get(object_name)
            if content is None:
                continue
            path = Path(target_dir) / "sharingRules" / f"{object_name}.sharingRules"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
            written.append(path)
        return written

    def deploy_metadata(self, source_dir: Path) -> DeployResultSummary:
        self.calls.append(("deploy_metadata", Path(source_dir)))
        name = Path(source_dir).name
        if name in self.deploy_results:
            return self.deploy_results[name]
        return DeployResultSummary(
            deploy_id="0Af000000000001",
            status="Succeeded",
            success=True,
            components=(ComponentStatus(component_type="Package", full_name=name, success=True),),
        )

    def bulk_load(self, csv_path: Path, object_name: str, operation: str = "insert") -> DataLoadResult:
        self.calls.append(("bulk_load", Path(csv_path), object_name, operation))
        with open(csv_path, newline="", encoding="utf-8") as f:
            processed = sum(1 for _ in csv.DictReader(f))
        return DataLoadResult(
            object_name=object_name,
            csv_path=str(csv_path),
            records_processed=processed,
            records_failed=self.bulk_failures,
            success=self.bulk_failures == 0,
            job_id="750000000000001",
            error=f"{self.bulk_failures} of {processed} records failed" if self.bulk_failures else None,
        )


def territory2_rows_from(file_paths: FilePaths) -> List[Dict[str, Any]]:
    """Pretend the org created one Territory2 per transformed territory."""
    path = file_paths.transformed_data_dir / "Territory2.csv"
    with open(path, newline="", encoding="utf-8") as f:
        return [
            {"Id": f"0MI2{n:011d}", "DeveloperName": row["DeveloperName"], "ParentTerritory2Id": None}
            for n, row in enumerate(csv.DictReader(f), start=1)
        ]


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    base = tmp_path / "tm-tools-output"
    base.mkdir(parents=True, exist_ok=True)
    return base


@pytest.fixture()
def file_paths(temp_workspace: Path) -> FilePaths:
    return FilePaths.for_base_dir(temp_workspace)


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        base_dir=str(temp_workspace),
        instance_url=None,
        access_token=None,
        username=None,
        alias=None,
        login_url="https://login.salesforce.com",
        api_version="59.0",
        max_concurrency=2,
        max_rate_limit_retries=1,
        retry_backoff_seconds=0,
        poll_interval_seconds=0,
        poll_timeout_seconds=1,
        log_level="INFO",
    )


@pytest.fixture()
def fake_org() -> FakeOrgConnector:
    return FakeOrgConnector()


@pytest.fixture()
def make_orchestrator(file_paths: FilePaths):
    def _make(connector: Optional[OrgConnector]) -> MigrationOrchestrator:
        return MigrationOrchestrator(StageContext(
            connector=connector,
            file_paths=file_paths,
            max_concurrency=2,
            max_retries=1,
            backoff_seconds=0,
        ))
    return _make


@pytest.fixture()
def transformed(fake_org: FakeOrgConnector, make_orchestrator, file_paths: FilePaths) -> FakeOrgConnector:
    """Run analyze, extract and transform against the fake org."""
    make_orchestrator(fake_org).run_analyze()
    make_orchestrator(fake_org).run_extract()
    make_orchestrator(None).run_transform()
    fake_org.territory2_rows = territory2_rows_from(file_paths)
    fake_org.calls.clear()
    return fake_org
