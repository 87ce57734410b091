import csv

import pytest

from tmtools.errors import (
    AuthError,
    InvalidTransitionError,
    NetworkError,
    OrgMismatchError,
    PipelineAbortedError,
    RateLimitError,
    ReportNotFoundError,
)
from tmtools.models.reports import (
    AnalysisReport,
    ComponentStatus,
    DeployResultSummary,
    ExtractionReport,
    OrgInfo,
    SharingRulesCount,
)
from tmtools.models.status import StatusType
from tmtools.orchestrator import PipelineState, PipelineStateMachine
from tmtools.retry import RetryExhaustedError
from tmtools.services.record_counter import TM1_COUNT_QUERIES
from tmtools.services.report_store import ReportStore

from conftest import FakeOrgConnector, make_tm1_records, territory2_rows_from


def _types(orchestrator):
    return [(m.type, m.title) for m in orchestrator.status_messages()]


def test_state_machine_rejects_skipped_stages() -> None:
    machine = PipelineStateMachine()
    machine.advance(PipelineState.ANALYZED)

    with pytest.raises(InvalidTransitionError):
        machine.advance(PipelineState.TRANSFORMED)


def test_state_machine_cannot_leave_terminal_states() -> None:
    machine = PipelineStateMachine(PipelineState.LOADED)
    machine.advance(PipelineState.REPORTED)

    with pytest.raises(InvalidTransitionError):
        machine.abort()
    assert machine.history == [PipelineState.LOADED, PipelineState.REPORTED]


def test_clean_run(make_orchestrator, file_paths) -> None:
    org = FakeOrgConnector(make_tm1_records(territories=10, assignments=25))

    analysis = make_orchestrator(org).run_analyze()
    assert analysis.record_counts.territory == 10
    assert analysis.record_counts.user_territory == 25
    assert analysis.hard_dependencies.count == 0
    assert analysis.metadata_counts.account.territory == 1

    extraction = make_orchestrator(org).run_extract()
    assert extraction.record_counts == analysis.record_counts
    assert extraction.discrepancies == ()

    transform = make_orchestrator(None)
    transformation = transform.run_transform()
    assert transformation.tm2_counts.territory2 == 10
    assert transformation.tm2_counts.user_territory2_association == 25
    assert transformation.tm2_counts.sharing_rules_dropped == 0
    assert transformation.untranslatable_count == 0
    assert transformation.discrepancies == ()
    assert transform.machine.state == PipelineState.TRANSFORMED

    with open(file_paths.transformed_data_dir / "Territory2.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    seen = set()
    for row in rows:
        parent = row["ParentTerritory2DeveloperName"]
        assert not parent or parent in seen
        seen.add(row["DeveloperName"])

    imported = make_orchestrator(org).run_import()
    assert imported.deployment.success
    assert imported.model_state == "Active"

    org.territory2_rows = territory2_rows_from(file_paths)
    deploy = make_orchestrator(org)
    final = deploy.run_deploy()

    assert final.status == StatusType.SUCCESS
    assert final.final_state == "REPORTED"
    assert final.sharing_rules_deployed
    assert not final.data_load_skipped
    assert [(r.object_name, r.records_processed, r.records_failed) for r in final.load_results] == [
        ("UserTerritory2Association", 25, 0),
    ]
    assert deploy.machine.history == [
        PipelineState.TRANSFORMED,
        PipelineState.DEPLOY_VALIDATED,
        PipelineState.DEPLOYED,
        PipelineState.LOADED,
        PipelineState.REPORTED,
    ]
    assert file_paths.deployment_report.exists()
    assert file_paths.load_report.exists()


@pytest.mark.parametrize("state", ["Inactive", "Planning", None])
def test_inactive_target_aborts_before_any_deploy(transformed, make_orchestrator, file_paths, state) -> None:
    transformed.model_state = state
    orchestrator = make_orchestrator(transformed)

    with pytest.raises(PipelineAbortedError):
        orchestrator.run_deploy()

    assert orchestrator.machine.state == PipelineState.ABORTED
    assert transformed.calls_to("deploy_metadata") == []
    assert transformed.calls_to("bulk_load") == []
    assert not file_paths.deployment_report.exists()
    assert not file_paths.load_report.exists()
    assert _types(orchestrator) == [(StatusType.ERROR, "TM2 Model Activation")]


def test_deploy_failure_skips_the_data_load(transformed, make_orchestrator, file_paths) -> None:
    transformed.deploy_results["tm2-sharing-rules-deployment"] = DeployResultSummary(
        deploy_id="0Af000000000002",
        status="Failed",
        success=False,
        components=(
            ComponentStatus(
                component_type="SharingOwnerRule",
                full_name="Account.West_To_East",
                success=False,
                problem="Unknown group West",
            ),
        ),
    )
    orchestrator = make_orchestrator(transformed)

    report = orchestrator.run_deploy()

    assert transformed.calls_to("bulk_load") == []
    assert report.status == StatusType.WARNING
    assert report.data_load_skipped
    assert not report.sharing_rules_deployed
    assert report.load_results == ()
    skipped = [m for m in report.status_messages if "skipped" in m.message]
    assert len(skipped) == 1
    assert skipped[0].type == StatusType.WARNING
    assert PipelineState.LOADED not in orchestrator.machine.history
    assert orchestrator.machine.state == PipelineState.REPORTED
    assert file_paths.deployment_report.exists()


def test_load_failure_is_a_warning(transformed, make_orchestrator) -> None:
    transformed.bulk_failures = 2
    orchestrator = make_orchestrator(transformed)

    report = orchestrator.run_deploy()

    assert report.status == StatusType.WARNING
    assert report.load_results[0].records_failed == 2
    assert (StatusType.WARNING, "TM2 Data Load") in _types(orchestrator)
    assert orchestrator.machine.state == PipelineState.REPORTED


def test_org_mismatch_is_refused(transformed, make_orchestrator, file_paths) -> None:
    transformed.org_info = OrgInfo(org_id="00D5g000000ZZZZEAA", username="someone@other.example")
    orchestrator = make_orchestrator(transformed)

    with pytest.raises(OrgMismatchError):
        orchestrator.run_import()

    assert orchestrator.machine.state == PipelineState.ABORTED
    assert transformed.calls_to("deploy_metadata") == []
    assert _types(orchestrator) == [(StatusType.ERROR, "TM Tools Import")]
    assert not file_paths.import_report.exists()


def test_extract_requires_analysis(fake_org, make_orchestrator) -> None:
    orchestrator = make_orchestrator(fake_org)

    with pytest.raises(ReportNotFoundError, match="TM1 Analysis"):
        orchestrator.run_extract()

    assert orchestrator.machine.state == PipelineState.ABORTED
    assert fake_org.calls_to("query") == []


def test_corrupt_analysis_report_blocks_extract(fake_org, make_orchestrator, file_paths) -> None:
    make_orchestrator(fake_org).run_analyze()
    file_paths.analysis_report.write_text('{"schema_version": 1, "report_type": "tm1-analysis"', encoding="utf-8")

    with pytest.raises(ReportNotFoundError):
        make_orchestrator(fake_org).run_extract()


def test_analyze_refuses_orgs_without_tm1(fake_org, make_orchestrator, file_paths) -> None:
    fake_org.failing_counts = {"Territory"}
    orchestrator = make_orchestrator(fake_org)

    with pytest.raises(PipelineAbortedError, match="Territory Management"):
        orchestrator.run_analyze()

    assert not file_paths.analysis_report.exists()
    assert _types(orchestrator) == [(StatusType.ERROR, "TM1 Record Counts")]


def test_unretrievable_sharing_rules_are_skipped(fake_org, make_orchestrator) -> None:
    make_orchestrator(fake_org).run_analyze()
    fake_org.failing_retrieves = {"Lead"}
    orchestrator = make_orchestrator(fake_org)

    report = orchestrator.run_extract()

    assert report.metadata_counts.account.total == 3
    assert report.metadata_counts.skipped_objects == ("Lead",)
    assert (StatusType.WARNING, "TM1 Sharing Rules") in _types(orchestrator)


def test_orphaned_rule_is_reported_not_fatal(make_orchestrator) -> None:
    records = make_tm1_records()
    records["AccountTerritoryAssignmentRule"].append({
        "Id": "0Mx000000000002",
        "Name": "Retired Region",
        "TerritoryId": "0MI000000000099",
        "IsActive": True,
        "IsInherited": False,
    })
    org = FakeOrgConnector(records)
    make_orchestrator(org).run_analyze()
    make_orchestrator(org).run_extract()
    orchestrator = make_orchestrator(None)

    report = orchestrator.run_transform()

    assert report.untranslatable_count == 1
    assert report.untranslatable[0].source_id == "0Mx000000000002"
    assert [(d.entity, d.expected, d.actual) for d in report.discrepancies] == [("ata_rule", 2, 1)]
    assert (StatusType.WARNING, "Untranslatable Items") in _types(orchestrator)
    assert orchestrator.machine.state == PipelineState.TRANSFORMED


def test_clean_removes_territory_sharing_rules(transformed, make_orchestrator, file_paths) -> None:
    report = make_orchestrator(transformed).run_clean()

    (call,) = transformed.calls_to("deploy_metadata")
    assert call[1] == file_paths.tm1_sharing_rules_cleanup_dir
    assert report.deployment.success
    assert report.rules_removed == 1
    assert file_paths.cleanup_report.exists()


def test_failed_clean_is_a_warning(transformed, make_orchestrator) -> None:
    transformed.deploy_results["tm1-sharing-rules-cleanup"] = DeployResultSummary.failed("INSUFFICIENT_ACCESS")
    orchestrator = make_orchestrator(transformed)

    report = orchestrator.run_clean()

    assert report.rules_removed == 0
    assert not report.deployment.success
    assert _types(orchestrator) == [(StatusType.WARNING, "TM1 Sharing Rule Cleanup")]


def _territory_counts(org):
    return [c for c in org.calls_to("query_count") if c[1] == TM1_COUNT_QUERIES["territory"]]


def test_rate_limited_territory_count_is_retried(fake_org, make_orchestrator) -> None:
    fake_org.count_errors["Territory"] = [
        RateLimitError("REQUEST_LIMIT_EXCEEDED", status_code=403, error_code="REQUEST_LIMIT_EXCEEDED"),
    ]
    orchestrator = make_orchestrator(fake_org)

    analysis = orchestrator.run_analyze()

    assert analysis.record_counts.territory == 3
    assert len(_territory_counts(fake_org)) == 2
    assert (StatusType.SUCCESS, "TM1 Record Counts") in _types(orchestrator)


def test_exhausted_rate_limit_is_not_reported_as_missing_tm1(fake_org, make_orchestrator, file_paths) -> None:
    fake_org.count_errors["Territory"] = [RateLimitError("Too many requests", status_code=429) for _ in range(2)]

    with pytest.raises(PipelineAbortedError) as exc_info:
        make_orchestrator(fake_org).run_analyze()

    assert isinstance(exc_info.value.__cause__, RetryExhaustedError)
    assert "Territory Management" not in str(exc_info.value)
    assert not file_paths.analysis_report.exists()


@pytest.mark.parametrize("failure,kind", [
    (AuthError("INVALID_SESSION_ID: Session expired", status_code=401, error_code="INVALID_SESSION_ID"), "auth"),
    (NetworkError("Connection reset by peer"), "network"),
])
def test_analyze_keeps_connector_error_types(fake_org, make_orchestrator, failure, kind) -> None:
    fake_org.count_errors["Territory"] = [failure]
    orchestrator = make_orchestrator(fake_org)

    with pytest.raises(PipelineAbortedError) as exc_info:
        orchestrator.run_analyze()

    cause = exc_info.value.__cause__
    assert type(cause) is type(failure)
    assert cause.kind == kind
    assert str(cause).startswith(f"[analyze] TM1 Record Counts failed ({kind})")
    assert "Territory Management" not in str(exc_info.value)
    assert len(_territory_counts(fake_org)) == 1
    assert _types(orchestrator) == [(StatusType.ERROR, "TM1 Record Counts")]


def test_analyze_records_unretrievable_sharing_rules(fake_org, make_orchestrator, file_paths) -> None:
    fake_org.failing_retrieves = {"Account"}
    orchestrator = make_orchestrator(fake_org)

    analysis = orchestrator.run_analyze()

    assert analysis.metadata_counts.skipped_objects == ("Account",)
    assert analysis.metadata_counts.account == SharingRulesCount()
    assert (StatusType.WARNING, "TM1 Sharing Rules") in _types(orchestrator)
    stored = ReportStore().read_report(file_paths.analysis_report, AnalysisReport)
    assert stored.metadata_counts.skipped_objects == ("Account",)


def test_extract_reports_count_drift_since_analysis(fake_org, make_orchestrator, file_paths) -> None:
    fake_org.count_overrides["UserTerritory"] = 6
    make_orchestrator(fake_org).run_analyze()
    fake_org.count_overrides.clear()

    report = make_orchestrator(fake_org).run_extract()

    assert report.record_counts.user_territory == 4
    assert [(d.entity, d.expected, d.actual) for d in report.discrepancies] == [("user_territory", 6, 4)]
    stored = ReportStore().read_report(file_paths.extraction_report, ExtractionReport)
    assert stored.discrepancies == report.discrepancies


@pytest.mark.parametrize("stage", ["import", "deploy", "clean"])
def test_post_transform_stages_need_a_valid_analysis(transformed, make_orchestrator, file_paths, stage) -> None:
    file_paths.analysis_report.write_text("{corrupt", encoding="utf-8")
    file_paths.extraction_report.unlink()
    orchestrator = make_orchestrator(transformed)

    with pytest.raises(ReportNotFoundError, match="TM1 Analysis"):
        getattr(orchestrator, f"run_{stage}")()

    assert orchestrator.machine.state == PipelineState.ABORTED
    assert transformed.calls_to("deploy_metadata") == []
    assert transformed.calls_to("bulk_load") == []
    assert not file_paths.load_report.exists()


@pytest.mark.parametrize("stage", ["import", "deploy", "clean"])
def test_post_transform_stages_need_the_extraction(transformed, make_orchestrator, file_paths, stage) -> None:
    file_paths.extraction_report.unlink()
    orchestrator = make_orchestrator(transformed)

    with pytest.raises(ReportNotFoundError, match="TM1 Extraction"):
        getattr(orchestrator, f"run_{stage}")()

    assert transformed.calls_to("deploy_metadata") == []
    assert transformed.calls_to("bulk_load") == []


def test_cancellation_stops_the_next_transition(transformed, make_orchestrator, file_paths, monkeypatch) -> None:
    orchestrator = make_orchestrator(transformed)
    deploy = transformed.deploy_metadata

    def _deploy_then_cancel(source_dir):
        summary = deploy(source_dir)
        orchestrator.context.cancel_token.cancel("stopped by operator")
        return summary

    monkeypatch.setattr(transformed, "deploy_metadata", _deploy_then_cancel)

    with pytest.raises(PipelineAbortedError, match="stopped by operator"):
        orchestrator.run_deploy()

    assert _types(orchestrator) == [
        (StatusType.SUCCESS, "TM2 Model Activation"),
        (StatusType.SUCCESS, "TM2 Sharing Rules"),
    ]
    assert orchestrator.machine.history == [
        PipelineState.TRANSFORMED,
        PipelineState.DEPLOY_VALIDATED,
        PipelineState.ABORTED,
    ]
    assert transformed.calls_to("bulk_load") == []
    assert not file_paths.load_report.exists()
