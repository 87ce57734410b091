"""Migration orchestrator - runs one pipeline stage per invocation."""

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .concurrency import CancellationToken
from .connectors.base import OrgConnector
from .errors import (
    ConnectorError,
    InvalidTransitionError,
    ModelNotActiveError,
    OrgMismatchError,
    PipelineAbortedError,
    PreconditionError,
    RateLimitError,
    StageTaskError,
)
from .extractors.csv_reader import read_tm1_dataset
from .extractors.org_extractor import SharingRulesExtractor, TM1DataExtractor
from .loaders.bulk_loader import UserTerritory2AssociationLoader
from .models.reports import (
    AnalysisReport,
    CleanupReport,
    DeployResultSummary,
    DeploymentReport,
    ExtractionReport,
    ImportReport,
    LoadReport,
    OrgInfo,
    TM1MetadataCounts,
    TM1RecordCounts,
    TransformationReport,
)
from .models.status import ListStatusSink, LoggingStatusSink, StatusMessage, worst_status
from .retry import run_with_retries
from .services.dependency_analyzer import DependencyAnalyzer
from .services.file_paths import FilePaths
from .services.record_counter import TM1_COUNT_QUERIES, RecordCounter, reconcile
from .services.report_store import ReportStore
from .services.sharing_rules import count_metadata, load_sharing_rules
from .services.transformer import MODEL_DEVELOPER_NAME, SchemaTransformer
from .tasks import TaskBundle, error, run_bundle, success, warning

logger = logging.getLogger(__name__)

MODEL_STATE_QUERY = (
    "SELECT Id, Name, DeveloperName, State, ActivatedDate, DeactivatedDate "
    "FROM Territory2Model WHERE DeveloperName = '{name}'"
)
MODEL_NOT_FOUND = "NOT_FOUND"

# Returned by the API when an sObject such as Territory does not exist in the org
UNSUPPORTED_OBJECT_CODE = "INVALID_TYPE"


class PipelineState(str, Enum):
    """Pipeline progress, from the first analysis to the final report."""
    NOT_STARTED = "NOT_STARTED"
    ANALYZED = "ANALYZED"
    EXTRACTED = "EXTRACTED"
    TRANSFORMED = "TRANSFORMED"
    DEPLOY_VALIDATED = "DEPLOY_VALIDATED"
    DEPLOYED = "DEPLOYED"
    LOADED = "LOADED"
    REPORTED = "REPORTED"
    ABORTED = "ABORTED"


TRANSITIONS = {
    PipelineState.NOT_STARTED: {PipelineState.ANALYZED},
    PipelineState.ANALYZED: {PipelineState.EXTRACTED},
    PipelineState.EXTRACTED: {PipelineState.TRANSFORMED},
    PipelineState.TRANSFORMED: {PipelineState.DEPLOY_VALIDATED},
    PipelineState.DEPLOY_VALIDATED: {PipelineState.DEPLOYED},
    # A failed sharing rule deployment goes straight to the report
    PipelineState.DEPLOYED: {PipelineState.LOADED, PipelineState.REPORTED},
    PipelineState.LOADED: {PipelineState.REPORTED},
    PipelineState.REPORTED: set(),
    PipelineState.ABORTED: set(),
}
TERMINAL_STATES = {PipelineState.REPORTED, PipelineState.ABORTED}


class PipelineStateMachine:
    """Tracks the pipeline state and rejects illegal transitions."""

    def __init__(self, initial: PipelineState = PipelineState.NOT_STARTED):
        self.state = initial
        self.history: List[PipelineState] = [initial]

    def advance(self, target: PipelineState) -> None:
        if target == PipelineState.ABORTED:
            self.abort()
            return
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"Cannot move from {self.state.value} to {target.value}")
        logger.debug(f"Pipeline state {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def abort(self) -> None:
        if self.state in TERMINAL_STATES:
            raise InvalidTransitionError(f"Cannot abort from terminal state {self.state.value}")
        logger.debug(f"Pipeline state {self.state.value} -> ABORTED")
        self.state = PipelineState.ABORTED
        self.history.append(PipelineState.ABORTED)


@dataclass
class StageContext:
    """Collaborators and limits shared by every stage."""
    connector: Optional[OrgConnector]
    file_paths: FilePaths
    store: ReportStore = field(default_factory=ReportStore)
    max_concurrency: int = 4
    max_retries: int = 3
    backoff_seconds: float = 2.0
    api_version: str = "59.0"
    cancel_token: CancellationToken = field(default_factory=CancellationToken)


class MigrationOrchestrator:
    """
    Orchestrates the TM1 to TM2 migration.

    Handles:
    - Analyze: record counts, sharing rule inventory and dependencies
    - Extract: TM1 records to CSV and sharing rule metadata
    - Transform: TM2 metadata and load files
    - Import: deployment of the TM2 model metadata
    - Deploy: model activation gate, sharing rules, data load and final report
    - Clean: removal of TM1 territory sharing rules

    Each run_* method executes one stage from the reports on disk and
    returns the report it wrote.
    """

    def __init__(self, context: StageContext):
        """
        Initialize the orchestrator.

        Args:
            context: Connector, paths and limits for this invocation
        """
        self.context = context
        self.paths = context.file_paths
        self.store = context.store
        self.messages = ListStatusSink()
        self.sink = LoggingStatusSink(inner=self.messages)
        self.machine = PipelineStateMachine()

    @property
    def connector(self) -> OrgConnector:
        if self.context.connector is None:
            raise PreconditionError("This stage needs an org connection, but no connector was configured")
        return self.context.connector

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _limits(self) -> Dict[str, Any]:
        return {
            "max_concurrency": self.context.max_concurrency,
            "max_retries": self.context.max_retries,
            "backoff_seconds": self.context.backoff_seconds,
            "cancel_token": self.context.cancel_token,
        }

    def _check_cancelled(self) -> None:
        token = self.context.cancel_token
        if token.cancelled:
            raise PipelineAbortedError(f"Cancelled: {token.reason or 'no reason given'}")

    def _advance(self, target: PipelineState) -> None:
        self._check_cancelled()
        self.machine.advance(target)

    def _bundle(self, bundle: TaskBundle):
        self._check_cancelled()
        return run_bundle(bundle, self.sink)

    def _run_stage(self, stage: str, start: PipelineState, body: Callable[[], Any]) -> Any:
        """
        Run a stage body, moving the pipeline to ABORTED on any failure.

        Failures raised outside a task bundle get an ERROR status here;
        bundles have already emitted their own.
        """
        self.machine = PipelineStateMachine(start)
        logger.info(f"=== PHASE: {stage.upper()} ===")
        try:
            return body()
        except PipelineAbortedError:
            self._abort()
            raise
        except Exception as e:
            self._abort()
            self.sink.emit(error(f"TM Tools {stage.capitalize()}", str(e)))
            raise

    def _abort(self) -> None:
        if self.machine.state not in TERMINAL_STATES:
            self.machine.abort()

    def _check_org(self, reports: List[Any], check_connected: bool = True) -> OrgInfo:
        """
        Verify that every input report and the connected org agree.

        Returns:
            The OrgInfo recorded at analysis time
        """
        org_info = reports[0].org_info
        for report in reports[1:]:
            if not org_info.same_org(report.org_info):
                raise OrgMismatchError(
                    f"{report.REPORT_TYPE} was produced for org {report.org_info.org_id}, "
                    f"but {reports[0].REPORT_TYPE} was produced for org {org_info.org_id}"
                )
        if check_connected:
            current = self.connector.get_org_info()
            if not org_info.same_org(current):
                raise OrgMismatchError(
                    f"The connected org ({current.username}, {current.org_id}) is not the org "
                    f"these reports were produced for ({org_info.username}, {org_info.org_id})"
                )
        return org_info

    def _require(self, path: Path, report_cls, name: str):
        return self.store.require_report(path, report_cls, name)

    def _require_upstream(self) -> OrgInfo:
        """
        Load and cross-check the analysis, extraction and transformation
        reports that every post-transform stage builds on.

        Returns:
            The OrgInfo the reports agree on
        """
        analysis = self._require(self.paths.analysis_report, AnalysisReport, "TM1 Analysis")
        extraction = self._require(self.paths.extraction_report, ExtractionReport, "TM1 Extraction")
        transformation = self._require(self.paths.transformation_report, TransformationReport, "TM1 Transformation")
        return self._check_org([analysis, extraction, transformation])

    def _warn_skipped_objects(self, metadata_counts: TM1MetadataCounts) -> None:
        if metadata_counts.skipped_objects:
            self.sink.emit(warning(
                "TM1 Sharing Rules",
                f"Sharing rules could not be retrieved for: {', '.join(metadata_counts.skipped_objects)}",
            ))

    def query_model_state(self) -> str:
        """Get the state of the imported Territory2 model in the connected org."""
        rows = self.connector.query(MODEL_STATE_QUERY.format(name=MODEL_DEVELOPER_NAME))
        if not rows:
            return MODEL_NOT_FOUND
        return rows[0].get("State") or MODEL_NOT_FOUND

    def _deploy(self, source_dir: Path, holder: Dict[str, DeployResultSummary]) -> DeployResultSummary:
        summary = self.connector.deploy_metadata(source_dir)
        holder["summary"] = summary
        if not summary.success:
            failed = ", ".join(f"{c.full_name}: {c.problem}" for c in summary.failed_components)
            raise StageTaskError(summary.error_message or failed or f"deployment ended with status {summary.status}")
        return summary

    # ------------------------------------------------------------------
    # Analyze
    # ------------------------------------------------------------------

    def run_analyze(self) -> AnalysisReport:
        """Inventory the TM1 configuration of the connected org."""
        return self._run_stage("analyze", PipelineState.NOT_STARTED, self._analyze)

    def _count_tm1(self, org_info: OrgInfo) -> TM1RecordCounts:
        counter = RecordCounter(self.connector, **self._limits())
        try:
            territory = run_with_retries(
                lambda: counter.count(TM1_COUNT_QUERIES["territory"]),
                max_retries=self.context.max_retries,
                backoff_seconds=self.context.backoff_seconds,
                should_retry=lambda exc: isinstance(exc, RateLimitError),
            )
        except ConnectorError as e:
            # Only a missing Territory object means TM1 is off
            if type(e) is not ConnectorError or e.error_code != UNSUPPORTED_OBJECT_CODE:
                raise
            raise PreconditionError(
                f"The org ({org_info.alias or org_info.username}) does not appear to have "
                f"Territory Management (TM1) enabled."
            ) from e
        others = {k: v for k, v in TM1_COUNT_QUERIES.items() if k != "territory"}
        return TM1RecordCounts(territory=territory, **counter.count_all(others))

    def _analyze(self) -> AnalysisReport:
        org_info = self.connector.get_org_info()

        counts = self._bundle(TaskBundle(
            pre_message="Counting TM1 records...",
            task=lambda: self._count_tm1(org_info),
            success=success("TM1 Record Counts", "TM1 record counts collected"),
            failure=error("TM1 Record Counts", "TM1 records could not be counted"),
            throw_on_failure=True,
            stage="analyze",
        )).result

        def _inventory():
            with tempfile.TemporaryDirectory(prefix="tm1-analysis-") as tmp:
                result = SharingRulesExtractor(self.connector, Path(tmp)).extract()
                return count_metadata(load_sharing_rules(Path(tmp)), result.skipped)

        metadata_counts = self._bundle(TaskBundle(
            pre_message="Retrieving TM1 sharing rules...",
            task=_inventory,
            success=success("TM1 Sharing Rules", "TM1 sharing rule inventory collected"),
            failure=error("TM1 Sharing Rules", "TM1 sharing rules could not be inventoried"),
            throw_on_failure=True,
            stage="analyze",
        )).result
        self._warn_skipped_objects(metadata_counts)

        hard, soft = self._bundle(TaskBundle(
            pre_message="Analyzing TM1 dependencies...",
            task=DependencyAnalyzer(self.connector, **self._limits()).analyze,
            success=success("TM1 Dependencies", "Hard and soft TM1 dependencies analyzed"),
            failure=error("TM1 Dependencies", "The dependency index could not be read"),
            throw_on_failure=True,
            stage="analyze",
        )).result

        report = AnalysisReport(
            org_info=org_info,
            record_counts=counts,
            metadata_counts=metadata_counts,
            hard_dependencies=hard,
            soft_dependencies=soft,
        )
        self.store.write_report(self.paths.analysis_report, report)
        self._advance(PipelineState.ANALYZED)
        return report

    # ------------------------------------------------------------------
    # Extract
    # ------------------------------------------------------------------

    def run_extract(self) -> ExtractionReport:
        """Pull TM1 records and sharing rules to disk."""
        return self._run_stage("extract", PipelineState.ANALYZED, self._extract)

    def _extract(self) -> ExtractionReport:
        analysis = self._require(self.paths.analysis_report, AnalysisReport, "TM1 Analysis")
        org_info = self._check_org([analysis])

        def _pull():
            if self.paths.extraction_dir.exists():
                shutil.rmtree(self.paths.extraction_dir)
            data = TM1DataExtractor(self.connector, self.paths.extracted_data_dir, **self._limits()).extract()
            metadata = SharingRulesExtractor(self.connector, self.paths.extracted_metadata_dir).extract()
            return data, metadata

        data, metadata = self._bundle(TaskBundle(
            pre_message="Extracting TM1 data and metadata...",
            task=_pull,
            success=success("TM1 Extraction", "TM1 data and metadata extracted"),
            failure=error("TM1 Extraction", "TM1 extraction failed"),
            throw_on_failure=True,
            stage="extract",
        )).result

        metadata_counts = count_metadata(load_sharing_rules(self.paths.extracted_metadata_dir), metadata.skipped)
        self._warn_skipped_objects(metadata_counts)

        record_counts = TM1RecordCounts(**data.row_counts)
        report = ExtractionReport(
            org_info=org_info,
            record_counts=record_counts,
            metadata_counts=metadata_counts,
            discrepancies=tuple(reconcile(analysis.record_counts.to_dict(), record_counts.to_dict())),
            extracted_files=tuple(sorted(self.paths.relative(p) for p in data.files + metadata.files)),
        )
        self.store.write_report(self.paths.extraction_report, report)
        self._advance(PipelineState.EXTRACTED)
        return report

    # ------------------------------------------------------------------
    # Transform
    # ------------------------------------------------------------------

    def run_transform(self) -> TransformationReport:
        """Translate the extraction into TM2 files. Does not contact the org."""
        return self._run_stage("transform", PipelineState.EXTRACTED, self._transform)

    def _transform(self) -> TransformationReport:
        analysis = self._require(self.paths.analysis_report, AnalysisReport, "TM1 Analysis")
        extraction = self._require(self.paths.extraction_report, ExtractionReport, "TM1 Extraction")
        self._check_org([analysis, extraction], check_connected=False)

        transformer = SchemaTransformer(self.paths, api_version=self.context.api_version)

        def _translate():
            dataset = read_tm1_dataset(self.paths.extracted_data_dir, self.paths.extracted_metadata_dir)
            return transformer.transform(analysis, extraction, dataset)

        report = self._bundle(TaskBundle(
            pre_message="Transforming TM1 data and metadata...",
            task=_translate,
            success=success("TM1 Transformation", "TM2 metadata and data files generated"),
            failure=error("TM1 Transformation", "TM1 transformation failed"),
            throw_on_failure=True,
            stage="transform",
        )).result

        if report.untranslatable:
            self.sink.emit(warning(
                "Untranslatable Items",
                f"{report.untranslatable_count} TM1 items could not be translated and were excluded",
            ))

        self.store.write_report(self.paths.transformation_report, report)
        self._advance(PipelineState.TRANSFORMED)
        return report

    # ------------------------------------------------------------------
    # Import (main TM2 metadata)
    # ------------------------------------------------------------------

    def run_import(self) -> ImportReport:
        """Deploy the Territory2 model, types, territories and rules."""
        return self._run_stage("import", PipelineState.TRANSFORMED, self._import)

    def _import(self) -> ImportReport:
        org_info = self._require_upstream()

        holder: Dict[str, DeployResultSummary] = {}
        outcome = self._bundle(TaskBundle(
            pre_message="Deploying TM2 model metadata...",
            task=lambda: self._deploy(self.paths.tm2_main_deployment_dir, holder),
            success=success("TM2 Metadata Import", "The Territory2 model was deployed to the target org"),
            failure=error("TM2 Metadata Import", "The Territory2 model did not deploy successfully"),
            stage="import",
        ))
        deployment = holder.get("summary") or DeployResultSummary.failed(str(outcome.error))

        report = ImportReport(org_info=org_info, deployment=deployment, model_state=self.query_model_state())
        self.store.write_report(self.paths.import_report, report)
        return report

    # ------------------------------------------------------------------
    # Deploy / Load
    # ------------------------------------------------------------------

    def run_deploy(self) -> LoadReport:
        """
        Run the final migration: activation gate, sharing rules, data load
        and the final report.

        Raises:
            PipelineAbortedError: If the Territory2 model is not active. No
                deployment or load report is written in that case.
        """
        return self._run_stage("deploy", PipelineState.TRANSFORMED, self._deploy_and_load)

    def _deploy_and_load(self) -> LoadReport:
        org_info = self._require_upstream()
        first_message = len(self.messages.messages)

        def _gate() -> str:
            state = self.query_model_state()
            if state.upper() != "ACTIVE":
                raise ModelNotActiveError(f"Territory2Model {MODEL_DEVELOPER_NAME} is {state}")
            return state

        model_state = self._bundle(TaskBundle(
            pre_message="Checking for Active Territory2 Model...",
            task=_gate,
            success=success("TM2 Model Activation", "The migrated Territory2 model is active"),
            failure=error("TM2 Model Activation", "The migrated Territory2 model was not activated in the target org"),
            throw_on_failure=True,
            stage="deploy",
        )).result
        self._advance(PipelineState.DEPLOY_VALIDATED)

        holder: Dict[str, DeployResultSummary] = {}
        deploy_outcome = self._bundle(TaskBundle(
            pre_message="Deploying final set of TM2 Metadata...",
            task=lambda: self._deploy(self.paths.tm2_sharing_rules_deployment_dir, holder),
            success=success("TM2 Sharing Rules", "TM2 sharing rules deployed"),
            failure=warning("TM2 Sharing Rules", "WARNING - TM2 Sharing Rules did not deploy successfully"),
            stage="deploy",
        ))
        deployment = holder.get("summary") or DeployResultSummary.failed(str(deploy_outcome.error))
        self.store.write_report(
            self.paths.deployment_report,
            DeploymentReport(org_info=org_info, model_state=model_state, deployment=deployment),
        )
        self._advance(PipelineState.DEPLOYED)

        load_results = ()
        if deploy_outcome.succeeded:
            loader = UserTerritory2AssociationLoader(self.connector, self.paths)

            captured: List[Any] = []

            def _load():
                captured.extend(loader.load())
                failed = [r for r in captured if not r.success]
                if failed:
                    raise StageTaskError("; ".join(f"{r.object_name}: {r.error}" for r in failed))
                return captured

            self._bundle(TaskBundle(
                pre_message="Loading final set of TM2 Data...",
                task=_load,
                success=success("TM2 Data Load", "TM2 data loaded"),
                failure=warning("TM2 Data Load", "WARNING - TM2 data did not load successfully"),
                stage="deploy",
            ))
            load_results = tuple(captured)
            self._advance(PipelineState.LOADED)
        else:
            self.sink.emit(warning(
                "TM2 Data Load",
                "WARNING - Final TM2 data load skipped because the sharing rules deployment failed",
            ))

        run_messages = tuple(self.messages.messages[first_message:])
        report = LoadReport(
            org_info=org_info,
            status=worst_status(list(run_messages)),
            final_state=PipelineState.REPORTED.value,
            sharing_rules_deployed=deploy_outcome.succeeded,
            data_load_skipped=not deploy_outcome.succeeded,
            load_results=load_results,
            status_messages=run_messages,
        )
        self._bundle(TaskBundle(
            pre_message="Generating Final TM2 Data Load Report...",
            task=lambda: self.store.write_report(self.paths.load_report, report),
            success=success("TM2 Data Load Report", f"Final report saved to {self.paths.load_report}"),
            failure=error("TM2 Data Load Report", "The final TM2 data load report could not be written"),
            throw_on_failure=True,
            stage="deploy",
        ))
        self._advance(PipelineState.REPORTED)
        return report

    # ------------------------------------------------------------------
    # Clean
    # ------------------------------------------------------------------

    def run_clean(self) -> CleanupReport:
        """Remove the TM1 sharing rules that reference territories."""
        return self._run_stage("clean", PipelineState.TRANSFORMED, self._clean)

    def _clean(self) -> CleanupReport:
        org_info = self._require_upstream()

        holder: Dict[str, DeployResultSummary] = {}
        outcome = self._bundle(TaskBundle(
            pre_message="Removing TM1 territory sharing rules...",
            task=lambda: self._deploy(self.paths.tm1_sharing_rules_cleanup_dir, holder),
            success=success("TM1 Sharing Rule Cleanup", "TM1 territory sharing rules removed"),
            failure=warning("TM1 Sharing Rule Cleanup", "WARNING - TM1 sharing rules were not removed"),
            stage="clean",
        ))
        deployment = holder.get("summary") or DeployResultSummary.failed(str(outcome.error))
        removed = sum(1 for c in deployment.components if c.success) if outcome.succeeded else 0

        report = CleanupReport(org_info=org_info, deployment=deployment, rules_removed=removed)
        self.store.write_report(self.paths.cleanup_report, report)
        return report

    def status_messages(self) -> List[StatusMessage]:
        """Status records emitted so far by this orchestrator."""
        return list(self.messages.messages)
