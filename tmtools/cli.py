"""Command line interface for the TM1 to TM2 migration pipeline."""

import argparse
import logging
import sys
from typing import Any, List, Optional

from dateutil import parser as date_parser

from .config import Settings, get_settings
from .connectors.salesforce import SalesforceConnector
from .errors import TMToolsError
from .models.status import StatusMessage, StatusType, worst_status
from .orchestrator import MigrationOrchestrator, StageContext
from .services.file_paths import FilePaths
from .services.report_store import ReportStore

logger = logging.getLogger(__name__)

ONLINE_COMMANDS = ("analyze", "extract", "import", "deploy", "clean")


def build_connector(settings: Settings) -> SalesforceConnector:
    """Create a connector for the org described by the settings."""
    return SalesforceConnector(
        instance_url=settings.instance_url,
        access_token=settings.access_token,
        api_version=settings.api_version,
        username=settings.username,
        alias=settings.alias,
        login_url=settings.login_url,
        poll_interval_seconds=settings.poll_interval_seconds,
        poll_timeout_seconds=settings.poll_timeout_seconds,
    )


def build_context(args, settings: Settings, connector=None) -> StageContext:
    return StageContext(
        connector=connector,
        file_paths=FilePaths.for_base_dir(args.base_dir or settings.base_dir),
        max_concurrency=args.concurrency or settings.max_concurrency,
        max_retries=settings.max_rate_limit_retries,
        backoff_seconds=settings.retry_backoff_seconds,
        api_version=settings.api_version,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="TM Tools - Migrate Territory Management (TM1) to Enterprise Territory Management (TM2)"
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--base-dir", help="Directory holding reports and generated files")
    common.add_argument("--concurrency", type=int, help="Maximum concurrent org requests")
    common.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.add_parser("analyze", parents=[common], help="Analyze the TM1 configuration of the org")
    subparsers.add_parser("extract", parents=[common], help="Extract TM1 data and sharing rules")
    subparsers.add_parser("transform", parents=[common], help="Transform the extraction into TM2 files")
    subparsers.add_parser("import", parents=[common], help="Deploy the TM2 model metadata")
    subparsers.add_parser("deploy", parents=[common], help="Deploy TM2 sharing rules and load TM2 data")
    subparsers.add_parser("clean", parents=[common], help="Remove TM1 territory sharing rules")
    subparsers.add_parser("status", parents=[common], help="Show which stages have completed")

    args = parser.parse_args(argv)
    settings = get_settings()

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command is None:
        parser.print_help()
        return 2
    if args.command == "status":
        return show_status(args, settings)
    return run_stage(args, settings)


def run_stage(args, settings: Settings) -> int:
    """Run one pipeline stage and print its summary."""
    orchestrator = None
    try:
        connector = build_connector(settings) if args.command in ONLINE_COMMANDS else None
        orchestrator = MigrationOrchestrator(build_context(args, settings, connector))
        report = getattr(orchestrator, f"run_{args.command}")()
    except TMToolsError as e:
        messages = orchestrator.status_messages() if orchestrator else []
        print_summary(args.command, None, messages)
        print(f"\n{args.command} failed ({e.kind}): {e}")
        return 1
    except Exception as e:
        logger.exception(f"{args.command} failed unexpectedly")
        print(f"\n{args.command} failed: {e}")
        return 1

    messages = orchestrator.status_messages()
    print_summary(args.command, report, messages)
    return 1 if worst_status(messages) == StatusType.ERROR else 0


def print_summary(command: str, report: Any, messages: List[StatusMessage]) -> None:
    print("\n" + "=" * 60)
    print(f"TM TOOLS {command.upper()}")
    print("=" * 60)

    for message in messages:
        print(f"[{message.type.value}] {message.title}: {message.message}")

    if report is None:
        return

    print("-" * 60)
    if command == "analyze":
        print(f"Org: {report.org_info.username} ({report.org_info.org_id})")
        for entity, count in report.record_counts.to_dict().items():
            print(f"  {entity}: {count}")
        for obj, count in report.metadata_counts.by_object().items():
            print(f"  {obj} sharing rules: {count.total} (territory-based: {count.territory})")
        if report.metadata_counts.skipped_objects:
            print(f"Sharing rules not retrieved: {', '.join(report.metadata_counts.skipped_objects)}")
        print(f"Hard dependencies: {report.hard_dependencies.count}")
        print(f"Soft dependencies: {report.soft_dependencies.count} ({report.soft_dependencies.skipped_count} skipped)")
    elif command == "extract":
        print(f"Files extracted: {len(report.extracted_files)}")
        _print_discrepancies(report.discrepancies)
    elif command == "transform":
        for name, count in report.tm2_counts.to_dict().items():
            print(f"  {name}: {count}")
        print(f"TerritoryManual shares (not migrated): {report.territory_manual_share_count}")
        print(f"Untranslatable items: {report.untranslatable_count}")
        _print_discrepancies(report.discrepancies)
    elif command == "import":
        print(f"Deployment: {report.deployment.status}")
        print(f"Territory2 model state: {report.model_state}")
        if report.deployment.success:
            print("Activate the Territory2 model in the target org, then run deploy.")
    elif command == "deploy":
        print(f"Status: {report.status.value}")
        print(f"Sharing rules deployed: {report.sharing_rules_deployed}")
        print(f"Data load skipped: {report.data_load_skipped}")
        for result in report.load_results:
            print(f"  {result.object_name}: {result.records_processed} processed, {result.records_failed} failed")
    elif command == "clean":
        print(f"Deployment: {report.deployment.status}")
        print(f"Components removed: {report.rules_removed}")


def _print_discrepancies(discrepancies) -> None:
    if not discrepancies:
        print("Record counts reconciled with no discrepancies")
        return
    print("Discrepancies:")
    for d in discrepancies:
        print(f"  {d.entity}: expected {d.expected}, got {d.actual}")


def show_status(args, settings: Settings) -> int:
    """Print which stage reports exist and are valid."""
    paths = FilePaths.for_base_dir(args.base_dir or settings.base_dir)
    reports = ReportStore().read_all(paths)

    print("\n" + "=" * 60)
    print(f"TM TOOLS STATUS ({paths.base_dir})")
    print("=" * 60)
    for stage, report in reports.items():
        if report is None:
            state = "not completed"
        else:
            generated = date_parser.parse(report.generated_at)
            state = f"completed {generated:%Y-%m-%d %H:%M:%S} UTC"
        print(f"  {stage:<10} {state}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
