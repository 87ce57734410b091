"""Stage report endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from ..models import ReportListResponse, StageSummary
from ...config import get_settings
from ...services.file_paths import FilePaths
from ...services.report_store import STAGE_REPORTS, ReportStore

router = APIRouter()


def get_file_paths() -> FilePaths:
    """Resolve report locations from the configured base directory."""
    return FilePaths.for_base_dir(get_settings().base_dir)


def get_report_store() -> ReportStore:
    return ReportStore()


@router.get("", response_model=ReportListResponse)
async def list_reports(
    paths: FilePaths = Depends(get_file_paths),
    store: ReportStore = Depends(get_report_store),
):
    """Summarize which stages have a valid report."""
    stages = []
    for stage, report in store.read_all(paths).items():
        status = getattr(report, "status", None)
        stages.append(StageSummary(
            stage=stage,
            report_file=paths.relative(paths.reports()[stage]),
            completed=report is not None,
            generated_at=report.generated_at if report is not None else None,
            status=status.value if status is not None else None,
        ))
    return ReportListResponse(
        base_dir=str(paths.base_dir),
        stages=stages,
        completed=sum(1 for s in stages if s.completed),
    )


@router.get("/{stage}")
async def get_report(
    stage: str,
    paths: FilePaths = Depends(get_file_paths),
    store: ReportStore = Depends(get_report_store),
) -> Dict[str, Any]:
    """Get a validated stage report."""
    if stage not in STAGE_REPORTS:
        raise HTTPException(status_code=404, detail=f"Unknown stage: {stage}")
    report = store.read_report(paths.reports()[stage], STAGE_REPORTS[stage])
    if report is None:
        raise HTTPException(status_code=404, detail=f"No valid {stage} report found")
    return report.to_dict()
