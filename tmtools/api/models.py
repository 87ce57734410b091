"""Pydantic models for API responses."""

from typing import List, Optional
from pydantic import BaseModel


class StageSummary(BaseModel):
    stage: str
    report_file: str
    completed: bool
    generated_at: Optional[str] = None
    status: Optional[str] = None


class ReportListResponse(BaseModel):
    base_dir: str
    stages: List[StageSummary]
    completed: int
