"""
Pydantic schemas for run output handed to the reporting collaborator
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.exceptions import PipelineException
from schemas.pipeline import ExportJob
from schemas.records import ClassifiedRecord, TeamTotals, ValidationReport


class ItemFailure(BaseModel):
    """Per-report failure recorded instead of aborting the run."""
    report_id: str
    job_id: Optional[str] = None
    phase: str
    error_type: str
    message: str

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        report_id: str,
        phase: str,
        job_id: Optional[str] = None
    ) -> "ItemFailure":
        message = exc.message if isinstance(exc, PipelineException) else str(exc)
        return cls(
            report_id=report_id,
            job_id=job_id,
            phase=phase,
            error_type=type(exc).__name__,
            message=message
        )


class ReportPayload(BaseModel):
    """One processed export: sanitized rows, their attribution and validation."""
    run_id: str
    report_id: str
    report_name: Optional[str] = None
    job_id: str
    headers: Tuple[str, ...]
    records: List[ClassifiedRecord] = Field(default_factory=list)
    validation: ValidationReport = Field(default_factory=ValidationReport)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def rows(self) -> List[Tuple[str, ...]]:
        return [record.cells for record in self.records]


class RunSummary(BaseModel):
    """Structured summary returned by every run, including partial failures."""
    run_id: str
    scheduled: int = 0
    succeeded: int = 0
    failed: int = 0
    pending: int = 0
    total_rows: int = 0
    unassigned_count: int = 0
    interrupted: bool = False
    failures: List[ItemFailure] = Field(default_factory=list)
    api_metrics: Dict[str, int] = Field(default_factory=dict)


class RunResult(BaseModel):
    """Everything a run produced; ``jobs`` is the resume state."""
    summary: RunSummary
    jobs: List[ExportJob] = Field(default_factory=list)
    team_totals: Dict[str, TeamTotals] = Field(default_factory=dict)
