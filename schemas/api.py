"""
Pydantic schemas for API request/response models
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

from models.base import JobStatus, RunStatus

# ============================================================================
# Run Schemas
# ============================================================================


class RunInfo(BaseModel):
    """Summary of one pipeline run"""
    run_id: str
    status: RunStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    scheduled: int = 0
    succeeded: int = 0
    failed: int = 0
    pending: int = 0
    total_rows: int = 0
    unassigned_count: int = 0
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class JobInfo(BaseModel):
    """Export job state as last checkpointed"""
    position: int
    report_id: str
    report_name: Optional[str] = None
    job_id: str
    status: JobStatus
    row_count: int = 0
    poll_attempts: int = 0
    error: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class RunDetailResponse(RunInfo):
    jobs: List[JobInfo] = Field(default_factory=list)
    failures: List[Dict[str, Any]] = Field(default_factory=list)
    api_metrics: Dict[str, int] = Field(default_factory=dict)

    @validator("failures", pre=True)
    def failures_when_null(cls, v):
        return v or []

    @validator("api_metrics", pre=True)
    def metrics_when_null(cls, v):
        return v or {}


class RunListResponse(BaseModel):
    runs: List[RunInfo]
    total: int

    class Config:
        json_schema_extra = {
            "example": {
                "runs": [
                    {
                        "run_id": "0b6f2a4e-8c1d-4f57-9a53-5d3c1f0e9b21",
                        "status": "partial",
                        "started_at": "2024-01-15T10:00:00Z",
                        "completed_at": "2024-01-15T10:06:12Z",
                        "scheduled": 2,
                        "succeeded": 1,
                        "failed": 1,
                        "total_rows": 1250,
                        "unassigned_count": 37
                    }
                ],
                "total": 1
            }
        }


# ============================================================================
# Team Attribution Schemas
# ============================================================================

class SkuInfo(BaseModel):
    sku: str
    units: Decimal
    revenue: Decimal


class TeamTotalsInfo(BaseModel):
    team_id: str
    display_name: str
    description: str = ""
    revenue: Decimal
    conversion_count: int
    target: Optional[Decimal] = None
    percent_of_target: Optional[Decimal] = Field(
        None,
        description="Revenue as a percentage of the team target; null without a target"
    )
    sku_totals: List[SkuInfo] = Field(default_factory=list)


class TeamsResponse(BaseModel):
    """Team totals for one run, highest revenue first"""
    run_id: Optional[str] = None
    teams: List[TeamTotalsInfo] = Field(default_factory=list)
    total_revenue: Decimal = Decimal("0")
    unassigned_revenue: Decimal = Decimal("0")
    attribution_coverage: Decimal = Field(
        Decimal("0"),
        description="Share of revenue left Unassigned (unassigned / total)"
    )


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    last_run: Optional[RunInfo] = None
    scheduler_enabled: bool = False
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        last_run = values.get("last_run")
        if last_run is None:
            return "healthy"  # No run recorded yet

        status = RunStatus(last_run.status)
        if status is RunStatus.FAILED:
            return "unhealthy"
        if status in (RunStatus.PARTIAL, RunStatus.INTERRUPTED):
            return "degraded"
        return "healthy"


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Run not found",
                "detail": "No pipeline run with id 0b6f2a4e-...",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
