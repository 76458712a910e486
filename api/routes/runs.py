"""
Pipeline run history endpoints
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.dependencies import get_db
from models.pipeline_run import PipelineRun
from schemas.api import JobInfo, RunDetailResponse, RunInfo, RunListResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/runs", tags=["Runs"])


@router.get("", response_model=RunListResponse)
async def list_runs(
    limit: int = Query(20, ge=1, le=100, description="Number of recent runs to return"),
    db: AsyncSession = Depends(get_db)
):
    """Most recent pipeline runs, newest first."""
    total = (await db.execute(select(func.count()).select_from(PipelineRun))).scalar()

    result = await db.execute(
        select(PipelineRun)
        .order_by(PipelineRun.started_at.desc(), PipelineRun.id.desc())
        .limit(limit)
    )
    runs = [RunInfo.model_validate(run) for run in result.scalars().all()]
    return RunListResponse(runs=runs, total=total or 0)


@router.get("/{run_id}", response_model=RunDetailResponse)
async def get_run(run_id: str, db: AsyncSession = Depends(get_db)):
    """One run with its job checkpoints, failures and request counters."""
    result = await db.execute(
        select(PipelineRun)
        .where(PipelineRun.run_id == run_id)
        .options(selectinload(PipelineRun.jobs))
    )
    run = result.scalar_one_or_none()
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")

    info = RunInfo.model_validate(run)
    return RunDetailResponse(
        **info.model_dump(),
        jobs=[JobInfo.model_validate(job) for job in run.jobs],
        failures=run.failures,
        api_metrics=run.api_metrics
    )
