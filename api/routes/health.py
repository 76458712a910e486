"""
Health check endpoint with database and last run status
"""

from datetime import datetime
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from core.config import settings
from models.pipeline_run import PipelineRun
from schemas.api import HealthCheckResponse, RunInfo

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - The most recent pipeline run
    """
    db_connected = False
    last_run = None

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True

        result = await db.execute(
            select(PipelineRun).order_by(PipelineRun.started_at.desc(), PipelineRun.id.desc()).limit(1)
        )
        run = result.scalar_one_or_none()
        if run is not None:
            last_run = RunInfo.model_validate(run)
    except SQLAlchemyError as e:
        logger.error(f"Health check database query failed: {str(e)}")

    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        last_run=last_run,
        scheduler_enabled=settings.SCHEDULER_ENABLED
    )
