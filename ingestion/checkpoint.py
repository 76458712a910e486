"""
Persisted run state: pipeline run records and export job checkpoints.

Saving the job list after scheduling and after every processed job lets an
interrupted run re-enter the processing phase without re-scheduling.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import PersistenceError
from models.base import RunStatus
from models.export_job import ExportJobRecord
from models.pipeline_run import PipelineRun
from schemas.pipeline import DateRange, ExportJob
from schemas.summary import ItemFailure, RunSummary
import logging

logger = logging.getLogger(__name__)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def job_from_record(record: ExportJobRecord) -> ExportJob:
    date_range = None
    if record.date_range:
        date_range = DateRange(start=record.date_range["start"], end=record.date_range["end"])
    return ExportJob(
        report_id=record.report_id,
        report_name=record.report_name,
        job_id=record.job_id,
        status=record.status,
        result_location=record.result_location,
        scheduled_at=_aware_utc(record.scheduled_at),
        date_range=date_range,
        error=record.error,
        row_count=record.row_count or 0,
        unassigned_count=record.unassigned_count or 0,
        poll_attempts=record.poll_attempts or 0
    )


class JobStore:
    """
    SQLAlchemy-backed store for run records and job checkpoints.

    Every write commits; failures are raised as PersistenceError.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get_run(self, run_id: str) -> Optional[PipelineRun]:
        result = await self.db.execute(
            select(PipelineRun).where(PipelineRun.run_id == run_id)
        )
        return result.scalar_one_or_none()

    async def start_run(self, run_id: str) -> PipelineRun:
        """Create the run record, or mark an existing one as running again."""
        try:
            run = await self.get_run(run_id)
            if run is None:
                run = PipelineRun(
                    run_id=run_id,
                    status=RunStatus.RUNNING,
                    started_at=datetime.utcnow()
                )
                self.db.add(run)
            else:
                run.status = RunStatus.RUNNING
                run.completed_at = None
            await self.db.commit()
            return run
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(
                "Failed to start pipeline run",
                context={"run_id": run_id, "operation": "start"},
                original_exception=e
            )

    async def save_jobs(self, run_id: str, jobs: List[ExportJob]) -> None:
        """Upsert the job list, keyed by (run_id, job_id)."""
        try:
            result = await self.db.execute(
                select(ExportJobRecord).where(ExportJobRecord.run_id == run_id)
            )
            existing = {record.job_id: record for record in result.scalars().all()}

            for position, job in enumerate(jobs):
                record = existing.get(job.job_id)
                if record is None:
                    record = ExportJobRecord(run_id=run_id, job_id=job.job_id)
                    self.db.add(record)
                record.position = position
                record.report_id = job.report_id
                record.report_name = job.report_name
                record.status = job.status
                record.result_location = job.result_location
                record.scheduled_at = _naive_utc(job.scheduled_at)
                record.date_range = (
                    {"start": job.date_range.start_param, "end": job.date_range.end_param}
                    if job.date_range else None
                )
                record.error = job.error
                record.row_count = job.row_count
                record.unassigned_count = job.unassigned_count
                record.poll_attempts = job.poll_attempts
                record.updated_at = datetime.utcnow()

            await self.db.commit()
            logger.debug(f"Checkpointed {len(jobs)} jobs for run {run_id}")
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(
                "Failed to save export jobs",
                context={"run_id": run_id, "operation": "save", "jobs": len(jobs)},
                original_exception=e
            )

    async def load_jobs(self, run_id: str) -> List[ExportJob]:
        try:
            result = await self.db.execute(
                select(ExportJobRecord)
                .where(ExportJobRecord.run_id == run_id)
                .order_by(ExportJobRecord.position)
            )
            return [job_from_record(record) for record in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to load export jobs",
                context={"run_id": run_id, "operation": "load"},
                original_exception=e
            )

    async def load_failures(self, run_id: str) -> List[ItemFailure]:
        """Failures recorded by earlier parts of a run."""
        run = await self.get_run(run_id)
        if run is None or not run.failures:
            return []
        return [ItemFailure(**failure) for failure in run.failures]

    async def latest_interrupted_run(self) -> Optional[str]:
        result = await self.db.execute(
            select(PipelineRun.run_id)
            .where(PipelineRun.status == RunStatus.INTERRUPTED)
            .order_by(PipelineRun.started_at.desc(), PipelineRun.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def finish_run(
        self,
        summary: RunSummary,
        status: RunStatus,
        error_message: Optional[str] = None
    ) -> None:
        try:
            run = await self.get_run(summary.run_id)
            if run is None:
                run = PipelineRun(run_id=summary.run_id, started_at=datetime.utcnow())
                self.db.add(run)

            run.status = status
            run.completed_at = datetime.utcnow()
            run.duration_seconds = (run.completed_at - run.started_at).total_seconds()
            run.scheduled = summary.scheduled
            run.succeeded = summary.succeeded
            run.failed = summary.failed
            run.pending = summary.pending
            run.total_rows = summary.total_rows
            run.unassigned_count = summary.unassigned_count
            run.failures = [f.dict() for f in summary.failures]
            run.api_metrics = summary.api_metrics
            run.error_message = error_message

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(
                "Failed to record pipeline run",
                context={"run_id": summary.run_id, "operation": "finish"},
                original_exception=e
            )
