import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings, settings as default_settings
from core.database import async_session_maker
from core.exceptions import PipelineException
from ingestion.runner import run_pipeline

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """
    Periodic pipeline trigger.

    Each tick first resumes an interrupted run if there is one, otherwise
    starts a new run. Ticks never overlap.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_maker: Optional[async_sessionmaker] = None
    ):
        self.settings = settings or default_settings
        self.SessionLocal = session_maker or async_session_maker
        self.scheduler = AsyncIOScheduler()

    async def run_pipeline_job(self):
        """Job to run the pipeline"""
        logger.info("Scheduler: Starting pipeline job")
        async with self.SessionLocal() as session:
            try:
                result = await run_pipeline(session, self.settings, resume=True)
                if result is None:
                    result = await run_pipeline(session, self.settings)
                logger.info(
                    f"Scheduler: run {result.summary.run_id} finished "
                    f"(succeeded={result.summary.succeeded}, failed={result.summary.failed})"
                )
            except PipelineException as e:
                logger.error(f"Scheduler: pipeline job failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_pipeline_job,
            trigger=IntervalTrigger(minutes=self.settings.SCHEDULE_INTERVAL_MINUTES),
            id="pipeline_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(
            f"Pipeline scheduler started (every {self.settings.SCHEDULE_INTERVAL_MINUTES} minutes)"
        )

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Pipeline scheduler stopped")
