import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import build_engine
from core.logging import setup_logging
from models.base import Base
# Import all models to ensure they are registered
from models.pipeline_run import PipelineRun  # noqa: F401
from models.export_job import ExportJobRecord  # noqa: F401
from models.team_totals import TeamTotalsRecord  # noqa: F401
from models.classified_record import ClassifiedRow  # noqa: F401

logger = logging.getLogger(__name__)


async def init_database(database_url=None):
    logger.info("Connecting to database...")
    engine = build_engine(database_url or settings.DATABASE_URL)

    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
