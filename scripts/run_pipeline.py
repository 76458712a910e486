"""
Script to run the Impact ingestion and attribution pipeline once.

Usage:
    python scripts/run_pipeline.py            # new run
    python scripts/run_pipeline.py --resume   # resume the latest interrupted run
    python scripts/run_pipeline.py --check    # validate configuration only
"""

import argparse
import asyncio
import json
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import load_settings
from core.database import build_engine, build_session_maker
from core.exceptions import PipelineException
from core.logging import setup_logging
from ingestion.runner import run_pipeline

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run the Impact attribution pipeline")
    parser.add_argument("--resume", action="store_true", help="Resume the latest interrupted run")
    parser.add_argument("--check", action="store_true", help="Validate configuration and exit")
    parser.add_argument("--overrides", help="JSON file with non-secret setting overrides")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    settings = load_settings(args.overrides)

    validation = settings.validate_config()
    if args.check:
        print(json.dumps(validation.model_dump(), indent=2))
        return 0 if validation.is_valid else 1

    engine = build_engine(settings.DATABASE_URL)
    session_maker = build_session_maker(engine)

    try:
        async with session_maker() as session:
            result = await run_pipeline(session, settings, resume=args.resume)
    except PipelineException as e:
        logger.error(f"Pipeline failed: {e}")
        return 1
    finally:
        await engine.dispose()

    if result is None:
        logger.info("Nothing to resume")
        return 0

    print(result.summary.model_dump_json(indent=2))
    return 0 if not result.summary.failed else 2


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(main()))
