"""
FastAPI dependencies
"""

from typing import AsyncGenerator
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import async_session_maker
from core.exceptions import ConfigError
from ingestion.runner import load_configured_rules
from ingestion.transformers.attribution import RuleSet

logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session per request"""
    async with async_session_maker() as session:
        yield session


def get_rule_set() -> RuleSet:
    """Team rules for display names and targets; empty when they cannot be loaded."""
    try:
        return load_configured_rules(settings)
    except ConfigError as e:
        logger.warning(f"Team rules unavailable, using derived team names: {e.message}")
        return RuleSet.empty()
