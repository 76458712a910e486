"""
Logging configuration
"""

import logging
import re
import sys
from typing import Iterable, Optional

from core.config import settings

_AUTH_HEADER = re.compile(r"(Authorization['\"]?\s*[:=]\s*['\"]?Basic\s+)[A-Za-z0-9+/=]+", re.IGNORECASE)
REDACTED = "***"


class CredentialRedactionFilter(logging.Filter):
    """Mask credential material in formatted log messages."""

    def __init__(self, secrets: Optional[Iterable[str]] = None):
        super().__init__()
        self.secrets = [s for s in (secrets or []) if s]

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _AUTH_HEADER.sub(r"\1" + REDACTED, message)
        for secret in self.secrets:
            redacted = redacted.replace(secret, REDACTED)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


def setup_logging(level: Optional[str] = None):
    """Configure application logging"""

    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    secrets = []
    if settings.IMPACT_AUTH_TOKEN is not None:
        secrets.append(settings.IMPACT_AUTH_TOKEN.get_secret_value())
    handler.addFilter(CredentialRedactionFilter(secrets))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
        force=True
    )

    # Reduce library noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {level_name} level")
