"""Process-wide logging setup."""
from __future__ import annotations

import logging

from .config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install a predictable root handler, replacing whatever the host set up."""

    log_level = logging.getLevelName((level or settings.log_level).upper())
    logging.basicConfig(level=log_level, format=LOG_FORMAT, force=True)
    # httpx logs every request at INFO; keep it one notch quieter than ours.
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger(__name__).info("Logging configured at %s", logging.getLevelName(log_level))
