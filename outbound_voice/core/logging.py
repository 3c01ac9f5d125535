"""Logging configuration."""
import logging
import sys
from typing import Optional

from outbound_voice.core.config import settings


def setup_logging(level: Optional[str] = None) -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Set third-party loggers to WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def mask_identifier(value: Optional[str], keep: int = 8) -> str:
    """Shorten a provider identifier for log output."""
    if not value:
        return "<none>"
    if len(value) <= keep:
        return value
    return f"{value[:keep]}..."
