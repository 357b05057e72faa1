"""Logging configuration"""
import logging
import sys
from typing import Optional

from booking_engine.config import get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure application logging once, at process start."""
    level_name = (level or get_settings().LOG_LEVEL).upper()

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
