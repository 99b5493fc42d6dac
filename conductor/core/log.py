"""Loguru sink configuration."""

import sys
from pathlib import Path

from loguru import logger

from conductor.core.config import Settings, get_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(settings: Settings | None = None) -> None:
    """Replace loguru's default handler with the configured sinks."""
    settings = settings or get_settings()
    logger.remove()

    level = "DEBUG" if settings.conductor_debug else settings.conductor_log_level
    logger.add(
        lambda msg: print(msg, end="", file=sys.stderr),
        level=level,
        format=LOG_FORMAT,
        colorize=True,
    )

    if settings.conductor_log_file:
        Path(settings.conductor_log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.conductor_log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.conductor_log_level,
            format=LOG_FORMAT,
        )
