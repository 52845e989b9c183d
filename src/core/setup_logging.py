"""Loguru configuration."""

import sys

from loguru import logger

from src.core.config import Settings, get_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(settings: Settings | None = None) -> None:
    """Configure loguru based on settings.

    Replaces the default handler with a colourised console sink and,
    when ``embellishment_log_file`` is set, a daily rotated file sink.

    Args:
        settings: Optional settings override. Uses default if not provided.
    """
    settings = settings or get_settings()

    logger.remove()  # Remove default handler

    level = "DEBUG" if settings.embellishment_debug else settings.embellishment_log_level

    logger.add(
        sys.stderr,
        level=level,
        format=LOG_FORMAT,
        colorize=True,
    )

    if settings.embellishment_log_file:
        logger.add(
            settings.embellishment_log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.embellishment_log_level,
            format=LOG_FORMAT,
        )
