"""Logging configuration using loguru."""

import sys
from pathlib import Path
from loguru import logger

from knowitall.utils.config import get_settings


def setup_logger():
    """Configure application logging using loguru.

    Installs a console sink and, unless disabled, a rotating file sink.
    """
    settings = get_settings()

    # Remove default handler
    logger.remove()

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    logger.add(
        sys.stdout,
        format=console_format,
        level=settings.log_level,
        colorize=True,
    )

    if not settings.log_to_file:
        logger.info(f"Logger initialized with level: {settings.log_level} (console only)")
        return logger

    log_path = Path(settings.log_file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    if settings.log_format == "json":
        logger.add(
            log_path,
            format="{message}",
            level=settings.log_level,
            rotation=f"{settings.log_max_size_mb} MB",
            retention=settings.log_backup_count,
            serialize=True,
            enqueue=True,  # written from worker threads
        )
    else:
        logger.add(
            log_path,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
                "{name}:{function}:{line} - {message}"
            ),
            level=settings.log_level,
            rotation=f"{settings.log_max_size_mb} MB",
            retention=settings.log_backup_count,
            enqueue=True,
        )

    logger.info(f"Logger initialized with level: {settings.log_level}")
    logger.info(f"Logging to file: {log_path}")

    return logger


def get_logger():
    """Get the configured logger instance."""
    return logger
