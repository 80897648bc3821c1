"""Logging configuration for the kubeprov package."""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from .config import Config

NOISY_LOGGERS = ("paramiko", "urllib3", "kubernetes")


def setup_logging(
    debug_mode: bool = False,
    log_file: Optional[str] = None,
    max_size_mb: int = 100,
    backup_count: int = 5,
) -> None:
    """Configure root logging for the CLI and API.

    Args:
        debug_mode: Log at DEBUG level instead of the configured level
        log_file: Optional path to a rotating log file
        max_size_mb: Maximum log file size in MB before rotation
        backup_count: Number of rotated files to keep
    """
    level = logging.DEBUG if debug_mode else getattr(logging, Config.LOG_LEVEL, logging.INFO)
    handlers = [logging.StreamHandler()]

    if log_file:
        path = Path(log_file).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            filename=path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        ))

    logging.basicConfig(level=level, format=Config.LOG_FORMAT, handlers=handlers, force=True)

    # Disable debug logging for noisy libraries
    if not debug_mode:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Set up a standalone logger with the specified name and log level.

    Args:
        name: The name of the logger
        level: The logging level (default: logging.INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Don't add handlers if they're already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
