"""Logging configuration for the sync service."""

import logging
import sys
from pathlib import Path

# Define log format
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_dir: str | Path = "logs") -> logging.Logger:
    """Configure logging for the application."""
    logs_path = Path(log_dir)
    logs_path.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    # File handler - write to logs/app.log
    file_handler = logging.FileHandler(logs_path / "app.log")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    # Console handler - write to stdout
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Route uvicorn through the same handlers
    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        logger = logging.getLogger(logger_name)
        logger.handlers = []
        logger.addHandler(file_handler)
        logger.addHandler(console_handler)
        logger.propagate = False

    # httpx logs every request at INFO; provider pagination is chatty
    logging.getLogger("httpx").setLevel(logging.WARNING)

    app_logger = logging.getLogger("donorsync")
    app_logger.setLevel(logging.DEBUG)

    return app_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(f"donorsync.{name}")
