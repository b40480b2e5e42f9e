"""Centralized logging configuration for Fracture."""

import logging
import logging.config
import os
import sys

from pathlib import Path
from typing import Any

from fracture.constants import (
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_DIR,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_MAX_BYTES,
)

# Scoring runs on worker threads, so the thread name is part of every record
FILE_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_logging_configured = False


def get_log_path() -> Path:
    """
    Get path to the active log file, creating the log directory if needed.

    Returns:
        Path to fracture.log
    """
    os.makedirs(DEFAULT_LOG_DIR, mode=0o700, exist_ok=True)
    return DEFAULT_LOG_DIR / DEFAULT_LOG_FILE


def _get_user_logging_config() -> dict[str, Any]:
    """Read the [logging] section of the user config, or {} if unavailable."""
    try:
        from fracture.config import load_config

        section = load_config().get("logging", {})
    except Exception:
        return {}
    return section if isinstance(section, dict) else {}


def _build_logging_config(
    verbose: bool = False,
    console_format: str | None = None,
) -> dict[str, Any]:
    """
    Build the dictConfig configuration dictionary.

    Args:
        verbose: If True, set console to DEBUG level
        console_format: Override console format string

    Returns:
        Dictionary suitable for logging.config.dictConfig()
    """
    user_config = _get_user_logging_config()

    handlers: dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG" if verbose else "INFO",
            "formatter": "console",
            "stream": "ext://sys.stderr",
        },
    }

    if user_config.get("enabled", True):
        max_size_mb = user_config.get("max_size_mb")
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": str(user_config.get("level", "DEBUG")).upper(),
            "formatter": "file",
            "filename": str(get_log_path()),
            "maxBytes": (
                int(max_size_mb) * 1024 * 1024 if max_size_mb else DEFAULT_LOG_MAX_BYTES
            ),
            "backupCount": user_config.get("backup_count", DEFAULT_LOG_BACKUP_COUNT),
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": console_format or CONSOLE_FORMAT},
            "file": {"format": FILE_FORMAT},
        },
        "handlers": handlers,
        "loggers": {
            "fracture": {"level": "DEBUG", "propagate": True},
        },
        "root": {
            "level": "DEBUG" if verbose else "INFO",
            "handlers": list(handlers),
        },
    }


def setup_logging(
    *,
    verbose: bool = False,
    console_format: str | None = None,
) -> None:
    """
    Configure logging once per process.

    Args:
        verbose: If True, set console to DEBUG level
        console_format: Override console format string. If None, uses full format.
    """
    global _logging_configured

    if _logging_configured:
        return

    try:
        logging.config.dictConfig(
            _build_logging_config(verbose=verbose, console_format=console_format)
        )
    except Exception as e:
        sys.stderr.write(f"WARNING: Failed to configure logging: {e}\n")
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format=console_format or "%(levelname)s: %(message)s",
        )

    _logging_configured = True
