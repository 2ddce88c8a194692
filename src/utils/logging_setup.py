"""Logging bootstrap shared by the command line tools."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from core.config import AppPaths, get_app_paths

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_log_level(value: str | None) -> int:
    if not value:
        return logging.INFO
    level = logging.getLevelName(value.upper())
    if isinstance(level, int):
        return level
    return logging.INFO


def setup_logging(app_paths: AppPaths | None = None, *, level: str | None = None) -> Path:
    """Configure logging to stdout and a rotating application log file.

    Returns the path of the log file.
    """

    resolved = _resolve_log_level(level or os.environ.get("LUMI_LOG_LEVEL"))
    root_logger = logging.getLogger()

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # pragma: no cover - best effort cleanup
            pass

    root_logger.setLevel(resolved)

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(resolved)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    paths = app_paths or get_app_paths()
    log_dir = paths.log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "app.log"
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(resolved)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)
    return log_path


__all__ = ["setup_logging"]
