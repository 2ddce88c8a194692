"""Smoke tests covering the logging bootstrap helper."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from conftest import make_app_paths
from utils.logging_setup import LOG_FORMAT, setup_logging


@pytest.fixture
def restore_root_logging():
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


def test_setup_logging_creates_rotating_file(tmp_path: Path, monkeypatch, restore_root_logging) -> None:
    """setup_logging should prepare the log file and accept writes."""

    monkeypatch.delenv("LUMI_LOG_LEVEL", raising=False)
    app_paths = make_app_paths(tmp_path, env={"LUMI_DATA_DIR": str(tmp_path / "data")})

    log_path = setup_logging(app_paths)
    logging.getLogger("lumitag.tests").info("logging smoke test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_path == tmp_path / "data" / "logs" / "app.log"
    contents = log_path.read_text(encoding="utf-8")
    assert "logging smoke test" in contents
    assert "INFO [lumitag.tests]" in contents
    assert "%(levelname)s" in LOG_FORMAT


def test_log_level_from_environment(tmp_path: Path, monkeypatch, restore_root_logging) -> None:
    monkeypatch.setenv("LUMI_LOG_LEVEL", "warning")

    setup_logging(make_app_paths(tmp_path))

    assert logging.getLogger().level == logging.WARNING


def test_unknown_level_falls_back_to_info(tmp_path: Path, restore_root_logging) -> None:
    setup_logging(make_app_paths(tmp_path), level="chatty")

    assert logging.getLogger().level == logging.INFO
