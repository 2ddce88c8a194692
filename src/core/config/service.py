"""Service for loading lumitag configuration."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .paths import AppPaths
from .schema import AppSettings

logger = logging.getLogger(__name__)


class SettingsService:
    """Load and validate :class:`AppSettings` from ``config.yaml``."""

    def __init__(self, app_paths: AppPaths, *, filename: str = "config.yaml") -> None:
        self._app_paths = app_paths
        self._filename = filename

    @property
    def app_paths(self) -> AppPaths:
        return self._app_paths

    @property
    def config_path(self) -> Path:
        """Path to the configuration file."""

        return self._app_paths.config_path(self._filename)

    def load(self) -> AppSettings:
        """Load the configuration from disk with graceful fallbacks."""

        path = self.config_path
        if not path.exists():
            return AppSettings()

        try:
            raw_text = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Unable to read settings from %s: %s", path, exc)
            return AppSettings()

        try:
            raw_data = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            logger.warning("Invalid YAML in %s: %s", path, exc)
            return AppSettings()

        try:
            return AppSettings.from_mapping(raw_data)
        except ValidationError as exc:
            logger.warning("Invalid settings in %s: %s", path, exc)
            return AppSettings()


__all__ = ["SettingsService"]
