"""Configuration domain primitives for lumitag."""

from __future__ import annotations

from pathlib import Path

from .paths import AppPaths
from .schema import AppSettings, InferenceSettings, JobSettings, TaggerSettings
from .service import SettingsService

_APP_PATHS = AppPaths()
_SERVICE = SettingsService(_APP_PATHS)


def configure(app_paths: AppPaths) -> None:
    """Replace the default :class:`SettingsService` dependencies."""

    global _APP_PATHS, _SERVICE
    _APP_PATHS = app_paths
    _SERVICE = SettingsService(_APP_PATHS)


def get_app_paths() -> AppPaths:
    """Return the :class:`AppPaths` installed by :func:`configure`."""

    return _APP_PATHS


def config_path() -> Path:
    """Return the path to the configuration file."""

    return _SERVICE.config_path


def load_settings() -> AppSettings:
    """Load application settings using the shared service."""

    return _SERVICE.load()


__all__ = [
    "AppPaths",
    "AppSettings",
    "InferenceSettings",
    "JobSettings",
    "SettingsService",
    "TaggerSettings",
    "config_path",
    "configure",
    "get_app_paths",
    "load_settings",
]
