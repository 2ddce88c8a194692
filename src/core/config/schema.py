"""Pydantic schemas for lumitag configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tagger.base import InferenceParams

DEFAULT_MODEL_FILENAME = "swin-v2-tagger-v3.onnx"
DEFAULT_LABELS_FILENAME = "selected_tags.csv"
DEFAULT_INPUT_SIZE = 448
DEFAULT_REPORT_INTERVAL = 10
DEFAULT_THUMBNAIL_SIZE = 400
DEFAULT_THUMBNAIL_QUALITY = 85


def _normalise_path(value: str | Path) -> str:
    return str(Path(value).expanduser())


def _clamp_unit(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(1.0, max(0.0, number))


class InferenceSettings(BaseModel):
    """Default postprocessing knobs applied when a caller passes none."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    general_threshold: float = 0.35
    character_threshold: float = 0.85
    general_mcut_enabled: bool = False
    character_mcut_enabled: bool = False
    max_tags: int = 50

    @field_validator("general_threshold", mode="before")
    @classmethod
    def _coerce_general(cls, value: Any) -> float:
        return _clamp_unit(value, 0.35)

    @field_validator("character_threshold", mode="before")
    @classmethod
    def _coerce_character(cls, value: Any) -> float:
        return _clamp_unit(value, 0.85)

    @field_validator("max_tags", mode="before")
    @classmethod
    def _coerce_max_tags(cls, value: Any) -> int:
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 50

    def to_params(self) -> InferenceParams:
        return InferenceParams(
            general_threshold=self.general_threshold,
            character_threshold=self.character_threshold,
            general_mcut_enabled=self.general_mcut_enabled,
            character_mcut_enabled=self.character_mcut_enabled,
            max_tags=self.max_tags,
        )


class TaggerSettings(BaseModel):
    """Settings used to locate and run the ONNX tagger."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    models_dir: str | None = None
    model_filename: str = DEFAULT_MODEL_FILENAME
    labels_filename: str = DEFAULT_LABELS_FILENAME
    input_size: int = DEFAULT_INPUT_SIZE
    providers: list[str] | None = None
    lock_timeout: float | None = None
    inference: InferenceSettings = Field(default_factory=InferenceSettings)

    @field_validator("models_dir", mode="before")
    @classmethod
    def _validate_optional_path(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        return _normalise_path(str(value))

    @field_validator("input_size", mode="before")
    @classmethod
    def _coerce_input_size(cls, value: Any) -> int:
        try:
            size = int(value)
        except (TypeError, ValueError):
            return DEFAULT_INPUT_SIZE
        return size if size > 0 else DEFAULT_INPUT_SIZE

    @field_validator("providers", mode="before")
    @classmethod
    def _normalise_providers(cls, value: Any) -> list[str] | None:
        if not value:
            return None
        if isinstance(value, str):
            value = [value]
        return [str(item) for item in value if item]

    @field_validator("lock_timeout", mode="before")
    @classmethod
    def _coerce_lock_timeout(cls, value: Any) -> float | None:
        # None waits for the running inference to finish
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            return None
        return timeout if timeout > 0 else None


class JobSettings(BaseModel):
    """Background job tuning. ``None`` worker counts defer to the environment."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    thumbnail_workers: int | None = None
    health_workers: int | None = None
    tagging_workers: int | None = None
    report_interval: int = DEFAULT_REPORT_INTERVAL
    thumbnail_size: int = DEFAULT_THUMBNAIL_SIZE
    thumbnail_quality: int = DEFAULT_THUMBNAIL_QUALITY

    @field_validator("thumbnail_workers", "health_workers", "tagging_workers", mode="before")
    @classmethod
    def _coerce_workers(cls, value: Any) -> int | None:
        if value in (None, ""):
            return None
        try:
            workers = int(value)
        except (TypeError, ValueError):
            return None
        return workers if workers > 0 else None

    @field_validator("report_interval", mode="before")
    @classmethod
    def _coerce_interval(cls, value: Any) -> int:
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return DEFAULT_REPORT_INTERVAL

    @field_validator("thumbnail_size", mode="before")
    @classmethod
    def _coerce_thumbnail_size(cls, value: Any) -> int:
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return DEFAULT_THUMBNAIL_SIZE

    @field_validator("thumbnail_quality", mode="before")
    @classmethod
    def _coerce_quality(cls, value: Any) -> int:
        try:
            return min(100, max(1, int(value)))
        except (TypeError, ValueError):
            return DEFAULT_THUMBNAIL_QUALITY


class AppSettings(BaseModel):
    """Validated configuration for the whole application."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tagger: TaggerSettings = Field(default_factory=TaggerSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)
    thumbnail_dir: str | None = None

    @field_validator("thumbnail_dir", mode="before")
    @classmethod
    def _normalise_thumbnail_dir(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        return _normalise_path(str(value))

    def resolved_thumbnail_dir(self, default: str | Path) -> Path:
        """Return the configured thumbnail directory, using ``default`` when unset."""

        return Path(self.thumbnail_dir) if self.thumbnail_dir else Path(default)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "AppSettings":
        if not isinstance(data, Mapping):
            data = {}
        return cls.model_validate(data)


__all__ = [
    "AppSettings",
    "DEFAULT_INPUT_SIZE",
    "DEFAULT_LABELS_FILENAME",
    "DEFAULT_MODEL_FILENAME",
    "InferenceSettings",
    "JobSettings",
    "TaggerSettings",
]
