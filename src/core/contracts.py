"""Contracts for the collaborators background jobs read from and write to."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol, Sequence

from tagger.base import TagPrediction
from utils.image_io import write_atomic

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    """Keyed blob storage for derived artifacts such as thumbnails."""

    def exists(self, key: str) -> bool:
        """Return whether an artifact for ``key`` is present."""

    def write(self, key: str, data: bytes) -> Path:
        """Persist ``data`` for ``key`` atomically."""

    def path_for(self, key: str) -> Path:
        """Return where the artifact for ``key`` lives."""


class TagSink(Protocol):
    """Destination for classification results."""

    def has_tags(self, key: str) -> bool:
        """Return whether tags are already stored for ``key``."""

    def save_tags(self, key: str, predictions: Sequence[TagPrediction]) -> int:
        """Store ``predictions`` (insert-or-ignore) and return the number written."""


class HealthStatus(Enum):
    HEALTHY = "healthy"
    THUMBNAIL_MISSING = "thumbnail_missing"
    ORIGINAL_MISSING = "original_missing"
    BOTH_MISSING = "both_missing"
    ORIGINAL_CORRUPTED = "original_corrupted"
    THUMBNAIL_CORRUPTED = "thumbnail_corrupted"

    @property
    def original_missing(self) -> bool:
        return self in (HealthStatus.ORIGINAL_MISSING, HealthStatus.BOTH_MISSING, HealthStatus.ORIGINAL_CORRUPTED)


class ThumbnailHealth(int, Enum):
    HEALTHY = 0
    MISSING = 1
    CORRUPTED = 2


@dataclass(frozen=True)
class HealthReport:
    """Outcome of checking one file."""

    key: str
    original_path: Path
    status: HealthStatus
    thumbnail_health: ThumbnailHealth
    checked_at: float


class HealthSink(Protocol):
    """Destination for health-check results."""

    def is_checked(self, key: str) -> bool:
        """Return whether ``key`` already has a recorded health check."""

    def record(self, key: str, report: HealthReport) -> None:
        """Store ``report`` for ``key``."""


class ThumbnailStore:
    """Filesystem :class:`ArtifactStore` writing ``<root>/<key>.webp``."""

    suffix = ".webp"

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise ValueError(f"Invalid content key: {key!r}")
        return self._root / f"{key}{self.suffix}"

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def write(self, key: str, data: bytes) -> Path:
        path = write_atomic(self.path_for(key), data)
        logger.debug("Thumbnail written: %s (%d bytes)", path, len(data))
        return path


__all__ = [
    "ArtifactStore",
    "HealthReport",
    "HealthSink",
    "HealthStatus",
    "TagSink",
    "ThumbnailHealth",
    "ThumbnailStore",
]
