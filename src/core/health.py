"""Background health checks for originals and their thumbnails."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping

from core.context import AppContext
from core.contracts import ArtifactStore, HealthReport, HealthSink, HealthStatus, ThumbnailHealth, ThumbnailStore
from core.jobs import BatchSummary, ItemState, JobError, MaintenanceJob
from core.progress import HEALTH_CHANNEL
from utils.image_io import is_image_corrupted, is_webp_corrupted

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthItem:
    key: str
    original_path: Path


@dataclass
class HealthCheckResult:
    total_checked: int = 0
    healthy_count: int = 0
    issues_found: int = 0
    thumbnail_missing_count: int = 0
    original_missing_count: int = 0
    thumbnail_corrupted_count: int = 0
    original_corrupted_count: int = 0
    both_missing_count: int = 0
    has_missing_originals: bool = False

    def add(self, status: HealthStatus) -> None:
        self.total_checked += 1
        if status is HealthStatus.HEALTHY:
            self.healthy_count += 1
            return
        self.issues_found += 1
        if status is HealthStatus.THUMBNAIL_MISSING:
            self.thumbnail_missing_count += 1
        elif status is HealthStatus.ORIGINAL_MISSING:
            self.original_missing_count += 1
            self.has_missing_originals = True
        elif status is HealthStatus.BOTH_MISSING:
            self.both_missing_count += 1
            self.has_missing_originals = True
        elif status is HealthStatus.ORIGINAL_CORRUPTED:
            self.original_corrupted_count += 1
        elif status is HealthStatus.THUMBNAIL_CORRUPTED:
            self.thumbnail_corrupted_count += 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def check_file_health(original_path: str | Path, thumbnail_path: str | Path) -> tuple[HealthStatus, ThumbnailHealth]:
    """Classify one file from the presence and integrity of both artifacts.

    A corrupt thumbnail takes precedence over a corrupt original.
    """

    original = Path(original_path)
    thumbnail = Path(thumbnail_path)
    original_exists = original.exists()
    thumbnail_exists = thumbnail.exists()

    if original_exists and thumbnail_exists:
        original_corrupted = is_image_corrupted(original)
        thumbnail_corrupted = is_webp_corrupted(thumbnail)
        if thumbnail_corrupted:
            return HealthStatus.THUMBNAIL_CORRUPTED, ThumbnailHealth.CORRUPTED
        if original_corrupted:
            return HealthStatus.ORIGINAL_CORRUPTED, ThumbnailHealth.HEALTHY
        return HealthStatus.HEALTHY, ThumbnailHealth.HEALTHY
    if thumbnail_exists:
        if is_webp_corrupted(thumbnail):
            return HealthStatus.THUMBNAIL_CORRUPTED, ThumbnailHealth.CORRUPTED
        return HealthStatus.ORIGINAL_MISSING, ThumbnailHealth.HEALTHY
    if original_exists:
        return HealthStatus.THUMBNAIL_MISSING, ThumbnailHealth.MISSING
    return HealthStatus.BOTH_MISSING, ThumbnailHealth.MISSING


class HealthCheckJob(MaintenanceJob[HealthItem]):
    """Check originals and thumbnails, recording a report per file."""

    name = "health_check"
    pool_kind = "health"
    channel = HEALTH_CHANNEL
    progress_stage = "checking"
    complete_stage = "health_check_complete"

    def __init__(self, sink: HealthSink, *, thumbnails: ArtifactStore | None = None, force: bool = False) -> None:
        self._sink = sink
        self._thumbnails = thumbnails
        self._force = force
        self.result = HealthCheckResult()

    @property
    def thumbnails(self) -> ArtifactStore:
        if self._thumbnails is None:
            raise JobError("Thumbnail store is not configured")
        return self._thumbnails

    async def prepare(self, context: AppContext) -> None:
        if self._thumbnails is None:
            self._thumbnails = ThumbnailStore(context.thumbnail_dir())
        self.result = HealthCheckResult()

    def item_key(self, item: HealthItem) -> str:
        return item.key

    async def is_done(self, context: AppContext, item: HealthItem) -> bool:
        if self._force:
            return False
        return await context.run_blocking(self._sink.is_checked, item.key)

    async def process(self, context: AppContext, item: HealthItem) -> ItemState | None:
        report = await context.run_blocking(self._check, item)
        self.result.add(report.status)
        if report.status is not HealthStatus.HEALTHY:
            logger.info("Health %s: %s", item.key, report.status.value)
        return None

    def _check(self, item: HealthItem) -> HealthReport:
        status, thumbnail_health = check_file_health(item.original_path, self.thumbnails.path_for(item.key))
        report = HealthReport(
            key=item.key,
            original_path=Path(item.original_path),
            status=status,
            thumbnail_health=thumbnail_health,
            checked_at=time.time(),
        )
        self._sink.record(item.key, report)
        return report

    async def finalize(self, context: AppContext, summary: BatchSummary) -> Mapping[str, Any] | None:
        return self.result.to_dict()


__all__ = ["HealthCheckJob", "HealthCheckResult", "HealthItem", "check_file_health"]
