"""Tests for original/thumbnail health checks."""

from __future__ import annotations

import threading
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from conftest import save_image
from core.context import AppContext
from core.contracts import HealthReport, HealthStatus, ThumbnailHealth, ThumbnailStore
from core.health import HealthCheckJob, HealthCheckResult, HealthItem, check_file_health
from core.jobs import JobError, JobOrchestrator
from core.progress import HEALTH_CHANNEL, ProgressEvent
from utils.image_io import encode_webp


class MemoryHealthSink:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reports: dict[str, HealthReport] = {}

    def is_checked(self, key: str) -> bool:
        with self._lock:
            return key in self.reports

    def record(self, key: str, report: HealthReport) -> None:
        with self._lock:
            self.reports[key] = report


def _webp(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_webp(Image.new("RGB", (8, 8), (1, 2, 3))))
    return path


def _truncated_png(path: Path) -> Path:
    rng = np.random.default_rng(3)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8), "RGB").save(path)
    data = path.read_bytes()
    path.write_bytes(data[: len(data) // 2])
    return path


def test_healthy_pair(tmp_path: Path) -> None:
    original = save_image(tmp_path / "a.png")
    thumbnail = _webp(tmp_path / "a.webp")

    assert check_file_health(original, thumbnail) == (HealthStatus.HEALTHY, ThumbnailHealth.HEALTHY)


def test_missing_combinations(tmp_path: Path) -> None:
    original = save_image(tmp_path / "a.png")
    thumbnail = _webp(tmp_path / "b.webp")

    assert check_file_health(original, tmp_path / "none.webp") == (
        HealthStatus.THUMBNAIL_MISSING,
        ThumbnailHealth.MISSING,
    )
    assert check_file_health(tmp_path / "none.png", thumbnail) == (
        HealthStatus.ORIGINAL_MISSING,
        ThumbnailHealth.HEALTHY,
    )
    assert check_file_health(tmp_path / "none.png", tmp_path / "none.webp") == (
        HealthStatus.BOTH_MISSING,
        ThumbnailHealth.MISSING,
    )


def test_corrupted_original(tmp_path: Path) -> None:
    original = _truncated_png(tmp_path / "a.png")
    thumbnail = _webp(tmp_path / "a.webp")

    assert check_file_health(original, thumbnail) == (HealthStatus.ORIGINAL_CORRUPTED, ThumbnailHealth.HEALTHY)


def test_corrupted_thumbnail_takes_precedence(tmp_path: Path) -> None:
    original = _truncated_png(tmp_path / "a.png")
    thumbnail = tmp_path / "a.webp"
    thumbnail.write_bytes(b"RIFF\x00\x00\x00\x00JUNKdata")

    assert check_file_health(original, thumbnail) == (
        HealthStatus.THUMBNAIL_CORRUPTED,
        ThumbnailHealth.CORRUPTED,
    )
    assert check_file_health(tmp_path / "none.png", thumbnail)[0] is HealthStatus.THUMBNAIL_CORRUPTED


def test_result_counts() -> None:
    result = HealthCheckResult()
    for status in (
        HealthStatus.HEALTHY,
        HealthStatus.THUMBNAIL_MISSING,
        HealthStatus.ORIGINAL_MISSING,
        HealthStatus.BOTH_MISSING,
        HealthStatus.THUMBNAIL_CORRUPTED,
    ):
        result.add(status)

    data = result.to_dict()
    assert data["total_checked"] == 5
    assert data["healthy_count"] == 1
    assert data["issues_found"] == 4
    assert data["has_missing_originals"] is True
    assert data["both_missing_count"] == 1


@pytest.mark.asyncio
async def test_health_job_records_reports_and_summary(tmp_path: Path, context: AppContext) -> None:
    store = ThumbnailStore(tmp_path / "thumbs")
    healthy = HealthItem("k1", save_image(tmp_path / "orig" / "1.png"))
    _webp(store.path_for("k1"))
    no_thumb = HealthItem("k2", save_image(tmp_path / "orig" / "2.png"))
    no_original = HealthItem("k3", tmp_path / "orig" / "3.png")
    _webp(store.path_for("k3"))
    sink = MemoryHealthSink()
    events: list[tuple[str, ProgressEvent]] = []
    orchestrator = JobOrchestrator(context, lambda channel, event: events.append((channel, event)))

    handle = orchestrator.submit(HealthCheckJob(sink), [healthy, no_thumb, no_original])
    summary = await handle.wait(flush_events=True)
    orchestrator.close()

    assert summary.completed == 3
    assert sink.reports["k1"].status is HealthStatus.HEALTHY
    assert sink.reports["k2"].thumbnail_health is ThumbnailHealth.MISSING
    assert sink.reports["k3"].status.original_missing is True

    channel, final = events[-1]
    assert channel == HEALTH_CHANNEL
    assert final.stage == "health_check_complete"
    assert final.data is not None
    assert final.data["total_checked"] == 3
    assert final.data["issues_found"] == 2
    assert final.data["has_missing_originals"] is True


@pytest.mark.asyncio
async def test_checked_items_are_skipped_unless_forced(tmp_path: Path, context: AppContext) -> None:
    item = HealthItem("k1", save_image(tmp_path / "orig" / "1.png"))
    sink = MemoryHealthSink()
    orchestrator = JobOrchestrator(context)

    first = await orchestrator.run(HealthCheckJob(sink), [item])
    again = await orchestrator.run(HealthCheckJob(sink), [item])
    forced = await orchestrator.run(HealthCheckJob(sink, force=True), [item])
    orchestrator.close()

    assert (first.completed, again.skipped, forced.completed) == (1, 1, 1)


def test_check_without_thumbnail_store_raises(tmp_path: Path) -> None:
    job = HealthCheckJob(MemoryHealthSink())
    original = save_image(tmp_path / "a.png")

    with pytest.raises(JobError, match="not configured"):
        job._check(HealthItem("k", original))
