"""Background WebP thumbnail generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from core.contracts import ArtifactStore, ThumbnailStore
from core.context import AppContext
from core.jobs import ItemState, JobError, MaintenanceJob
from core.progress import THUMBNAIL_CHANNEL
from tagger.errors import ImageDecodeError
from utils.image_io import render_thumbnail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThumbnailItem:
    key: str
    source: Path


class ThumbnailJob(MaintenanceJob[ThumbnailItem]):
    """Create ``<key>.webp`` centre-cropped thumbnails for items lacking one."""

    name = "thumbnails"
    pool_kind = "thumbnail"
    channel = THUMBNAIL_CHANNEL
    progress_stage = "generating"

    def __init__(
        self,
        store: ArtifactStore | None = None,
        *,
        size: int | None = None,
        quality: int | None = None,
    ) -> None:
        self._store = store
        self._size = size
        self._quality = quality

    @property
    def store(self) -> ArtifactStore:
        if self._store is None:
            raise JobError("Thumbnail store is not configured")
        return self._store

    async def prepare(self, context: AppContext) -> None:
        if self._store is None:
            root = context.thumbnail_dir()
            try:
                await context.run_blocking(root.mkdir, parents=True, exist_ok=True)
            except OSError as exc:
                raise JobError(f"Cannot create thumbnail directory {root}: {exc}") from exc
            self._store = ThumbnailStore(root)
        if self._size is None:
            self._size = context.settings.jobs.thumbnail_size
        if self._quality is None:
            self._quality = context.settings.jobs.thumbnail_quality

    def item_key(self, item: ThumbnailItem) -> str:
        return item.key

    async def is_done(self, context: AppContext, item: ThumbnailItem) -> bool:
        return await context.run_blocking(self.store.exists, item.key)

    async def process(self, context: AppContext, item: ThumbnailItem) -> ItemState | None:
        return await context.run_blocking(self._generate, item)

    def _generate(self, item: ThumbnailItem) -> ItemState | None:
        source = Path(item.source)
        if not source.is_file():
            raise FileNotFoundError(f"Source image not found: {source}")
        data = render_thumbnail(source, size=int(self._size or 400), quality=int(self._quality or 85))
        if data is None:
            raise ImageDecodeError(f"Unable to decode image: {source}")
        self.store.write(item.key, data)
        return None


__all__ = ["ThumbnailItem", "ThumbnailJob"]
