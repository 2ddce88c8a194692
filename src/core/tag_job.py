"""Background AI tagging job for lumitag."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from core.context import AppContext
from core.contracts import TagSink
from core.jobs import ItemState, JobError, MaintenanceJob
from core.progress import TAGGING_CHANNEL
from tagger.base import InferenceParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TagItem:
    key: str
    path: Path


class TagJob(MaintenanceJob[TagItem]):
    """Classify every item without stored tags and hand the result to a sink."""

    name = "ai_tagging"
    pool_kind = "tagging"
    channel = TAGGING_CHANNEL
    progress_stage = "tagging"

    def __init__(self, sink: TagSink, params: InferenceParams | None = None) -> None:
        self._sink = sink
        self._params = params

    async def prepare(self, context: AppContext) -> None:
        classifier = context.classifier
        available = await context.run_blocking(classifier.is_available)
        if not available:
            status = context.registry.status()
            reason = status.model_error or status.labels_error or "model files not found"
            raise JobError(f"AI model unavailable: {reason}")
        if self._params is None:
            self._params = classifier.default_params

    def item_key(self, item: TagItem) -> str:
        return item.key

    async def is_done(self, context: AppContext, item: TagItem) -> bool:
        return await context.run_blocking(self._sink.has_tags, item.key)

    async def process(self, context: AppContext, item: TagItem) -> ItemState | None:
        predictions = await context.classifier.classify_path(item.path, self._params)
        written = await context.run_blocking(self._sink.save_tags, item.key, predictions)
        logger.debug("Tagged %s: %d prediction(s), %d written", item.key, len(predictions), written)
        return None


__all__ = ["TagItem", "TagJob"]
