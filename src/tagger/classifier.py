"""Async classification entry points."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from pathlib import Path
from time import perf_counter

import numpy as np
from PIL import Image

from tagger.base import CategoryPredictions, InferenceParams, LabelCatalog, TagPrediction
from tagger.errors import ImageDecodeError
from tagger.executor import InferenceExecutor
from tagger.postprocess import analyze, postprocess, stable_sigmoid
from tagger.preprocess import preprocess
from tagger.registry import ModelRegistry
from utils.image_io import safe_load_image

logger = logging.getLogger(__name__)


class Classifier:
    """Classify images with the registry's model.

    Every classification call is safe to run concurrently; inference itself
    is serialized by the :class:`InferenceExecutor`.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        executor: InferenceExecutor | None = None,
        *,
        default_params: InferenceParams | None = None,
        blocking_executor: Executor | None = None,
    ) -> None:
        self._registry = registry
        self._executor = executor or InferenceExecutor(registry)
        self._default_params = default_params or registry.settings.inference.to_params()
        self._blocking = blocking_executor

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def default_params(self) -> InferenceParams:
        return self._default_params

    def is_available(self) -> bool:
        """Return whether the model and labels load; loads them on first call."""

        return self._registry.is_available()

    async def classify(self, image: Image.Image) -> list[TagPrediction]:
        return await self.classify_with_params(image, self._default_params)

    async def classify_with_params(self, image: Image.Image, params: InferenceParams) -> list[TagPrediction]:
        probabilities, catalog = await self._probabilities(image)
        start = perf_counter()
        tags = postprocess(probabilities, catalog, params)
        logger.debug("Tagger post=%.2fms tags=%d", (perf_counter() - start) * 1000.0, len(tags))
        return tags

    async def classify_path(self, path: str | Path, params: InferenceParams | None = None) -> list[TagPrediction]:
        """Decode the file at ``path`` and classify it.

        The model and labels are resolved first so an unavailable model fails
        before any decoding work.
        """

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._blocking, self._registry.labels)
        await loop.run_in_executor(self._blocking, self._registry.model)
        image = await loop.run_in_executor(self._blocking, safe_load_image, path)
        if image is None:
            raise ImageDecodeError(f"Unable to decode image: {path}")
        try:
            return await self.classify_with_params(image, params or self._default_params)
        finally:
            image.close()

    async def classify_debug(self, image: Image.Image, params: InferenceParams | None = None) -> CategoryPredictions:
        """Return every candidate grouped by category instead of a final list."""

        probabilities, catalog = await self._probabilities(image)
        return analyze(probabilities, catalog, params or self._default_params)

    async def _probabilities(self, image: Image.Image) -> tuple[np.ndarray, LabelCatalog]:
        loop = asyncio.get_running_loop()
        catalog = await loop.run_in_executor(self._blocking, self._registry.labels)
        handle = await loop.run_in_executor(self._blocking, self._registry.model)

        start = perf_counter()
        tensor = await loop.run_in_executor(self._blocking, preprocess, image, handle.input_size)
        preprocess_ms = (perf_counter() - start) * 1000.0

        start = perf_counter()
        logits = await self._executor.run(tensor)
        infer_ms = (perf_counter() - start) * 1000.0
        logger.debug("Tagger preprocess=%.2fms infer=%.2fms", preprocess_ms, infer_ms)
        return stable_sigmoid(logits), catalog

    def close(self) -> None:
        self._executor.shutdown()


__all__ = ["Classifier"]
