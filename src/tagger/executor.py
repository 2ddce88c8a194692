"""Run preprocessed tensors through the ONNX session off the event loop."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from time import perf_counter

import numpy as np

from tagger.errors import ExecutionError, MissingOutputError, SessionLockError, TensorConstructionError
from tagger.registry import ModelHandle, ModelRegistry

logger = logging.getLogger(__name__)


class InferenceExecutor:
    """Serialize model execution on a dedicated single-worker thread.

    The worker thread is the queue: at most one inference is in flight per
    executor. The handle lock is held around ``session.run`` as well, so
    several executors sharing a registry still never run the session
    concurrently.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        *,
        lock_timeout: float | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._registry = registry
        self._lock_timeout = lock_timeout if lock_timeout is not None else registry.settings.lock_timeout
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="lumi-infer")

    async def run(self, tensor: np.ndarray) -> np.ndarray:
        """Return the flat float32 logit vector for ``tensor``."""

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.run_sync, tensor)

    def run_sync(self, tensor: np.ndarray) -> np.ndarray:
        handle = self._registry.model()
        batch = self._build_batch(handle, tensor)

        # -1 blocks until the running inference releases the session
        if not handle.lock.acquire(timeout=-1 if self._lock_timeout is None else self._lock_timeout):
            raise SessionLockError(f"Timed out after {self._lock_timeout:.1f}s waiting for the model session")
        start = perf_counter()
        try:
            outputs = handle.session.run([handle.output_name], {handle.input_name: batch})
        except Exception as exc:
            raise ExecutionError(f"Model execution failed: {exc}") from exc
        finally:
            handle.lock.release()
        ort_ms = (perf_counter() - start) * 1000.0

        if not outputs or outputs[0] is None:
            raise MissingOutputError(f"Model returned no value for output {handle.output_name!r}")
        logits = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if logits.size == 0:
            raise MissingOutputError(f"Model output {handle.output_name!r} is empty")
        logger.debug("Tagger infer ort=%.2fms outputs=%d", ort_ms, logits.size)
        return logits

    @staticmethod
    def _build_batch(handle: ModelHandle, tensor: np.ndarray) -> np.ndarray:
        try:
            batch = np.ascontiguousarray(tensor, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise TensorConstructionError(f"Cannot build input tensor: {exc}") from exc
        expected = (1, handle.input_size, handle.input_size, 3)
        if batch.shape != expected:
            raise TensorConstructionError(f"Input tensor shape {batch.shape} does not match {expected}")
        return batch

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)


__all__ = ["InferenceExecutor"]
