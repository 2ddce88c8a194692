"""Explicit application context holding shared pools and the classifier."""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, TypeVar

from core.config import AppPaths, AppSettings, SettingsService, get_app_paths
from core.jobs import BoundedPool, resolve_pool_capacity
from tagger.classifier import Classifier
from tagger.executor import InferenceExecutor
from tagger.registry import ModelRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppContext:
    """Owns every long-lived resource background jobs share.

    Pools are created lazily per job kind and live as long as the context,
    so separate batches of the same kind share one concurrency budget.
    """

    def __init__(
        self,
        settings: AppSettings | None = None,
        app_paths: AppPaths | None = None,
        *,
        registry: ModelRegistry | None = None,
        blocking_workers: int | None = None,
    ) -> None:
        self.settings = settings or AppSettings()
        self.app_paths = app_paths or get_app_paths()
        self.registry = registry or ModelRegistry(self.settings.tagger, self.app_paths)
        self._blocking = ThreadPoolExecutor(max_workers=blocking_workers, thread_name_prefix="lumi-blocking")
        self._lock = threading.Lock()
        self._pools: dict[str, BoundedPool] = {}
        self._in_flight: dict[str, dict[str, asyncio.Event]] = {}
        self._classifier: Classifier | None = None
        self._closed = False

    @classmethod
    def load(cls, app_paths: AppPaths | None = None) -> "AppContext":
        """Build a context from ``config.yaml``."""

        paths = app_paths or get_app_paths()
        return cls(SettingsService(paths).load(), paths)

    @property
    def blocking_executor(self) -> ThreadPoolExecutor:
        return self._blocking

    @property
    def classifier(self) -> Classifier:
        with self._lock:
            if self._classifier is None:
                executor = InferenceExecutor(self.registry, lock_timeout=self.settings.tagger.lock_timeout)
                self._classifier = Classifier(
                    self.registry,
                    executor,
                    default_params=self.settings.tagger.inference.to_params(),
                    blocking_executor=self._blocking,
                )
            return self._classifier

    def pool(self, kind: str) -> BoundedPool:
        with self._lock:
            pool = self._pools.get(kind)
            if pool is None:
                configured = getattr(self.settings.jobs, f"{kind}_workers", None)
                capacity = resolve_pool_capacity(kind, configured)
                pool = BoundedPool(capacity, name=kind)
                self._pools[kind] = pool
                logger.info("Pool %s: capacity %d", kind, capacity)
            return pool

    def in_flight(self, kind: str) -> dict[str, asyncio.Event]:
        """Return the running keys of ``kind``, each with an event set when it finishes."""

        with self._lock:
            return self._in_flight.setdefault(kind, {})

    def thumbnail_dir(self) -> Path:
        return self.settings.resolved_thumbnail_dir(self.app_paths.thumbnail_dir())

    async def run_blocking(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` on the blocking thread pool."""

        loop = asyncio.get_running_loop()
        if kwargs:
            fn = functools.partial(fn, **kwargs)
        return await loop.run_in_executor(self._blocking, fn, *args)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            classifier = self._classifier
        if classifier is not None:
            classifier.close()
        self._blocking.shutdown(wait=False)


_DEFAULT_CONTEXT: AppContext | None = None
_DEFAULT_LOCK = threading.Lock()


def get_default_context() -> AppContext:
    """Return the process-wide context, creating it from settings on first use."""

    global _DEFAULT_CONTEXT
    with _DEFAULT_LOCK:
        if _DEFAULT_CONTEXT is None:
            _DEFAULT_CONTEXT = AppContext.load()
        return _DEFAULT_CONTEXT


def set_default_context(context: AppContext | None) -> None:
    global _DEFAULT_CONTEXT
    with _DEFAULT_LOCK:
        _DEFAULT_CONTEXT = context


__all__ = ["AppContext", "get_default_context", "set_default_context"]
