"""Progress events and their off-thread delivery."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

THUMBNAIL_CHANNEL = "thumbnail_progress"
TAGGING_CHANNEL = "ai_tagging_progress"
HEALTH_CHANNEL = "health_check_progress"


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    message: str
    item_id: str | None = None
    current: int | None = None
    total: int | None = None
    counts: Mapping[str, int] | None = None
    data: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the event as a plain mapping without unset fields."""

        return {key: value for key, value in asdict(self).items() if value is not None}


ProgressObserver = Callable[[str, ProgressEvent], None]


class ProgressEmitter:
    """Deliver events to an observer on a dedicated dispatcher thread.

    ``emit`` only enqueues, so a slow observer never holds up the producer.
    Observer exceptions are logged and the dispatcher keeps going.
    """

    def __init__(self, observer: ProgressObserver | None, *, name: str = "lumi-progress") -> None:
        self._observer = observer
        self._name = name
        self._queue: "queue.Queue[tuple[str, ProgressEvent] | None]" = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def enabled(self) -> bool:
        return self._observer is not None and not self._closed

    def emit(self, channel: str, event: ProgressEvent) -> None:
        if not self.enabled:
            return
        self._ensure_thread()
        self._queue.put((channel, event))

    def drain(self) -> None:
        """Block until every queued event has been handed to the observer."""

        if self._thread is None:
            return
        self._queue.join()

    def close(self) -> None:
        """Deliver pending events, then stop the dispatcher thread."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
        if thread is not None:
            self._queue.put(None)
            thread.join()

    def _ensure_thread(self) -> None:
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
                self._thread.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                channel, event = item
                try:
                    self._observer(channel, event)  # type: ignore[misc]
                except Exception:
                    logger.exception("Progress observer raised for %s/%s; ignoring.", channel, event.stage)
            finally:
                self._queue.task_done()


__all__ = [
    "HEALTH_CHANNEL",
    "ProgressEmitter",
    "ProgressEvent",
    "ProgressObserver",
    "TAGGING_CHANNEL",
    "THUMBNAIL_CHANNEL",
]
