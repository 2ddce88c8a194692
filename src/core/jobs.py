"""Bounded-concurrency background jobs with idempotent skips and progress events."""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Iterable, Mapping, TypeVar

from core.progress import ProgressEmitter, ProgressEvent, ProgressObserver
from utils.env import cpu_count, env_int

if TYPE_CHECKING:
    from core.context import AppContext

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")

DEFAULT_REPORT_INTERVAL = 10

# kind -> (cpu cap, fallback when the cpu count is unknown)
_POOL_LIMITS: dict[str, tuple[int, int]] = {
    "thumbnail": (8, 4),
    "health": (4, 2),
    "tagging": (2, 1),
}
_POOL_ENV_VARS: dict[str, str] = {
    "thumbnail": "LUMI_THUMBNAIL_WORKERS",
    "health": "LUMI_HEALTH_WORKERS",
    "tagging": "LUMI_TAGGING_WORKERS",
}


def default_pool_capacity(kind: str, cpus: int | None = None) -> int:
    """Return ``min(cpus, cap)`` for ``kind``, or its fallback without a cpu count."""

    try:
        cap, fallback = _POOL_LIMITS[kind]
    except KeyError:
        raise ValueError(f"Unknown pool kind: {kind}") from None
    if cpus is None:
        cpus = cpu_count()
    if not cpus or cpus < 1:
        return fallback
    return min(cpus, cap)


def resolve_pool_capacity(kind: str, configured: int | None = None, env: Mapping[str, str] | None = None) -> int:
    """Pick a capacity from settings, then the environment, then the defaults."""

    if configured is not None and configured > 0:
        return int(configured)
    return env_int(_POOL_ENV_VARS[kind], default_pool_capacity(kind), env=env)


class ItemState(enum.Enum):
    PENDING = "pending"
    ADMITTED = "admitted"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class JobStatus(enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BatchSummary:
    """Aggregate outcome of one submitted batch."""

    job: str
    total: int
    completed: int = 0
    skipped: int = 0
    failed: int = 0
    status: JobStatus = JobStatus.RUNNING
    fatal_error: str | None = None
    states: dict[str, ItemState] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0

    def counts(self) -> dict[str, int]:
        return {
            "completed": self.completed,
            "skipped": self.skipped,
            "failed": self.failed,
            "total": self.total,
        }

    def record(self, key: str, state: ItemState, error: str | None = None) -> None:
        self.states[key] = state
        if state is ItemState.COMPLETED:
            self.completed += 1
        elif state is ItemState.SKIPPED:
            self.skipped += 1
        elif state is ItemState.FAILED:
            self.failed += 1
            if error is not None:
                self.errors[key] = error


class BoundedPool:
    """Async semaphore with a fixed capacity, acquired in request order."""

    def __init__(self, capacity: int, *, name: str = "pool") -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = int(capacity)
        self.name = name
        self._semaphore = asyncio.Semaphore(self.capacity)
        self._in_use = 0

    @property
    def in_use(self) -> int:
        return self._in_use

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self._in_use += 1

    def release(self) -> None:
        self._in_use -= 1
        self._semaphore.release()


class JobError(RuntimeError):
    """Raised by :meth:`MaintenanceJob.prepare` when a whole batch cannot run."""


class MaintenanceJob(ABC, Generic[ItemT]):
    """Template for per-file background work.

    Subclasses define what an item's key is, how to tell that its work is
    already done, and the work itself. The orchestrator handles admission,
    duplicate suppression, failure isolation and progress reporting.
    """

    name = "job"
    pool_kind = "thumbnail"
    channel = "job_progress"
    progress_stage = "processing"
    complete_stage = "batch_complete"

    async def prepare(self, context: "AppContext") -> None:
        """Fail fast on conditions that make every item fail. Raise to abort."""

    @abstractmethod
    def item_key(self, item: ItemT) -> str:
        """Return the content key identifying ``item``."""

    @abstractmethod
    async def is_done(self, context: "AppContext", item: ItemT) -> bool:
        """Return whether ``item`` needs no work."""

    @abstractmethod
    async def process(self, context: "AppContext", item: ItemT) -> ItemState | None:
        """Do the work for ``item``; return ``SKIPPED`` to report a late skip."""

    async def finalize(self, context: "AppContext", summary: BatchSummary) -> Mapping[str, Any] | None:
        """Return extra data for the completion event."""
        return None


class JobHandle:
    """Handle on a submitted batch."""

    def __init__(self, job_id: int, job: MaintenanceJob, task: "asyncio.Task[BatchSummary]", emitter: ProgressEmitter):
        self.job_id = job_id
        self.job = job
        self._task = task
        self._emitter = emitter

    def done(self) -> bool:
        return self._task.done()

    async def wait(self, *, flush_events: bool = False) -> BatchSummary:
        """Await the batch summary, optionally until every event was delivered."""

        summary = await self._task
        if flush_events:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._emitter.drain)
        return summary

    def flush_events(self) -> None:
        self._emitter.drain()


class JobOrchestrator:
    """Run :class:`MaintenanceJob` batches as background tasks on a context."""

    _ids = itertools.count(1)

    def __init__(
        self,
        context: "AppContext",
        observer: ProgressObserver | None = None,
        *,
        report_interval: int | None = None,
    ) -> None:
        self._context = context
        self._emitter = ProgressEmitter(observer)
        interval = report_interval if report_interval is not None else context.settings.jobs.report_interval
        self._report_interval = max(1, int(interval or DEFAULT_REPORT_INTERVAL))
        self._tasks: set[asyncio.Task[BatchSummary]] = set()

    @property
    def emitter(self) -> ProgressEmitter:
        return self._emitter

    def submit(self, job: MaintenanceJob[ItemT], items: Iterable[ItemT]) -> JobHandle:
        """Schedule ``job`` over ``items`` and return without waiting."""

        batch = list(items)
        job_id = next(self._ids)
        task = asyncio.get_running_loop().create_task(self._run(job_id, job, batch), name=f"{job.name}-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return JobHandle(job_id, job, task, self._emitter)

    async def run(self, job: MaintenanceJob[ItemT], items: Iterable[ItemT]) -> BatchSummary:
        return await self.submit(job, items).wait()

    def close(self) -> None:
        self._emitter.close()

    def _emit(self, job: MaintenanceJob, event: ProgressEvent) -> None:
        self._emitter.emit(job.channel, event)

    def _should_report(self, index: int, total: int) -> bool:
        return index == 0 or index == total - 1 or (index + 1) % self._report_interval == 0

    async def _run(self, job_id: int, job: MaintenanceJob[ItemT], items: list[ItemT]) -> BatchSummary:
        context = self._context
        total = len(items)
        summary = BatchSummary(job=job.name, total=total)
        started = time.perf_counter()
        logger.info("Job %s#%d: starting with %d item(s)", job.name, job_id, total)
        self._emit(job, ProgressEvent("started", f"Starting {job.name} for {total} items", current=0, total=total))

        try:
            await job.prepare(context)
        except Exception as exc:
            summary.status = JobStatus.FAILED
            summary.fatal_error = str(exc)
            summary.elapsed = time.perf_counter() - started
            logger.error("Job %s#%d: aborted before processing: %s", job.name, job_id, exc)
            self._emit(job, ProgressEvent("failed", str(exc), current=0, total=total, counts=summary.counts()))
            return summary

        pool = context.pool(job.pool_kind)
        in_flight = context.in_flight(job.pool_kind)
        tasks: list[asyncio.Task[None]] = []

        for index, item in enumerate(items):
            key = job.item_key(item)
            summary.states[key] = ItemState.PENDING
            if self._should_report(index, total):
                self._emit(
                    job,
                    ProgressEvent(
                        job.progress_stage,
                        f"{job.progress_stage.capitalize()} item {index + 1} of {total}",
                        item_id=key,
                        current=index + 1,
                        total=total,
                    ),
                )

            if await self._check_done(job, item, key, summary):
                continue

            if not await self._admit(job, item, key, summary, pool, in_flight):
                continue

            summary.states[key] = ItemState.ADMITTED
            tasks.append(asyncio.create_task(self._run_item(job, item, key, summary, pool, in_flight)))

        if tasks:
            await asyncio.gather(*tasks)

        summary.status = JobStatus.COMPLETED
        summary.elapsed = time.perf_counter() - started
        extra: Mapping[str, Any] | None = None
        try:
            extra = await job.finalize(context, summary)
        except Exception:
            logger.exception("Job %s#%d: finalize failed", job.name, job_id)

        logger.info(
            "Job %s#%d: done completed=%d skipped=%d failed=%d total=%d in %.2fs",
            job.name,
            job_id,
            summary.completed,
            summary.skipped,
            summary.failed,
            summary.total,
            summary.elapsed,
        )
        self._emit(
            job,
            ProgressEvent(
                job.complete_stage,
                f"{job.name}: {summary.completed} completed, {summary.skipped} skipped, {summary.failed} failed",
                current=total,
                total=total,
                counts=summary.counts(),
                data=dict(extra) if extra else None,
            ),
        )
        return summary

    async def _check_done(self, job: MaintenanceJob[ItemT], item: ItemT, key: str, summary: BatchSummary) -> bool:
        try:
            done = await job.is_done(self._context, item)
        except Exception as exc:
            logger.warning("Job %s: skip check failed for %s: %s", job.name, key, exc)
            return False
        if done:
            self._skip(job, key, summary, "already done")
        return done

    async def _admit(
        self,
        job: MaintenanceJob[ItemT],
        item: ItemT,
        key: str,
        summary: BatchSummary,
        pool: BoundedPool,
        in_flight: dict[str, asyncio.Event],
    ) -> bool:
        """Acquire a permit and claim ``key``; False when the item was skipped."""

        while True:
            await pool.acquire()
            running = in_flight.get(key)
            if running is None:
                # claim the key before the awaited re-check
                in_flight[key] = asyncio.Event()
                if await self._check_done(job, item, key, summary):
                    in_flight.pop(key).set()
                    pool.release()
                    return False
                return True
            # another batch runs this key: wait for it, then check again
            pool.release()
            await running.wait()
            if await self._check_done(job, item, key, summary):
                return False

    def _skip(self, job: MaintenanceJob, key: str, summary: BatchSummary, reason: str) -> None:
        summary.record(key, ItemState.SKIPPED)
        self._emit(job, ProgressEvent("skipped", f"Skipped {key}: {reason}", item_id=key))

    async def _run_item(
        self,
        job: MaintenanceJob[ItemT],
        item: ItemT,
        key: str,
        summary: BatchSummary,
        pool: BoundedPool,
        in_flight: dict[str, asyncio.Event],
    ) -> None:
        summary.states[key] = ItemState.RUNNING
        try:
            outcome = await job.process(self._context, item)
        except Exception as exc:
            logger.warning("Job %s: item %s failed: %s", job.name, key, exc)
            summary.record(key, ItemState.FAILED, str(exc) or type(exc).__name__)
            self._emit(job, ProgressEvent("error", f"Failed {key}: {exc}", item_id=key))
        else:
            if outcome is ItemState.SKIPPED:
                self._skip(job, key, summary, "already done")
            else:
                summary.record(key, ItemState.COMPLETED)
        finally:
            in_flight.pop(key).set()
            pool.release()


__all__ = [
    "BatchSummary",
    "BoundedPool",
    "DEFAULT_REPORT_INTERVAL",
    "ItemState",
    "JobError",
    "JobHandle",
    "JobOrchestrator",
    "JobStatus",
    "MaintenanceJob",
    "default_pool_capacity",
    "resolve_pool_capacity",
]
