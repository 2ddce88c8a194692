"""Command line access to the tagger and the maintenance jobs."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys
import time
from pathlib import Path
from typing import Iterable, Sequence

from core.context import AppContext
from core.contracts import HealthReport, ThumbnailStore
from core.health import HealthCheckJob, HealthItem
from core.jobs import BatchSummary, JobOrchestrator, JobStatus
from core.progress import ProgressEvent
from core.thumbnails import ThumbnailItem, ThumbnailJob
from tagger.base import InferenceParams
from tagger.errors import TaggerError
from utils.hash import iter_content_keys
from utils.image_io import safe_load_image
from utils.logging_setup import setup_logging

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif", ".tiff"}


class _MemoryHealthSink:
    def __init__(self) -> None:
        self.reports: dict[str, HealthReport] = {}

    def is_checked(self, key: str) -> bool:
        return key in self.reports

    def record(self, key: str, report: HealthReport) -> None:
        self.reports[key] = report


def _print_event(channel: str, event: ProgressEvent) -> None:
    print(f"[{channel}] {event.stage}: {event.message}", flush=True)


def _iter_images(root: Path) -> Iterable[Path]:
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix.lower() in IMAGE_EXTS:
            yield path


def _params_from_args(args: argparse.Namespace, defaults: InferenceParams) -> InferenceParams:
    return InferenceParams(
        general_threshold=args.general_threshold if args.general_threshold is not None else defaults.general_threshold,
        character_threshold=(
            args.character_threshold if args.character_threshold is not None else defaults.character_threshold
        ),
        general_mcut_enabled=args.mcut_general or defaults.general_mcut_enabled,
        character_mcut_enabled=args.mcut_character or defaults.character_mcut_enabled,
        max_tags=args.max_tags if args.max_tags is not None else defaults.max_tags,
    )


def _print_summary(summary: BatchSummary) -> int:
    print(
        f"{summary.job}: status={summary.status.value} completed={summary.completed} "
        f"skipped={summary.skipped} failed={summary.failed} total={summary.total} in {summary.elapsed:.2f}s"
    )
    if summary.fatal_error:
        print(f"error: {summary.fatal_error}", file=sys.stderr)
    for key, message in summary.errors.items():
        print(f"  {key[:12]}: {message}", file=sys.stderr)
    return 0 if summary.status is JobStatus.COMPLETED else 1


def cmd_status(context: AppContext, args: argparse.Namespace) -> int:
    status = context.registry.status()
    print(f"models dir : {status.models_dir or '(not found)'}")
    print(f"model      : {status.model_path} exists={status.model_exists} loaded={status.model_loaded}")
    print(f"labels     : {status.labels_path} exists={status.labels_exists} loaded={status.labels_loaded}")
    if status.models_dir is None:
        print("searched   :")
        for path in status.attempted_dirs:
            print(f"  - {path}")
    if args.load:
        available = context.registry.is_available()
        status = context.registry.status()
        print(f"available  : {available}")
        for error in (status.model_error, status.labels_error):
            if error:
                print(f"error      : {error}")
    return 0 if status.ready else 1


async def _classify(context: AppContext, args: argparse.Namespace) -> int:
    classifier = context.classifier
    params = _params_from_args(args, classifier.default_params)

    start = time.perf_counter()
    image = await context.run_blocking(safe_load_image, args.image)
    if image is None:
        print(f"error: unable to decode {args.image}", file=sys.stderr)
        return 1
    load_ms = (time.perf_counter() - start) * 1000.0
    try:
        infer_ms = await _print_classification(classifier, image, params, args)
    finally:
        image.close()
    print(f"load={load_ms:.1f}ms classify={infer_ms:.1f}ms")
    return 0


async def _print_classification(classifier, image, params: InferenceParams, args: argparse.Namespace) -> float:
    start = time.perf_counter()
    if args.debug:
        analysis = await classifier.classify_debug(image, params)
        infer_ms = (time.perf_counter() - start) * 1000.0
        for name in ("rating", "general", "character"):
            print(f"{name}:")
            for pred in getattr(analysis, name)[: args.top]:
                print(f"  {pred.confidence:.4f}  {pred.name}")
        if analysis.general_mcut_threshold is not None:
            print(f"general mcut threshold: {analysis.general_mcut_threshold:.4f}")
        if analysis.character_mcut_threshold is not None:
            print(f"character mcut threshold: {analysis.character_mcut_threshold:.4f}")
    else:
        tags = await classifier.classify_with_params(image, params)
        infer_ms = (time.perf_counter() - start) * 1000.0
        for tag in tags:
            print(f"{tag.confidence:.4f}  {tag.name}")
    return infer_ms


def cmd_classify(context: AppContext, args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_classify(context, args))
    except (TaggerError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


async def _run_job(context: AppContext, job, items: Sequence) -> BatchSummary:
    orchestrator = JobOrchestrator(context, _print_event)
    try:
        return await orchestrator.submit(job, items).wait(flush_events=True)
    finally:
        orchestrator.close()


def cmd_thumbnails(context: AppContext, args: argparse.Namespace) -> int:
    store = ThumbnailStore(args.out) if args.out else None
    job = ThumbnailJob(store, size=args.size)
    items = [ThumbnailItem(key, path) for key, path in iter_content_keys(_iter_images(args.directory))]
    return _print_summary(asyncio.run(_run_job(context, job, items)))


def cmd_health(context: AppContext, args: argparse.Namespace) -> int:
    thumbnails = ThumbnailStore(args.thumbnails) if args.thumbnails else None
    job = HealthCheckJob(_MemoryHealthSink(), thumbnails=thumbnails, force=True)
    items = [HealthItem(key, path) for key, path in iter_content_keys(_iter_images(args.directory))]
    summary = asyncio.run(_run_job(context, job, items))
    for field in dataclasses.fields(job.result):
        print(f"  {field.name}: {getattr(job.result, field.name)}")
    return _print_summary(summary)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--log-level", default=None, help="Override LUMI_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show where the model files are")
    status.add_argument("--load", action="store_true", help="Also try loading the model")
    status.set_defaults(func=cmd_status)

    classify = sub.add_parser("classify", help="Classify a single image")
    classify.add_argument("image", type=Path)
    classify.add_argument("--general-threshold", type=float, default=None)
    classify.add_argument("--character-threshold", type=float, default=None)
    classify.add_argument("--mcut-general", action="store_true")
    classify.add_argument("--mcut-character", action="store_true")
    classify.add_argument("--max-tags", type=int, default=None)
    classify.add_argument("--debug", action="store_true", help="Print every candidate per category")
    classify.add_argument("--top", type=int, default=20, help="Candidates shown per category with --debug")
    classify.set_defaults(func=cmd_classify)

    thumbnails = sub.add_parser("thumbnails", help="Generate thumbnails for a folder")
    thumbnails.add_argument("directory", type=Path)
    thumbnails.add_argument("--out", type=Path, default=None, help="Thumbnail directory")
    thumbnails.add_argument("--size", type=int, default=None)
    thumbnails.set_defaults(func=cmd_thumbnails)

    health = sub.add_parser("health", help="Check originals and thumbnails in a folder")
    health.add_argument("directory", type=Path)
    health.add_argument("--thumbnails", type=Path, default=None, help="Thumbnail directory")
    health.set_defaults(func=cmd_health)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    context = AppContext.load()
    setup_logging(context.app_paths, level=args.log_level)
    try:
        return int(args.func(context, args))
    finally:
        context.close()


if __name__ == "__main__":
    raise SystemExit(main())
