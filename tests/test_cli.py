"""Tests for the lumitag command line tool."""

from __future__ import annotations

from pathlib import Path

import pytest

import lumitag_cli
from conftest import save_image
from core.context import AppContext


def _run(context: AppContext, *argv: str) -> int:
    args = lumitag_cli.build_parser().parse_args(list(argv))
    return args.func(context, args)


def test_classify_prints_tags(tmp_path: Path, context: AppContext, capsys: pytest.CaptureFixture[str]) -> None:
    image = save_image(tmp_path / "a.png")

    assert _run(context, "classify", str(image)) == 0

    out = capsys.readouterr().out
    assert "general" in out
    assert "1girl" in out
    assert "classify=" in out


def test_classify_debug_lists_categories(
    tmp_path: Path, context: AppContext, capsys: pytest.CaptureFixture[str]
) -> None:
    image = save_image(tmp_path / "a.png")

    assert _run(context, "classify", str(image), "--debug", "--mcut-general", "--top", "2") == 0

    out = capsys.readouterr().out
    assert "rating:" in out and "character:" in out
    assert "general mcut threshold:" in out


def test_classify_rejects_bad_threshold(tmp_path: Path, context: AppContext, capsys) -> None:
    image = save_image(tmp_path / "a.png")

    assert _run(context, "classify", str(image), "--general-threshold", "2") == 1
    assert "error:" in capsys.readouterr().err


def test_thumbnails_and_health_commands(tmp_path: Path, context: AppContext, capsys) -> None:
    images = tmp_path / "images"
    save_image(images / "one.png")
    save_image(images / "nested" / "two.jpg", color=(0, 90, 0))
    (images / "notes.txt").write_text("skip me", encoding="utf-8")
    out_dir = tmp_path / "thumb_out"

    assert _run(context, "thumbnails", str(images), "--out", str(out_dir), "--size", "16") == 0
    assert len(list(out_dir.glob("*.webp"))) == 2

    assert _run(context, "health", str(images), "--thumbnails", str(out_dir)) == 0
    out = capsys.readouterr().out
    assert "healthy_count: 2" in out
    assert "health_check: status=completed completed=2" in out


def test_status_reports_models_dir(context: AppContext, models_dir: Path, capsys) -> None:
    assert _run(context, "status", "--load") == 0

    out = capsys.readouterr().out
    assert str(models_dir) in out
    assert "available  : True" in out
