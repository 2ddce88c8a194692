"""End-to-end classification against a fake ONNX runtime."""

from __future__ import annotations

import asyncio
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from conftest import FAKE_INPUT_SIZE, FakeOrt, logits_for, make_app_paths, save_image
from core.config import TaggerSettings
from tagger.base import InferenceParams
from tagger.classifier import Classifier
from tagger.errors import ImageDecodeError, ModelsDirNotFoundError
from tagger.registry import ModelRegistry


def _classifier(tmp_path: Path, models_dir: Path | None) -> Classifier:
    registry = ModelRegistry(
        TaggerSettings(models_dir=str(models_dir) if models_dir else None),
        make_app_paths(tmp_path / "platform"),
        repo_root=tmp_path / "repo",
        executable_dir=tmp_path / "bin",
    )
    return Classifier(registry)


@pytest.mark.asyncio
async def test_classify_returns_sorted_tags(tmp_path: Path, models_dir: Path, fake_ort: FakeOrt) -> None:
    classifier = _classifier(tmp_path, models_dir)
    try:
        tags = await classifier.classify(Image.new("RGB", (64, 40), (10, 200, 10)))
    finally:
        classifier.close()

    assert [tag.name for tag in tags] == ["general", "1girl"]
    assert tags[0].confidence == pytest.approx(0.9, abs=1e-4)
    assert tags[1].confidence == pytest.approx(0.8, abs=1e-4)


@pytest.mark.asyncio
async def test_session_receives_preprocessed_tensor(tmp_path: Path, models_dir: Path, fake_ort: FakeOrt) -> None:
    seen: list[np.ndarray] = []

    def capture(batch: np.ndarray) -> np.ndarray:
        seen.append(batch)
        return logits_for({1: 0.7})

    fake_ort.configure = lambda session: setattr(session, "output", capture)
    classifier = _classifier(tmp_path, models_dir)
    try:
        tags = await classifier.classify(Image.new("RGB", (16, 16), (255, 255, 255)))
    finally:
        classifier.close()

    assert [tag.name for tag in tags] == ["sensitive"]
    assert seen[0].shape == (1, FAKE_INPUT_SIZE, FAKE_INPUT_SIZE, 3)
    assert seen[0].dtype == np.float32
    assert np.allclose(seen[0], 1.0)


@pytest.mark.asyncio
async def test_params_override_defaults(tmp_path: Path, models_dir: Path, fake_ort: FakeOrt) -> None:
    fake_ort.configure = lambda session: setattr(
        session, "output", lambda batch: logits_for({0: 0.9, 3: 0.6, 4: 0.3, 6: 0.7})
    )
    classifier = _classifier(tmp_path, models_dir)
    image = Image.new("RGB", (20, 20))
    try:
        default_tags = await classifier.classify(image)
        loose_tags = await classifier.classify_with_params(
            image, InferenceParams(general_threshold=0.25, character_threshold=0.5)
        )
    finally:
        classifier.close()

    assert [tag.name for tag in default_tags] == ["general", "1girl"]
    assert [tag.name for tag in loose_tags] == ["general", "hatsune_miku", "1girl", "solo"]


@pytest.mark.asyncio
async def test_classify_path_decodes_file(tmp_path: Path, models_dir: Path, fake_ort: FakeOrt) -> None:
    image_path = save_image(tmp_path / "images" / "a.png")
    classifier = _classifier(tmp_path, models_dir)
    try:
        tags = await classifier.classify_path(image_path)
    finally:
        classifier.close()

    assert [tag.name for tag in tags] == ["general", "1girl"]


@pytest.mark.asyncio
async def test_classify_path_rejects_undecodable_file(tmp_path: Path, models_dir: Path, fake_ort: FakeOrt) -> None:
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"definitely not an image")
    classifier = _classifier(tmp_path, models_dir)
    try:
        with pytest.raises(ImageDecodeError):
            await classifier.classify_path(broken)
    finally:
        classifier.close()
    assert [session.calls for session in fake_ort.sessions] == [0]


@pytest.mark.asyncio
async def test_classify_debug_groups_candidates(tmp_path: Path, models_dir: Path, fake_ort: FakeOrt) -> None:
    classifier = _classifier(tmp_path, models_dir)
    try:
        analysis = await classifier.classify_debug(
            Image.new("RGB", (20, 20)), InferenceParams(general_mcut_enabled=True)
        )
    finally:
        classifier.close()

    assert [pred.name for pred in analysis.rating][0] == "general"
    assert [pred.name for pred in analysis.general][0] == "1girl"
    assert len(analysis.general) == 3
    assert len(analysis.character) == 2
    assert analysis.general_mcut_threshold is not None
    assert analysis.character_mcut_threshold is None


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_session(tmp_path: Path, models_dir: Path, fake_ort: FakeOrt) -> None:
    classifier = _classifier(tmp_path, models_dir)
    images = [Image.new("RGB", (24 + i, 24), (i * 20, 0, 0)) for i in range(6)]
    try:
        results = await asyncio.gather(*(classifier.classify(image) for image in images))
    finally:
        classifier.close()

    assert len(fake_ort.sessions) == 1
    assert fake_ort.sessions[0].calls == 6
    assert all([tag.name for tag in tags] == ["general", "1girl"] for tags in results)


@pytest.mark.asyncio
async def test_unavailable_model_raises_and_reports(tmp_path: Path, fake_ort: FakeOrt) -> None:
    classifier = _classifier(tmp_path, None)
    try:
        assert classifier.is_available() is False
        with pytest.raises(ModelsDirNotFoundError):
            await classifier.classify(Image.new("RGB", (8, 8)))
    finally:
        classifier.close()


@pytest.mark.asyncio
async def test_classify_path_checks_model_before_decoding(
    tmp_path: Path, fake_ort: FakeOrt, monkeypatch: pytest.MonkeyPatch
) -> None:
    decoded: list[Path] = []
    monkeypatch.setattr("tagger.classifier.safe_load_image", lambda path: decoded.append(path))
    classifier = _classifier(tmp_path, None)
    try:
        with pytest.raises(ModelsDirNotFoundError):
            await classifier.classify_path(save_image(tmp_path / "a.png"))
    finally:
        classifier.close()

    assert decoded == []
