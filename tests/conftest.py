"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Sequence

import numpy as np
import pytest
from PIL import Image

from core.config import AppPaths, AppSettings
from tagger import registry as registry_module

CATALOG_HEADER = "tag_id,name,category,count"

# index -> (name, category code); gaps are intentional
SAMPLE_LABELS: dict[int, tuple[str, int]] = {
    0: ("general", 9),
    1: ("sensitive", 9),
    2: ("explicit", 9),
    3: ("1girl", 0),
    4: ("solo", 0),
    5: ("smile", 0),
    6: ("hatsune_miku", 4),
    7: ("kagamine_rin", 4),
    9: ("artist_name", 1),
}

FAKE_INPUT_SIZE = 32


class DummyPlatformDirs:
    def __init__(self, root: Path, name: str) -> None:
        base = root / name
        self.user_data_dir = str(base / "data")
        self.user_config_dir = str(base / "config")


def make_app_paths(root: Path, env: dict[str, str] | None = None) -> AppPaths:
    def factory(name: str) -> DummyPlatformDirs:
        return DummyPlatformDirs(root, name)

    return AppPaths(env=env or {}, platform_dirs_factory=factory)


def write_catalog(path: Path, labels: dict[int, tuple[str, int]] | None = None) -> Path:
    rows = [CATALOG_HEADER]
    for index, (name, code) in sorted((labels or SAMPLE_LABELS).items()):
        rows.append(f"{index},{name},{code},100")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(rows) + "\n", encoding="utf-8")
    return path


def logits_for(probabilities: dict[int, float], size: int = 10) -> np.ndarray:
    """Return logits whose sigmoid yields ``probabilities`` (others ~0)."""

    probs = np.full((size,), 1e-6, dtype=np.float64)
    for index, value in probabilities.items():
        probs[index] = value
    probs = np.clip(probs, 1e-6, 1 - 1e-6)
    return np.log(probs / (1.0 - probs)).astype(np.float32).reshape(1, -1)


class FakeSession:
    """Stand-in for ``onnxruntime.InferenceSession``."""

    def __init__(self, model_path: str, sess_options=None, providers=None, **_: object) -> None:
        self.model_path = model_path
        self.sess_options = sess_options
        self.providers = list(providers or [])
        self.shape: Sequence[object] = [1, FAKE_INPUT_SIZE, FAKE_INPUT_SIZE, 3]
        self.output: Callable[[np.ndarray], object] = lambda batch: logits_for({0: 0.9, 3: 0.8})
        self.calls = 0

    def get_inputs(self) -> list[SimpleNamespace]:
        return [SimpleNamespace(name="input_1", shape=self.shape)]

    def get_outputs(self) -> list[SimpleNamespace]:
        return [SimpleNamespace(name="predictions_sigmoid")]

    def get_providers(self) -> list[str]:
        return self.providers or ["CPUExecutionProvider"]

    def run(self, output_names, feeds):
        self.calls += 1
        (batch,) = feeds.values()
        return [self.output(batch)]


class FakeOrt:
    """Minimal module-like object replacing :mod:`onnxruntime`."""

    class SessionOptions:
        def __init__(self) -> None:
            self.graph_optimization_level = None
            self.log_severity_level = 1

    class GraphOptimizationLevel:
        ORT_ENABLE_ALL = 99

    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []
        self.configure: Callable[[FakeSession], None] | None = None
        self.fail_with: Exception | None = None

    def InferenceSession(self, model_path: str, **kwargs: object) -> FakeSession:  # noqa: N802
        if self.fail_with is not None:
            raise self.fail_with
        session = FakeSession(model_path, **kwargs)
        if self.configure is not None:
            self.configure(session)
        self.sessions.append(session)
        return session

    @staticmethod
    def get_available_providers() -> list[str]:
        return ["CPUExecutionProvider"]


@pytest.fixture
def fake_ort(monkeypatch: pytest.MonkeyPatch) -> FakeOrt:
    fake = FakeOrt()
    monkeypatch.setattr(registry_module, "ort", fake)
    monkeypatch.setattr(registry_module, "_IMPORT_ERROR", None)
    return fake


@pytest.fixture
def app_paths(tmp_path: Path) -> AppPaths:
    return make_app_paths(tmp_path / "platform")


@pytest.fixture
def models_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "models"
    directory.mkdir()
    write_catalog(directory / "selected_tags.csv")
    (directory / "swin-v2-tagger-v3.onnx").write_bytes(b"onnx")
    return directory


@pytest.fixture
def settings(models_dir: Path, tmp_path: Path) -> AppSettings:
    return AppSettings.from_mapping(
        {
            "tagger": {"models_dir": str(models_dir)},
            "thumbnail_dir": str(tmp_path / "thumbs"),
        }
    )


@pytest.fixture
def context(settings: AppSettings, app_paths: AppPaths, fake_ort: FakeOrt, tmp_path: Path):
    from core.context import AppContext
    from tagger.registry import ModelRegistry

    registry = ModelRegistry(
        settings.tagger,
        app_paths,
        repo_root=tmp_path / "repo",
        executable_dir=tmp_path / "bin",
    )
    ctx = AppContext(settings, app_paths, registry=registry)
    yield ctx
    ctx.close()


def save_image(path: Path, size: tuple[int, int] = (48, 32), color=(200, 40, 40), mode: str = "RGB") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, size, color).save(path)
    return path
