"""Lazy, memoized access to the ONNX tagger model and its label catalog."""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generic, Sequence, TypeVar

from core.config import AppPaths, TaggerSettings
from tagger.base import LabelCatalog
from tagger.errors import (
    ArtifactNotFoundError,
    LabelCatalogError,
    ModelLoadError,
    ModelsDirNotFoundError,
    ModelUnavailableError,
)
from tagger.labels import load_label_catalog

try:  # pragma: no cover - import is environment dependent
    import onnxruntime as ort
except ImportError as exc:  # pragma: no cover - graceful degradation
    ort = None
    _IMPORT_ERROR = exc
else:
    _IMPORT_ERROR = None

logger = logging.getLogger(__name__)

ONNXRUNTIME_MISSING_MESSAGE = "onnxruntime is required. Try: pip install onnxruntime-gpu  (or onnxruntime for CPU)"

# src/tagger/registry.py -> repository root
_REPO_ROOT = Path(__file__).resolve().parents[2]

T = TypeVar("T")


def ensure_onnxruntime() -> None:
    """Ensure onnxruntime is importable, raising a user-facing error otherwise."""

    if ort is None:  # pragma: no cover - runtime guard
        raise ModelUnavailableError(ONNXRUNTIME_MISSING_MESSAGE) from _IMPORT_ERROR


def get_available_providers() -> list[str]:
    """Return the list of ONNX Runtime providers available on this system."""

    ensure_onnxruntime()
    try:
        providers = list(ort.get_available_providers())  # type: ignore[union-attr]
    except Exception as exc:  # pragma: no cover
        logger.warning("Tagger: failed to query ONNX providers: %s", exc)
        return []
    return providers


def infer_input_size(shape: Sequence[Any] | None, fallback: int) -> int:
    """Return the square spatial size of an NHWC input shape.

    Dynamic (symbolic or ``None``) and non-square dimensions fall back to
    ``fallback`` with a warning.
    """

    dims = list(shape or [])
    if len(dims) >= 3:
        height, width = dims[1], dims[2]
        if isinstance(height, int) and isinstance(width, int) and height > 0 and height == width:
            return height
    logger.warning("Tagger: cannot infer square input size from shape %s; using %d", dims, fallback)
    return int(fallback)


@dataclass
class ModelHandle:
    """Loaded session plus the metadata needed to feed it."""

    session: Any
    input_name: str
    output_name: str
    input_size: int
    providers: list[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass(frozen=True)
class ModelStatus:
    """Snapshot of where the model files are and whether they loaded."""

    models_dir: Path | None
    model_path: Path | None
    model_exists: bool
    labels_path: Path | None
    labels_exists: bool
    model_loaded: bool
    labels_loaded: bool
    model_error: str | None = None
    labels_error: str | None = None
    attempted_dirs: tuple[Path, ...] = ()

    @property
    def ready(self) -> bool:
        return self.model_exists and self.labels_exists and self.model_error is None and self.labels_error is None


class _Memo(Generic[T]):
    """Run ``loader`` at most once and remember its value or its failure."""

    def __init__(self, loader: Callable[[], T], what: str) -> None:
        self._loader = loader
        self._what = what
        self._lock = threading.Lock()
        self._attempted = False
        self._value: T | None = None
        self._error: Exception | None = None

    @property
    def loaded(self) -> bool:
        return self._attempted and self._error is None

    @property
    def error(self) -> Exception | None:
        return self._error

    def get(self) -> T:
        with self._lock:
            if not self._attempted:
                try:
                    self._value = self._loader()
                except Exception as exc:
                    logger.warning("Tagger: %s unavailable: %s", self._what, exc)
                    self._error = exc
                self._attempted = True
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]


def _configure_session_options(options: "ort.SessionOptions") -> None:
    """Apply default optimisation and logging settings."""

    options.graph_optimization_level = getattr(ort.GraphOptimizationLevel, "ORT_ENABLE_ALL", 99)
    options.log_severity_level = 2


def _log_provider_details(session: "ort.InferenceSession", requested: Sequence[str] | None) -> list[str]:
    try:
        session_providers = list(session.get_providers())
    except Exception as exc:  # pragma: no cover
        logger.warning("Tagger: failed to query session providers: %s", exc)
        session_providers = []
    logger.info("Tagger providers requested=%s session=%s", list(requested or []), session_providers)
    return session_providers


class ModelRegistry:
    """Locate, load and cache the tagger model and label catalog.

    Both artifacts are loaded on first use and kept for the lifetime of the
    registry. A failed load is remembered and never retried; callers see the
    same error again.
    """

    def __init__(
        self,
        settings: TaggerSettings | None = None,
        app_paths: AppPaths | None = None,
        *,
        repo_root: Path | None = None,
        executable_dir: Path | None = None,
    ) -> None:
        self._settings = settings or TaggerSettings()
        self._app_paths = app_paths or AppPaths()
        self._repo_root = Path(repo_root) if repo_root is not None else _REPO_ROOT
        self._executable_dir = (
            Path(executable_dir) if executable_dir is not None else Path(sys.executable).resolve().parent
        )
        self._labels = _Memo(self._load_labels, "label catalog")
        self._model = _Memo(self._load_model, "model")

    @property
    def settings(self) -> TaggerSettings:
        return self._settings

    def candidate_dirs(self) -> list[Path]:
        """Return the directories searched for model files, in priority order."""

        if self._settings.models_dir:
            primary = Path(self._settings.models_dir)
        else:
            primary = self._app_paths.models_dir()
        candidates: list[Path] = []
        for path in (primary, self._repo_root / "models", self._executable_dir / "models"):
            if path not in candidates:
                candidates.append(path)
        return candidates

    def resolve_models_dir(self) -> Path:
        """Return the first existing candidate directory."""

        attempted = self.candidate_dirs()
        for path in attempted:
            if path.is_dir():
                return path
        raise ModelsDirNotFoundError(attempted)

    def labels(self) -> LabelCatalog:
        """Return the label catalog, loading it on first call."""

        return self._labels.get()

    def model(self) -> ModelHandle:
        """Return the model handle, loading it on first call."""

        return self._model.get()

    def is_available(self) -> bool:
        """Return whether both artifacts load. Never raises."""

        try:
            self.labels()
            self.model()
        except Exception:
            return False
        return True

    def status(self) -> ModelStatus:
        """Describe the model files without triggering a load."""

        attempted = self.candidate_dirs()
        models_dir = next((path for path in attempted if path.is_dir()), None)
        model_path = models_dir / self._settings.model_filename if models_dir else None
        labels_path = models_dir / self._settings.labels_filename if models_dir else None
        model_error = self._model.error
        labels_error = self._labels.error
        return ModelStatus(
            models_dir=models_dir,
            model_path=model_path,
            model_exists=bool(model_path and model_path.is_file()),
            labels_path=labels_path,
            labels_exists=bool(labels_path and labels_path.is_file()),
            model_loaded=self._model.loaded,
            labels_loaded=self._labels.loaded,
            model_error=str(model_error) if model_error is not None else None,
            labels_error=str(labels_error) if labels_error is not None else None,
            attempted_dirs=tuple(attempted),
        )

    def _artifact_path(self, filename: str, what: str) -> Path:
        path = self.resolve_models_dir() / filename
        if not path.is_file():
            raise ArtifactNotFoundError(path, what)
        return path

    def _load_labels(self) -> LabelCatalog:
        path = self._artifact_path(self._settings.labels_filename, "Label catalog")
        try:
            return load_label_catalog(path)
        except OSError as exc:
            raise LabelCatalogError(f"Unable to read label catalog {path}: {exc}") from exc

    def _load_model(self) -> ModelHandle:
        ensure_onnxruntime()
        path = self._artifact_path(self._settings.model_filename, "Model")
        logger.info("Tagger: using model %s", path)

        options = ort.SessionOptions()  # type: ignore[union-attr]
        _configure_session_options(options)
        providers = list(self._settings.providers) if self._settings.providers else get_available_providers()
        try:
            session = ort.InferenceSession(  # type: ignore[union-attr]
                str(path),
                sess_options=options,
                providers=providers or None,
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to initialise ONNX Runtime session for {path}: {exc}") from exc

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise ModelLoadError(f"Model {path} declares no inputs or outputs")
        if len(outputs) != 1:
            logger.warning("Tagger: model has %d outputs; using the first", len(outputs))

        input_size = infer_input_size(getattr(inputs[0], "shape", None), self._settings.input_size)
        session_providers = _log_provider_details(session, providers)
        logger.info("Tagger: model ready (input=%s size=%d)", inputs[0].name, input_size)
        return ModelHandle(
            session=session,
            input_name=inputs[0].name,
            output_name=outputs[0].name,
            input_size=input_size,
            providers=session_providers,
        )


__all__ = [
    "ModelHandle",
    "ModelRegistry",
    "ModelStatus",
    "ONNXRUNTIME_MISSING_MESSAGE",
    "ensure_onnxruntime",
    "get_available_providers",
    "infer_input_size",
]
