"""Exceptions raised by the tagging pipeline.

The hierarchy separates availability problems (nothing to load), load
problems (something was found but could not be parsed), and per-image
problems so batch jobs can isolate the latter while failing fast on the
former.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class TaggerError(RuntimeError):
    """Base class for every tagging failure."""


class ModelUnavailableError(TaggerError):
    """The model or its label catalog cannot be located."""


class ModelsDirNotFoundError(ModelUnavailableError):
    """None of the candidate model directories exist."""

    def __init__(self, attempted: Sequence[Path]) -> None:
        self.attempted = [Path(path) for path in attempted]
        listing = "\n".join(f"  - {path}" for path in self.attempted) or "  (no candidates)"
        super().__init__(
            "Models directory not found. Tried:\n"
            f"{listing}\n"
            "Place the model and selected_tags.csv in one of these locations."
        )


class ArtifactNotFoundError(ModelUnavailableError):
    """A models directory exists but the requested file is missing."""

    def __init__(self, path: Path, what: str) -> None:
        self.path = Path(path)
        super().__init__(f"{what} not found: {self.path}")


class ModelLoadError(TaggerError):
    """An artifact was found but could not be loaded."""


class LabelCatalogError(ModelLoadError):
    """The label catalog parsed to zero usable rows."""


class InferenceError(TaggerError):
    """Running the model failed for a single image."""


class TensorConstructionError(InferenceError):
    """The preprocessed input does not match the model's expected tensor."""


class SessionLockError(InferenceError):
    """The model handle lock could not be acquired."""


class ExecutionError(InferenceError):
    """ONNX Runtime raised while executing the session."""


class MissingOutputError(InferenceError):
    """The session returned no usable output tensor."""


class ImageDecodeError(TaggerError):
    """The source image could not be opened or decoded."""


__all__ = [
    "ArtifactNotFoundError",
    "ExecutionError",
    "ImageDecodeError",
    "InferenceError",
    "LabelCatalogError",
    "MissingOutputError",
    "ModelLoadError",
    "ModelUnavailableError",
    "ModelsDirNotFoundError",
    "SessionLockError",
    "TaggerError",
    "TensorConstructionError",
]
