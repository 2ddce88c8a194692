"""WD14 ONNX tagging for lumitag."""

from .base import CategoryPredictions, InferenceParams, LabelCatalog, LabelEntry, TagCategory, TagPrediction
from .errors import InferenceError, ModelUnavailableError, TaggerError

__all__ = [
    "CategoryPredictions",
    "InferenceError",
    "InferenceParams",
    "LabelCatalog",
    "LabelEntry",
    "ModelUnavailableError",
    "TagCategory",
    "TagPrediction",
    "TaggerError",
]
