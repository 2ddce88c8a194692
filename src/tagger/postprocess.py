"""Turn raw model scores into a ranked, category-aware tag list."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np

from tagger.base import CategoryPredictions, IndexedPrediction, InferenceParams, LabelCatalog, TagCategory, TagPrediction

logger = logging.getLogger(__name__)

# Character MCut never keeps candidates below this probability.
CHARACTER_MCUT_FLOOR = 0.15


def stable_sigmoid(logits: np.ndarray) -> np.ndarray:
    """Elementwise logistic function that neither overflows nor yields NaN."""

    x = np.asarray(logits, dtype=np.float64)
    out = np.empty_like(x)
    positive = x >= 0
    negative = ~positive
    out[positive] = 1.0 / (1.0 + np.exp(-x[positive]))
    exp_x = np.exp(x[negative])
    out[negative] = exp_x / (1.0 + exp_x)
    return out.astype(np.float32)


def _sorted_desc(predictions: Iterable[IndexedPrediction]) -> list[IndexedPrediction]:
    return sorted(predictions, key=lambda pred: pred.confidence, reverse=True)


def _mcut_cut_index(confidences: Sequence[float]) -> int | None:
    if len(confidences) < 2:
        return None
    drops = -np.diff(np.asarray(confidences, dtype=np.float64))
    # argmax returns the first maximum
    return int(np.argmax(drops))


def mcut_threshold(confidences: Sequence[float]) -> float | None:
    """Return the midpoint of the largest gap in descending ``confidences``."""

    ordered = sorted((float(value) for value in confidences), reverse=True)
    cut = _mcut_cut_index(ordered)
    if cut is None:
        return None
    return (ordered[cut] + ordered[cut + 1]) / 2.0


def mcut_select(predictions: Sequence[IndexedPrediction]) -> list[IndexedPrediction]:
    """Keep the predictions above the largest consecutive confidence drop.

    An empty input yields an empty list and a single candidate is kept.
    """

    ordered = _sorted_desc(predictions)
    if len(ordered) <= 1:
        return ordered
    cut = _mcut_cut_index([pred.confidence for pred in ordered])
    return ordered[: cut + 1]  # type: ignore[operator]


def threshold_filter(predictions: Iterable[IndexedPrediction], threshold: float) -> list[IndexedPrediction]:
    """Return the predictions whose confidence is at least ``threshold``."""

    return [pred for pred in predictions if pred.confidence >= threshold]


def select_rating(predictions: Sequence[IndexedPrediction]) -> IndexedPrediction | None:
    """Return the highest-confidence rating, the first one on ties."""

    best: IndexedPrediction | None = None
    for pred in predictions:
        if best is None or pred.confidence > best.confidence:
            best = pred
    return best


def split_by_category(probabilities: np.ndarray, catalog: LabelCatalog) -> CategoryPredictions:
    """Pair every catalog entry with its probability and bucket by category."""

    probs = np.asarray(probabilities, dtype=np.float32).reshape(-1)
    result = CategoryPredictions()
    buckets = {
        TagCategory.RATING: result.rating,
        TagCategory.GENERAL: result.general,
        TagCategory.CHARACTER: result.character,
    }
    out_of_range = 0
    for index in sorted(catalog):
        if index >= probs.shape[0]:
            out_of_range += 1
            continue
        entry = catalog[index]
        pred = IndexedPrediction(index=index, name=entry.name, confidence=float(probs[index]))
        result.all.append(pred)
        bucket = buckets.get(entry.category)
        if bucket is not None:
            bucket.append(pred)
    if out_of_range:
        logger.warning(
            "Postprocess: %d catalog entries exceed model output size %d", out_of_range, probs.shape[0]
        )
    return result


def _select_general(candidates: Sequence[IndexedPrediction], params: InferenceParams) -> list[IndexedPrediction]:
    if params.general_mcut_enabled:
        return mcut_select(candidates)
    return threshold_filter(candidates, params.general_threshold)


def _select_character(candidates: Sequence[IndexedPrediction], params: InferenceParams) -> list[IndexedPrediction]:
    if params.character_mcut_enabled:
        return threshold_filter(mcut_select(candidates), CHARACTER_MCUT_FLOOR)
    return threshold_filter(candidates, params.character_threshold)


def assemble(
    rating: IndexedPrediction | None,
    general: Sequence[IndexedPrediction],
    character: Sequence[IndexedPrediction],
    max_tags: int,
) -> list[TagPrediction]:
    """Merge selections, drop duplicate names, rank and truncate."""

    merged: list[IndexedPrediction] = []
    if rating is not None:
        merged.append(rating)
    merged.extend(general)
    merged.extend(character)

    seen: set[str] = set()
    unique: list[IndexedPrediction] = []
    for pred in merged:
        if pred.name in seen:
            continue
        seen.add(pred.name)
        unique.append(pred)

    # sorted() is stable, so equal confidences keep category order
    ranked = _sorted_desc(unique)[:max_tags]
    return [TagPrediction(name=pred.name, confidence=pred.confidence) for pred in ranked]


def postprocess(probabilities: np.ndarray, catalog: LabelCatalog, params: InferenceParams) -> list[TagPrediction]:
    """Select the final tag list from per-index probabilities."""

    buckets = split_by_category(probabilities, catalog)
    return assemble(
        select_rating(buckets.rating),
        _select_general(buckets.general, params),
        _select_character(buckets.character, params),
        params.max_tags,
    )


def analyze(probabilities: np.ndarray, catalog: LabelCatalog, params: InferenceParams) -> CategoryPredictions:
    """Return every candidate per category, ranked, for introspection."""

    buckets = split_by_category(probabilities, catalog)
    analysis = CategoryPredictions(
        rating=_sorted_desc(buckets.rating),
        general=_sorted_desc(buckets.general),
        character=_sorted_desc(buckets.character),
        all=_sorted_desc(buckets.all),
    )
    if params.general_mcut_enabled:
        analysis.general_mcut_threshold = mcut_threshold([pred.confidence for pred in buckets.general])
    if params.character_mcut_enabled:
        analysis.character_mcut_threshold = mcut_threshold([pred.confidence for pred in buckets.character])
    return analysis


__all__ = [
    "CHARACTER_MCUT_FLOOR",
    "analyze",
    "assemble",
    "mcut_select",
    "mcut_threshold",
    "postprocess",
    "select_rating",
    "split_by_category",
    "stable_sigmoid",
    "threshold_filter",
]
