"""Tagging types shared across lumitag."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Mapping


class TagCategory(Enum):
    """Selection policy buckets for model outputs."""

    RATING = "rating"
    GENERAL = "general"
    CHARACTER = "character"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: int) -> "TagCategory":
        """Map the catalog's integer category code onto a :class:`TagCategory`."""

        return _CODE_TO_CATEGORY.get(int(code), cls.OTHER)


# WD14 selected_tags.csv category codes
_CODE_TO_CATEGORY: dict[int, TagCategory] = {
    9: TagCategory.RATING,
    0: TagCategory.GENERAL,
    4: TagCategory.CHARACTER,
}


@dataclass(frozen=True)
class LabelEntry:
    """One row of the label catalog."""

    index: int
    name: str
    category: TagCategory


@dataclass(frozen=True)
class TagPrediction:
    """Single tag returned from a classification call."""

    name: str
    confidence: float


@dataclass(frozen=True)
class IndexedPrediction:
    """Prediction that still remembers its raw model output index."""

    index: int
    name: str
    confidence: float


@dataclass(frozen=True)
class InferenceParams:
    """Per-call knobs for postprocessing."""

    general_threshold: float = 0.35
    character_threshold: float = 0.85
    general_mcut_enabled: bool = False
    character_mcut_enabled: bool = False
    max_tags: int = 50

    def __post_init__(self) -> None:
        for name in ("general_threshold", "character_threshold"):
            value = float(getattr(self, name))
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if int(self.max_tags) < 0:
            raise ValueError(f"max_tags must be non-negative, got {self.max_tags}")


@dataclass
class CategoryPredictions:
    """Category-partitioned predictions used for introspection only."""

    rating: list[IndexedPrediction] = field(default_factory=list)
    general: list[IndexedPrediction] = field(default_factory=list)
    character: list[IndexedPrediction] = field(default_factory=list)
    all: list[IndexedPrediction] = field(default_factory=list)
    general_mcut_threshold: float | None = None
    character_mcut_threshold: float | None = None


class LabelCatalog(Mapping[int, LabelEntry]):
    """Read-only ``index -> LabelEntry`` lookup."""

    def __init__(self, entries: Mapping[int, LabelEntry], *, skipped_rows: int = 0) -> None:
        self._entries = dict(entries)
        self.skipped_rows = int(skipped_rows)

    def __getitem__(self, index: int) -> LabelEntry:
        return self._entries[index]

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "CategoryPredictions",
    "IndexedPrediction",
    "InferenceParams",
    "LabelCatalog",
    "LabelEntry",
    "TagCategory",
    "TagPrediction",
]
