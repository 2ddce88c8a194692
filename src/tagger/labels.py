"""Helpers for reading WD14 ``selected_tags.csv`` label catalogs."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterator

from tagger.base import LabelCatalog, LabelEntry, TagCategory
from tagger.errors import LabelCatalogError

logger = logging.getLogger(__name__)

# index, name, category, count
_MIN_FIELDS = 4


def _iter_csv_rows(csv_path: Path) -> Iterator[list[str]]:
    with csv_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.reader(handle)
        for line_no, row in enumerate(reader):
            if line_no == 0:
                # header
                continue
            if not row or not any(cell.strip() for cell in row):
                continue
            yield [cell.strip() for cell in row]


def _parse_row(cells: list[str]) -> LabelEntry | None:
    if len(cells) < _MIN_FIELDS:
        return None
    try:
        index = int(cells[0])
        code = int(cells[2])
    except ValueError:
        return None
    name = cells[1]
    if index < 0 or not name:
        return None
    return LabelEntry(index=index, name=name, category=TagCategory.from_code(code))


def load_label_catalog(csv_path: str | Path) -> LabelCatalog:
    """Parse a label catalog.

    Parameters
    ----------
    csv_path:
        Path to the CSV file. The first line is a header; every following
        row must carry at least ``index,name,category,count``.

    Returns
    -------
    LabelCatalog
        Mapping of output index to :class:`LabelEntry`. Malformed rows are
        dropped and counted in :attr:`LabelCatalog.skipped_rows`.

    Raises
    ------
    LabelCatalogError
        When no row could be parsed.
    """

    path = Path(csv_path)
    entries: dict[int, LabelEntry] = {}
    skipped = 0
    for cells in _iter_csv_rows(path):
        entry = _parse_row(cells)
        if entry is None:
            skipped += 1
            continue
        if entry.index in entries:
            logger.warning("Labels: duplicate index %d in %s; keeping first", entry.index, path)
            skipped += 1
            continue
        entries[entry.index] = entry

    if skipped:
        logger.warning("Labels: skipped %d malformed row(s) in %s", skipped, path)
    if not entries:
        raise LabelCatalogError(f"Label catalog is empty or invalid: {path}")

    logger.info("Labels: loaded %d tags from %s", len(entries), path)
    return LabelCatalog(entries, skipped_rows=skipped)


__all__ = ["load_label_catalog"]
