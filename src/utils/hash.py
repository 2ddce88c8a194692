"""Content keys for image files."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 20


def compute_sha256(path: str | Path, *, chunk_size: int = CHUNK_SIZE) -> str:
    """Return the hex SHA-256 digest of the file at ``path``."""

    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def iter_content_keys(paths: Iterable[str | Path]) -> Iterator[tuple[str, Path]]:
    """Yield ``(content_key, path)`` pairs, skipping files that cannot be read."""

    for path in paths:
        try:
            key = compute_sha256(path)
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", path, exc)
            continue
        yield key, Path(path)


__all__ = ["CHUNK_SIZE", "compute_sha256", "iter_content_keys"]
