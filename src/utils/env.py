"""Helpers for interrogating runtime environment flags."""

from __future__ import annotations

import os
from typing import Mapping, SupportsIndex, SupportsInt


def safe_int(
    value: SupportsInt | SupportsIndex | str | None,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Coerce ``value`` to :class:`int` or return ``default``.

    Used for worker counts read from ``LUMI_*`` variables: blanks, ``None``
    and unparsable text yield ``default``, and so does anything outside the
    optional ``min_value``/``max_value`` bounds.
    """

    candidate = value
    if candidate is None:
        return default
    if isinstance(candidate, str):
        candidate = candidate.strip()
        if candidate == "":
            return default

    try:
        coerced = int(candidate)
    except (TypeError, ValueError):
        return default

    if min_value is not None and coerced < min_value:
        return default
    if max_value is not None and coerced > max_value:
        return default
    return coerced


def env_int(name: str, default: int, *, min_value: int | None = 1, env: Mapping[str, str] | None = None) -> int:
    """Read ``name`` from the environment as an integer via :func:`safe_int`."""

    source = os.environ if env is None else env
    return safe_int(source.get(name), default, min_value=min_value)


def cpu_count() -> int | None:
    """Return the number of usable CPUs, or ``None`` when it cannot be determined."""

    try:
        return len(os.sched_getaffinity(0))
    except (AttributeError, OSError):
        return os.cpu_count()


__all__ = ["cpu_count", "env_int", "safe_int"]
