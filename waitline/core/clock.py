"""Wall-clock access. Components take a ``Clock`` so tests can drive time."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["Clock", "utcnow"]
