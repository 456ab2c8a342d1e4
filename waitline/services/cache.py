"""Shared per-facility cache of the latest live wait times."""

from __future__ import annotations

import threading

from waitline.core.logging import get_logger
from waitline.domain.models import SourceKind, WaitTime

log = get_logger("waitline.cache")


class WaitTimeCache:
    """Latest WaitTime per (facility, fetched source).

    Writers for different facilities never contend; writes for one facility
    are serialized and keep whichever entry has the newest ``observed_at``.
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[SourceKind, WaitTime]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, facility_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(facility_id)
            if lock is None:
                lock = self._locks[facility_id] = threading.Lock()
            return lock

    def put(self, wait_time: WaitTime) -> bool:
        """Store ``wait_time`` unless a newer one is already cached.

        Returns:
            True if stored, False if an entry with a newer observed_at won

        """
        if wait_time.source is None or not wait_time.source.is_fetched:
            raise ValueError(f"Only fetched sources are cached, got {wait_time.source!r}")

        with self._lock_for(wait_time.facility_id):
            per_source = self._entries.setdefault(wait_time.facility_id, {})
            current = per_source.get(wait_time.source)
            if current is not None and current.observed_at > wait_time.observed_at:
                log.debug(
                    "cache_write_discarded",
                    extra={
                        "facility_id": wait_time.facility_id,
                        "source": wait_time.source.value,
                        "cached_observed_at": current.observed_at.isoformat(),
                        "observed_at": wait_time.observed_at.isoformat(),
                    },
                )
                return False
            per_source[wait_time.source] = wait_time
            return True

    def get(self, facility_id: str, source: SourceKind) -> WaitTime | None:
        with self._lock_for(facility_id):
            return self._entries.get(facility_id, {}).get(source)

    def freshest(self, facility_id: str) -> WaitTime | None:
        """Most recently observed live value across all fetched sources."""
        with self._lock_for(facility_id):
            values = list(self._entries.get(facility_id, {}).values())
        if not values:
            return None
        return max(values, key=lambda wt: wt.observed_at)


__all__ = ["WaitTimeCache"]
