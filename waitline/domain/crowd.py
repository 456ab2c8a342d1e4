"""Anonymous crowd logs and their decay-weighted live estimate.

A crowd log records when a user checked in at a facility and, once they
confirm it, when they were seen. The observed wait is ``seen - check_in``.
Each confirmed log decays linearly from weight 1 at ``seen_time`` to weight 0
at the decay horizon; the facility estimate is the weighted mean over logs that
still carry weight. Decayed logs are dropped lazily on every store operation.

Callers must only submit logs for a facility while ``GeofenceGate`` reports the
user eligible for it; the store does not re-check this.
"""

from __future__ import annotations

import hashlib
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Protocol

from waitline.core.clock import Clock, utcnow
from waitline.core.logging import get_logger
from waitline.core.metrics import crowd_logs_total

log = get_logger("waitline.crowd")

DECAY_HORIZON_SECONDS = 7200.0
# Sample count at which aggregate confidence stops growing
FULL_CONFIDENCE_SAMPLES = 10


class CrowdLogError(Exception):
    """Invalid crowd log operation (double confirmation, bad timestamps)."""


class UnknownCrowdLogError(CrowdLogError, LookupError):
    """No crowd log with this id (never existed or already pruned)."""


def decay_weight(elapsed_seconds: float, horizon_seconds: float = DECAY_HORIZON_SECONDS) -> float:
    """Linear decay: 1 at seen time, exactly 0 from the horizon on.

    Negative elapsed times (seen time in the future) weigh 1.
    """
    if elapsed_seconds <= 0:
        return 1.0
    if elapsed_seconds >= horizon_seconds:
        return 0.0
    return 1.0 - elapsed_seconds / horizon_seconds


def anonymized_id(device_id: str, day: date) -> str:
    """Per-device, per-day identifier; the raw device id never leaves the device."""
    raw = f"{device_id}-{day.isoformat()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class CrowdLog:
    id: str
    facility_id: str
    anonymized_id: str
    check_in_time: datetime
    seen_time: datetime | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.seen_time is not None

    @property
    def wait_minutes(self) -> float | None:
        if self.seen_time is None:
            return None
        return (self.seen_time - self.check_in_time).total_seconds() / 60.0

    def weight(self, now: datetime, horizon_seconds: float = DECAY_HORIZON_SECONDS) -> float:
        """Current weight; unconfirmed logs carry none."""
        if self.seen_time is None:
            return 0.0
        return decay_weight((now - self.seen_time).total_seconds(), horizon_seconds)


@dataclass(frozen=True)
class CrowdAggregate:
    """Decay-weighted crowd estimate for one facility."""

    facility_id: str
    minutes: float
    sample_count: int
    confidence: float
    observed_at: datetime

    @property
    def rounded_minutes(self) -> int:
        return int(round(self.minutes))


class CrowdLogSink(Protocol):
    """Remote crowd log store. Delivery is eventual and best effort."""

    def publish(self, crowd_log: CrowdLog, event: str) -> None: ...


class LoggingCrowdLogSink:
    """Sink that only records the hand-off in the structured log."""

    def publish(self, crowd_log: CrowdLog, event: str) -> None:
        log.info(
            "crowd_log_published",
            extra={
                "event": event,
                "log_id": crowd_log.id,
                "facility_id": crowd_log.facility_id,
                "anonymized_id": crowd_log.anonymized_id,
            },
        )


class CrowdLogStore:
    """Thread-safe in-memory store of recent crowd logs."""

    def __init__(
        self,
        horizon_seconds: float = DECAY_HORIZON_SECONDS,
        pending_ttl_seconds: float = 6 * 3600,
        sink: CrowdLogSink | None = None,
        clock: Clock | None = None,
    ):
        """Initialize store.

        Args:
            horizon_seconds: Age after seen time at which a log stops counting
            pending_ttl_seconds: How long an unconfirmed log is kept after check-in
            sink: Remote store that receives submitted and confirmed logs
            clock: Callable returning aware UTC datetimes

        """
        if horizon_seconds <= 0:
            raise ValueError("horizon_seconds must be > 0")
        self.horizon_seconds = horizon_seconds
        self.pending_ttl = timedelta(seconds=pending_ttl_seconds)
        self.sink = sink or LoggingCrowdLogSink()
        self._clock = clock or utcnow
        self._lock = threading.Lock()
        self._logs: dict[str, CrowdLog] = {}

    def submit(self, facility_id: str, anonymized_id: str, check_in_time: datetime) -> CrowdLog:
        """Record a check-in.

        Re-submitting for the same facility and anonymized id while an earlier
        log is still unconfirmed returns that earlier log.
        """
        with self._lock:
            self._prune(self._clock())
            for existing in self._logs.values():
                if (
                    existing.facility_id == facility_id
                    and existing.anonymized_id == anonymized_id
                    and not existing.is_confirmed
                ):
                    return existing

            crowd_log = CrowdLog(
                id=uuid.uuid4().hex,
                facility_id=facility_id,
                anonymized_id=anonymized_id,
                check_in_time=check_in_time,
            )
            self._logs[crowd_log.id] = crowd_log

        crowd_logs_total.labels(event="submitted").inc()
        log.info(
            "crowd_log_submitted",
            extra={"log_id": crowd_log.id, "facility_id": facility_id},
        )
        self._publish(crowd_log, "submitted")
        return crowd_log

    def confirm_seen(self, log_id: str, seen_time: datetime) -> CrowdLog:
        """Set the seen time of a pending log. Allowed once per log.

        Raises:
            UnknownCrowdLogError: If the log does not exist (or was pruned)
            CrowdLogError: If already confirmed, or seen before check-in

        """
        with self._lock:
            self._prune(self._clock())
            crowd_log = self._logs.get(log_id)
            if crowd_log is None:
                raise UnknownCrowdLogError(f"Unknown crowd log: {log_id}")
            if crowd_log.is_confirmed:
                crowd_logs_total.labels(event="rejected").inc()
                raise CrowdLogError(f"Crowd log {log_id} already confirmed")
            if seen_time < crowd_log.check_in_time:
                crowd_logs_total.labels(event="rejected").inc()
                raise CrowdLogError("seen_time precedes check_in_time")
            crowd_log.seen_time = seen_time

        crowd_logs_total.labels(event="confirmed").inc()
        log.info(
            "crowd_log_confirmed",
            extra={
                "log_id": log_id,
                "facility_id": crowd_log.facility_id,
                "wait_minutes": round(crowd_log.wait_minutes, 1),
            },
        )
        self._publish(crowd_log, "confirmed")
        return crowd_log

    def estimate(self, facility_id: str, now: datetime | None = None) -> CrowdAggregate | None:
        """Weighted mean wait in minutes, or None when no log carries weight."""
        now = now or self._clock()
        with self._lock:
            self._prune(now)
            weighted = [
                (cl, cl.weight(now, self.horizon_seconds))
                for cl in self._logs.values()
                if cl.facility_id == facility_id and cl.is_confirmed
            ]
        weighted = [(cl, w) for cl, w in weighted if w > 0]
        if not weighted:
            return None

        total_weight = sum(w for _, w in weighted)
        minutes = sum(cl.wait_minutes * w for cl, w in weighted) / total_weight
        n = len(weighted)
        confidence = min(1.0, n / FULL_CONFIDENCE_SAMPLES) * (total_weight / n)
        return CrowdAggregate(
            facility_id=facility_id,
            minutes=minutes,
            sample_count=n,
            confidence=confidence,
            observed_at=max(cl.seen_time for cl, _ in weighted),
        )

    def logs(self, facility_id: str) -> list[CrowdLog]:
        """Logs currently held for ``facility_id`` (after pruning)."""
        with self._lock:
            self._prune(self._clock())
            return [cl for cl in self._logs.values() if cl.facility_id == facility_id]

    def _prune(self, now: datetime) -> None:
        # caller holds self._lock
        expired = [
            log_id
            for log_id, cl in self._logs.items()
            if (cl.is_confirmed and cl.weight(now, self.horizon_seconds) == 0.0)
            or (not cl.is_confirmed and now - cl.check_in_time > self.pending_ttl)
        ]
        for log_id in expired:
            del self._logs[log_id]
        if expired:
            crowd_logs_total.labels(event="pruned").inc(len(expired))

    def _publish(self, crowd_log: CrowdLog, event: str) -> None:
        try:
            self.sink.publish(crowd_log, event)
        except Exception:
            log.exception(
                "crowd_sink_failed",
                extra={"log_id": crowd_log.id, "event": event},
            )


__all__ = [
    "DECAY_HORIZON_SECONDS",
    "CrowdAggregate",
    "CrowdLog",
    "CrowdLogError",
    "CrowdLogSink",
    "CrowdLogStore",
    "LoggingCrowdLogSink",
    "UnknownCrowdLogError",
    "anonymized_id",
    "decay_weight",
]
