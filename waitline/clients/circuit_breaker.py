"""Circuit breaker keyed by (facility, source).

Provides failure isolation so one failing facility/source pair cannot burn
fetch budget or drag out a refresh cycle.

State transitions:
  closed    -> open:      ``fail_threshold`` consecutive failures
  open      -> half-open: cooldown elapsed (base * 2**backoff_exponent, capped)
  half-open -> closed:    the single probe succeeds
  half-open -> open:      the probe fails; backoff_exponent grows
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from waitline.core.clock import Clock, utcnow
from waitline.core.logging import get_logger
from waitline.core.metrics import breaker_transitions_total
from waitline.domain.models import SourceKind

log = get_logger("waitline.breaker")


class BreakerState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time view of one breaker."""

    facility_id: str
    source: SourceKind
    state: BreakerState
    consecutive_failures: int
    opened_at: datetime | None
    backoff_exponent: int


class CircuitBreaker:
    """Breaker for one (facility, source) pair, with injectable clock."""

    def __init__(
        self,
        facility_id: str,
        source: SourceKind,
        fail_threshold: int = 3,
        base_cooldown: float = 60.0,
        max_backoff_exponent: int = 5,
        clock: Clock | None = None,
    ):
        """Initialize circuit breaker.

        Args:
            facility_id: Facility this breaker guards
            source: Source kind this breaker guards
            fail_threshold: Consecutive failures before opening circuit
            base_cooldown: Seconds before the first half-open probe
            max_backoff_exponent: Cap on cooldown doublings
            clock: Callable returning aware UTC datetimes

        """
        self.facility_id = facility_id
        self.source = source
        self.fail_threshold = fail_threshold
        self.base_cooldown = base_cooldown
        self.max_backoff_exponent = max_backoff_exponent
        self._clock = clock or utcnow
        self._lock = threading.Lock()

        self.state = BreakerState.CLOSED
        self.consecutive_failures = 0
        self.opened_at: datetime | None = None
        self.backoff_exponent = 0
        self._probe_out = False

    @property
    def cooldown(self) -> timedelta:
        """Current open-state cooldown."""
        return timedelta(seconds=self.base_cooldown * (2**self.backoff_exponent))

    def allow(self) -> bool:
        """Check if an attempt may be made right now.

        In half-open state exactly one caller gets True until the probe
        outcome is recorded (or the probe is abandoned).

        Returns:
            True if the attempt is allowed, False if short-circuited

        """
        with self._lock:
            if self.state is BreakerState.CLOSED:
                return True

            if self.state is BreakerState.OPEN:
                if self._clock() - self.opened_at >= self.cooldown:
                    self._transition(BreakerState.HALF_OPEN)
                    self._probe_out = True
                    return True
                return False

            # half-open: only the single probe
            if self._probe_out:
                return False
            self._probe_out = True
            return True

    def abandon_probe(self) -> None:
        """Hand back an unused half-open probe (e.g. the rate limiter refused)."""
        with self._lock:
            if self.state is BreakerState.HALF_OPEN:
                self._probe_out = False

    def on_success(self) -> None:
        """Record successful fetch, reset failure count."""
        with self._lock:
            self.consecutive_failures = 0
            self._probe_out = False
            if self.state is not BreakerState.CLOSED:
                self.backoff_exponent = 0
                self.opened_at = None
                self._transition(BreakerState.CLOSED)

    def on_failure(self, extended_backoff: bool = False) -> None:
        """Record failed fetch, possibly open circuit.

        Args:
            extended_backoff: Provider pushed back (429/401/403); open with
                one extra doubling of the cooldown

        """
        with self._lock:
            self.consecutive_failures += 1
            self._probe_out = False

            if self.state is BreakerState.HALF_OPEN:
                self.backoff_exponent += 1
                self._open(extended_backoff)
            elif self.state is BreakerState.CLOSED and self.consecutive_failures >= self.fail_threshold:
                self._open(extended_backoff)

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                facility_id=self.facility_id,
                source=self.source,
                state=self.state,
                consecutive_failures=self.consecutive_failures,
                opened_at=self.opened_at,
                backoff_exponent=self.backoff_exponent,
            )

    def _open(self, extended_backoff: bool) -> None:
        if extended_backoff:
            self.backoff_exponent += 1
        self.backoff_exponent = min(self.backoff_exponent, self.max_backoff_exponent)
        self.opened_at = self._clock()
        self._transition(BreakerState.OPEN)

    def _transition(self, to_state: BreakerState) -> None:
        from_state = self.state
        self.state = to_state
        breaker_transitions_total.labels(source=self.source.value, to_state=to_state.value).inc()
        log.info(
            "breaker_transition",
            extra={
                "facility_id": self.facility_id,
                "source": self.source.value,
                "from_state": from_state.value,
                "to_state": to_state.value,
                "consecutive_failures": self.consecutive_failures,
                "backoff_exponent": self.backoff_exponent,
            },
        )


class BreakerRegistry:
    """Lazily created breakers, one per (facility_id, source)."""

    def __init__(
        self,
        fail_threshold: int = 3,
        base_cooldown: float = 60.0,
        max_backoff_exponent: int = 5,
        clock: Clock | None = None,
    ):
        self.fail_threshold = fail_threshold
        self.base_cooldown = base_cooldown
        self.max_backoff_exponent = max_backoff_exponent
        self._clock = clock or utcnow
        self._breakers: dict[tuple[str, SourceKind], CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, facility_id: str, source: SourceKind) -> CircuitBreaker:
        key = (facility_id, source)
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    facility_id,
                    source,
                    fail_threshold=self.fail_threshold,
                    base_cooldown=self.base_cooldown,
                    max_backoff_exponent=self.max_backoff_exponent,
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    def states(self) -> list[CircuitBreakerState]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.snapshot() for b in breakers]


__all__ = ["BreakerRegistry", "BreakerState", "CircuitBreaker", "CircuitBreakerState"]
