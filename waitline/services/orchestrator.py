"""Per-facility fallback chain: scrape -> API -> last cached value.

Each live attempt passes the (facility, source) circuit breaker, then the
provider rate limiter, then a single fetch bounded by the per-call timeout.
Nothing raised by a fetch escapes ``run``: failures become breaker accounting,
an ``Attempt`` record and, at the end of the chain, the cached fallback.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from dataclasses import dataclass

from waitline.clients.circuit_breaker import BreakerRegistry
from waitline.clients.errors import (
    FetchError,
    FetchTimeout,
    NetworkError,
    ParseError,
    ProviderPushback,
    UntrustedURLError,
)
from waitline.clients.http import provider_key
from waitline.clients.ratelimit import ProviderRateLimiter
from waitline.clients.sources import SourceFetcher
from waitline.core.clock import Clock, utcnow
from waitline.core.logging import get_logger
from waitline.core.metrics import source_fetch_duration_seconds, source_fetch_total
from waitline.domain.models import Facility, SourceKind, WaitTime
from waitline.services.cache import WaitTimeCache

log = get_logger("waitline.orchestrator")

# Fallback order. Scrape is always tried before the API.
SOURCE_ORDER = (SourceKind.SCRAPED, SourceKind.API)


@dataclass(frozen=True)
class Attempt:
    """Outcome of one step of the chain."""

    source: SourceKind
    outcome: str  # ok, short_circuit, throttled, timeout, network, pushback, parse, untrusted, error
    error: str | None = None


@dataclass(frozen=True)
class OrchestrationResult:
    facility_id: str
    wait_time: WaitTime | None
    attempts: tuple[Attempt, ...]

    @property
    def refreshed(self) -> bool:
        """True if a live source answered during this run."""
        return any(a.outcome == "ok" for a in self.attempts)

    @property
    def short_circuited(self) -> bool:
        return any(a.outcome == "short_circuit" for a in self.attempts)


def failure_outcome(err: FetchError) -> str:
    """Metric/attempt label for a fetch failure."""
    if isinstance(err, FetchTimeout):
        return "timeout"
    if isinstance(err, NetworkError):
        return "network"
    if isinstance(err, ProviderPushback):
        return "pushback"
    if isinstance(err, UntrustedURLError):
        return "untrusted"
    if isinstance(err, ParseError):
        return "parse"
    return "error"


class FallbackOrchestrator:
    """Runs the fallback chain for one facility at a time."""

    def __init__(
        self,
        fetchers: Mapping[SourceKind, SourceFetcher],
        breakers: BreakerRegistry,
        limiter: ProviderRateLimiter,
        cache: WaitTimeCache,
        *,
        fetch_timeout: float = 10.0,
        rate_max_wait: float = 10.0,
        staleness_threshold_seconds: float = 8 * 3600,
        clock: Clock | None = None,
    ):
        """Initialize orchestrator.

        Args:
            fetchers: One fetcher per live source kind
            breakers: Breaker registry keyed by (facility_id, source)
            limiter: Per-provider rate limiter
            cache: Shared wait-time cache
            fetch_timeout: Per-call timeout in seconds
            rate_max_wait: Longest wait for a provider slot before skipping the source
            staleness_threshold_seconds: Age beyond which a cached value is stale
            clock: Callable returning aware UTC datetimes

        """
        unknown = [kind for kind in fetchers if kind not in SOURCE_ORDER]
        if unknown:
            raise ValueError(f"No fallback position for source kinds: {unknown}")
        self.fetchers = dict(fetchers)
        self.breakers = breakers
        self.limiter = limiter
        self.cache = cache
        self.fetch_timeout = fetch_timeout
        self.rate_max_wait = rate_max_wait
        self.staleness_threshold_seconds = staleness_threshold_seconds
        self._clock = clock or utcnow

    async def run(self, facility: Facility) -> OrchestrationResult:
        """Resolve the best obtainable live value for ``facility``.

        Returns:
            Result with the fresh value on the first success, otherwise the
            cached fallback (possibly stale) or None when nothing was ever cached

        """
        attempts: list[Attempt] = []

        for kind in SOURCE_ORDER:
            fetcher = self.fetchers.get(kind)
            if fetcher is None:
                continue
            url = fetcher.url_for(facility)
            if not url:
                continue

            breaker = self.breakers.get(facility.id, kind)
            if not breaker.allow():
                source_fetch_total.labels(source=kind.value, outcome="short_circuit").inc()
                log.info(
                    "fetch_short_circuited",
                    extra={"facility_id": facility.id, "source": kind.value},
                )
                attempts.append(Attempt(kind, "short_circuit"))
                continue

            granted = await self.limiter.acquire(provider_key(url), timeout=self.rate_max_wait)
            if not granted:
                breaker.abandon_probe()
                source_fetch_total.labels(source=kind.value, outcome="throttled").inc()
                log.warning(
                    "fetch_throttled",
                    extra={"facility_id": facility.id, "source": kind.value, "url": url},
                )
                attempts.append(Attempt(kind, "throttled"))
                continue

            t0 = time.perf_counter()
            try:
                reading = await self._fetch_once(fetcher, facility)
            except FetchError as e:
                breaker.on_failure(extended_backoff=e.extended_backoff)
                outcome = failure_outcome(e)
                source_fetch_total.labels(source=kind.value, outcome=outcome).inc()
                log.warning(
                    "fetch_failed",
                    extra={
                        "facility_id": facility.id,
                        "source": kind.value,
                        "outcome": outcome,
                        "status": e.status,
                        "error": str(e),
                    },
                )
                attempts.append(Attempt(kind, outcome, str(e)))
                continue
            except Exception as e:
                # A fetcher bug still counts against the source and releases the probe
                breaker.on_failure()
                source_fetch_total.labels(source=kind.value, outcome="error").inc()
                log.exception(
                    "fetch_crashed",
                    extra={"facility_id": facility.id, "source": kind.value, "error": repr(e)},
                )
                attempts.append(Attempt(kind, "error", repr(e)))
                continue
            except asyncio.CancelledError:
                breaker.abandon_probe()
                raise
            finally:
                source_fetch_duration_seconds.labels(source=kind.value).observe(
                    time.perf_counter() - t0
                )

            breaker.on_success()
            source_fetch_total.labels(source=kind.value, outcome="ok").inc()
            wait_time = WaitTime.from_reading(facility.id, kind, reading, self._clock())
            self.cache.put(wait_time)
            attempts.append(Attempt(kind, "ok"))
            log.info(
                "fetch_succeeded",
                extra={
                    "facility_id": facility.id,
                    "source": kind.value,
                    "minutes": wait_time.minutes,
                    "patients_in_line": wait_time.patients_in_line,
                    "status": wait_time.status.value,
                },
            )
            return OrchestrationResult(facility.id, wait_time, tuple(attempts))

        return self._fallback(facility, attempts)

    async def _fetch_once(self, fetcher: SourceFetcher, facility: Facility):
        try:
            return await asyncio.wait_for(fetcher.fetch(facility), timeout=self.fetch_timeout)
        except TimeoutError as e:
            raise FetchTimeout(
                f"{fetcher.source.value} fetch exceeded {self.fetch_timeout}s",
                url=fetcher.url_for(facility),
            ) from e

    def _fallback(self, facility: Facility, attempts: list[Attempt]) -> OrchestrationResult:
        now = self._clock()
        short_circuited = any(a.outcome == "short_circuit" for a in attempts)
        cached = self.cache.freshest(facility.id)
        wait_time = None
        if cached is not None:
            wait_time = cached.with_staleness(
                now, self.staleness_threshold_seconds, force=short_circuited
            )

        log.info(
            "fallback_to_cache",
            extra={
                "facility_id": facility.id,
                "has_cached": cached is not None,
                "is_stale": wait_time.is_stale if wait_time else None,
                "attempts": [f"{a.source.value}:{a.outcome}" for a in attempts],
            },
        )
        return OrchestrationResult(facility.id, wait_time, tuple(attempts))


__all__ = [
    "SOURCE_ORDER",
    "Attempt",
    "FallbackOrchestrator",
    "OrchestrationResult",
    "failure_outcome",
]
