"""Public read API of the wait-time engine.

``WaitTimeEngine`` holds explicitly constructed components; nothing here is a
process-wide singleton. ``build_engine`` wires the production graph from
``Settings``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from waitline.clients.circuit_breaker import BreakerRegistry, CircuitBreakerState
from waitline.clients.http import SourceHTTPClient
from waitline.clients.ratelimit import ProviderRateLimiter
from waitline.clients.sources import ApiFetcher, ScrapeFetcher
from waitline.core.clock import Clock, utcnow
from waitline.core.config import Settings, get_settings
from waitline.core.logging import get_logger
from waitline.domain.crowd import CrowdLog, CrowdLogSink, CrowdLogStore
from waitline.domain.geofence import GeofenceGate, GeofenceSession
from waitline.domain.models import Coordinate, Facility, FacilityWaitTimes, SourceKind
from waitline.domain.selector import BestValueSelector
from waitline.scheduler.refresh import CycleOutcome, RefreshScheduler
from waitline.services.cache import WaitTimeCache
from waitline.services.catalog import load_catalog
from waitline.services.orchestrator import FallbackOrchestrator

log = get_logger("waitline.engine")


class NotEligibleError(Exception):
    """Crowd log submitted without geofence eligibility for the facility."""


class WaitTimeEngine:
    def __init__(
        self,
        facilities: Iterable[Facility],
        selector: BestValueSelector,
        crowd: CrowdLogStore,
        geofence: GeofenceGate,
        scheduler: RefreshScheduler,
        breakers: BreakerRegistry | None = None,
        http: SourceHTTPClient | None = None,
        clock: Clock | None = None,
    ):
        self.facilities = {f.id: f for f in facilities}
        self.selector = selector
        self.crowd = crowd
        self.geofence = geofence
        self.scheduler = scheduler
        self.breakers = breakers
        self.http = http
        self._clock = clock or utcnow

    def facility(self, facility_id: str) -> Facility:
        """Catalog entry for ``facility_id``.

        Raises:
            LookupError: If the facility is not in the catalog

        """
        try:
            return self.facilities[facility_id]
        except KeyError:
            raise LookupError(f"Unknown facility: {facility_id}") from None

    def get_wait_times(self, facility_id: str) -> FacilityWaitTimes:
        return self.selector.select(self.facility(facility_id))

    def is_eligible_to_log(self, facility_id: str) -> bool:
        self.facility(facility_id)
        return self.geofence.is_eligible(facility_id)

    def on_location(self, coordinate: Coordinate, timestamp: datetime | None = None) -> GeofenceSession | None:
        return self.geofence.on_location(coordinate, timestamp or self._clock())

    def submit_crowd_log(
        self, facility_id: str, anonymized_id: str, check_in_time: datetime | None = None
    ) -> CrowdLog:
        """Record a crowd check-in for an eligible user.

        Raises:
            LookupError: If the facility is unknown
            NotEligibleError: If the geofence has not made the user eligible

        """
        self.facility(facility_id)
        if not self.geofence.is_eligible(facility_id):
            log.info("crowd_log_refused", extra={"facility_id": facility_id, "reason": "not_eligible"})
            raise NotEligibleError(f"Not eligible to log at {facility_id}")
        return self.crowd.submit(facility_id, anonymized_id, check_in_time or self._clock())

    def confirm_seen(self, log_id: str, seen_time: datetime | None = None) -> CrowdLog:
        return self.crowd.confirm_seen(log_id, seen_time or self._clock())

    async def run_cycle(self, deadline: float | None = None, trigger: str = "manual") -> CycleOutcome:
        return await self.scheduler.run_cycle(deadline=deadline, trigger=trigger)

    def breaker_states(self) -> list[CircuitBreakerState]:
        return self.breakers.states() if self.breakers else []

    async def close(self) -> None:
        if self.http is not None:
            await self.http.close()


def build_engine(
    settings: Settings | None = None,
    facilities: Iterable[Facility] | None = None,
    crowd_sink: CrowdLogSink | None = None,
    clock: Clock | None = None,
) -> WaitTimeEngine:
    """Wire the production component graph.

    Args:
        settings: Engine settings (defaults to ``get_settings()``)
        facilities: Catalog override; loaded from ``settings.catalog_path`` otherwise
        crowd_sink: Remote crowd log store
        clock: Callable returning aware UTC datetimes

    """
    settings = settings or get_settings()
    clock = clock or utcnow
    facilities = list(facilities) if facilities is not None else load_catalog(settings.catalog_path)

    http = SourceHTTPClient(
        default_headers={"User-Agent": settings.http_user_agent},
        timeout_sec=settings.http_timeout_seconds,
    )
    breakers = BreakerRegistry(
        fail_threshold=settings.cb_fail_threshold,
        base_cooldown=settings.cb_base_cooldown_seconds,
        max_backoff_exponent=settings.cb_max_backoff_exponent,
        clock=clock,
    )
    cache = WaitTimeCache()
    orchestrator = FallbackOrchestrator(
        {
            SourceKind.SCRAPED: ScrapeFetcher(http, settings.website_hosts),
            SourceKind.API: ApiFetcher(http, settings.api_hosts, clock=clock),
        },
        breakers,
        ProviderRateLimiter(settings.rate_min_interval_seconds),
        cache,
        fetch_timeout=settings.http_timeout_seconds,
        rate_max_wait=settings.rate_max_wait_seconds,
        staleness_threshold_seconds=settings.staleness_threshold_seconds,
        clock=clock,
    )
    crowd = CrowdLogStore(
        horizon_seconds=settings.crowd_decay_horizon_seconds,
        pending_ttl_seconds=settings.crowd_pending_ttl_hours * 3600,
        sink=crowd_sink,
        clock=clock,
    )
    return WaitTimeEngine(
        facilities=facilities,
        selector=BestValueSelector(
            cache,
            crowd,
            staleness_threshold_seconds=settings.staleness_threshold_seconds,
            clock=clock,
        ),
        crowd=crowd,
        geofence=GeofenceGate(
            facilities,
            radius_meters=settings.geofence_radius_meters,
            min_dwell_seconds=settings.geofence_min_dwell_seconds,
        ),
        scheduler=RefreshScheduler(
            facilities, orchestrator, concurrency=settings.refresh_concurrency, clock=clock
        ),
        breakers=breakers,
        http=http,
        clock=clock,
    )


__all__ = ["NotEligibleError", "WaitTimeEngine", "build_engine"]
