"""Resolves the wait-time values a facility exposes on read.

Emergency departments expose the CMS baseline and, separately, the crowd
estimate. The two are never combined into one number. Urgent cares expose the
freshest cached scraped/API value, flagged stale past the threshold, or the
"unavailable" marker when nothing was ever fetched.
"""

from __future__ import annotations

from datetime import datetime

from waitline.core.clock import Clock, utcnow
from waitline.domain.crowd import CrowdLogStore
from waitline.domain.models import (
    Facility,
    FacilityWaitTimes,
    SourceKind,
    WaitTime,
)
from waitline.services.cache import WaitTimeCache


class BestValueSelector:
    def __init__(
        self,
        cache: WaitTimeCache,
        crowd: CrowdLogStore,
        staleness_threshold_seconds: float = 8 * 3600,
        clock: Clock | None = None,
        baseline_observed_at: datetime | None = None,
    ):
        """Initialize selector.

        Args:
            cache: Shared cache of scraped/API values
            crowd: Crowd log store
            staleness_threshold_seconds: Age after which cached values are flagged stale
            clock: Callable returning aware UTC datetimes
            baseline_observed_at: Timestamp for CMS baselines without a publish date
                (defaults to construction time, i.e. catalog load)

        """
        self.cache = cache
        self.crowd = crowd
        self.staleness_threshold_seconds = staleness_threshold_seconds
        self._clock = clock or utcnow
        self.baseline_observed_at = baseline_observed_at or self._clock()

    def select(self, facility: Facility, now: datetime | None = None) -> FacilityWaitTimes:
        now = now or self._clock()
        if facility.is_emergency_department:
            return self._select_emergency(facility, now)
        return self._select_urgent_care(facility, now)

    def _select_emergency(self, facility: Facility, now: datetime) -> FacilityWaitTimes:
        cms_average = None
        if facility.cms_average_minutes is not None:
            cms_average = WaitTime(
                facility_id=facility.id,
                source=SourceKind.CMS_AVERAGE,
                observed_at=facility.cms_published_at or self.baseline_observed_at,
                minutes=facility.cms_average_minutes,
            )

        aggregate = self.crowd.estimate(facility.id, now)
        if aggregate is None:
            return FacilityWaitTimes(facility_id=facility.id, cms_average=cms_average)

        live = WaitTime(
            facility_id=facility.id,
            source=SourceKind.CROWD_SOURCED,
            observed_at=aggregate.observed_at,
            minutes=aggregate.rounded_minutes,
        )
        return FacilityWaitTimes(
            facility_id=facility.id,
            live=live,
            cms_average=cms_average,
            sample_count=aggregate.sample_count,
            confidence=aggregate.confidence,
        )

    def _select_urgent_care(self, facility: Facility, now: datetime) -> FacilityWaitTimes:
        cached = self.cache.freshest(facility.id)
        if cached is None:
            return FacilityWaitTimes(
                facility_id=facility.id,
                live=WaitTime.unavailable(facility.id, now),
            )
        return FacilityWaitTimes(
            facility_id=facility.id,
            live=cached.with_staleness(now, self.staleness_threshold_seconds),
        )


__all__ = ["BestValueSelector"]
