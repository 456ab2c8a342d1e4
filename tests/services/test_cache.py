"""Tests for the shared wait-time cache."""

from datetime import timedelta

import pytest

from waitline.domain.models import SourceKind, WaitTime
from waitline.services.cache import WaitTimeCache


def _wt(facility_id, source, observed_at, minutes):
    return WaitTime(facility_id=facility_id, source=source, observed_at=observed_at, minutes=minutes)


def test_newer_observation_replaces_older(clock):
    """Test a newer observation replaces the cached one."""
    cache = WaitTimeCache()
    assert cache.put(_wt("f", SourceKind.SCRAPED, clock.now, 10))
    assert cache.put(_wt("f", SourceKind.SCRAPED, clock.now + timedelta(minutes=1), 12))

    assert cache.get("f", SourceKind.SCRAPED).minutes == 12


def test_out_of_order_completion_does_not_overwrite(clock):
    """Test a late completion with an older observed_at is discarded."""
    cache = WaitTimeCache()
    newer = _wt("f", SourceKind.API, clock.now + timedelta(seconds=30), 8)
    older = _wt("f", SourceKind.API, clock.now, 20)

    assert cache.put(newer)
    assert not cache.put(older)
    assert cache.get("f", SourceKind.API) is newer


def test_freshest_across_sources(clock):
    """Test freshest picks the most recent observation of any fetched source."""
    cache = WaitTimeCache()
    cache.put(_wt("f", SourceKind.SCRAPED, clock.now, 10))
    cache.put(_wt("f", SourceKind.API, clock.now + timedelta(minutes=5), 15))
    cache.put(_wt("g", SourceKind.SCRAPED, clock.now + timedelta(hours=1), 99))

    assert cache.freshest("f").source is SourceKind.API
    assert cache.freshest("missing") is None


def test_only_fetched_sources_cached(clock):
    """Test crowd and CMS values are rejected by the cache."""
    cache = WaitTimeCache()
    with pytest.raises(ValueError):
        cache.put(_wt("f", SourceKind.CROWD_SOURCED, clock.now, 10))
    with pytest.raises(ValueError):
        cache.put(WaitTime.unavailable("f", clock.now))
