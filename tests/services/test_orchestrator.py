"""Tests for the scrape -> API -> cache fallback chain."""

import asyncio
from dataclasses import replace

import pytest

from waitline.clients.circuit_breaker import BreakerRegistry, BreakerState
from waitline.clients.errors import NetworkError, ParseError, RateLimited
from waitline.domain.models import Reading, SourceKind, WaitTime
from waitline.services.cache import WaitTimeCache
from waitline.services.orchestrator import FallbackOrchestrator

API_HOST = "api.clockwisemd.com"


def _orchestrator(clock, limiter, scrape=None, api=None, **kwargs):
    fetchers = {}
    if scrape is not None:
        fetchers[SourceKind.SCRAPED] = scrape
    if api is not None:
        fetchers[SourceKind.API] = api
    breakers = BreakerRegistry(clock=clock)
    cache = WaitTimeCache()
    orch = FallbackOrchestrator(fetchers, breakers, limiter, cache, clock=clock, **kwargs)
    return orch, breakers, cache


@pytest.mark.asyncio
async def test_scenario_breaker_opens_and_cache_served_stale(clock, limiter, make_fetcher, uc_facility):
    """Test scrape success, three failures opening the breaker, then stale cache plus API attempt."""
    scrape = make_fetcher(SourceKind.SCRAPED, Reading(minutes=12), NetworkError("boom"))
    api = make_fetcher(SourceKind.API, ParseError("bad payload"))
    orch, breakers, _ = _orchestrator(clock, limiter, scrape, api)

    result = await orch.run(uc_facility)
    assert result.wait_time.minutes == 12
    assert result.wait_time.source is SourceKind.SCRAPED
    assert not result.wait_time.is_stale
    assert api.calls == []

    # API held back by the limiter so only scrape failures count
    limiter.refuse.add(API_HOST)
    for _ in range(3):
        clock.advance(30)
        result = await orch.run(uc_facility)
        assert result.wait_time.minutes == 12
    assert breakers.get(uc_facility.id, SourceKind.SCRAPED).state is BreakerState.OPEN

    limiter.refuse.clear()
    clock.advance(10)
    result = await orch.run(uc_facility)

    assert len(scrape.calls) == 4
    assert api.calls == [uc_facility.id]
    assert [(a.source, a.outcome) for a in result.attempts] == [
        (SourceKind.SCRAPED, "short_circuit"),
        (SourceKind.API, "parse"),
    ]
    assert result.wait_time.minutes == 12
    assert result.wait_time.source is SourceKind.SCRAPED
    assert result.wait_time.is_stale


@pytest.mark.asyncio
async def test_scrape_attempted_before_api(clock, limiter, make_fetcher, uc_facility):
    """Test the API is only tried after the scrape has failed."""
    scrape = make_fetcher(SourceKind.SCRAPED, ParseError("no data"))
    api = make_fetcher(SourceKind.API, Reading(minutes=18, patients_in_line=2))
    orch, _, cache = _orchestrator(clock, limiter, scrape, api)

    result = await orch.run(uc_facility)

    assert [a.source for a in result.attempts] == [SourceKind.SCRAPED, SourceKind.API]
    assert result.wait_time.source is SourceKind.API
    assert result.wait_time.minutes == 18
    assert cache.get(uc_facility.id, SourceKind.API) == result.wait_time
    assert limiter.keys == ["www.clockwisemd.com", API_HOST]


@pytest.mark.asyncio
async def test_scrape_skipped_without_website(clock, limiter, make_fetcher, uc_facility):
    """Test a facility without a website goes straight to its API."""
    facility = replace(uc_facility, website_url=None)
    scrape = make_fetcher(SourceKind.SCRAPED, Reading(minutes=1))
    api = make_fetcher(SourceKind.API, Reading(minutes=5))
    orch, _, _ = _orchestrator(clock, limiter, scrape, api)

    result = await orch.run(facility)

    assert scrape.calls == []
    assert result.wait_time.source is SourceKind.API


@pytest.mark.asyncio
async def test_nothing_cached_and_all_fail(clock, limiter, make_fetcher, uc_facility):
    """Test the chain never fabricates a value."""
    orch, _, _ = _orchestrator(
        clock,
        limiter,
        make_fetcher(SourceKind.SCRAPED, NetworkError("down")),
        make_fetcher(SourceKind.API, NetworkError("down")),
    )

    result = await orch.run(uc_facility)

    assert result.wait_time is None
    assert not result.refreshed
    assert [a.outcome for a in result.attempts] == ["network", "network"]


@pytest.mark.asyncio
async def test_timeout_counts_as_failure(clock, limiter, uc_facility):
    """Test a fetch exceeding the per-call timeout is a breaker failure."""

    class SlowFetcher:
        source = SourceKind.SCRAPED

        def url_for(self, facility):
            return facility.website_url

        async def fetch(self, facility):
            await asyncio.sleep(1.0)
            return Reading(minutes=1)

    orch, breakers, _ = _orchestrator(clock, limiter, SlowFetcher(), fetch_timeout=0.05)

    result = await orch.run(uc_facility)

    assert result.attempts[0].outcome == "timeout"
    assert breakers.get(uc_facility.id, SourceKind.SCRAPED).consecutive_failures == 1


@pytest.mark.asyncio
async def test_pushback_opens_with_extended_backoff(clock, limiter, make_fetcher, uc_facility):
    """Test repeated 429s open the breaker with an extra backoff step."""
    orch, breakers, _ = _orchestrator(
        clock, limiter, make_fetcher(SourceKind.SCRAPED, RateLimited("HTTP 429", status=429))
    )

    for _ in range(3):
        await orch.run(uc_facility)

    breaker = breakers.get(uc_facility.id, SourceKind.SCRAPED)
    assert breaker.state is BreakerState.OPEN
    assert breaker.backoff_exponent == 1


@pytest.mark.asyncio
async def test_throttled_probe_is_returned(clock, limiter, make_fetcher, uc_facility):
    """Test a half-open probe refused by the limiter is handed back to the breaker."""
    facility = replace(uc_facility, api_endpoint=None)
    orch, breakers, _ = _orchestrator(
        clock, limiter, make_fetcher(SourceKind.SCRAPED, NetworkError("down"))
    )
    for _ in range(3):
        await orch.run(facility)
    clock.advance(60)

    limiter.refuse.add("www.clockwisemd.com")
    result = await orch.run(facility)

    assert result.attempts[0].outcome == "throttled"
    breaker = breakers.get(facility.id, SourceKind.SCRAPED)
    assert breaker.state is BreakerState.HALF_OPEN
    assert breaker.allow()


@pytest.mark.asyncio
async def test_unexpected_fetch_error_counts_and_releases_probe(clock, limiter, make_fetcher, uc_facility):
    """Test an exception outside the fetch taxonomy opens the breaker and never strands the probe."""
    facility = replace(uc_facility, website_url=None)
    crash = TypeError("expected string or bytes-like object")
    api = make_fetcher(SourceKind.API, crash, crash, crash, crash, Reading(minutes=7))
    orch, breakers, _ = _orchestrator(clock, limiter, api=api)
    breaker = breakers.get(facility.id, SourceKind.API)

    for _ in range(3):
        result = await orch.run(facility)
        assert [a.outcome for a in result.attempts] == ["error"]
        assert result.wait_time is None
    assert breaker.state is BreakerState.OPEN

    clock.advance(61)
    result = await orch.run(facility)
    assert [a.outcome for a in result.attempts] == ["error"]
    assert breaker.state is BreakerState.OPEN
    assert breaker.backoff_exponent == 1

    clock.advance(hours=1)
    result = await orch.run(facility)

    assert result.wait_time.minutes == 7
    assert breaker.state is BreakerState.CLOSED
    assert len(api.calls) == 5


@pytest.mark.asyncio
@pytest.mark.parametrize(("age_hours", "stale"), [(9, True), (7, False)])
async def test_cached_fallback_staleness(clock, limiter, make_fetcher, uc_facility, age_hours, stale):
    """Test the cached fallback is flagged stale only past eight hours."""
    orch, _, cache = _orchestrator(
        clock, limiter, make_fetcher(SourceKind.SCRAPED, NetworkError("down"))
    )
    cache.put(WaitTime(uc_facility.id, SourceKind.SCRAPED, clock.now, minutes=30))
    clock.advance(hours=age_hours)

    result = await orch.run(replace(uc_facility, api_endpoint=None))

    assert result.wait_time.minutes == 30
    assert result.wait_time.is_stale is stale


def test_unknown_source_kind_rejected(clock, limiter, make_fetcher):
    """Test only scrape and API have a fallback position."""
    with pytest.raises(ValueError):
        FallbackOrchestrator(
            {SourceKind.CROWD_SOURCED: make_fetcher(SourceKind.CROWD_SOURCED, Reading(minutes=1))},
            BreakerRegistry(clock=clock),
            limiter,
            WaitTimeCache(),
            clock=clock,
        )
