"""Tests for circuit breaker."""

from waitline.clients.circuit_breaker import BreakerRegistry, BreakerState, CircuitBreaker
from waitline.domain.models import SourceKind


def _breaker(clock, **kwargs) -> CircuitBreaker:
    return CircuitBreaker("fac-1", SourceKind.SCRAPED, clock=clock, **kwargs)


def test_cb_opens_after_three_failures(clock):
    """Test circuit breaker opens after 3 consecutive failures."""
    cb = _breaker(clock)

    for _ in range(2):
        cb.on_failure()
        assert cb.allow()
        assert cb.state is BreakerState.CLOSED

    cb.on_failure()
    assert cb.state is BreakerState.OPEN
    assert cb.opened_at == clock.now
    assert not cb.allow()


def test_cb_blocks_until_cooldown(clock):
    """Test open circuit short-circuits every call until cooldown elapses."""
    cb = _breaker(clock)
    for _ in range(3):
        cb.on_failure()

    clock.advance(59)
    assert not cb.allow()
    assert not cb.allow()

    clock.advance(1)
    assert cb.allow()
    assert cb.state is BreakerState.HALF_OPEN


def test_cb_half_open_allows_single_probe(clock):
    """Test half-open hands out exactly one probe."""
    cb = _breaker(clock)
    for _ in range(3):
        cb.on_failure()
    clock.advance(60)

    assert cb.allow()
    assert not cb.allow()
    assert not cb.allow()


def test_cb_probe_success_closes(clock):
    """Test successful probe closes circuit and resets counters."""
    cb = _breaker(clock)
    for _ in range(3):
        cb.on_failure()
    clock.advance(60)
    assert cb.allow()

    cb.on_success()
    assert cb.state is BreakerState.CLOSED
    assert cb.consecutive_failures == 0
    assert cb.backoff_exponent == 0
    assert cb.allow()


def test_cb_probe_failure_doubles_cooldown(clock):
    """Test failed probe reopens with a larger backoff."""
    cb = _breaker(clock)
    for _ in range(3):
        cb.on_failure()
    clock.advance(60)
    assert cb.allow()

    cb.on_failure()
    assert cb.state is BreakerState.OPEN
    assert cb.backoff_exponent == 1

    clock.advance(119)
    assert not cb.allow()
    clock.advance(1)
    assert cb.allow()


def test_cb_backoff_is_capped(clock):
    """Test cooldown stops growing at the max exponent."""
    cb = _breaker(clock, max_backoff_exponent=2)
    for _ in range(3):
        cb.on_failure()

    for _ in range(5):
        clock.advance(cb.cooldown.total_seconds())
        assert cb.allow()
        cb.on_failure()

    assert cb.backoff_exponent == 2
    assert cb.cooldown.total_seconds() == 240


def test_cb_extended_backoff_on_pushback(clock):
    """Test provider pushback opens with one extra doubling."""
    cb = _breaker(clock)
    cb.on_failure()
    cb.on_failure()
    cb.on_failure(extended_backoff=True)

    assert cb.state is BreakerState.OPEN
    assert cb.backoff_exponent == 1
    clock.advance(60)
    assert not cb.allow()
    clock.advance(60)
    assert cb.allow()


def test_cb_abandoned_probe_can_be_retaken(clock):
    """Test an unused probe is handed back."""
    cb = _breaker(clock)
    for _ in range(3):
        cb.on_failure()
    clock.advance(60)

    assert cb.allow()
    cb.abandon_probe()
    assert cb.allow()
    assert not cb.allow()


def test_cb_success_resets_failures(clock):
    """Test that success resets failure count."""
    cb = _breaker(clock)

    cb.on_failure()
    cb.on_failure()
    assert cb.consecutive_failures == 2

    cb.on_success()
    assert cb.consecutive_failures == 0
    cb.on_failure()
    cb.on_failure()
    assert cb.state is BreakerState.CLOSED


def test_registry_isolates_facility_source_pairs(clock):
    """Test breakers are independent per (facility, source)."""
    registry = BreakerRegistry(clock=clock)
    scrape = registry.get("fac-1", SourceKind.SCRAPED)
    for _ in range(3):
        scrape.on_failure()

    assert registry.get("fac-1", SourceKind.SCRAPED) is scrape
    assert not registry.get("fac-1", SourceKind.SCRAPED).allow()
    assert registry.get("fac-1", SourceKind.API).allow()
    assert registry.get("fac-2", SourceKind.SCRAPED).allow()

    states = {(s.facility_id, s.source): s.state for s in registry.states()}
    assert states[("fac-1", SourceKind.SCRAPED)] is BreakerState.OPEN
    assert states[("fac-1", SourceKind.API)] is BreakerState.CLOSED
