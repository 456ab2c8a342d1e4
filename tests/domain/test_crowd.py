"""Tests for crowd logs and the decay-weighted estimate."""

from datetime import date, timedelta

import pytest

from waitline.domain.crowd import (
    CrowdLogError,
    CrowdLogStore,
    UnknownCrowdLogError,
    anonymized_id,
    decay_weight,
)

ANON = anonymized_id("6F9619FF-8B86-D011-B42D-00C04FC964FF", date(2025, 3, 1))


@pytest.mark.parametrize(
    ("elapsed", "expected"),
    [(0, 1.0), (600, 1 - 600 / 7200), (3600, 0.5), (7199, 1 / 7200), (7200, 0.0), (10_000, 0.0)],
)
def test_decay_weight(elapsed, expected):
    """Test linear decay reaching exactly zero at the two-hour horizon."""
    assert decay_weight(elapsed) == pytest.approx(expected)
    assert 0.0 <= decay_weight(elapsed) <= 1.0


def test_decay_weight_non_increasing():
    """Test weight never grows with elapsed time."""
    weights = [decay_weight(t) for t in range(0, 8000, 50)]
    assert all(a >= b for a, b in zip(weights, weights[1:]))


def test_anonymized_id_is_daily_sha256():
    """Test the id is stable within a day and changes across days."""
    device = "6F9619FF-8B86-D011-B42D-00C04FC964FF"
    assert anonymized_id(device, date(2025, 3, 1)) == ANON
    assert anonymized_id(device, date(2025, 3, 2)) != ANON
    assert len(ANON) == 64
    assert device not in ANON


def _confirmed(store, clock, wait_minutes, seen_ago_seconds, anon):
    """Add a log seen ``seen_ago_seconds`` before now after waiting ``wait_minutes``."""
    seen = clock.now - timedelta(seconds=seen_ago_seconds)
    log = store.submit("f", anon, seen - timedelta(minutes=wait_minutes))
    store.confirm_seen(log.id, seen)
    return log


def test_weighted_estimate_scenario(clock):
    """Test two logs at ages 600s and 2400s with waits 20 and 30 minutes."""
    store = CrowdLogStore(clock=clock)
    _confirmed(store, clock, 20, 600, "a" * 64)
    _confirmed(store, clock, 30, 2400, "b" * 64)

    agg = store.estimate("f")

    assert agg.minutes == pytest.approx(24.21, abs=0.01)
    assert agg.rounded_minutes == 24
    assert agg.sample_count == 2
    assert agg.confidence == pytest.approx(0.2 * (0.9167 + 0.6667) / 2, abs=1e-3)


def test_estimate_absent_without_weight(clock):
    """Test the crowd indicator is absent, not zero, once logs decay."""
    store = CrowdLogStore(clock=clock)
    assert store.estimate("f") is None

    _confirmed(store, clock, 15, 0, ANON)
    assert store.estimate("f") is not None

    clock.advance(7200)
    assert store.estimate("f") is None
    assert store.logs("f") == []


def test_pending_logs_do_not_count(clock):
    """Test unconfirmed check-ins carry no weight."""
    store = CrowdLogStore(clock=clock)
    store.submit("f", ANON, clock.now)

    assert store.estimate("f") is None
    assert len(store.logs("f")) == 1


def test_pending_logs_pruned_after_ttl(clock):
    """Test never-confirmed logs are dropped after the pending TTL."""
    store = CrowdLogStore(pending_ttl_seconds=3600, clock=clock)
    log = store.submit("f", ANON, clock.now)

    clock.advance(3601)
    assert store.logs("f") == []
    with pytest.raises(UnknownCrowdLogError):
        store.confirm_seen(log.id, clock.now)


def test_resubmission_while_pending_is_idempotent(clock):
    """Test the same user checking in twice gets the pending log back."""
    store = CrowdLogStore(clock=clock)
    first = store.submit("f", ANON, clock.now)
    second = store.submit("f", ANON, clock.now + timedelta(minutes=1))

    assert first is second
    assert len(store.logs("f")) == 1


def test_confirm_seen_only_once(clock):
    """Test a log's seen time is set exactly once."""
    store = CrowdLogStore(clock=clock)
    log = store.submit("f", ANON, clock.now)
    store.confirm_seen(log.id, clock.now + timedelta(minutes=10))

    with pytest.raises(CrowdLogError):
        store.confirm_seen(log.id, clock.now + timedelta(minutes=20))
    assert log.wait_minutes == 10


def test_seen_before_check_in_rejected(clock):
    store = CrowdLogStore(clock=clock)
    log = store.submit("f", ANON, clock.now)

    with pytest.raises(CrowdLogError):
        store.confirm_seen(log.id, clock.now - timedelta(minutes=1))


def test_unknown_log_id(clock):
    store = CrowdLogStore(clock=clock)
    with pytest.raises(UnknownCrowdLogError):
        store.confirm_seen("nope", clock.now)


def test_sink_receives_events_and_failures_are_contained(clock):
    """Test logs are handed to the sink and sink errors never propagate."""
    events = []

    class RecordingSink:
        def publish(self, crowd_log, event):
            events.append((crowd_log.id, event))

    class BrokenSink:
        def publish(self, crowd_log, event):
            raise ConnectionError("remote store down")

    store = CrowdLogStore(sink=RecordingSink(), clock=clock)
    log = store.submit("f", ANON, clock.now)
    store.confirm_seen(log.id, clock.now + timedelta(minutes=5))
    assert events == [(log.id, "submitted"), (log.id, "confirmed")]

    broken = CrowdLogStore(sink=BrokenSink(), clock=clock)
    log = broken.submit("f", ANON, clock.now)
    assert broken.confirm_seen(log.id, clock.now).is_confirmed


def test_estimates_are_per_facility(clock):
    store = CrowdLogStore(clock=clock)
    seen = clock.now
    log = store.submit("other", ANON, seen - timedelta(minutes=40))
    store.confirm_seen(log.id, seen)

    assert store.estimate("f") is None
    assert store.estimate("other").rounded_minutes == 40
