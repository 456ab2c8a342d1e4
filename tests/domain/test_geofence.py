"""Tests for the dwell-time geofence gate."""

from dataclasses import replace
from datetime import timedelta

import pytest

from waitline.domain.geofence import GeofenceGate, GeofenceState, haversine_meters
from waitline.domain.models import Coordinate

# One degree of latitude is ~111.2 km
METERS_PER_DEGREE = 111_195.0


def _north_of(coordinate, meters):
    return Coordinate(coordinate.latitude + meters / METERS_PER_DEGREE, coordinate.longitude)


@pytest.fixture
def gate(uc_facility):
    return GeofenceGate([uc_facility], radius_meters=75, min_dwell_seconds=300)


def test_haversine_meters():
    """Test distances against known values."""
    a = Coordinate(38.6560, -90.3090)

    assert haversine_meters(a, a) == 0
    assert haversine_meters(a, _north_of(a, 100)) == pytest.approx(100, rel=1e-3)
    # St. Louis to Kansas City is ~372 km
    assert haversine_meters(a, Coordinate(39.0997, -94.5786)) == pytest.approx(372_000, rel=0.03)


def test_exit_before_dwell_never_eligible(gate, uc_facility, clock):
    """Test leaving at 4:59 leaves the user ineligible."""
    inside = _north_of(uc_facility.coordinate, 20)
    gate.on_location(inside, clock.now)
    assert gate.state(uc_facility.id) is GeofenceState.INSIDE_PENDING

    gate.on_location(inside, clock.advance(299))
    assert not gate.is_eligible(uc_facility.id)

    assert gate.on_location(_north_of(uc_facility.coordinate, 200), clock.advance(1)) is None
    assert gate.state(uc_facility.id) is GeofenceState.OUTSIDE
    assert not gate.is_eligible(uc_facility.id)


def test_eligible_at_exactly_min_dwell(gate, uc_facility, clock):
    """Test the dwell threshold is inclusive."""
    inside = _north_of(uc_facility.coordinate, 20)
    gate.on_location(inside, clock.now)

    session = gate.on_location(inside, clock.advance(300))

    assert session.state is GeofenceState.ELIGIBLE
    assert gate.is_eligible(uc_facility.id)


def test_boundary_distance_counts_as_inside(uc_facility, clock):
    gate = GeofenceGate([uc_facility], radius_meters=75)
    point = _north_of(uc_facility.coordinate, 74.9)

    assert gate.on_location(point, clock.now).state is GeofenceState.INSIDE_PENDING


def test_exit_while_eligible_resets(gate, uc_facility, clock):
    """Test eligibility does not survive leaving the radius."""
    inside = _north_of(uc_facility.coordinate, 10)
    gate.on_location(inside, clock.now)
    gate.on_location(inside, clock.advance(600))
    assert gate.is_eligible(uc_facility.id)

    gate.on_location(_north_of(uc_facility.coordinate, 500), clock.advance(5))
    assert gate.state(uc_facility.id) is GeofenceState.OUTSIDE

    # Re-entry restarts the dwell clock
    gate.on_location(inside, clock.advance(5))
    assert gate.state(uc_facility.id) is GeofenceState.INSIDE_PENDING
    assert gate.session().entered_at == clock.now


def test_out_of_order_updates_ignored(gate, uc_facility, clock):
    """Test a stale update cannot reset or advance the session."""
    inside = _north_of(uc_facility.coordinate, 10)
    start = clock.now
    gate.on_location(inside, start)
    gate.on_location(inside, clock.advance(120))

    gate.on_location(_north_of(uc_facility.coordinate, 900), start + timedelta(seconds=60))
    assert gate.state(uc_facility.id) is GeofenceState.INSIDE_PENDING
    assert gate.session().entered_at == start
    assert gate.session().last_update == clock.now


def test_moving_to_another_facility_destroys_session(uc_facility, clock):
    """Test at most one session exists and it follows the facility in range."""
    other = replace(uc_facility, id="other", coordinate=_north_of(uc_facility.coordinate, 300))
    gate = GeofenceGate([uc_facility, other], min_dwell_seconds=300)

    gate.on_location(uc_facility.coordinate, clock.now)
    gate.on_location(uc_facility.coordinate, clock.advance(400))
    assert gate.is_eligible(uc_facility.id)

    session = gate.on_location(other.coordinate, clock.advance(60))

    assert session.facility_id == "other"
    assert session.state is GeofenceState.INSIDE_PENDING
    assert not gate.is_eligible(uc_facility.id)


def test_current_facility_kept_while_in_range(uc_facility, clock):
    """Test the session sticks to its facility even when another is nearer."""
    other = replace(uc_facility, id="other", coordinate=_north_of(uc_facility.coordinate, 100))
    gate = GeofenceGate([uc_facility, other], radius_meters=75)

    gate.on_location(_north_of(uc_facility.coordinate, 40), clock.now)
    assert gate.session().facility_id == uc_facility.id

    gate.on_location(_north_of(uc_facility.coordinate, 60), clock.advance(30))
    assert gate.session().facility_id == uc_facility.id


def test_stop_tracking_ends_session(gate, uc_facility, clock):
    gate.on_location(uc_facility.coordinate, clock.now)
    gate.stop_tracking(uc_facility.id)

    assert gate.session() is None
    assert gate.on_location(uc_facility.coordinate, clock.advance(1)) is None


def test_zero_dwell_is_immediately_eligible(uc_facility, clock):
    gate = GeofenceGate([uc_facility], min_dwell_seconds=0)

    assert gate.on_location(uc_facility.coordinate, clock.now).state is GeofenceState.ELIGIBLE
