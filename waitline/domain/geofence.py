"""Geofence gate deciding who may submit a crowd log.

A user becomes eligible to log a wait at a facility only after staying within
its radius continuously for the minimum dwell time. Leaving the radius at any
point discards the session, including an eligible one, so eligibility always
reflects an unbroken stay that is still ongoing.

At most one session exists at a time. While the current session's facility is
still in range it is kept, even if another facility is nearer; once it is out
of range the nearest facility in range (if any) starts a fresh session.
"""

from __future__ import annotations

import enum
import math
import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from waitline.core.logging import get_logger
from waitline.domain.models import Coordinate, Facility

log = get_logger("waitline.geofence")

EARTH_RADIUS_METERS = 6371000


def haversine_meters(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in meters."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class GeofenceState(str, enum.Enum):
    OUTSIDE = "outside"
    INSIDE_PENDING = "inside_pending"
    ELIGIBLE = "eligible"


@dataclass(frozen=True)
class GeofenceSession:
    facility_id: str
    state: GeofenceState
    entered_at: datetime
    last_known_distance: float
    last_update: datetime

    def dwell(self, now: datetime) -> timedelta:
        return now - self.entered_at


class GeofenceGate:
    """Dwell-time state machine over an ordered stream of location updates."""

    def __init__(
        self,
        facilities: Iterable[Facility] = (),
        radius_meters: float = 75.0,
        min_dwell_seconds: float = 300.0,
    ):
        """Initialize gate.

        Args:
            facilities: Facilities to watch
            radius_meters: Distance at or below which the user counts as inside
            min_dwell_seconds: Continuous time inside before becoming eligible

        """
        self.radius_meters = radius_meters
        self.min_dwell = timedelta(seconds=min_dwell_seconds)
        self._lock = threading.Lock()
        self._facilities: dict[str, Facility] = {}
        self._session: GeofenceSession | None = None
        self._last_timestamp: datetime | None = None
        self.watch(facilities)

    def watch(self, facilities: Iterable[Facility]) -> None:
        """Add facilities to the watched set."""
        with self._lock:
            for facility in facilities:
                self._facilities[facility.id] = facility

    def stop_tracking(self, facility_id: str) -> None:
        """Forget ``facility_id``; its session (if any) is destroyed."""
        with self._lock:
            self._facilities.pop(facility_id, None)
            if self._session and self._session.facility_id == facility_id:
                self._end_session("stopped_tracking")

    def on_location(self, coordinate: Coordinate, timestamp: datetime) -> GeofenceSession | None:
        """Process one location update.

        Updates older than the last processed one are ignored.

        Returns:
            The current session after the update, or None when outside every radius

        """
        with self._lock:
            if self._last_timestamp is not None and timestamp < self._last_timestamp:
                log.debug(
                    "geofence_update_out_of_order",
                    extra={
                        "timestamp": timestamp.isoformat(),
                        "last_timestamp": self._last_timestamp.isoformat(),
                    },
                )
                return self._session
            self._last_timestamp = timestamp

            in_range = {}
            for facility in self._facilities.values():
                distance = haversine_meters(coordinate, facility.coordinate)
                if distance <= self.radius_meters:
                    in_range[facility.id] = distance

            current = self._session
            if current is not None and current.facility_id in in_range:
                self._session = self._advance(current, in_range[current.facility_id], timestamp)
                return self._session

            if current is not None:
                self._end_session("exited_radius")

            if in_range:
                facility_id = min(in_range, key=in_range.get)
                self._session = GeofenceSession(
                    facility_id=facility_id,
                    state=GeofenceState.INSIDE_PENDING,
                    entered_at=timestamp,
                    last_known_distance=in_range[facility_id],
                    last_update=timestamp,
                )
                log.info(
                    "geofence_entered",
                    extra={
                        "facility_id": facility_id,
                        "distance_m": round(in_range[facility_id], 1),
                    },
                )
                # A zero dwell requirement makes entry immediately eligible
                self._session = self._advance(self._session, in_range[facility_id], timestamp)
            return self._session

    def is_eligible(self, facility_id: str) -> bool:
        with self._lock:
            return (
                self._session is not None
                and self._session.facility_id == facility_id
                and self._session.state is GeofenceState.ELIGIBLE
            )

    def state(self, facility_id: str) -> GeofenceState:
        with self._lock:
            if self._session is None or self._session.facility_id != facility_id:
                return GeofenceState.OUTSIDE
            return self._session.state

    def session(self) -> GeofenceSession | None:
        with self._lock:
            return self._session

    def _advance(self, session: GeofenceSession, distance: float, timestamp: datetime) -> GeofenceSession:
        state = session.state
        if state is GeofenceState.INSIDE_PENDING and session.dwell(timestamp) >= self.min_dwell:
            state = GeofenceState.ELIGIBLE
            log.info(
                "geofence_eligible",
                extra={
                    "facility_id": session.facility_id,
                    "dwell_seconds": session.dwell(timestamp).total_seconds(),
                },
            )
        return replace(session, state=state, last_known_distance=distance, last_update=timestamp)

    def _end_session(self, reason: str) -> None:
        # caller holds self._lock
        session = self._session
        self._session = None
        if session is not None:
            log.info(
                "geofence_session_ended",
                extra={
                    "facility_id": session.facility_id,
                    "from_state": session.state.value,
                    "reason": reason,
                },
            )


__all__ = [
    "EARTH_RADIUS_METERS",
    "GeofenceGate",
    "GeofenceSession",
    "GeofenceState",
    "haversine_meters",
]
