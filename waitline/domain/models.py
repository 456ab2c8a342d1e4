"""Core value types shared by fetchers, the cache and the selector."""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime


class FacilityType(str, enum.Enum):
    EMERGENCY_DEPARTMENT = "ED"
    URGENT_CARE = "UC"

    @property
    def display_name(self) -> str:
        if self is FacilityType.EMERGENCY_DEPARTMENT:
            return "Emergency Department"
        return "Urgent Care"


class SourceKind(str, enum.Enum):
    """Where a wait time came from. Closed set; each kind has one handler."""

    SCRAPED = "scraped"
    API = "api"
    CROWD_SOURCED = "crowd_sourced"
    CMS_AVERAGE = "cms_average"

    @property
    def is_fetched(self) -> bool:
        """Sources obtained by a network fetch and held in the cache."""
        return self in (SourceKind.SCRAPED, SourceKind.API)


class WaitStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Facility:
    """Static facility record, loaded once from the catalog."""

    id: str
    name: str
    coordinate: Coordinate
    facility_type: FacilityType
    cms_average_minutes: int | None = None
    api_endpoint: str | None = None
    website_url: str | None = None
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    phone: str = ""
    cms_published_at: datetime | None = None

    @property
    def is_emergency_department(self) -> bool:
        return self.facility_type is FacilityType.EMERGENCY_DEPARTMENT

    @property
    def is_refreshable(self) -> bool:
        """Whether any live source can be fetched for this facility."""
        return bool(self.website_url or self.api_endpoint)

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.state} {self.zip_code}"


@dataclass(frozen=True)
class Reading:
    """Normalized output of one successful source fetch."""

    minutes: int | None = None
    patients_in_line: int | None = None
    status: WaitStatus = WaitStatus.OPEN
    wait_range: str | None = None
    next_available_minutes: int | None = None
    observed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.minutes is not None and self.minutes < 0:
            raise ValueError(f"minutes must be >= 0, got {self.minutes}")
        if self.patients_in_line is not None and self.patients_in_line < 0:
            raise ValueError(f"patients_in_line must be >= 0, got {self.patients_in_line}")

    @property
    def is_empty(self) -> bool:
        """A reading that says nothing about the facility."""
        return (
            self.minutes is None
            and self.patients_in_line is None
            and self.status is not WaitStatus.CLOSED
        )


@dataclass(frozen=True)
class WaitTime:
    """One exposed wait-time value. Replaced wholesale, never mutated."""

    facility_id: str
    source: SourceKind | None
    observed_at: datetime
    minutes: int | None = None
    status: WaitStatus = WaitStatus.OPEN
    patients_in_line: int | None = None
    wait_range: str | None = None
    next_available_minutes: int | None = None
    is_stale: bool = False

    def __post_init__(self) -> None:
        if self.minutes is not None and self.minutes < 0:
            raise ValueError(f"minutes must be >= 0, got {self.minutes}")

    @classmethod
    def from_reading(
        cls, facility_id: str, source: SourceKind, reading: Reading, now: datetime
    ) -> WaitTime:
        return cls(
            facility_id=facility_id,
            source=source,
            observed_at=reading.observed_at or now,
            minutes=reading.minutes,
            status=reading.status,
            patients_in_line=reading.patients_in_line,
            wait_range=reading.wait_range,
            next_available_minutes=reading.next_available_minutes,
        )

    @classmethod
    def unavailable(cls, facility_id: str, now: datetime) -> WaitTime:
        """Marker shown when no usable data exists for a facility."""
        return cls(
            facility_id=facility_id,
            source=None,
            observed_at=now,
            status=WaitStatus.UNAVAILABLE,
        )

    def age_seconds(self, now: datetime) -> float:
        return (now - self.observed_at).total_seconds()

    def with_staleness(self, now: datetime, threshold_seconds: float, force: bool = False) -> WaitTime:
        """Copy annotated with is_stale for the given read time."""
        stale = force or self.age_seconds(now) > threshold_seconds
        return replace(self, is_stale=stale)


@dataclass(frozen=True)
class FacilityWaitTimes:
    """Public read result: up to one live value and one CMS baseline."""

    facility_id: str
    live: WaitTime | None = None
    cms_average: WaitTime | None = None
    sample_count: int = 0
    confidence: float | None = None

    @property
    def is_unavailable(self) -> bool:
        return (self.live is None or self.live.status is WaitStatus.UNAVAILABLE) and (
            self.cms_average is None
        )


__all__ = [
    "Coordinate",
    "Facility",
    "FacilityType",
    "FacilityWaitTimes",
    "Reading",
    "SourceKind",
    "WaitStatus",
    "WaitTime",
]
