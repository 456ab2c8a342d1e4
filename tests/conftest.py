"""Shared pytest fixtures and configuration."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from waitline.clients.errors import FetchError
from waitline.domain.models import Coordinate, Facility, FacilityType, Reading, SourceKind

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


class FakeFetcher:
    """Fetcher returning scripted readings or raising scripted errors.

    Each call pops the next scripted result; the last one repeats.
    """

    def __init__(self, source: SourceKind, *results: Reading | FetchError):
        self.source = source
        self.results = list(results)
        self.calls: list[str] = []

    def url_for(self, facility: Facility) -> str | None:
        if self.source is SourceKind.SCRAPED:
            return facility.website_url
        return facility.api_endpoint

    async def fetch(self, facility: Facility) -> Reading:
        self.calls.append(facility.id)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


class ImmediateLimiter:
    """Rate limiter that grants at once unless the key is in ``refuse``."""

    def __init__(self):
        self.refuse: set[str] = set()
        self.keys: list[str] = []

    async def acquire(self, key: str, *, blocking: bool = True, timeout: float | None = None) -> bool:
        self.keys.append(key)
        return key not in self.refuse


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def uc_facility() -> Facility:
    return Facility(
        id="total-access-13598",
        name="Total Access Urgent Care - University City",
        coordinate=Coordinate(38.6560, -90.3090),
        facility_type=FacilityType.URGENT_CARE,
        api_endpoint="https://api.clockwisemd.com/v1/hospitals/13598/waits",
        website_url="https://www.clockwisemd.com/hospitals/13598/visits/new",
    )


@pytest.fixture
def ed_facility() -> Facility:
    return Facility(
        id="barnes-jewish-ed",
        name="Barnes-Jewish Hospital Emergency Department",
        coordinate=Coordinate(38.6355, -90.2650),
        facility_type=FacilityType.EMERGENCY_DEPARTMENT,
        cms_average_minutes=187,
        cms_published_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def make_fetcher():
    """Factory for scripted fetchers: ``make_fetcher(SourceKind.API, reading, error, ...)``."""
    return FakeFetcher


@pytest.fixture
def limiter() -> ImmediateLimiter:
    return ImmediateLimiter()
