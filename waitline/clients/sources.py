"""Source fetchers: one single-attempt fetch per live source kind.

Each fetcher turns one facility into a normalized ``Reading`` or raises a
``FetchError``. Retry, breaker accounting, rate limiting and fallback are the
orchestrator's business, not the fetcher's.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from waitline.clients.errors import FetchError, ParseError
from waitline.clients.http import HTML_ACCEPT, JSON_ACCEPT, SourceHTTPClient, validate_trusted_url
from waitline.core.clock import Clock, utcnow
from waitline.domain.models import Facility, Reading, SourceKind
from waitline.services.normalizers_api import norm_api_body
from waitline.services.normalizers_scrape import norm_scrape_html

# What a normalizer raises on a payload shape nobody anticipated
_MALFORMED = (TypeError, AttributeError, ValueError, OverflowError)


def _normalize(parse: Callable[[], Reading], url: str) -> Reading:
    try:
        return parse()
    except FetchError as e:
        e.url = url
        raise
    except _MALFORMED as e:
        raise ParseError(f"Malformed payload: {type(e).__name__}: {e}", url=url) from e


class SourceFetcher(Protocol):
    """Fetches one live source for a facility."""

    source: SourceKind

    def url_for(self, facility: Facility) -> str | None:
        """Source URL for ``facility``, or None when it has no such source."""
        ...

    async def fetch(self, facility: Facility) -> Reading:
        """Fetch and normalize once.

        Raises:
            FetchError: On any transport, status or parse failure

        """
        ...


class ScrapeFetcher:
    """Scrapes the facility's public wait page."""

    source = SourceKind.SCRAPED

    def __init__(self, http: SourceHTTPClient, allowed_hosts: set[str] | frozenset[str]):
        self.http = http
        self.allowed_hosts = frozenset(allowed_hosts)

    def url_for(self, facility: Facility) -> str | None:
        return facility.website_url

    async def fetch(self, facility: Facility) -> Reading:
        url = self.url_for(facility)
        if not url:
            raise FetchError(f"{facility.id} has no website_url")
        validate_trusted_url(url, self.allowed_hosts)
        html = await self.http.get_text(url, headers={"Accept": HTML_ACCEPT})
        return _normalize(lambda: norm_scrape_html(html), url)


class ApiFetcher:
    """Calls the facility's wait-time API (ClockwiseMD, Mercy-GoHealth, Solv, St. Luke's...)."""

    source = SourceKind.API

    def __init__(
        self,
        http: SourceHTTPClient,
        allowed_hosts: set[str] | frozenset[str],
        clock: Clock | None = None,
    ):
        self.http = http
        self.allowed_hosts = frozenset(allowed_hosts)
        self._clock = clock or utcnow

    def url_for(self, facility: Facility) -> str | None:
        return facility.api_endpoint

    async def fetch(self, facility: Facility) -> Reading:
        url = self.url_for(facility)
        if not url:
            raise FetchError(f"{facility.id} has no api_endpoint")
        validate_trusted_url(url, self.allowed_hosts)
        body = await self.http.get_text(url, headers={"Accept": JSON_ACCEPT})
        now = self._clock()
        return _normalize(lambda: norm_api_body(body, now), url)


__all__ = ["ApiFetcher", "ScrapeFetcher", "SourceFetcher"]
