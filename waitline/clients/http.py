"""Async HTTP client for facility sources.

Single attempt per call (the refresh cycle is the retry mechanism), bounded by
a timeout, HTTPS-only and restricted to trusted hosts. Transport and status
failures are mapped onto the fetch error taxonomy.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from urllib.parse import urlsplit

import aiohttp

from waitline.clients.errors import (
    AuthError,
    FetchTimeout,
    NetworkError,
    ParseError,
    RateLimited,
    UntrustedURLError,
)
from waitline.core.logging import get_logger

log = get_logger("waitline.http")

DEFAULT_TIMEOUT = 10.0

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
# Some scheduling APIs answer in plain text when there is nothing to book
JSON_ACCEPT = "application/json, text/plain;q=0.9, */*;q=0.8"


def provider_key(url: str) -> str:
    """Rate-limit key for a URL: its lowercased host."""
    return (urlsplit(url).hostname or "").lower()


def validate_trusted_url(url: str, allowed_hosts: set[str] | frozenset[str]) -> str:
    """Return ``url`` if it is HTTPS on an allowed host.

    Raises:
        UntrustedURLError: If the scheme or host is not acceptable

    """
    parts = urlsplit(url)
    scheme = (parts.scheme or "").lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        raise UntrustedURLError(f"Invalid URL format: {url!r}", url=url)
    if scheme != "https":
        raise UntrustedURLError(f"Blocked non-HTTPS URL: {url!r}", url=url)
    if host not in allowed_hosts:
        raise UntrustedURLError(f"Blocked untrusted host: {host}", url=url)
    return url


class SourceHTTPClient:
    """Shared aiohttp session with timeout and error mapping."""

    def __init__(
        self,
        default_headers: Mapping[str, str] | None = None,
        timeout_sec: float = DEFAULT_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize HTTP client.

        Args:
            default_headers: Headers to include in all requests
            timeout_sec: Request timeout in seconds
            session: Pre-built session (tests); created lazily otherwise

        """
        self.default_headers = dict(default_headers or {})
        self.timeout_sec = timeout_sec
        self._session = session

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if not self._session or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_text(self, url: str, *, headers: Mapping[str, str] | None = None) -> str:
        """GET ``url`` once and return the decoded body.

        Raises:
            FetchTimeout: If the timeout elapsed
            NetworkError: On connection failure or 5xx
            RateLimited: On 429
            AuthError: On 401/403
            ParseError: On any other non-2xx status

        """
        hdrs = dict(self.default_headers)
        if headers:
            hdrs.update(headers)

        session = await self._ensure_session()
        t0 = time.perf_counter()
        try:
            async with session.get(url, headers=hdrs) as resp:
                status = resp.status
                body = await resp.text(errors="replace")
        except TimeoutError as e:
            log.warning("http_timeout", extra={"url": url, "timeout_sec": self.timeout_sec})
            raise FetchTimeout(f"Timed out after {self.timeout_sec}s", url=url) from e
        except aiohttp.ClientError as e:
            log.warning("http_exception", extra={"url": url, "error": str(e)})
            raise NetworkError(str(e) or type(e).__name__, url=url) from e

        elapsed = (time.perf_counter() - t0) * 1000
        log.info(
            "http_response",
            extra={
                "url": url,
                "status": status,
                "elapsed_ms": int(elapsed),
                "body_len": len(body),
            },
        )

        if 200 <= status < 300:
            return body
        if status == 429:
            raise RateLimited("HTTP 429", url=url, status=status)
        if status in (401, 403):
            raise AuthError(f"HTTP {status}", url=url, status=status)
        if status >= 500:
            raise NetworkError(f"HTTP {status}", url=url, status=status)
        raise ParseError(f"HTTP {status}", url=url, status=status)


__all__ = [
    "DEFAULT_TIMEOUT",
    "HTML_ACCEPT",
    "JSON_ACCEPT",
    "SourceHTTPClient",
    "provider_key",
    "validate_trusted_url",
]
