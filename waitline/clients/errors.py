"""Typed fetch failures.

Every source fetch either returns a normalized reading or raises one of these.
None of them ever reaches a consumer of the engine: the orchestrator converts
them into circuit-breaker accounting and a cached fallback.
"""

from __future__ import annotations


class FetchError(Exception):
    """Base class for a failed single-attempt source fetch."""

    retryable = False
    extended_backoff = False

    def __init__(self, message: str, *, url: str | None = None, status: int | None = None):
        self.url = url
        self.status = status
        super().__init__(message)


class NetworkError(FetchError):
    """Connectivity, DNS or 5xx failure. Retryable on the next cycle."""

    retryable = True


class FetchTimeout(NetworkError):
    """The per-call timeout elapsed. Treated exactly like NetworkError."""


class ParseError(FetchError):
    """Payload was malformed or held no usable wait-time data."""


class ProviderPushback(FetchError):
    """The provider refused us. Opens the breaker with an extended backoff."""

    extended_backoff = True


class RateLimited(ProviderPushback):
    """HTTP 429 from the provider."""


class AuthError(ProviderPushback):
    """HTTP 401/403 from the provider."""


class UntrustedURLError(FetchError):
    """URL is not HTTPS or its host is not on the allow list."""


__all__ = [
    "AuthError",
    "FetchError",
    "FetchTimeout",
    "NetworkError",
    "ParseError",
    "ProviderPushback",
    "RateLimited",
    "UntrustedURLError",
]
