"""Prometheus metrics middleware for FastAPI."""

from __future__ import annotations

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

from waitline.core.metrics import (
    http_request_duration_seconds,
    http_requests_in_progress,
    http_requests_total,
)

# Label for paths no route matched, so 404 probes cannot grow label cardinality
UNMATCHED = "unmatched"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Request count, latency and in-flight gauge labelled by route template.

    ``/facilities/total-access-13598/wait-times`` is recorded as
    ``/facilities/{facility_id}/wait-times``.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        endpoint = self._route_template(request)

        in_progress = http_requests_in_progress.labels(method=method, endpoint=endpoint)
        in_progress.inc()
        status = "500"
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - start
            )
            http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
            in_progress.dec()

    @staticmethod
    def _route_template(request: Request) -> str:
        for route in request.app.router.routes:
            match, _ = route.matches(request.scope)
            if match is Match.FULL:
                return getattr(route, "path", UNMATCHED)
        return UNMATCHED
