"""FastAPI middleware."""

from __future__ import annotations

from waitline.web.middleware.prometheus import PrometheusMiddleware

__all__ = ["PrometheusMiddleware"]
