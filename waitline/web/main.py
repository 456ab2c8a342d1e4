"""FastAPI application exposing the wait-time engine to the UI layer."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from waitline.core.config import get_settings
from waitline.core.logging import get_logger, setup_logging
from waitline.services.engine import WaitTimeEngine, build_engine
from waitline.web.middleware import PrometheusMiddleware
from waitline.web.routers import crowd, ops, wait_times

log = get_logger("waitline.web")

VERSION = "0.1.0"


def create_app(engine: WaitTimeEngine | None = None, start_scheduler: bool = True) -> FastAPI:
    """Build the application.

    Args:
        engine: Pre-built engine (tests); built from settings at startup otherwise
        start_scheduler: Register the foreground refresh job on startup

    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        if app.state.engine is None:
            setup_logging(settings.log_level, file_path=settings.log_file_path)
            app.state.engine = build_engine(settings)

        scheduler = None
        if start_scheduler:
            scheduler = AsyncIOScheduler()
            app.state.engine.scheduler.start_foreground(
                scheduler, settings.foreground_interval_seconds
            )
            scheduler.start()
        log.info("app_started", extra={"version": VERSION, "scheduler": start_scheduler})
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            await app.state.engine.close()
            log.info("app_stopped")

    app = FastAPI(
        title="WaitLine API",
        version=VERSION,
        description="Facility wait times with staleness and crowd estimates",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.add_middleware(PrometheusMiddleware)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions with proper logging and response."""
        error_id = uuid.uuid4().hex[:12]
        log.error(
            "unhandled_exception",
            extra={
                "error_id": error_id,
                "path": str(request.url.path),
                "method": request.method,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "internal_server_error", "error_id": error_id},
        )

    app.include_router(wait_times.router, tags=["Wait times"])
    app.include_router(crowd.router, tags=["Crowd"])
    app.include_router(ops.router, tags=["Operations"])

    @app.get("/metrics")
    def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
