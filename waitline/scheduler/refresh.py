"""Refresh cycles across the facility set.

A cycle fans every refreshable facility out to the fallback orchestrator with
bounded concurrency. Triggers:
- foreground: APScheduler interval job while the app is active
- background: ``handle_background_refresh`` called by the host's best-effort
  background task facility with a soft deadline

Overlapping triggers are skipped, never queued. A failed cycle is only
reported; the next trigger is the retry.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from waitline.core.clock import Clock, utcnow
from waitline.core.logging import clear_cycle_id, get_logger, set_cycle_id
from waitline.core.metrics import (
    refresh_cycle_duration_seconds,
    refresh_cycles_total,
    refresh_in_progress,
)
from waitline.domain.models import Facility
from waitline.services.orchestrator import FallbackOrchestrator, OrchestrationResult

log = get_logger("waitline.scheduler")

FOREGROUND_JOB_ID = "waitline_foreground_refresh"


@dataclass(frozen=True)
class CycleOutcome:
    """Accounting summary of one refresh cycle."""

    cycle_id: str | None
    trigger: str
    started_at: datetime
    finished_at: datetime
    skipped: bool = False
    attempted: int = 0
    refreshed: int = 0
    failed: int = 0
    not_started: int = 0

    @property
    def deadline_hit(self) -> bool:
        return self.not_started > 0

    @property
    def success(self) -> bool:
        """Ran to completion and refreshed at least one facility."""
        return not self.skipped and not self.deadline_hit and self.refreshed > 0

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return "success" if self.success else "failed"


class RefreshScheduler:
    def __init__(
        self,
        facilities: Iterable[Facility],
        orchestrator: FallbackOrchestrator,
        concurrency: int = 5,
        clock: Clock | None = None,
    ):
        """Initialize scheduler.

        Args:
            facilities: Facility catalog; only refreshable ones are fetched
            orchestrator: Fallback chain run per facility
            concurrency: Facility fetches in flight at once
            clock: Callable returning aware UTC datetimes (for outcome stamps)

        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.facilities = [f for f in facilities if f.is_refreshable]
        self.orchestrator = orchestrator
        self.concurrency = concurrency
        self._clock = clock or utcnow
        self._running = False
        self.last_outcome: CycleOutcome | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_cycle(self, deadline: float | None = None, trigger: str = "manual") -> CycleOutcome:
        """Refresh every refreshable facility once.

        Args:
            deadline: Soft time limit in seconds; once passed, no further facility
                fetch is started (in-flight ones complete and still update the cache)
            trigger: Label for logs and metrics

        Returns:
            Cycle outcome; ``skipped`` when another cycle was already running

        """
        started_at = self._clock()
        if self._running:
            refresh_cycles_total.labels(trigger=trigger, status="skipped").inc()
            log.info("refresh_cycle_skipped", extra={"trigger": trigger, "reason": "in_progress"})
            return CycleOutcome(
                cycle_id=None,
                trigger=trigger,
                started_at=started_at,
                finished_at=started_at,
                skipped=True,
            )

        self._running = True
        cycle_id = set_cycle_id()
        refresh_in_progress.set(1)
        t0 = time.monotonic()
        cutoff = t0 + deadline if deadline is not None else None
        semaphore = asyncio.Semaphore(self.concurrency)

        async def refresh_one(facility: Facility) -> OrchestrationResult | None:
            async with semaphore:
                if cutoff is not None and time.monotonic() >= cutoff:
                    return None
                return await self.orchestrator.run(facility)

        log.info(
            "refresh_cycle_started",
            extra={"trigger": trigger, "facilities": len(self.facilities), "deadline": deadline},
        )
        try:
            results = await asyncio.gather(
                *(refresh_one(f) for f in self.facilities), return_exceptions=True
            )
            return self._record_outcome(cycle_id, trigger, started_at, t0, results)
        finally:
            self._running = False
            refresh_in_progress.set(0)
            clear_cycle_id()

    def _record_outcome(
        self,
        cycle_id: str,
        trigger: str,
        started_at: datetime,
        t0: float,
        results: list[OrchestrationResult | BaseException | None],
    ) -> CycleOutcome:
        attempted = refreshed = failed = not_started = 0
        for facility, result in zip(self.facilities, results):
            if result is None:
                not_started += 1
                continue
            attempted += 1
            if isinstance(result, BaseException):
                failed += 1
                log.error(
                    "facility_refresh_crashed",
                    extra={"facility_id": facility.id},
                    exc_info=result,
                )
            elif result.refreshed:
                refreshed += 1
            else:
                failed += 1

        outcome = CycleOutcome(
            cycle_id=cycle_id,
            trigger=trigger,
            started_at=started_at,
            finished_at=self._clock(),
            attempted=attempted,
            refreshed=refreshed,
            failed=failed,
            not_started=not_started,
        )
        self.last_outcome = outcome

        elapsed = time.monotonic() - t0
        refresh_cycle_duration_seconds.labels(trigger=trigger).observe(elapsed)
        refresh_cycles_total.labels(trigger=trigger, status=outcome.status).inc()
        log.info(
            "refresh_cycle_completed",
            extra={
                "trigger": trigger,
                "status": outcome.status,
                "attempted": attempted,
                "refreshed": refreshed,
                "failed": failed,
                "not_started": not_started,
                "elapsed_ms": int(elapsed * 1000),
            },
        )
        return outcome

    async def handle_background_refresh(self, deadline: float) -> bool:
        """Entry point for the host's background task facility.

        Returns:
            True if the cycle succeeded; the host only uses this for accounting

        """
        outcome = await self.run_cycle(deadline=deadline, trigger="background")
        return outcome.success

    async def _foreground_tick(self) -> None:
        await self.run_cycle(trigger="foreground")

    def start_foreground(self, scheduler: AsyncIOScheduler, interval_seconds: int = 90) -> None:
        """Register the foreground interval job on ``scheduler``."""
        scheduler.add_job(
            self._foreground_tick,
            "interval",
            seconds=interval_seconds,
            id=FOREGROUND_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        log.info("foreground_refresh_scheduled", extra={"interval_seconds": interval_seconds})

    def stop_foreground(self, scheduler: AsyncIOScheduler) -> None:
        if scheduler.get_job(FOREGROUND_JOB_ID) is not None:
            scheduler.remove_job(FOREGROUND_JOB_ID)


__all__ = ["FOREGROUND_JOB_ID", "CycleOutcome", "RefreshScheduler"]
