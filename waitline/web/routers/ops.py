"""Refresh trigger and health endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from waitline.web.deps import Engine
from waitline.web.schemas import CycleOutcomeDTO, RefreshRequest

router = APIRouter()


@router.post("/refresh", response_model=CycleOutcomeDTO)
async def trigger_refresh(engine: Engine, body: RefreshRequest | None = None) -> CycleOutcomeDTO:
    """Run one refresh cycle now (skipped if one is already running)."""
    deadline = body.deadline if body else None
    outcome = await engine.run_cycle(deadline=deadline, trigger="manual")
    return CycleOutcomeDTO.model_validate(outcome)


@router.get("/health")
def health(engine: Engine):
    """Basic health check with breaker and last-cycle summary."""
    states = engine.breaker_states()
    last = engine.scheduler.last_outcome
    return {
        "status": "healthy",
        "facilities": len(engine.facilities),
        "breakers_open": sum(1 for s in states if s.state.value != "closed"),
        "refresh_running": engine.scheduler.is_running,
        "last_cycle": last.status if last else None,
    }
