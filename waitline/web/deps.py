"""FastAPI dependencies."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from waitline.services.engine import WaitTimeEngine


def get_engine(request: Request) -> WaitTimeEngine:
    """Engine attached to the application at startup."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Engine not initialized"
        )
    return engine


Engine = Annotated[WaitTimeEngine, Depends(get_engine)]
