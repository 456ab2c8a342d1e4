"""Location and crowd log endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from waitline.domain.crowd import CrowdLogError, UnknownCrowdLogError
from waitline.domain.models import Coordinate
from waitline.services.engine import NotEligibleError
from waitline.web.deps import Engine
from waitline.web.schemas import (
    CrowdLogCreate,
    CrowdLogDTO,
    GeofenceSessionDTO,
    LocationUpdate,
    SeenRequest,
)

router = APIRouter()


@router.post("/location", response_model=GeofenceSessionDTO | None)
def post_location(body: LocationUpdate, engine: Engine) -> GeofenceSessionDTO | None:
    """Feed one position sample to the geofence gate."""
    session = engine.on_location(Coordinate(body.latitude, body.longitude), body.timestamp)
    if session is None:
        return None
    return GeofenceSessionDTO.model_validate(session)


@router.post("/crowd-logs", response_model=CrowdLogDTO, status_code=status.HTTP_201_CREATED)
def create_crowd_log(body: CrowdLogCreate, engine: Engine) -> CrowdLogDTO:
    """Check in at a facility. Requires geofence eligibility."""
    try:
        crowd_log = engine.submit_crowd_log(body.facility_id, body.anonymized_id, body.check_in_time)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except NotEligibleError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    return CrowdLogDTO.model_validate(crowd_log)


@router.post("/crowd-logs/{log_id}/seen", response_model=CrowdLogDTO)
def confirm_seen(log_id: str, body: SeenRequest, engine: Engine) -> CrowdLogDTO:
    """Confirm the user was seen; allowed once per log."""
    try:
        crowd_log = engine.confirm_seen(log_id, body.seen_time)
    except UnknownCrowdLogError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CrowdLogError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return CrowdLogDTO.model_validate(crowd_log)
