"""Facility wait-time and eligibility endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from waitline.web.deps import Engine
from waitline.web.schemas import EligibilityResponse, FacilityWaitTimesDTO

router = APIRouter()


@router.get("/facilities/{facility_id}/wait-times", response_model=FacilityWaitTimesDTO)
def get_wait_times(facility_id: str, engine: Engine) -> FacilityWaitTimesDTO:
    """Live value and CMS baseline for one facility.

    Urgent cares report the freshest scraped/API value (``is_stale`` past the
    threshold) or the ``unavailable`` marker. Emergency departments report the
    CMS baseline and the crowd estimate separately.
    """
    try:
        result = engine.get_wait_times(facility_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return FacilityWaitTimesDTO.model_validate(result)


@router.get("/facilities/{facility_id}/eligibility", response_model=EligibilityResponse)
def get_eligibility(facility_id: str, engine: Engine) -> EligibilityResponse:
    """Whether the current user may submit a crowd log here."""
    try:
        eligible = engine.is_eligible_to_log(facility_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return EligibilityResponse(
        facility_id=facility_id,
        eligible=eligible,
        state=engine.geofence.state(facility_id),
    )
