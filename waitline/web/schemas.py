"""Pydantic schemas for API requests and responses."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from waitline.domain.geofence import GeofenceState
from waitline.domain.models import SourceKind, WaitStatus


def _assume_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Wait time schemas
class WaitTimeDTO(BaseModel):
    """One exposed wait-time value."""

    facility_id: str
    source: SourceKind | None = Field(None, description="Absent on the 'unavailable' marker")
    status: WaitStatus
    minutes: int | None = None
    patients_in_line: int | None = None
    wait_range: str | None = None
    next_available_minutes: int | None = None
    observed_at: datetime
    is_stale: bool = False

    class Config:
        from_attributes = True


class FacilityWaitTimesDTO(BaseModel):
    """Live value and CMS baseline, never combined."""

    facility_id: str
    live: WaitTimeDTO | None = None
    cms_average: WaitTimeDTO | None = None
    sample_count: int = 0
    confidence: float | None = None

    class Config:
        from_attributes = True


# Geofence schemas
class EligibilityResponse(BaseModel):
    facility_id: str
    eligible: bool
    state: GeofenceState


class LocationUpdate(BaseModel):
    """User position sample."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: datetime | None = Field(None, description="Sample time; server time if omitted")

    _utc = field_validator("timestamp")(_assume_utc)


class GeofenceSessionDTO(BaseModel):
    facility_id: str
    state: GeofenceState
    entered_at: datetime
    last_known_distance: float

    class Config:
        from_attributes = True


# Crowd log schemas
class CrowdLogCreate(BaseModel):
    """Check-in at a facility."""

    facility_id: str = Field(..., min_length=1)
    anonymized_id: str = Field(..., pattern=r"^[0-9a-f]{64}$", description="SHA-256 of device id + day")
    check_in_time: datetime | None = None

    _utc = field_validator("check_in_time")(_assume_utc)


class SeenRequest(BaseModel):
    seen_time: datetime | None = None

    _utc = field_validator("seen_time")(_assume_utc)


class CrowdLogDTO(BaseModel):
    id: str
    facility_id: str
    check_in_time: datetime
    seen_time: datetime | None = None

    class Config:
        from_attributes = True


# Refresh schemas
class RefreshRequest(BaseModel):
    deadline: float | None = Field(None, gt=0, description="Soft deadline in seconds")


class CycleOutcomeDTO(BaseModel):
    cycle_id: str | None = None
    trigger: str
    status: str
    skipped: bool
    attempted: int
    refreshed: int
    failed: int
    not_started: int
    started_at: datetime
    finished_at: datetime

    class Config:
        from_attributes = True
