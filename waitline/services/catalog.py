"""Static facility catalog loader.

The catalog is a JSON document, either a list of facility objects or
``{"facilities": [...]}``. It is validated once at startup and turned into
immutable ``Facility`` records.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from waitline.core.logging import get_logger
from waitline.domain.models import Coordinate, Facility, FacilityType

log = get_logger("waitline.catalog")


class CatalogError(ValueError):
    """Catalog file is missing, malformed or inconsistent."""


class FacilityRecord(BaseModel):
    """One catalog entry as stored on disk."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    facility_type: FacilityType
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    cms_average_minutes: int | None = Field(None, ge=0)
    cms_published_at: datetime | None = None
    api_endpoint: str | None = None
    website_url: str | None = None
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    phone: str = ""

    @field_validator("api_endpoint", "website_url")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("cms_published_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            raise ValueError("cms_published_at must carry a timezone")
        return value

    @model_validator(mode="after")
    def _baseline_only_for_ed(self) -> FacilityRecord:
        if self.cms_average_minutes is not None and self.facility_type is not FacilityType.EMERGENCY_DEPARTMENT:
            raise ValueError("cms_average_minutes is only valid for emergency departments")
        return self

    def to_facility(self) -> Facility:
        return Facility(
            id=self.id,
            name=self.name,
            coordinate=Coordinate(self.latitude, self.longitude),
            facility_type=self.facility_type,
            cms_average_minutes=self.cms_average_minutes,
            api_endpoint=self.api_endpoint,
            website_url=self.website_url,
            address=self.address,
            city=self.city,
            state=self.state,
            zip_code=self.zip_code,
            phone=self.phone,
            cms_published_at=self.cms_published_at,
        )


def parse_catalog(data: Any) -> list[Facility]:
    """Validate decoded catalog JSON.

    Raises:
        CatalogError: On schema violations or duplicate ids

    """
    if isinstance(data, dict):
        data = data.get("facilities")
    if not isinstance(data, list):
        raise CatalogError("Catalog must be a list of facilities or {'facilities': [...]}")

    facilities: list[Facility] = []
    seen: set[str] = set()
    for i, raw in enumerate(data):
        try:
            record = FacilityRecord.model_validate(raw)
        except ValidationError as e:
            raise CatalogError(f"Invalid facility at index {i}: {e}") from e
        if record.id in seen:
            raise CatalogError(f"Duplicate facility id: {record.id}")
        seen.add(record.id)
        facilities.append(record.to_facility())
    return facilities


def load_catalog(path: str | Path) -> list[Facility]:
    """Load and validate the catalog file at ``path``.

    Raises:
        CatalogError: If the file cannot be read or fails validation

    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise CatalogError(f"Cannot read catalog {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise CatalogError(f"Catalog {path} is not valid JSON: {e}") from e

    facilities = parse_catalog(data)
    log.info(
        "catalog_loaded",
        extra={
            "path": str(path),
            "facilities": len(facilities),
            "refreshable": sum(1 for f in facilities if f.is_refreshable),
        },
    )
    return facilities


__all__ = ["CatalogError", "FacilityRecord", "load_catalog", "parse_catalog"]
