"""Facility wait-time API response normalizers.

Functions to normalize provider JSON payloads into a ``Reading``.

Supported payload shapes:
- ClockwiseMD: ``hospital_waits`` + optional ``appointment_queues``
- Mercy-GoHealth: ``wait_time.estimated_minutes`` / ``patients_waiting``
- Solv: ``wait_time.minutes``
- St. Luke's scheduling: ``slots[].start`` (wait = minutes to the next slot)
- Generic: top-level ``current_wait`` / ``patients_in_line``
"""

from __future__ import annotations

import json
import math
import re
from datetime import datetime
from typing import Any

from waitline.clients.errors import ParseError
from waitline.domain.models import Reading, WaitStatus

_RANGE_RX = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")
_HOURS_RX = re.compile(r"(\d+)\s*(?:h|hr|hrs|hour|hours)\b", re.IGNORECASE)
_MINUTES_RX = re.compile(r"(\d+)\s*(?:m|min|mins|minute|minutes)\b", re.IGNORECASE)

_CLOSED_WORDS = ("closed",)
_UNAVAILABLE_WORDS = ("n/a", "unavailable")
_NO_SLOTS_TEXT = "no slots expected"

# Longer digit runs are never a wait time and int() refuses very long ones
_MAX_DIGITS = 6


def _digits(text: str, field: str = "value") -> int:
    if len(text) > _MAX_DIGITS:
        raise ParseError(f"{field} has too many digits: {text[:16]}...")
    return int(text)


def minutes_from_text(text: Any) -> int | None:
    """Parse durations like ``"15 min"`` or ``"1 hour 30 min"``.

    Returns:
        Total minutes, or None when no hour/minute quantity was found

    """
    if not isinstance(text, str):
        return None
    hours = sum(_digits(h, "hours") for h in _HOURS_RX.findall(text))
    minutes = sum(_digits(m, "minutes") for m in _MINUTES_RX.findall(text))
    total = hours * 60 + minutes
    if total == 0 and not (_HOURS_RX.search(text) or _MINUTES_RX.search(text)):
        return None
    return total


def parse_current_wait(value: Any) -> tuple[WaitStatus | None, int | None, str | None]:
    """Interpret a ``current_wait`` field.

    Returns:
        (status, minutes, wait_range); status None means "not stated"
        (N/A or unparseable), leaving the decision to the caller.

    """
    if value is None:
        return None, None, None
    if isinstance(value, bool):
        raise ParseError(f"current_wait has unexpected type: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            raise ParseError(f"Invalid current_wait: {value!r}")
        return WaitStatus.OPEN, int(value), None
    if not isinstance(value, str):
        raise ParseError(f"current_wait has unexpected type: {type(value).__name__}")

    text = value.strip()
    lowered = text.lower()
    if not lowered:
        return None, None, None
    if any(w in lowered for w in _CLOSED_WORDS):
        return WaitStatus.CLOSED, None, None
    if any(w in lowered for w in _UNAVAILABLE_WORDS):
        return None, None, None

    m = _RANGE_RX.match(text)
    if m:
        lo, hi = _digits(m.group(1), "current_wait"), _digits(m.group(2), "current_wait")
        return WaitStatus.OPEN, (lo + hi) // 2, text
    if text.isdigit():
        return WaitStatus.OPEN, _digits(text, "current_wait"), None

    minutes = minutes_from_text(text)
    if minutes is not None:
        return WaitStatus.OPEN, minutes, None
    return None, None, None


def _non_negative_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, str) and len(value.strip()) > _MAX_DIGITS:
        raise ParseError(f"{field} is not a plausible integer: {value[:16]!r}")
    try:
        n = int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ParseError(f"{field} is not an integer: {value!r}") from e
    if n < 0:
        raise ParseError(f"{field} is negative: {n}")
    return n


def _object(value: Any, field: str) -> dict:
    """``value`` if it is a JSON object, ``{}`` if absent."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ParseError(f"{field} is not an object: {type(value).__name__}")
    return value


def norm_clockwise(payload: dict) -> Reading:
    """Normalize a ClockwiseMD ``/hospitals/{id}/waits`` payload.

    Patients in line are summed across appointment sub-queues; ``queue_total``
    counts the whole day and is never used as the line length.
    """
    waits = payload.get("hospital_waits")
    if not isinstance(waits, dict):
        raise ParseError("hospital_waits missing or not an object")

    queues = payload.get("appointment_queues")
    wait_range = None
    if isinstance(queues, list):
        patients = 0
        for q in queues:
            qw = _object(_object(q, "appointment_queue").get("queue_waits"), "queue_waits")
            patients += _non_negative_int(qw.get("current_patients_in_line"), "current_patients_in_line") or 0
            rng = qw.get("current_wait_range")
            if wait_range is None and isinstance(rng, str) and rng and rng != "N/A":
                wait_range = rng
        has_queue_data = True
    else:
        patients = _non_negative_int(waits.get("queue_length"), "queue_length")
        has_queue_data = patients is not None

    status, minutes, parsed_range = parse_current_wait(waits.get("current_wait"))
    if status is None:
        status = WaitStatus.OPEN if has_queue_data else WaitStatus.UNAVAILABLE

    return Reading(
        minutes=minutes,
        patients_in_line=patients,
        status=status,
        wait_range=wait_range or parsed_range,
        next_available_minutes=_non_negative_int(
            waits.get("next_available_visit"), "next_available_visit"
        ),
    )


def norm_mercy_gohealth(payload: dict) -> Reading:
    """Normalize a Mercy-GoHealth location payload."""
    info = _object(payload.get("wait_time"), "wait_time")
    status_text = str(payload.get("status") or "").lower()
    if "closed" in status_text:
        return Reading(status=WaitStatus.CLOSED)

    next_available = info.get("next_available")
    if isinstance(next_available, str):
        next_minutes = minutes_from_text(next_available)
    else:
        next_minutes = _non_negative_int(next_available, "next_available")
    return Reading(
        minutes=_non_negative_int(info.get("estimated_minutes"), "estimated_minutes"),
        patients_in_line=_non_negative_int(info.get("patients_waiting"), "patients_waiting"),
        next_available_minutes=next_minutes,
        observed_at=_parse_timestamp(payload.get("last_updated")),
    )


def norm_solv(payload: dict) -> Reading:
    """Normalize a Solv provider payload. Solv reports no line length."""
    info = _object(payload.get("wait_time"), "wait_time")
    status_text = str(info.get("status") or payload.get("status") or "").lower()
    if "closed" in status_text:
        return Reading(status=WaitStatus.CLOSED)
    return Reading(
        minutes=_non_negative_int(info.get("minutes"), "minutes"),
        observed_at=_parse_timestamp(info.get("updated_at")),
    )


def norm_stlukes_schedule(payload: dict, now: datetime) -> Reading:
    """Normalize a St. Luke's scheduling preview payload.

    The wait is the whole minutes (rounded up) until the earliest slot that
    starts at or after ``now``. With no upcoming slot the clinic is reported
    closed; the catalog carries no opening hours to tell "full" from "shut".
    """
    slots = payload.get("slots")
    if not isinstance(slots, list):
        raise ParseError("slots is not a list")

    starts = []
    for slot in slots:
        start = _parse_timestamp(_object(slot, "slot").get("start"))
        if start is not None:
            starts.append(start)
    if slots and not starts:
        raise ParseError("No slot has a parseable start time")

    upcoming = sorted(s for s in starts if s >= now)
    if not upcoming:
        return Reading(status=WaitStatus.CLOSED)

    minutes = max(0, math.ceil((upcoming[0] - now).total_seconds() / 60))
    return Reading(minutes=minutes, next_available_minutes=minutes)


def norm_generic(payload: dict) -> Reading:
    """Normalize a flat ``{current_wait, patients_in_line}`` payload."""
    status, minutes, wait_range = parse_current_wait(payload.get("current_wait"))
    patients = payload.get("patients_in_line")
    if isinstance(patients, list):
        total = 0
        for p in patients:
            total += _non_negative_int(p, "patients_in_line") or 0
        patients_count = total
    else:
        patients_count = _non_negative_int(patients, "patients_in_line")
    if status is None:
        status = WaitStatus.OPEN if patients_count is not None else WaitStatus.UNAVAILABLE
    return Reading(
        minutes=minutes,
        patients_in_line=patients_count,
        status=status,
        wait_range=wait_range,
    )


def norm_api_payload(payload: Any, now: datetime | None = None) -> Reading:
    """Dispatch on payload shape and normalize.

    Args:
        payload: Decoded JSON body
        now: Current UTC time, needed only for slot-based payloads

    Raises:
        ParseError: If the shape is unknown or the reading is empty

    """
    if not isinstance(payload, dict):
        raise ParseError(f"Expected JSON object, got {type(payload).__name__}")

    wait_info = payload.get("wait_time")
    if "hospital_waits" in payload:
        reading = norm_clockwise(payload)
    elif isinstance(wait_info, dict) and (
        "estimated_minutes" in wait_info or "patients_waiting" in wait_info
    ):
        reading = norm_mercy_gohealth(payload)
    elif isinstance(wait_info, dict) or "provider_id" in payload:
        reading = norm_solv(payload)
    elif "slots" in payload:
        if now is None:
            raise ParseError("Slot payload needs the current time")
        reading = norm_stlukes_schedule(payload, now)
    elif "current_wait" in payload or "patients_in_line" in payload:
        reading = norm_generic(payload)
    else:
        raise ParseError(f"Unrecognized wait-time payload keys: {sorted(payload)[:8]}")

    if reading.is_empty:
        raise ParseError("Payload held no wait-time data")
    return reading


def norm_api_body(body: str, now: datetime | None = None) -> Reading:
    """Decode a raw API response body and normalize it.

    The scheduling API answers a day without openings with the plain-text
    body "No slots expected" instead of JSON; that is read as closed.

    Raises:
        ParseError: If the body is neither JSON nor a known plain-text answer

    """
    try:
        payload = json.loads(body)
    except ValueError as e:
        if _NO_SLOTS_TEXT in body.strip().lower():
            return Reading(status=WaitStatus.CLOSED)
        raise ParseError(f"Response is not valid JSON: {body[:64]!r}") from e
    return norm_api_payload(payload, now)


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Naive provider timestamps cannot be ordered against ours
    return ts if ts.tzinfo is not None else None


__all__ = [
    "minutes_from_text",
    "norm_api_body",
    "norm_api_payload",
    "norm_clockwise",
    "norm_generic",
    "norm_mercy_gohealth",
    "norm_solv",
    "norm_stlukes_schedule",
    "parse_current_wait",
]
