"""Facility website HTML normalizer.

Extracts a ``Reading`` from a facility's public wait page. Lookup order:

1. Dedicated wait widgets (``span#current-inline*`` elements)
2. Embedded script variables (``currentPatientsInLine = 4``)
3. Visible text phrases ("Patients In Line: 4", "Currently 4 in line",
   "Current wait: 25 min")
4. No-wait and closed indicators

Patient counts outside 0..50 are treated as page noise.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

from waitline.clients.errors import ParseError
from waitline.domain.models import Reading, WaitStatus
from waitline.services.normalizers_api import minutes_from_text

MAX_PLAUSIBLE_PATIENTS = 50

_WIDGET_ID_RX = re.compile(r"^current-inline")
_INT_RX = re.compile(r"\d+")

_SCRIPT_PATIENT_PATTERNS = [
    re.compile(r"currentPatientsInLine\s*[:=]\s*[\"']?(\d+)", re.IGNORECASE),
    re.compile(r"patientsInLine\s*[:=]\s*[\"']?(\d+)", re.IGNORECASE),
    re.compile(r"queueLength\s*[:=]\s*[\"']?(\d+)", re.IGNORECASE),
]

_TEXT_PATIENT_PATTERNS = [
    re.compile(r"patients?\s+in\s+line\s*:?\s*(\d+)", re.IGNORECASE),
    re.compile(r"currently\s+(\d+)\s+(?:patients?\s+|people\s+)?in\s+line", re.IGNORECASE),
    re.compile(r"(\d+)\s+(?:patients?|people)\s+(?:currently\s+)?(?:in\s+line|waiting|ahead)", re.IGNORECASE),
]

# "wait" followed closely by a duration; the duration itself is parsed separately
_WAIT_PHRASE_RX = re.compile(
    r"wait(?:\s+time)?s?\s*(?:is|:)?\s*(?:about|approximately|approx\.?|~)?\s*"
    r"(\d+\s*(?:-|to)\s*\d+\s*(?:min|mins|minutes)"
    r"|\d+\s*(?:h|hr|hrs|hours?)(?:\s*(?:and\s*)?\d+\s*(?:min|mins|minutes))?"
    r"|\d+\s*(?:min|mins|minutes))\b",
    re.IGNORECASE,
)
_RANGE_IN_TEXT_RX = re.compile(r"(\d+)\s*(?:-|to)\s*(\d+)")

_NO_WAIT_PATTERNS = [
    re.compile(r"\bno\s+wait\b", re.IGNORECASE),
    re.compile(r"\bno\s+(?:one|patients)\s+(?:is\s+|are\s+)?(?:currently\s+)?(?:waiting|in\s+line)\b", re.IGNORECASE),
    re.compile(r"\bwalk\s+right\s+in\b", re.IGNORECASE),
]

_CLOSED_PATTERNS = [
    re.compile(r"\b(?:we\s+are|we're|clinic\s+is|currently)\s+closed\b", re.IGNORECASE),
    re.compile(r"\bclosed\s+(?:for\s+the\s+day|now)\b", re.IGNORECASE),
    re.compile(r"\bnot\s+(?:currently\s+)?accepting\s+(?:patients|check-?ins)\b", re.IGNORECASE),
]

_NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]


def _plausible_count(digits: str) -> int | None:
    """Patient count from a digit run, or None for page noise."""
    if len(digits) > 3:
        return None
    n = int(digits)
    return n if 0 <= n <= MAX_PLAUSIBLE_PATIENTS else None


def _patients_from_widgets(soup: BeautifulSoup) -> int | None:
    for el in soup.find_all(id=_WIDGET_ID_RX):
        m = _INT_RX.search(el.get_text(" ", strip=True))
        n = _plausible_count(m.group()) if m else None
        if n is not None:
            return n
    return None


def _patients_from_scripts(soup: BeautifulSoup) -> int | None:
    for script in soup.find_all("script"):
        body = script.string or script.get_text()
        if not body:
            continue
        for rx in _SCRIPT_PATIENT_PATTERNS:
            m = rx.search(body)
            n = _plausible_count(m.group(1)) if m else None
            if n is not None:
                return n
    return None


def _first_match(patterns: list[re.Pattern[str]], text: str) -> int | None:
    for rx in patterns:
        for m in rx.finditer(text):
            n = _plausible_count(m.group(1))
            if n is not None:
                return n
    return None


def _wait_from_text(text: str) -> tuple[int | None, str | None]:
    m = _WAIT_PHRASE_RX.search(text)
    if not m:
        return None, None
    phrase = m.group(1)
    rng = _RANGE_IN_TEXT_RX.match(phrase)
    if rng:
        if max(len(rng.group(1)), len(rng.group(2))) > 4:
            raise ParseError(f"Implausible wait range: {phrase[:32]!r}")
        lo, hi = int(rng.group(1)), int(rng.group(2))
        return (lo + hi) // 2, f"{lo} - {hi}"
    return minutes_from_text(phrase), None


def visible_text(soup: BeautifulSoup) -> str:
    """Page text without scripts/styles, whitespace collapsed."""
    for tag in soup.find_all(_NON_CONTENT_TAGS):
        tag.decompose()
    return " ".join(soup.get_text(" ").split())


def norm_scrape_html(html: str) -> Reading:
    """Normalize a facility wait page into a ``Reading``.

    Raises:
        ParseError: If the page holds no recognizable wait-time data

    """
    if not html or not html.strip():
        raise ParseError("Empty HTML document")

    soup = BeautifulSoup(html, "html.parser")

    patients = _patients_from_widgets(soup)
    if patients is None:
        patients = _patients_from_scripts(soup)

    text = visible_text(soup)
    if patients is None:
        patients = _first_match(_TEXT_PATIENT_PATTERNS, text)
    minutes, wait_range = _wait_from_text(text)

    if patients is not None or minutes is not None:
        return Reading(minutes=minutes, patients_in_line=patients, wait_range=wait_range)

    if any(rx.search(text) for rx in _NO_WAIT_PATTERNS):
        return Reading(minutes=0, patients_in_line=0)

    if any(rx.search(text) for rx in _CLOSED_PATTERNS):
        return Reading(status=WaitStatus.CLOSED)

    raise ParseError("No wait-time data found in page")


__all__ = ["MAX_PLAUSIBLE_PATIENTS", "norm_scrape_html", "visible_text"]
