"""Structured JSON logging for the wait-time engine.

Every line is a single JSON object. Secrets and anything that could identify
a user (device ids, anonymized ids, raw coordinates) are masked before the
line is written. Lines emitted during a refresh cycle carry its ``cycle_id``;
lines that name a facility carry ``facility_id`` at the top level so one
facility's fetches, breaker transitions and fallbacks can be followed.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import uuid
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_cycle_id: ContextVar[str] = ContextVar("cycle_id", default="")


def set_cycle_id(value: str | None = None) -> str:
    """Start tagging log lines with ``value`` (a fresh 12-hex id if omitted)."""
    cid = value or uuid.uuid4().hex[:12]
    _cycle_id.set(cid)
    return cid


def get_cycle_id() -> str:
    return _cycle_id.get()


def clear_cycle_id() -> None:
    _cycle_id.set("")


_MASKS = [
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._-]{10,}\b"), "Bearer ***"),
    (re.compile(r"\beyJhbGciOi[A-Za-z0-9+/=_-]{20,}\b"), "eyJ***"),
    # iOS/Android device identifiers in UUID form
    (re.compile(r"\b[0-9A-Fa-f]{8}(?:-[0-9A-Fa-f]{4}){3}-[0-9A-Fa-f]{12}\b"), "device-***"),
    # "lat,lon" pairs with at least 4 decimals locate a user to a few meters
    (re.compile(r"-?\d{1,3}\.\d{4,}\s*,\s*-?\d{1,3}\.\d{4,}"), "lat,lon ***"),
]

_SENSITIVE_KEYS = frozenset(
    {
        # credentials
        "authorization",
        "cookie",
        "set-cookie",
        "token",
        "api_key",
        "x-api-key",
        # user identity and position
        "device_id",
        "anonymized_id",
        "coordinate",
        "latitude",
        "longitude",
    }
)

# Attributes every LogRecord has; anything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

_QUIET_LOGGERS = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.client": logging.WARNING,
    "apscheduler": logging.WARNING,
    "httpx": logging.WARNING,
}


def mask(value: Any) -> Any:
    """Return ``value`` with secrets and user-identifying data replaced."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, Mapping):
        return {
            key: "***" if str(key).lower() in _SENSITIVE_KEYS else mask(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [mask(item) for item in value]

    text = str(value)
    for rx, replacement in _MASKS:
        text = rx.sub(replacement, text)
    return text


class JsonFormatter(logging.Formatter):
    """One masked JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        extras = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": mask(record.getMessage()),
            "cycle_id": get_cycle_id() or None,
            "facility_id": extras.get("facility_id"),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }
        if extras:
            payload["extra"] = mask(extras)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


def setup_logging(
    level: str | int = "INFO",
    to_stdout: bool = True,
    file_path: str | None = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Route the root logger through ``JsonFormatter``.

    Replaces any handlers already installed on the root logger.

    Args:
        level: Root log level name or number
        to_stdout: Write JSON lines to stdout
        file_path: Also write to this rotating file (parent dirs are created)
        max_bytes: Size at which the file rotates
        backup_count: Rotated files to keep

    """
    handlers: list[logging.Handler] = []
    if to_stdout:
        handlers.append(logging.StreamHandler(sys.stdout))
    if file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(file_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )

    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = JsonFormatter()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


__all__ = [
    "JsonFormatter",
    "clear_cycle_id",
    "get_cycle_id",
    "get_logger",
    "mask",
    "set_cycle_id",
    "setup_logging",
]
