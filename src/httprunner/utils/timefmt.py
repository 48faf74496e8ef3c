"""Duration parsing and timestamp formatting helpers."""

from __future__ import annotations

import re
from datetime import datetime, timezone

# Seconds per unit, following the Go duration grammar
_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str | int | float) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) or duration strings such as ``"1s"``,
    ``"200ms"`` or ``"1m30s"``. Negative durations are rejected.

    Raises:
        ValueError: If the value cannot be parsed or is negative.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        if not text:
            raise ValueError("Empty duration")
        try:
            seconds = float(text)
        except ValueError:
            seconds = _parse_duration_string(text)
    if seconds < 0:
        raise ValueError(f"Duration must not be negative: {value!r}")
    return seconds


def _parse_duration_string(text: str) -> float:
    if text == "0":
        return 0.0
    pos = 0
    total = 0.0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"Invalid duration: {text!r}")
        number, unit = match.groups()
        total += float(number) * _UNITS[unit]
        pos = match.end()
    return total


def format_rfc3339(moment: datetime) -> str:
    """Format a datetime as RFC 3339 with seconds precision.

    Naive datetimes are taken as local time. UTC is rendered with a ``Z``
    suffix.
    """
    if moment.tzinfo is None:
        moment = moment.astimezone()
    text = moment.isoformat(timespec="seconds")
    if moment.utcoffset() == timezone.utc.utcoffset(None):
        text = text[: -len("+00:00")] + "Z"
    return text
