from __future__ import annotations

import math
import time
from datetime import UTC, datetime, timedelta
from typing import Any

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Largest epoch-ms a datetime can render (9999-12-31T23:59:59.999Z).
MAX_TIMESTAMP_MS = (datetime.max.replace(tzinfo=UTC) - _EPOCH) // timedelta(milliseconds=1)


def now_ms() -> int:
    return int(time.time() * 1000)


def _datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(round(value.timestamp() * 1000))


def parse_timestamp_ms(value: Any) -> int | None:
    """Parse an epoch-ms number, numeric string, ISO-8601 string or datetime.

    Returns None for anything unparseable, including non-finite and non-positive numbers
    and values past `MAX_TIMESTAMP_MS`.
    Naive ISO strings and datetimes are read as UTC.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _datetime_to_ms(value)
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0 or value > MAX_TIMESTAMP_MS:
            return None
        return int(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        numeric = float(text)
    except ValueError:
        numeric = None
    if numeric is not None:
        return parse_timestamp_ms(numeric)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _datetime_to_ms(parsed)


def ms_to_iso(value: int) -> str:
    """Render epoch-ms as ISO-8601 UTC with millisecond precision and a `Z` suffix."""

    dt = datetime.fromtimestamp(value // 1000, tz=UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value % 1000:03d}Z"


def coerce_number(value: Any) -> int | float | None:
    """Finite number or None. Integral values come back as int."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    if numeric.is_integer():
        return int(numeric)
    return numeric
