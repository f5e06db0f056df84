from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Portal-side 'now' in UTC (naive, canonical)."""
    return datetime.utcnow()


def parse_backend_datetime(value: Any) -> Optional[datetime]:
    """
    Normalize a timestamp from the stationery backend to a UTC-naive datetime.

    The backend serializes LocalDateTime either as an ISO-8601 string or,
    when Jackson's timestamp mode is on, as a [y, m, d, H, M, S, nanos] array.

    - None / "" / [] -> None
    - "YYYY-MM-DDTHH:MM:SS" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (list, tuple)):
        if not value:
            return None
        parts = [int(p) for p in value]
        if len(parts) < 3:
            raise ValueError(f"Unsupported timestamp array: {value!r}")
        parts += [0] * (7 - len(parts))
        dt = datetime(*parts[:6], microsecond=parts[6] // 1000)
    else:
        s = str(value).strip()
        if not s:
            return None
        # Accept trailing Z
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
