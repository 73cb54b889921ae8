from __future__ import annotations

from datetime import datetime, timedelta, timezone

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_unix_nanos(ns: int) -> datetime:
    """
    Epoch nanoseconds -> aware UTC datetime.

    Computed with integer microseconds so large values keep their precision;
    sub-microsecond digits are dropped (TIMESTAMPTZ resolution).
    """
    return UNIX_EPOCH + timedelta(microseconds=int(ns) // 1000)


def duration_from_nanos(ns: int) -> timedelta:
    # tracer durations are integer nanoseconds
    return timedelta(microseconds=int(ns) // 1000)


def utc_iso(dt: datetime) -> str:
    # Stable "Z" suffix for log lines.
    return dt.isoformat().replace("+00:00", "Z")
