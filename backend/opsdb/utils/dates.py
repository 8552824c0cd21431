"""
Shared date normalization.

Accreditation dates are business dates in one fixed civil timezone (the
event venue's), not UTC. A bare "2025-01-02" means local midnight on that
day, and "today" at a gate means the local calendar day. Every date that
enters or leaves the accreditation core goes through `to_local_datetime`.
"""

from __future__ import annotations

import os
from datetime import date, datetime, time, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

LOCAL_TIMEZONE_NAME = os.getenv("PORTAL_LOCAL_TZ", "Asia/Qatar") or "Asia/Qatar"
LOCAL_TZ = ZoneInfo(LOCAL_TIMEZONE_NAME)

DateInput = Union[str, date, datetime, None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    return datetime.now(LOCAL_TZ)


def to_local_datetime(value: DateInput) -> Optional[datetime]:
    """
    Interpret `value` in the portal's local timezone.

    - None / "" -> None
    - date or "YYYY-MM-DD" -> local midnight of that day
    - naive datetime or ISO string without offset -> local wall time
    - aware datetime or ISO string with offset / "Z" -> converted to local time

    Naive datetimes read back from SQLite were written as local wall time,
    so they round-trip through this function unchanged.
    """
    if value is None:
        return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            if len(text) == 10:
                value = date.fromisoformat(text)
            else:
                if text.endswith(("Z", "z")):
                    text = text[:-1] + "+00:00"
                value = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid date format: {value!r}")

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=LOCAL_TZ)
        return value.astimezone(LOCAL_TZ)

    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=LOCAL_TZ)

    raise ValueError(f"Invalid date format: {value!r}")


def local_date(value: DateInput) -> Optional[date]:
    """Local calendar day of `value` (see `to_local_datetime`)."""
    converted = to_local_datetime(value)
    return converted.date() if converted else None
