"""Shared timestamp helpers."""
from __future__ import annotations

from datetime import datetime, timezone


def _format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current time in the fixed-width UTC format used by the logs."""
    return _format_datetime_utc(datetime.now(timezone.utc))
