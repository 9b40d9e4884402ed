"""Small time helpers shared by the store, the models and the loop."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime, timespec: str = "milliseconds") -> str:
    """Format an aware datetime as RFC3339 UTC with a ``Z`` suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    text = dt.astimezone(timezone.utc).isoformat(timespec=timespec)
    return text.replace("+00:00", "Z")


def parse_timestamp(raw: str) -> datetime:
    """Parse an RFC3339 timestamp into an aware datetime.

    Raises ValueError for anything that is not a timestamp string.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"not a timestamp: {raw!r}")
    dt = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
