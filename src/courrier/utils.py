"""Shared helpers."""

import sys
from datetime import datetime, timezone


def err(*args, **kwargs):
    """Print to stderr."""
    print(*args, file=sys.stderr, **kwargs)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(value: str | None) -> datetime | None:
    """Parse an ISO timestamp from the ledger, tolerating junk."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def format_ts(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None
