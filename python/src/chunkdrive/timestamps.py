"""Timestamp helpers shared by the catalog, chunk store and handlers.

Timestamps are stored as ISO 8601 UTC strings with millisecond precision,
e.g. ``2024-01-01T00:00:00.000Z``, which sort lexicographically.
"""

import email.utils
from datetime import datetime, timezone

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return to_iso(datetime.now(timezone.utc))


def to_iso(dt: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(value: str) -> datetime | None:
    """Parse a stored ISO 8601 timestamp, returning None if it is malformed."""
    try:
        return datetime.strptime(value, _ISO_FORMAT).replace(tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def iso_to_http_date(value: str | None) -> str:
    """Convert a stored timestamp to an RFC 1123 HTTP date.

    Falls back to the current time when the value is missing or malformed,
    so a Last-Modified header can always be set.
    """
    dt = parse_iso(value) if value else None
    if dt is None:
        dt = datetime.now(timezone.utc)
    return email.utils.format_datetime(dt, usegmt=True)
