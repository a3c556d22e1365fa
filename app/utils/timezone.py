"""
Timezone helpers

Reference data carries free-form timezone strings ("AEST", "Sydney",
"Australia/Sydney"). normalize_timezone maps them to an IANA zone so the
rest of the code only ever sees valid ZoneInfo keys.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import settings

logger = logging.getLogger(__name__)

TIMEZONE_ALIASES = {
    "aest": "Australia/Sydney",
    "aedt": "Australia/Sydney",
    "sydney": "Australia/Sydney",
    "melbourne": "Australia/Melbourne",
    "brisbane": "Australia/Brisbane",
    "acst": "Australia/Adelaide",
    "adelaide": "Australia/Adelaide",
    "awst": "Australia/Perth",
    "perth": "Australia/Perth",
    "utc": "UTC",
    "gmt": "UTC",
}


def normalize_timezone(value: Optional[str], default: Optional[str] = None) -> str:
    """Return a valid IANA zone name for value, or the default zone."""
    fallback = default or settings.default_timezone
    if not value:
        return fallback

    candidate = value.strip()
    candidate = TIMEZONE_ALIASES.get(candidate.lower(), candidate)
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {value!r}, using {fallback}")
        return fallback
    return candidate


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are stored as UTC; make them aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Convert to the naive-UTC form used by DateTime columns."""
    return ensure_utc(value).replace(tzinfo=None)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse ISO8601 (trailing Z allowed) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable datetime {value!r}")
        return None
    return ensure_utc(parsed)


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def format_localized_datetime(value: Union[str, datetime], tz_name: str) -> str:
    """Human readable local time, e.g. 'Sat 17 Jan 2026, 9:30 AM'."""
    parsed = parse_datetime(value)
    if parsed is None:
        return str(value)
    local = parsed.astimezone(ZoneInfo(normalize_timezone(tz_name)))
    hour = local.strftime("%I").lstrip("0") or "12"
    return f"{local.strftime('%a %d %b %Y')}, {hour}:{local.strftime('%M %p')}"
