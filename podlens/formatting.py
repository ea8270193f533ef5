"""
Timestamp formatting for display.

Renders the timestamp string carried by a LogEntry in the viewer's selected
timezone. Timestamps are never re-validated: anything that cannot be parsed
is shown exactly as received.

Supported zones:
- "UTC": ``2025-10-27 02:25:38 UTC``
- "Local": the viewing machine's zone, e.g. ``2025-10-27 03:25:38 CET``
- any IANA name: e.g. ``2025-10-26 22:25:38 EDT`` for America/New_York
"""

import logging
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.parser import isoparse

from .constants import TIMEZONE_LOCAL, TIMEZONE_UTC

log = logging.getLogger('podlens')

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_timestamp(timestamp: str) -> Optional[datetime]:
    """
    Parse a log timestamp to an aware datetime, or None when malformed.

    Naive timestamps are interpreted as UTC. Nanosecond fractions, as sent
    by the Kubernetes API, are truncated to microseconds by the parser.
    """
    if not timestamp:
        return None
    try:
        parsed = isoparse(timestamp.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _resolve_zone(name: str) -> Optional[tzinfo]:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def format_timestamp(timestamp: str, tz_name: str = TIMEZONE_LOCAL) -> str:
    """
    Format a log timestamp in the given display timezone.

    Args:
        timestamp: ISO-8601-like timestamp string
        tz_name: "Local", "UTC" or an IANA zone name

    Returns:
        str: Formatted timestamp with an explicit zone abbreviation, or the
            input unchanged when it cannot be parsed or the zone is unknown

    Example:
        ```python
        format_timestamp("2025-10-27T02:25:38.877723355Z", "UTC")
        # "2025-10-27 02:25:38 UTC"
        ```
    """
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return timestamp

    try:
        if tz_name == TIMEZONE_UTC:
            return parsed.astimezone(timezone.utc).strftime(DISPLAY_FORMAT) + " UTC"
        if tz_name == TIMEZONE_LOCAL:
            local = parsed.astimezone()
            return f"{local.strftime(DISPLAY_FORMAT)} {local.tzname()}"
        zone = _resolve_zone(tz_name)
        if zone is None:
            log.debug(f"[format] unknown timezone {tz_name!r}, showing raw timestamp")
            return timestamp
        converted = parsed.astimezone(zone)
        return f"{converted.strftime(DISPLAY_FORMAT)} {converted.tzname()}"
    except (ValueError, OverflowError, OSError):
        return timestamp
