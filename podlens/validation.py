"""
Input validation and sanitization for Podlens.

This module provides validation functions for all user inputs and
configuration values in the Podlens application. It includes validation for
regex patterns, network configuration, time filter tokens, display timezones,
export formats and buffer limits.

Key Functions:
- validate_regex_pattern: Validates and compiles regex patterns
- validate_port: Validates port numbers (1-65535)
- validate_host: Validates host strings
- parse_duration: Converts a time filter token ("5m", "1h", "2d") to seconds
- since_time_from_duration: Converts a time filter token to an absolute lower bound
- validate_timezone: Validates a display timezone
- validate_export_format: Validates an export format name
- validate_max_buffer_entries: Validates the session buffer cap
- sanitize_pod_name: Sanitizes pod names for display

All validation functions raise appropriate exceptions (InvalidPatternError,
InvalidDurationError, ConfigurationError) with descriptive error messages
when validation fails.

Example:
    ```python
    try:
        pattern = validate_regex_pattern("^api-")
        seconds = parse_duration("5m")
        tz = validate_timezone("Europe/Paris")
    except (InvalidPatternError, InvalidDurationError, ConfigurationError) as e:
        print(f"Validation failed: {e}")
    ```
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .constants import DURATION_UNITS, EXPORT_FORMATS, TIMEZONE_LOCAL, TIMEZONE_UTC, VIEW_MODES, SORT_KEYS
from .exceptions import InvalidPatternError, InvalidDurationError, ConfigurationError

DURATION_RE = re.compile(r'^(\d+)([mhd])$')


def validate_regex_pattern(pattern: str) -> re.Pattern:
    """
    Validate and compile a regex pattern for pod name matching.

    The pattern is trimmed of whitespace before validation.

    Args:
        pattern: The regex pattern string to validate and compile

    Returns:
        re.Pattern: Compiled regex pattern ready for use

    Raises:
        InvalidPatternError: If the pattern is empty or invalid regex syntax
    """
    if not pattern or not pattern.strip():
        raise InvalidPatternError("Pattern cannot be empty")

    try:
        return re.compile(pattern.strip())
    except re.error as e:
        raise InvalidPatternError(f"Invalid regex pattern: {e}")


def validate_port(port: int) -> int:
    """
    Validate port number for server binding.

    Raises:
        ConfigurationError: If port is not an integer or outside valid range
    """
    if not isinstance(port, int) or port < 1 or port > 65535:
        raise ConfigurationError(f"Port must be an integer between 1 and 65535, got: {port}")
    return port


def validate_host(host: str) -> str:
    """
    Validate host string for server binding.

    Raises:
        ConfigurationError: If host is empty or too long
    """
    if not host or not host.strip():
        raise ConfigurationError("Host cannot be empty")

    host = host.strip()

    if len(host) > 253:  # DNS name length limit
        raise ConfigurationError("Host name too long")

    return host


def parse_duration(token: str) -> int:
    """
    Convert a compact duration token to seconds.

    Tokens are a positive integer followed by ``m`` (minutes), ``h`` (hours)
    or ``d`` (days).

    Args:
        token: Duration token such as "5m", "1h" or "2d"

    Returns:
        int: Duration in seconds

    Raises:
        InvalidDurationError: If the token does not match <number><m|h|d>

    Example:
        ```python
        parse_duration("5m")   # 300
        parse_duration("2d")   # 172800
        ```
    """
    m = DURATION_RE.match((token or "").strip())
    if not m:
        raise InvalidDurationError(f"Invalid time filter '{token}', expected e.g. 5m, 1h or 2d")
    return int(m.group(1)) * DURATION_UNITS[m.group(2)]


def since_time_from_duration(token: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Absolute lower time bound for a time filter token, computed from now.

    Returns None for an empty token (no lower bound).

    Raises:
        InvalidDurationError: If the token is not empty and cannot be parsed
    """
    if not token:
        return None
    seconds = parse_duration(token)
    now = now or datetime.now(timezone.utc)
    return now - timedelta(seconds=seconds)


def validate_time_filter(token: Optional[str]) -> Optional[str]:
    """Validate a time filter token, normalising blank values to None."""
    if token is None or not token.strip():
        return None
    parse_duration(token)
    return token.strip()


def validate_timezone(name: str) -> str:
    """
    Validate a display timezone.

    Accepts "Local", "UTC" or any IANA zone name known to the system zone
    database.

    Raises:
        ConfigurationError: If the zone name is empty or unknown
    """
    if not name or not name.strip():
        raise ConfigurationError("Timezone cannot be empty")
    name = name.strip()
    if name in (TIMEZONE_LOCAL, TIMEZONE_UTC):
        return name
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone '{name}': {e}")
    return name


def validate_export_format(fmt: str) -> str:
    """Validate an export format name (txt, json or csv)."""
    fmt = (fmt or "").strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise ConfigurationError(f"Export format must be one of {', '.join(EXPORT_FORMATS)}, got: {fmt!r}")
    return fmt


def validate_view_mode(mode: str) -> str:
    if mode not in VIEW_MODES:
        raise ConfigurationError(f"View mode must be one of {', '.join(VIEW_MODES)}, got: {mode!r}")
    return mode


def validate_sort_key(key: Optional[str]) -> Optional[str]:
    if key is not None and key not in SORT_KEYS:
        raise ConfigurationError(f"Sort key must be one of {', '.join(SORT_KEYS)}, got: {key!r}")
    return key


def validate_max_buffer_entries(value: int) -> int:
    """
    Validate the per-session buffer cap.

    Raises:
        ConfigurationError: If value is not a positive integer
    """
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigurationError(f"Buffer size must be a positive integer, got: {value}")
    return value


def sanitize_pod_name(name: str) -> str:
    """
    Sanitize pod name for safe display and use in log requests.

    Returns:
        str: Trimmed pod name (max 253 characters)
    """
    if not name:
        return ""

    return name.strip()[:253]  # DNS name length limit
