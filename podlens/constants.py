"""
Constants and configuration for Podlens.

This module contains the configuration constants used throughout the Podlens
application, including request defaults for the Kubernetes log endpoints,
buffer limits, display options and server defaults.

Constants are organized by category:
- Log requests: Tail sizes for live and historical requests
- Buffer: Upper bound on entries kept for one session
- Parsing: Placeholder pod names for unattributed lines
- Display: Supported time filters, timezones and export formats
- Logging: Default log levels
- Server defaults: Default host and port configurations
"""

# Log request defaults
DEFAULT_STREAM_TAIL_LINES = 100
DEFAULT_FETCH_TAIL_LINES = 5000

# Buffer
DEFAULT_MAX_BUFFER_ENTRIES = 50000

# Parsing
UNKNOWN_POD = "unknown"
MULTIPLE_PODS = "multiple"
ERROR_POD = "error"

# Display
TIME_FILTER_OPTIONS = ["", "1m", "5m", "30m", "1h", "2h", "5h", "8h", "1d"]
DURATION_UNITS = {"m": 60, "h": 3600, "d": 86400}
TIMEZONE_LOCAL = "Local"
TIMEZONE_UTC = "UTC"
DEFAULT_TIMEZONE = TIMEZONE_LOCAL
TIMEZONE_OPTIONS = [
    "UTC",
    "Local",
    "America/New_York",
    "America/Los_Angeles",
    "Europe/London",
    "Europe/Paris",
    "Asia/Tokyo",
    "Asia/Shanghai",
    "Asia/Singapore",
    "Australia/Sydney",
]
VIEW_MODES = ("raw", "table")
SORT_KEYS = ("pod_name", "timestamp", "message")

# Export
EXPORT_FORMATS = {
    "txt": ("log", "text/plain"),
    "json": ("json", "application/json"),
    "csv": ("csv", "text/csv"),
}
EXPORT_FILENAME_PREFIX = "pod-logs"
CSV_HEADER = ["Pod Name", "Timestamp", "Message"]

# Logging
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_UVICORN_LOG_LEVEL = "info"
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"

# Server defaults
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8080
