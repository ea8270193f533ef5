"""
Log line parsing and control-code stripping.

This module turns raw log text into LogEntry objects. Kubernetes log output
arrives multiplexed from several pods, and not every line carries a pod tag
(a multi-line stack trace only tags its first line), so parsing never drops a
line: it only degrades attribution.

Key Functions:
- strip_control_codes: Remove ANSI escapes, colour remnants and control characters
- match_line: Classify a line as Tagged, Timestamped or Fallback
- parse_log_line: Build a LogEntry from one line
- default_source_for: Pick the pod a streamed line is attributed to
- split_lines: Split a chunk into non-empty lines

Line shapes, tried in order:
1. ``[pod] timestamp message``
2. ``timestamp message`` (ISO-8601 date at line start)
3. anything else: the whole line is the message

Example:
    ```python
    entry = parse_log_line("[api-1] 2025-10-27T02:25:38Z started", 0)
    assert entry.pod_name == "api-1"
    ```
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Union

from .constants import UNKNOWN_POD, MULTIPLE_PODS
from .models import LogEntry

ANSI_ESCAPE_RE = re.compile(r'\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b[@-Z\\-_]')
COLOR_REMNANT_RE = re.compile(r'\[\d{1,3}(?:;\d{1,3})*m')
CONTROL_CHARS_RE = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')

TAGGED_RE = re.compile(r'^\[([^\]]+)\]\s+(\S+)\s+(.*)$')
TIMESTAMPED_RE = re.compile(r'^(\d{4}-\d{2}-\d{2}T\S+)\s+(.*)$')
POD_TAG_RE = re.compile(r'^\[([^\]]+)\]')


def strip_control_codes(text: str) -> str:
    """
    Remove terminal formatting and control characters from log text.

    Strips ANSI escape sequences, bare colour-code remnants such as ``[31m``
    left behind when the escape byte was lost, and control characters other
    than tab, newline and carriage return. Passes repeat until the text is
    stable, so ``strip_control_codes(strip_control_codes(x))`` equals
    ``strip_control_codes(x)``.

    Args:
        text: Raw log text

    Returns:
        str: Text with only printable payload left

    Example:
        ```python
        strip_control_codes("\\x1b[31mERROR\\x1b[0m")  # "ERROR"
        ```
    """
    if not text:
        return text
    while True:
        cleaned = ANSI_ESCAPE_RE.sub('', text)
        cleaned = COLOR_REMNANT_RE.sub('', cleaned)
        cleaned = CONTROL_CHARS_RE.sub('', cleaned)
        if cleaned == text:
            return cleaned
        text = cleaned


@dataclass(frozen=True)
class Tagged:
    pod_name: str
    timestamp: str
    message: str


@dataclass(frozen=True)
class Timestamped:
    timestamp: str
    message: str


@dataclass(frozen=True)
class Fallback:
    message: str


LineShape = Union[Tagged, Timestamped, Fallback]


def _match_tagged(line: str) -> Optional[LineShape]:
    m = TAGGED_RE.match(line)
    if not m:
        return None
    pod, ts, message = m.groups()
    return Tagged(pod.strip(), ts.strip(), message.strip())


def _match_timestamped(line: str) -> Optional[LineShape]:
    m = TIMESTAMPED_RE.match(line)
    if not m:
        return None
    ts, message = m.groups()
    return Timestamped(ts.strip(), message.strip())


def _match_fallback(line: str) -> Optional[LineShape]:
    return Fallback(line)


# Priority order; the last matcher accepts every line.
LINE_MATCHERS: Sequence[Callable[[str], Optional[LineShape]]] = (
    _match_tagged,
    _match_timestamped,
    _match_fallback,
)


def match_line(line: str) -> LineShape:
    """Classify a line using the first matcher that accepts it."""
    for matcher in LINE_MATCHERS:
        shape = matcher(line)
        if shape is not None:
            return shape
    raise AssertionError("fallback matcher rejected a line")  # pragma: no cover


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def new_entry_id(index: int) -> str:
    return f"{index}-{uuid.uuid4().hex}"


def parse_log_line(line: str, index: int, default_source: Optional[str] = None) -> Optional[LogEntry]:
    """
    Parse one raw log line into a LogEntry.

    Args:
        line: Log line, already stripped of control codes
        index: Position of the line in its batch; folded into the entry id
        default_source: Pod to attribute untagged lines to

    Returns:
        Optional[LogEntry]: The parsed entry, or None for a blank line

    Example:
        ```python
        entry = parse_log_line("2025-10-27T02:25:38Z boot ok", 0, "web-1")
        # entry.pod_name == "web-1", entry.message == "boot ok"
        ```
    """
    if not line or not line.strip():
        return None

    fallback_pod = default_source or UNKNOWN_POD
    shape = match_line(line)
    if isinstance(shape, Tagged):
        pod, ts, message = shape.pod_name, shape.timestamp, shape.message
    elif isinstance(shape, Timestamped):
        pod, ts, message = fallback_pod, shape.timestamp, shape.message
    else:
        pod, ts, message = fallback_pod, now_iso(), shape.message

    return LogEntry(
        id=new_entry_id(index),
        pod_name=pod,
        timestamp=ts,
        message=message,
        raw_line=line,
    )


def default_source_for(line: str, sources: Sequence[str]) -> Optional[str]:
    """
    Pod a streamed line is attributed to when it has no ``[pod]`` tag.

    Returns None for tagged lines, the selected pod when exactly one is
    selected, and "multiple" otherwise.
    """
    if POD_TAG_RE.match(line):
        return None
    if len(sources) == 1:
        return sources[0]
    return MULTIPLE_PODS


def split_lines(chunk: str) -> List[str]:
    """Split a text chunk into its non-blank lines, trailing CR removed."""
    return [line.rstrip('\r') for line in chunk.split('\n') if line.strip()]
