"""
Export of the log buffer to files.

Three formats are supported:
- txt: the raw view text (``[pod] [timestamp] message`` per line), saved as .log
- json: the full entry list with stable field names
- csv: ``Pod Name,Timestamp,Message`` with every field quoted

Filenames carry the generation time so repeated exports in one session do
not collide.
"""

import csv
import io
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .constants import CSV_HEADER, EXPORT_FILENAME_PREFIX, EXPORT_FORMATS
from .exceptions import ExportError
from .models import LogEntry, ViewOptions
from .view import render_raw


@dataclass(frozen=True)
class ExportResult:
    content: bytes
    filename: str
    mime_type: str


def export_filename(ext: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")[:-3] + "Z"
    return f"{EXPORT_FILENAME_PREFIX}-{stamp}.{ext}"


def entries_to_json(entries: Sequence[LogEntry]) -> str:
    return json.dumps([e.to_dict() for e in entries], indent=2, ensure_ascii=False)


def entries_from_json(text: str) -> List[LogEntry]:
    return [LogEntry.from_dict(item) for item in json.loads(text)]


def entries_to_csv(entries: Sequence[LogEntry]) -> str:
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    quoted = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for e in entries:
        quoted.writerow([e.pod_name, e.timestamp, e.message])
    return out.getvalue()


def serialize(
    entries: Sequence[LogEntry],
    fmt: str,
    options: Optional[ViewOptions] = None,
    now: Optional[datetime] = None,
) -> ExportResult:
    """
    Serialize entries for download.

    Args:
        entries: Entries to export, in buffer order
        fmt: "txt", "json" or "csv"
        options: View options; the txt export follows the raw view's
            timestamp visibility and timezone
        now: Generation time used in the filename (defaults to now)

    Returns:
        ExportResult: Encoded content, filename and MIME type

    Raises:
        ExportError: If the format is not supported
    """
    if fmt not in EXPORT_FORMATS:
        raise ExportError(f"Unsupported export format: {fmt!r}")
    ext, mime_type = EXPORT_FORMATS[fmt]

    if fmt == "json":
        content = entries_to_json(entries)
    elif fmt == "csv":
        content = entries_to_csv(entries)
    else:
        content = render_raw(entries, options or ViewOptions())

    return ExportResult(
        content=content.encode("utf-8"),
        filename=export_filename(ext, now),
        mime_type=mime_type,
    )
