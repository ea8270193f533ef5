"""
View rendering for the log buffer.

Both views are pure projections of (entries, ViewOptions): nothing is cached,
so a change of timezone or timestamp visibility is reflected by simply
rendering again.

Key Functions:
- raw_lines / render_raw: Scrolling text view, one line per entry
- search_raw: Line numbers of raw-view lines matching a query
- render_table: Sortable, pod-filterable table view
- pod_filter_options: Pod names available to the table's pod filter
- render: Dispatch on ViewOptions.view_mode

The Viewport class tracks the scroll position of either view and implements
auto-scroll.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .formatting import format_timestamp
from .models import LogEntry, ViewOptions


def raw_line(entry: LogEntry, options: ViewOptions) -> str:
    if not options.show_timestamps:
        return f"[{entry.pod_name}] {entry.message}"
    return f"[{entry.pod_name}] [{format_timestamp(entry.timestamp, options.timezone)}] {entry.message}"


def raw_lines(entries: Sequence[LogEntry], options: ViewOptions) -> List[str]:
    return [raw_line(e, options) for e in entries]


def render_raw(entries: Sequence[LogEntry], options: ViewOptions) -> str:
    """
    Render entries as raw text.

    Each line reads ``[pod] [formatted-timestamp] message``; the timestamp
    segment is left out when timestamps are hidden.
    """
    return "\n".join(raw_lines(entries, options))


def search_raw(entries: Sequence[LogEntry], options: ViewOptions, query: str, case_sensitive: bool = False) -> List[int]:
    """
    Find raw-view lines containing ``query``.

    Returns:
        List[int]: 1-based line numbers in display order
    """
    if not query:
        return []
    needle = query if case_sensitive else query.lower()
    matches = []
    for number, line in enumerate(raw_lines(entries, options), start=1):
        haystack = line if case_sensitive else line.lower()
        if needle in haystack:
            matches.append(number)
    return matches


@dataclass(frozen=True)
class TableColumn:
    key: str
    header: str
    sortable: bool = True
    filterable: bool = False


@dataclass
class TableView:
    """
    Tabular projection of the buffer.

    Attributes:
        columns: Visible columns in display order
        rows: One dict per visible entry, keyed by column key plus ``id``
        total: Number of entries before filtering
    """
    columns: List[TableColumn] = field(default_factory=list)
    rows: List[Dict[str, str]] = field(default_factory=list)
    total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'columns': [{'key': c.key, 'header': c.header, 'sortable': c.sortable, 'filterable': c.filterable}
                        for c in self.columns],
            'rows': self.rows,
            'total': self.total,
        }


def table_columns(options: ViewOptions) -> List[TableColumn]:
    cols = [TableColumn('pod_name', 'Pod Name', filterable=True)]
    if options.show_timestamps:
        cols.append(TableColumn('timestamp', 'Timestamp'))
    cols.append(TableColumn('message', 'Message'))
    return cols


def pod_filter_options(entries: Sequence[LogEntry]) -> List[str]:
    return sorted({e.pod_name for e in entries})


def render_table(entries: Sequence[LogEntry], options: ViewOptions) -> TableView:
    """
    Render entries as table rows.

    Rows are filtered by ``options.pod_filter`` and, when ``options.sort_key``
    is set, sorted by the raw value of that column (timestamps sort by their
    received string). Without a sort key rows keep arrival order.
    """
    visible = list(entries)
    if options.pod_filter is not None:
        visible = [e for e in visible if e.pod_name in options.pod_filter]
    if options.sort_key:
        key = options.sort_key
        visible.sort(key=lambda e: getattr(e, key), reverse=options.sort_descending)

    rows = []
    for e in visible:
        row = {'id': e.id, 'pod_name': e.pod_name, 'message': e.message}
        if options.show_timestamps:
            row['timestamp'] = format_timestamp(e.timestamp, options.timezone)
        rows.append(row)
    return TableView(columns=table_columns(options), rows=rows, total=len(entries))


def render(entries: Sequence[LogEntry], options: ViewOptions) -> Dict[str, Any]:
    """Render the view selected by ``options.view_mode`` as a JSON-ready dict."""
    if options.view_mode == "table":
        return {'mode': 'table', 'table': render_table(entries, options).to_dict(),
                'pods': pod_filter_options(entries)}
    return {'mode': 'raw', 'text': render_raw(entries, options)}


class Viewport:
    """
    Scroll position of the active view.

    With auto-scroll on, the position follows the newest line after every
    buffer change. Turning auto-scroll off freezes the position where it is;
    turning it back on jumps to the newest line.

    Attributes:
        auto_scroll: Follow the newest line
        position: 0-based index of the line pinned at the bottom of the view, or None when empty
        line_count: Lines currently in the view
    """

    def __init__(self, auto_scroll: bool = True):
        self.auto_scroll = auto_scroll
        self.position: Optional[int] = None
        self.line_count = 0

    def on_buffer_change(self, line_count: int) -> Optional[int]:
        """Record the new line count; returns the position to scroll to."""
        self.line_count = line_count
        if self.auto_scroll:
            self.position = line_count - 1 if line_count else None
        elif self.position is not None and self.position >= line_count:
            self.position = line_count - 1 if line_count else None
        return self.position

    def set_auto_scroll(self, enabled: bool) -> Optional[int]:
        self.auto_scroll = enabled
        if enabled:
            self.position = self.line_count - 1 if self.line_count else None
        return self.position

    def scroll_to(self, position: int) -> Optional[int]:
        """Manual scroll; clamped to the view and ignored while following."""
        if self.auto_scroll or not self.line_count:
            return self.position
        self.position = max(0, min(position, self.line_count - 1))
        return self.position
