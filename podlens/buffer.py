"""
In-memory log buffer for a viewer session.

The buffer keeps parsed entries in arrival order. Live streaming appends to
it; historical fetches and stream starts replace it wholesale. Entries are
never removed one by one except when the buffer is full: it is a ring
buffer, and once ``max_entries`` is reached the oldest entries are evicted.

Listeners registered with ``subscribe`` are called synchronously with
``("reset", entries)`` after a replace/clear and ``("append", entries)``
after every append.
"""

import logging
from collections import deque
from typing import Callable, Deque, Iterable, Iterator, List

from .constants import DEFAULT_MAX_BUFFER_ENTRIES
from .models import LogEntry
from .validation import validate_max_buffer_entries

log = logging.getLogger('podlens')

BufferListener = Callable[[str, List[LogEntry]], None]


class LogBuffer:
    """
    Ordered, append-only store of log entries with an explicit size cap.

    Attributes:
        max_entries: Maximum number of entries retained
        dropped: Entries evicted since the last reset

    Example:
        ```python
        buf = LogBuffer(max_entries=1000)
        buf.extend(entries)
        rows = buf.snapshot()
        ```
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_BUFFER_ENTRIES):
        self.max_entries = validate_max_buffer_entries(max_entries)
        self._entries: Deque[LogEntry] = deque(maxlen=self.max_entries)
        self._listeners: List[BufferListener] = []
        self.dropped = 0
        self._overflow_warned = False

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(list(self._entries))

    def snapshot(self) -> List[LogEntry]:
        return list(self._entries)

    def subscribe(self, listener: BufferListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def extend(self, entries: Iterable[LogEntry]) -> None:
        """Append entries in the given order, evicting the oldest on overflow."""
        added = list(entries)
        if not added:
            return
        overflow = len(self._entries) + len(added) - self.max_entries
        if overflow > 0:
            self.dropped += overflow
            if not self._overflow_warned:
                log.warning(f"[buffer] limit of {self.max_entries} entries reached, dropping oldest entries")
                self._overflow_warned = True
        self._entries.extend(added)
        # Listeners only see entries that are still held
        self._notify("append", added[-self.max_entries:])

    def replace(self, entries: Iterable[LogEntry]) -> None:
        """Replace the whole buffer with a new snapshot."""
        snapshot = list(entries)
        self._entries = deque(snapshot, maxlen=self.max_entries)
        self.dropped = max(0, len(snapshot) - self.max_entries)
        self._overflow_warned = self.dropped > 0
        if self.dropped:
            log.warning(f"[buffer] snapshot of {len(snapshot)} entries truncated to the newest {self.max_entries}")
        self._notify("reset", list(self._entries))

    def clear(self) -> None:
        self.replace([])

    def _notify(self, kind: str, entries: List[LogEntry]) -> None:
        for listener in list(self._listeners):
            listener(kind, entries)
