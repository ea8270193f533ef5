"""
Viewer session lifecycle.

A LogSession is the state behind one open log viewer: the known and selected
pods, container and time filter, live/historical mode, the buffer, the stream
manager and the display options. It is created when a viewer opens, updated
on every selection change and closed when the viewer goes away.

Buffer ownership rules:
- live mode: every (re)start of the stream clears the buffer
- historical mode: every fetch replaces the buffer with its snapshot
- neither merges with the other's data

Listeners added with ``add_listener`` receive ``(event, payload)`` tuples:
``("reset", [entries])``, ``("append", [entries])``,
``("status", {"state": ..., "streaming": ...})`` and
``("scroll", {"position": ...})``.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from .buffer import LogBuffer
from .constants import DEFAULT_MAX_BUFFER_ENTRIES, DEFAULT_TIMEZONE
from .exceptions import StreamError
from .export import ExportResult, serialize
from .fetcher import HistoricalFetcher
from .models import LogEntry, Selection, ViewOptions
from .streaming import StreamManager, StreamState
from .transport import LogTransport
from .validation import (
    sanitize_pod_name, validate_time_filter, validate_timezone, validate_export_format,
    validate_view_mode, validate_sort_key,
)
from .view import Viewport, render

log = logging.getLogger('podlens')

SessionListener = Callable[[str, Any], None]

_UNSET = object()


class LogSession:
    """
    State and operations of one log viewer.

    Attributes:
        transport: Transport for fetches and live connections
        known_pods: Pods available for selection
        selection: Current pod/container/time-filter selection
        live_enabled: Live streaming mode; historical fetches otherwise
        buffer: Entries backing the view
        stream: StreamManager owning the live connection
        fetcher: HistoricalFetcher for snapshot queries
        options: Display options
        viewport: Scroll state of the active view

    Example:
        ```python
        session = LogSession(transport)
        await session.set_known_pods(["api-1", "api-2"])   # starts streaming both
        await session.update_selection(container="app")   # restarts the stream
        await session.stop_streaming()
        result = session.export("csv")
        await session.close()
        ```
    """

    def __init__(
        self,
        transport: LogTransport,
        max_entries: int = DEFAULT_MAX_BUFFER_ENTRIES,
        timezone: str = DEFAULT_TIMEZONE,
        live: bool = True,
    ):
        self.transport = transport
        self.known_pods: List[str] = []
        self.selection = Selection()
        self.live_enabled = live
        self.loading = False
        self.closed = False
        self.buffer = LogBuffer(max_entries)
        self.stream = StreamManager(transport, self.buffer, on_status=self._on_stream_status)
        self.fetcher = HistoricalFetcher(transport)
        self.options = ViewOptions(timezone=validate_timezone(timezone))
        self.viewport = Viewport(self.options.auto_scroll)
        self._listeners: List[SessionListener] = []
        self._unsubscribe = self.buffer.subscribe(self._on_buffer_change)

    @property
    def entries(self) -> List[LogEntry]:
        return self.buffer.snapshot()

    @property
    def streaming(self) -> bool:
        return self.stream.streaming

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as e:
                log.warning(f"[session] listener failed on {event}: {e.__class__.__name__}: {e}")

    def _on_buffer_change(self, kind: str, entries: List[LogEntry]) -> None:
        self._publish(kind, entries)
        position = self.viewport.on_buffer_change(self._visible_line_count())
        if self.viewport.auto_scroll:
            self._publish("scroll", {'position': position})

    def _on_stream_status(self, state: StreamState, streaming: bool) -> None:
        self._publish("status", {'state': state.value, 'streaming': streaming, 'error': self.stream.last_error})

    def _visible_line_count(self) -> int:
        if self.options.view_mode == "table" and self.options.pod_filter is not None:
            return sum(1 for e in self.buffer if e.pod_name in self.options.pod_filter)
        return len(self.buffer)

    async def set_known_pods(self, pods: Iterable[str]) -> None:
        """
        Update the pods available for selection.

        On first load the selection becomes all known pods and logs are
        loaded for them.
        """
        self.known_pods = [sanitize_pod_name(p) for p in pods if sanitize_pod_name(p)]
        if not self.selection.sources and self.known_pods:
            await self.update_selection(sources=self.known_pods)

    async def update_selection(
        self,
        sources: Optional[Iterable[str]] = None,
        container: Any = _UNSET,
        time_filter: Any = _UNSET,
        previous: Optional[bool] = None,
    ) -> None:
        """
        Apply a selection change and reload logs.

        With live mode on and a non-empty selection the stream is restarted
        (closing the previous connection first); otherwise a historical fetch
        replaces the buffer. Toggling ``previous`` clears the time filter.

        Raises:
            InvalidDurationError: If ``time_filter`` is not a valid duration token
        """
        changes: Dict[str, Any] = {}
        if sources is not None:
            changes['sources'] = tuple(dict.fromkeys(p for p in (sanitize_pod_name(s) for s in sources) if p))
        if container is not _UNSET:
            changes['container'] = container or None
        if time_filter is not _UNSET:
            changes['time_filter'] = validate_time_filter(time_filter)
        if previous is not None and previous != self.selection.previous:
            changes['previous'] = bool(previous)
            changes['time_filter'] = None
        self.selection = self.selection.with_changes(**changes)
        await self.reload()

    async def reload(self) -> None:
        """
        Load logs for the current selection in the current mode.

        Previous-instance logs belong to a terminated container and cannot be
        followed, so they are always fetched.
        """
        if not self.selection.sources:
            await self.stream.stop()
            self.buffer.clear()
            return
        if self.live_enabled and not self.selection.previous:
            await self.stream.start(self.selection)
        else:
            await self.refresh()

    async def start_streaming(self) -> None:
        """Enable live mode and (re)open the stream for the current selection."""
        if not self.selection.sources:
            raise StreamError("Select at least one pod to stream logs")
        self.live_enabled = True
        if self.selection.previous:
            self.selection = self.selection.with_changes(previous=False)
        await self.stream.start(self.selection)

    async def stop_streaming(self) -> None:
        """Close the live connection and leave live mode; the buffer is kept."""
        self.live_enabled = False
        await self.stream.stop()

    async def refresh(self) -> List[LogEntry]:
        """
        Run a historical fetch for the current selection and replace the buffer.

        A running stream is closed first so that only one producer owns the
        buffer.
        """
        if self.stream.active:
            await self.stream.stop()
        if not self.selection.sources:
            self.buffer.clear()
            return []
        self.loading = True
        try:
            entries = await self.fetcher.fetch(
                self.selection.sources,
                container=self.selection.container,
                previous=self.selection.previous,
                since=self.selection.time_filter,
            )
        finally:
            self.loading = False
        self.buffer.replace(entries)
        return entries

    def set_view_options(self, **changes: Any) -> ViewOptions:
        """
        Change display options.

        Accepts any ViewOptions field. ``pod_filter`` takes an iterable of pod
        names or None.

        Raises:
            ConfigurationError: If a value is invalid
        """
        for key in changes:
            if not hasattr(self.options, key):
                raise AttributeError(f"Unknown view option: {key}")
        if 'timezone' in changes:
            changes['timezone'] = validate_timezone(changes['timezone'])
        if 'view_mode' in changes:
            validate_view_mode(changes['view_mode'])
        if 'sort_key' in changes:
            validate_sort_key(changes['sort_key'])
        if 'pod_filter' in changes and changes['pod_filter'] is not None:
            changes['pod_filter'] = frozenset(changes['pod_filter'])
        for key, value in changes.items():
            setattr(self.options, key, value)
        if 'auto_scroll' in changes:
            position = self.viewport.set_auto_scroll(bool(changes['auto_scroll']))
            self._publish("scroll", {'position': position})
        elif 'view_mode' in changes or 'pod_filter' in changes:
            position = self.viewport.on_buffer_change(self._visible_line_count())
            self._publish("scroll", {'position': position})
        return self.options

    def scroll_to(self, position: int) -> Optional[int]:
        """Move the view to ``position``; ignored while auto-scroll is on."""
        new_position = self.viewport.scroll_to(position)
        self._publish("scroll", {'position': new_position})
        return new_position

    def render(self) -> Dict[str, Any]:
        """Project the buffer through the current display options."""
        return render(self.buffer.snapshot(), self.options)

    def export(self, fmt: str) -> ExportResult:
        return serialize(self.buffer.snapshot(), validate_export_format(fmt), self.options)

    def status(self) -> Dict[str, Any]:
        return {
            'state': self.stream.state.value,
            'streaming': self.stream.streaming,
            'live': self.live_enabled,
            'loading': self.loading,
            'entries': len(self.buffer),
            'dropped': self.buffer.dropped,
            'error': self.stream.last_error,
            'selection': {
                'pods': list(self.selection.sources),
                'container': self.selection.container,
                'timeFilter': self.selection.time_filter or "",
                'previous': self.selection.previous,
            },
            'knownPods': list(self.known_pods),
        }

    async def close(self) -> None:
        """Close the live connection and free the buffer."""
        if self.closed:
            return
        self.closed = True
        await self.stream.stop()
        self.buffer.clear()
        self._unsubscribe()
        self._listeners.clear()
