"""
Live log streaming.

The StreamManager owns the single live log connection of a viewer session
and moves through an explicit state machine:

    IDLE -> CONNECTING -> STREAMING -> (CLOSING | ERRORING) -> IDLE

Starting a stream always closes the previous connection first, so at most
one connection is open per session. Every connection gets a fresh identity
(StreamHandle); chunks that arrive for a handle that is no longer current
are discarded. A transport failure clears the streaming flag and leaves the
buffer as it was. There is no automatic reconnect: a new ``start`` is
required.
"""

import asyncio
import itertools
import logging
from enum import Enum
from typing import Callable, List, Optional

from .buffer import LogBuffer
from .constants import DEFAULT_STREAM_TAIL_LINES
from .exceptions import InvalidDurationError, StreamError
from .log_parsing import default_source_for, parse_log_line, split_lines, strip_control_codes
from .models import LogEntry, Selection
from .transport import LogStream, LogTransport
from .validation import since_time_from_duration

log = logging.getLogger('podlens')


def _log_exception(msg: str, exc: Exception, level: int = logging.WARNING):
    """Log an exception with proper formatting."""
    log.log(level, f"{msg}: {exc.__class__.__name__}: {exc}")


class StreamState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSING = "closing"
    ERRORING = "erroring"


class StreamHandle:
    """
    Ownership token for one live connection.

    Attributes:
        connection_id: Identity of the connection; never reused within a manager
        selection: Selection the connection was opened for
        stream: Open transport stream, once connected
        task: Task pumping the stream into the buffer
    """

    def __init__(self, connection_id: int, selection: Selection):
        self.connection_id = connection_id
        self.selection = selection
        self.stream: Optional[LogStream] = None
        self.task: Optional["asyncio.Task[None]"] = None

    def __repr__(self) -> str:
        return f"StreamHandle(id={self.connection_id}, pods={len(self.selection.sources)})"


StatusListener = Callable[[StreamState, bool], None]


class StreamManager:
    """
    Owns the live connection for the current selection and feeds the buffer.

    Attributes:
        transport: Transport used to open connections
        buffer: Session buffer receiving parsed entries
        tail_lines: Lines of backlog requested from each pod when connecting
        state: Current StreamState
        streaming: True while a connection is delivering data
        last_error: Message of the last transport failure, if any

    Example:
        ```python
        manager = StreamManager(transport, buffer)
        await manager.start(Selection(sources=("api-1", "api-2")))
        ...
        await manager.stop()
        ```
    """

    def __init__(
        self,
        transport: LogTransport,
        buffer: LogBuffer,
        tail_lines: int = DEFAULT_STREAM_TAIL_LINES,
        on_status: Optional[StatusListener] = None,
    ):
        self.transport = transport
        self.buffer = buffer
        self.tail_lines = tail_lines
        self.on_status = on_status
        self.state = StreamState.IDLE
        self.streaming = False
        self.last_error: Optional[str] = None
        self._handle: Optional[StreamHandle] = None
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    @property
    def handle(self) -> Optional[StreamHandle]:
        return self._handle

    @property
    def active(self) -> bool:
        return self._handle is not None

    def _set_state(self, state: StreamState, streaming: Optional[bool] = None) -> None:
        if streaming is not None:
            self.streaming = streaming
        if state is self.state and streaming is None:
            return
        log.debug(f"[stream] state {self.state.value} -> {state.value}")
        self.state = state
        if self.on_status:
            self.on_status(self.state, self.streaming)

    async def start(self, selection: Selection) -> Optional[StreamHandle]:
        """
        Open a live connection for ``selection``, replacing any current one.

        The buffer is cleared once the connection is acknowledged, before the
        first chunk is processed.

        Returns:
            Optional[StreamHandle]: Handle of the new connection, or None if
                the connection could not be opened

        Raises:
            StreamError: If no pods are selected
        """
        if not selection.sources:
            raise StreamError("Cannot stream logs without a pod selection")

        async with self._lock:
            await self._close_current()

            handle = StreamHandle(next(self._ids), selection)
            self._handle = handle
            self.last_error = None
            self._set_state(StreamState.CONNECTING)

            try:
                since_time = since_time_from_duration(selection.time_filter)
            except InvalidDurationError as e:
                log.warning(f"[stream] ignoring time filter: {e}")
                since_time = None

            log.info(f"[stream] opening connection {handle.connection_id} for {len(selection.sources)} pod(s)")
            try:
                stream = await self.transport.open_stream(
                    list(selection.sources),
                    container=selection.container,
                    tail_lines=self.tail_lines,
                    timestamps=True,
                    since_time=since_time,
                )
            except Exception as e:
                _log_exception(f"[stream] failed to open connection {handle.connection_id}", e)
                self._fail(handle, e)
                return None

            handle.stream = stream
            self.buffer.clear()
            self._set_state(StreamState.STREAMING, streaming=True)
            handle.task = asyncio.get_running_loop().create_task(self._pump(handle))
            return handle

    async def stop(self) -> None:
        """Close the current connection. The buffer is kept."""
        async with self._lock:
            await self._close_current()

    async def _close_current(self) -> None:
        handle = self._handle
        if handle is None:
            if self.streaming or self.state is not StreamState.IDLE:
                self._set_state(StreamState.IDLE, streaming=False)
            return

        self._set_state(StreamState.CLOSING)
        self._handle = None
        if handle.task is not None and handle.task is not asyncio.current_task():
            handle.task.cancel()
            await asyncio.gather(handle.task, return_exceptions=True)
        if handle.stream is not None:
            await handle.stream.close()
        log.info(f"[stream] connection {handle.connection_id} closed")
        self._set_state(StreamState.IDLE, streaming=False)

    def _fail(self, handle: StreamHandle, exc: Exception) -> None:
        if handle is not self._handle:
            return
        self.last_error = str(exc) or exc.__class__.__name__
        self._set_state(StreamState.ERRORING, streaming=False)
        self._handle = None
        self._set_state(StreamState.IDLE)

    def ingest(self, handle: StreamHandle, chunk: str) -> List[LogEntry]:
        """
        Parse one inbound chunk and append its entries to the buffer.

        Chunks for a handle that is no longer current are dropped.
        """
        if handle is not self._handle:
            return []
        sources = handle.selection.sources
        base = len(self.buffer)
        entries = []
        for idx, line in enumerate(split_lines(strip_control_codes(chunk))):
            entry = parse_log_line(line, base + idx, default_source_for(line, sources))
            if entry is not None:
                entries.append(entry)
        self.buffer.extend(entries)
        return entries

    async def _pump(self, handle: StreamHandle) -> None:
        stream = handle.stream
        try:
            async for chunk in stream.chunks():
                if handle is not self._handle:
                    break
                self.ingest(handle, chunk)
        except Exception as e:
            _log_exception(f"[stream] connection {handle.connection_id} failed", e)
            if handle is self._handle:
                self._fail(handle, e)
                await stream.close()
            return

        if handle is self._handle:
            log.info(f"[stream] connection {handle.connection_id} ended by server")
            self._handle = None
            await stream.close()
            self._set_state(StreamState.IDLE, streaming=False)
