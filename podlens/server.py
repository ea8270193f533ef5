"""
FastAPI server and WebSocket handling for Podlens.

This module exposes the log endpoints and the viewer session over HTTP and
WebSocket.

Key Components:
- Hub: Shared server state (transport factory, open viewer sessions)
- GET /api/namespaces/{namespace}/pods: Pod names available for selection
- GET /api/namespaces/{namespace}/pods/logs: Historical multi-pod fetch
- WS /api/namespaces/{namespace}/pods/logs/stream: Live multi-pod log stream
- WS /ws: Viewer session driven by client actions
- run_server: Main server startup and configuration

Viewer WebSocket protocol (client -> server), one JSON object per message:

    {"action": "select", "pods": [...], "container": "app", "timeFilter": "5m", "previous": false}
    {"action": "start"} / {"action": "stop"} / {"action": "refresh"}
    {"action": "options", "showTimestamps": true, "timezone": "UTC", "viewMode": "table", ...}
    {"action": "view"} / {"action": "scroll", "position": 120}
    {"action": "search", "query": "timeout"}
    {"action": "export", "format": "csv"}

Server -> client messages have a ``type`` of status, reset, entries,
scroll, view, search, export or error.

Example:
    ```python
    await run_server(ServerConfig(host="0.0.0.0", port=8080, namespace="prod"))
    ```
"""

import asyncio
import json
import os
import logging
from typing import Any, Callable, Dict, List, Optional, Pattern, Set

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect, HTTPException

from .constants import DEFAULT_LOG_LEVEL, LOG_FORMAT, TIME_FILTER_OPTIONS, TIMEZONE_OPTIONS, EXPORT_FORMATS
from .exceptions import PodlensError, KubernetesConnectionError, ConfigurationError
from .formatting import parse_timestamp
from .kube import load_kube, KubeTransport, api_error_message
from .models import LogEntry, ServerConfig
from .session import LogSession
from .transport import LogTransport
from .view import raw_lines, search_raw

# Logging setup (level via PODLENS_LOG_LEVEL env or default INFO)
logging.basicConfig(
    level=getattr(logging, os.getenv('PODLENS_LOG_LEVEL', DEFAULT_LOG_LEVEL).upper(), logging.INFO),
    format=LOG_FORMAT
)
log = logging.getLogger('podlens')


def _log_exception(msg: str, exc: Exception, level: int = logging.WARNING):
    """Log an exception with proper formatting."""
    log.log(level, f"{msg}: {exc.__class__.__name__}: {exc}")


# Client option name -> (ViewOptions field, JSON type, null allowed)
OPTION_FIELDS = {
    'showTimestamps': ('show_timestamps', bool, False),
    'timezone': ('timezone', str, False),
    'viewMode': ('view_mode', str, False),
    'autoScroll': ('auto_scroll', bool, False),
    'sortKey': ('sort_key', str, True),
    'sortDescending': ('sort_descending', bool, False),
    'podFilter': ('pod_filter', list, True),
}


def _message_field(msg: Dict[str, Any], key: str, expected: type, allow_none: bool = True) -> Any:
    """
    Read ``key`` from a client message, checking its JSON type.

    ``list`` means a list of strings. Integers exclude booleans.

    Raises:
        ConfigurationError: If the value has the wrong type
    """
    value = msg.get(key)
    if value is None and allow_none:
        return None
    if expected is list:
        valid = isinstance(value, list) and all(isinstance(v, str) for v in value)
    elif expected is int:
        valid = isinstance(value, int) and not isinstance(value, bool)
    else:
        valid = isinstance(value, expected)
    if not valid:
        raise ConfigurationError(f"Invalid value for '{key}': {value!r}")
    return value


class Hub:
    """
    Central state for the server.

    Attributes:
        config: Active server configuration
        transport_factory: Builds a LogTransport for a namespace
        sessions: Viewer sessions with an open WebSocket

    Example:
        ```python
        hub.transport_factory = lambda ns: KubeTransport(kube, ns)
        transport = hub.transport_for("default")
        ```
    """

    def __init__(self):
        """Initialize the Hub with empty state."""
        self.config: ServerConfig = ServerConfig(host="localhost", port=8080)
        self.transport_factory: Optional[Callable[[str], LogTransport]] = None
        self.sessions: Set[LogSession] = set()

    def transport_for(self, namespace: str) -> LogTransport:
        if self.transport_factory is None:
            raise HTTPException(status_code=503, detail="Kubernetes connection not initialised")
        return self.transport_factory(namespace)

    def new_session(self, namespace: str) -> LogSession:
        session = LogSession(
            self.transport_for(namespace),
            max_entries=self.config.max_buffer_entries,
            timezone=self.config.default_timezone,
        )
        self.sessions.add(session)
        return session

    async def close_session(self, session: LogSession) -> None:
        self.sessions.discard(session)
        await session.close()


hub = Hub()
app = FastAPI(title="podlens")


@app.get("/healthz")
async def healthz():
    return {'ok': True, 'sessions': len(hub.sessions)}


@app.get("/api/options")
async def view_options():
    return {
        'timeFilters': TIME_FILTER_OPTIONS,
        'timezones': TIMEZONE_OPTIONS,
        'exportFormats': list(EXPORT_FORMATS),
        'defaultTimezone': hub.config.default_timezone,
    }


@app.get("/api/namespaces/{namespace}/pods")
async def list_pods(namespace: str):
    transport = hub.transport_for(namespace)
    try:
        pods = await transport.list_pods()
    except Exception as e:
        _log_exception(f"[pods] Failed to list pods in {namespace}", e)
        raise HTTPException(status_code=502, detail=api_error_message(e))
    return {'pods': pods}


@app.get("/api/namespaces/{namespace}/pods/logs")
async def multi_pod_logs(
    namespace: str,
    pods: List[str] = Query(default=[]),
    container: Optional[str] = None,
    tailLines: Optional[int] = None,
    timestamps: bool = False,
    previous: bool = False,
    sinceTime: Optional[str] = None,
):
    if not pods:
        raise HTTPException(status_code=400, detail="No pods specified")
    since_time = parse_timestamp(sinceTime) if sinceTime else None
    if sinceTime and since_time is None:
        log.warning(f"[logs] ignoring unparseable sinceTime={sinceTime!r}")

    transport = hub.transport_for(namespace)
    log.info(f"[logs] fetch namespace={namespace} pods={pods} previous={previous}")
    results = await transport.fetch(
        pods, container=container or None, tail_lines=tailLines, timestamps=timestamps,
        previous=previous, since_time=since_time,
    )
    return [r.to_dict() for r in results]


async def _forward_chunks(stream, ws: WebSocket) -> None:
    async for chunk in stream.chunks():
        await ws.send_text(chunk)


async def _drain(ws: WebSocket) -> None:
    while True:
        msg = await ws.receive()
        if msg.get('type') == 'websocket.disconnect':
            return


@app.websocket("/api/namespaces/{namespace}/pods/logs/stream")
async def multi_pod_logs_stream(ws: WebSocket, namespace: str):
    params = ws.query_params
    pods = params.getlist('pods')
    await ws.accept()
    if not pods:
        log.warning("[stream] request without pods")
        await ws.close(code=1008, reason="No pods specified")
        return

    container = params.get('container') or None
    try:
        tail_lines = int(params.get('tailLines', '100'))
    except ValueError:
        tail_lines = 100
    timestamps = params.get('timestamps') == 'true'
    since_time = parse_timestamp(params.get('sinceTime', ''))
    log.info(f"[stream] multi-pod stream namespace={namespace} pods={pods} timestamps={timestamps}")

    try:
        stream = await hub.transport_for(namespace).open_stream(
            pods, container=container, tail_lines=tail_lines, timestamps=timestamps, since_time=since_time,
        )
    except Exception as e:
        _log_exception("[stream] Failed to open log stream", e)
        await ws.close(code=1011, reason=api_error_message(e)[:120])
        return

    sender = asyncio.create_task(_forward_chunks(stream, ws))
    receiver = asyncio.create_task(_drain(ws))
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if sender in done:
            exc = sender.exception()
            if isinstance(exc, WebSocketDisconnect):
                log.info("[stream] client disconnected")
            elif exc is not None:
                _log_exception("[stream] Log stream failed", exc)
                await ws.close(code=1011, reason=str(exc)[:120])
            else:
                log.info("[stream] log stream ended")
                await ws.close()
        else:
            log.info("[stream] client disconnected")
    except WebSocketDisconnect:
        log.info("[stream] client disconnected")
    finally:
        await stream.close()


def _entries_payload(session: LogSession, entries: List[LogEntry]) -> Dict[str, Any]:
    return {
        'entries': [e.to_dict() for e in entries],
        'lines': raw_lines(entries, session.options),
        'total': len(session.buffer),
    }


def _session_message(session: LogSession, event: str, payload: Any) -> Dict[str, Any]:
    if event == 'reset':
        return {'type': 'reset', 'data': _entries_payload(session, payload)}
    if event == 'append':
        return {'type': 'entries', 'data': _entries_payload(session, payload)}
    return {'type': event, 'data': payload}


async def handle_viewer_action(session: LogSession, msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Apply one viewer action to a session.

    Returns:
        Optional[Dict[str, Any]]: A direct reply to send, if the action has one

    Raises:
        PodlensError: If the action's arguments are invalid
    """
    action = msg.get('action')
    if action == 'select':
        kwargs: Dict[str, Any] = {}
        if 'pods' in msg:
            kwargs['sources'] = _message_field(msg, 'pods', list) or []
        if 'container' in msg:
            kwargs['container'] = _message_field(msg, 'container', str)
        if 'timeFilter' in msg:
            kwargs['time_filter'] = _message_field(msg, 'timeFilter', str)
        if 'previous' in msg:
            kwargs['previous'] = _message_field(msg, 'previous', bool, allow_none=False)
        await session.update_selection(**kwargs)
        return {'type': 'status', 'data': session.status()}
    if action == 'start':
        await session.start_streaming()
        return {'type': 'status', 'data': session.status()}
    if action == 'stop':
        await session.stop_streaming()
        return {'type': 'status', 'data': session.status()}
    if action == 'refresh':
        await session.refresh()
        return {'type': 'status', 'data': session.status()}
    if action == 'options':
        changes = {}
        for key, (field, expected, allow_none) in OPTION_FIELDS.items():
            if key in msg:
                changes[field] = _message_field(msg, key, expected, allow_none)
        session.set_view_options(**changes)
        return {'type': 'view', 'data': session.render()}
    if action == 'view':
        return {'type': 'view', 'data': session.render()}
    if action == 'scroll':
        # Reply arrives through the session's scroll event
        session.scroll_to(_message_field(msg, 'position', int, allow_none=False))
        return None
    if action == 'search':
        query = _message_field(msg, 'query', str) or ''
        case_sensitive = bool(_message_field(msg, 'caseSensitive', bool))
        lines = search_raw(session.entries, session.options, query, case_sensitive)
        return {'type': 'search', 'data': {'lines': lines}}
    if action == 'export':
        result = session.export(_message_field(msg, 'format', str) or 'txt')
        return {'type': 'export', 'data': {
            'filename': result.filename,
            'mimeType': result.mime_type,
            'content': result.content.decode('utf-8'),
        }}
    log.warning(f"[ws] Unknown action: {action!r}")
    return {'type': 'error', 'message': f"Unknown action: {action}"}


@app.websocket("/ws")
async def viewer_endpoint(ws: WebSocket):
    await ws.accept()
    namespace = ws.query_params.get('namespace') or hub.config.namespace
    try:
        session = hub.new_session(namespace)
    except HTTPException as e:
        await ws.close(code=1011, reason=str(e.detail))
        return
    log.info(f"[ws] viewer connected namespace={namespace}")

    outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
    session.add_listener(lambda event, payload: outbox.put_nowait(_session_message(session, event, payload)))

    async def _send_loop():
        while True:
            message = await outbox.get()
            try:
                txt = json.dumps(message, separators=(',', ':'))
            except (TypeError, ValueError) as e:
                _log_exception("[ws] Failed to serialize message", e)
                continue
            await ws.send_text(txt)

    sender = asyncio.create_task(_send_loop())
    try:
        try:
            await session.set_known_pods(await session.transport.list_pods())
        except Exception as e:
            _log_exception("[ws] Failed to load pods", e)
            outbox.put_nowait({'type': 'error', 'message': f"Failed to list pods: {api_error_message(e)}"})
        outbox.put_nowait({'type': 'status', 'data': session.status()})

        while True:
            try:
                raw = await ws.receive_text()
                msg = json.loads(raw)
            except json.JSONDecodeError as e:
                log.warning(f"[ws] Invalid JSON received: {e}")
                continue
            if not isinstance(msg, dict):
                log.warning("[ws] Ignoring non-object message")
                continue
            try:
                reply = await handle_viewer_action(session, msg)
            except (PodlensError, AttributeError) as e:
                reply = {'type': 'error', 'message': str(e)}
            if reply is not None:
                outbox.put_nowait(reply)
    except WebSocketDisconnect:
        log.info("[ws] viewer disconnected")
    except Exception as e:
        _log_exception("[ws] WebSocket error", e)
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        await hub.close_session(session)


async def run_server(config: ServerConfig, pod_pattern: Optional[Pattern[str]] = None) -> None:
    """Run the Podlens server with proper error handling."""
    try:
        kube = await load_kube(config.kubeconfig, config.context)
    except Exception as e:
        _log_exception("[server] Failed to load Kubernetes configuration", e)
        raise KubernetesConnectionError(f"Failed to connect to Kubernetes: {e}")

    hub.config = config
    hub.transport_factory = lambda namespace: KubeTransport(kube, namespace, pod_pattern)
    log.info(f"[server] namespace={config.namespace} buffer={config.max_buffer_entries} timezone={config.default_timezone}")

    import uvicorn
    uv_config = uvicorn.Config(app, host=config.host, port=config.port, log_level=config.uvicorn_log_level)
    server = uvicorn.Server(uv_config)
    await server.serve()
