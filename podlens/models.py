"""
Data models for Podlens.

This module defines the data structures used throughout the Podlens
application. It provides type-safe representations of parsed log lines,
per-pod fetch results, the viewer's selection and display options, and the
server configuration.

Key Models:
- LogEntry: One parsed log line
- PodLogResult: Historical logs (or an error) for a single pod
- Selection: Pods, container and time window requested by the viewer
- ViewOptions: Display options applied when rendering the buffer
- ServerConfig: Server configuration parameters

All models use dataclasses. Log entries are frozen: every derived field is
computed once when the line is parsed and never changes afterwards.

Example:
    ```python
    entry = LogEntry(
        id="3f2a...",
        pod_name="api-7f9-abc",
        timestamp="2025-10-27T02:25:38.877723355Z",
        message='{"level":"warn"}',
        raw_line='[api-7f9-abc] 2025-10-27T02:25:38.877723355Z {"level":"warn"}',
    )
    ```
"""

from dataclasses import dataclass, replace
from typing import Dict, Any, Optional, Tuple, FrozenSet

from .constants import DEFAULT_TIMEZONE


@dataclass(frozen=True)
class LogEntry:
    """
    One parsed log line.

    Attributes:
        id: Identifier unique within the session (carries no ordering)
        pod_name: Source pod; "unknown" when not recoverable, "multiple" when a
            multi-pod stream line cannot be attributed
        timestamp: Timestamp string as received from the source
        message: Payload after the pod/timestamp prefix and control codes are removed
        raw_line: Original text, kept for the raw view and exports

    The JSON form uses the field names ``id``, ``podName``, ``timestamp``,
    ``message`` and ``rawLine``.
    """
    id: str
    pod_name: str
    timestamp: str
    message: str
    raw_line: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary for export and WebSocket messages."""
        return {
            'id': self.id,
            'podName': self.pod_name,
            'timestamp': self.timestamp,
            'message': self.message,
            'rawLine': self.raw_line,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls(
            id=str(data['id']),
            pod_name=data['podName'],
            timestamp=data['timestamp'],
            message=data['message'],
            raw_line=data['rawLine'],
        )


@dataclass
class PodLogResult:
    """
    Historical fetch result for a single pod.

    Exactly one of ``logs`` or ``error`` is meaningful: a failed pod carries
    the error text and empty logs.

    Attributes:
        pod_name: Pod the logs were requested for
        logs: Newline-delimited log text, each line prefixed with ``[pod_name] ``
        error: Error message when the pod's logs could not be read
    """
    pod_name: str
    logs: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'podName': self.pod_name, 'logs': self.logs}
        if self.error:
            data['error'] = self.error
        return data


@dataclass(frozen=True)
class Selection:
    """
    Pods and filters a viewer session requests logs for.

    Attributes:
        sources: Selected pod names, in selection order
        container: Container name (None lets Kubernetes pick the default)
        time_filter: Duration token such as "5m" or "1h" ("" or None for all)
        previous: Request the previous container instance's logs
    """
    sources: Tuple[str, ...] = ()
    container: Optional[str] = None
    time_filter: Optional[str] = None
    previous: bool = False

    def with_changes(self, **changes: Any) -> "Selection":
        if 'sources' in changes and changes['sources'] is not None:
            changes['sources'] = tuple(changes['sources'])
        return replace(self, **changes)


@dataclass
class ViewOptions:
    """
    Display options for rendering the buffer.

    Attributes:
        show_timestamps: Include the timestamp segment/column
        timezone: "Local", "UTC" or an IANA zone name
        view_mode: "raw" for scrolling text, "table" for the tabular view
        auto_scroll: Pin the view to the newest entry after every append
        sort_key: Table sort column (pod_name, timestamp, message) or None for arrival order
        sort_descending: Reverse the table sort
        pod_filter: Pods shown in the table, or None for all
    """
    show_timestamps: bool = True
    timezone: str = DEFAULT_TIMEZONE
    view_mode: str = "raw"
    auto_scroll: bool = True
    sort_key: Optional[str] = None
    sort_descending: bool = False
    pod_filter: Optional[FrozenSet[str]] = None


@dataclass
class ServerConfig:
    """
    Server configuration parameters.

    Attributes:
        host: Server bind host
        port: Server port
        namespace: Namespace whose pods are served
        kubeconfig: Path to kubeconfig (None for default rules)
        context: Kubecontext override
        max_buffer_entries: Entry cap for each viewer session buffer
        default_timezone: Display timezone for new viewer sessions
        log_level: Application log level
        uvicorn_log_level: Uvicorn server log level
    """
    host: str
    port: int
    namespace: str = "default"
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    max_buffer_entries: int = 50000
    default_timezone: str = DEFAULT_TIMEZONE
    log_level: str = "INFO"
    uvicorn_log_level: str = "info"
