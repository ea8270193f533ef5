"""
Kubernetes client and API interactions for Podlens.

This module provides the interface between Podlens and the Kubernetes API.
It handles connection management, pod listing, historical log reads and
multi-pod live log streaming, with the blocking Kubernetes client kept off
the event loop.

Key Components:
- KubeContext: Container for Kubernetes API clients
- load_kube: Initialize Kubernetes client with config loading
- list_pod_names: List pod names in a namespace, optionally filtered by regex
- fetch_pod_logs: Read logs of several pods in one request/response call
- KubeLogStream: Follow logs of several pods over one connection
- KubeTransport: LogTransport implementation bound to one namespace

The module supports both in-cluster and external Kubernetes configurations,
with automatic fallback between different authentication methods.

Example:
    ```python
    kube = await load_kube(kubeconfig="/path/to/config", context="my-context")
    transport = KubeTransport(kube, "default")
    results = await transport.fetch(["api-1", "api-2"], tail_lines=500)
    ```
"""

from __future__ import annotations
import asyncio
import json
import logging
import math
import threading
from datetime import datetime, timezone
from typing import Optional, Dict, List, Pattern, Sequence, AsyncIterator, Any

from kubernetes import client, config
from kubernetes.client import ApiException

from .exceptions import StreamError
from .log_parsing import now_iso
from .models import PodLogResult
from .transport import LogStream, LogTransport

log = logging.getLogger('podlens')

_EOF = object()


class KubeContext:
    """
    Container for Kubernetes API clients.

    Attributes:
        core: CoreV1Api client for pod and log operations
    """

    def __init__(self, core: client.CoreV1Api):
        self.core = core


async def load_kube(kubeconfig: Optional[str], context: Optional[str]) -> KubeContext:
    """
    Load and initialize Kubernetes API clients.

    Supports both external kubeconfig files and in-cluster configuration
    with automatic fallback.

    Args:
        kubeconfig: Path to kubeconfig file (optional, uses default if None)
        context: Kubernetes context name (optional, uses current context if None)

    Returns:
        KubeContext: Initialized context with all API clients

    Raises:
        Exception: If Kubernetes configuration cannot be loaded
    """
    def _load():
        if kubeconfig or context:
            config.load_kube_config(config_file=kubeconfig, context=context)
        else:
            try:
                config.load_kube_config()
            except Exception:
                config.load_incluster_config()
        return client.CoreV1Api()
    loop = asyncio.get_running_loop()
    core = await loop.run_in_executor(None, _load)
    return KubeContext(core)


def api_error_message(exc: Exception) -> str:
    """Human-readable message for a Kubernetes API failure."""
    if isinstance(exc, ApiException):
        try:
            body = json.loads(exc.body) if exc.body else {}
            if body.get('message'):
                return body['message']
        except (TypeError, ValueError, AttributeError):
            pass
        return f"{exc.status} {exc.reason}"
    return str(exc) or exc.__class__.__name__


def since_seconds(since_time: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Convert an absolute lower bound to the API's relative ``since_seconds``."""
    if since_time is None:
        return None
    now = now or datetime.now(timezone.utc)
    return max(1, math.ceil((now - since_time).total_seconds()))


def prefix_lines(pod: str, text: str) -> str:
    """Prefix every non-empty line of ``text`` with ``[pod] ``."""
    return "\n".join(f"[{pod}] {line}" for line in text.split("\n") if line != "")


async def list_pod_names(core: client.CoreV1Api, namespace: str, pattern: Optional[Pattern[str]] = None) -> List[str]:
    """
    List pod names in a namespace.

    Args:
        core: CoreV1Api client for Kubernetes operations
        namespace: Namespace to list
        pattern: Optional compiled regex; only matching names are returned

    Returns:
        List[str]: Sorted pod names
    """
    loop = asyncio.get_running_loop()
    pods = await loop.run_in_executor(None, lambda: core.list_namespaced_pod(namespace=namespace))
    names = [p.metadata.name for p in pods.items]
    if pattern is not None:
        names = [n for n in names if pattern.search(n)]
    return sorted(names)


async def fetch_pod_logs(
    core: client.CoreV1Api,
    namespace: str,
    pods: Sequence[str],
    container: Optional[str] = None,
    tail_lines: Optional[int] = None,
    timestamps: bool = True,
    previous: bool = False,
    since_time: Optional[datetime] = None,
) -> List[PodLogResult]:
    """
    Read the logs of several pods.

    Pods are read one after another; a failure for one pod is recorded in
    that pod's result and the remaining pods are still read.

    Args:
        core: CoreV1Api client for Kubernetes operations
        namespace: Namespace containing the pods
        pods: Pod names to read
        container: Container name (None for the pod's default container)
        tail_lines: Only return this many trailing lines per pod
        timestamps: Ask the API to prefix each line with its RFC 3339 timestamp
        previous: Read the previous (terminated) container instance
        since_time: Only return lines newer than this instant

    Returns:
        List[PodLogResult]: One result per pod, each line prefixed with ``[pod] ``
    """
    seconds = since_seconds(since_time)

    def _read(pod: str) -> PodLogResult:
        kwargs: Dict[str, Any] = {'timestamps': timestamps, 'previous': previous}
        if container:
            kwargs['container'] = container
        if tail_lines is not None:
            kwargs['tail_lines'] = tail_lines
        if seconds is not None:
            kwargs['since_seconds'] = seconds
        try:
            text = core.read_namespaced_pod_log(name=pod, namespace=namespace, **kwargs)
        except Exception as e:
            msg = api_error_message(e)
            log.warning(f"[fetch] failed to get logs for pod {pod}: {msg}")
            return PodLogResult(pod_name=pod, error=msg)
        return PodLogResult(pod_name=pod, logs=prefix_lines(pod, text or ""))

    loop = asyncio.get_running_loop()
    results = []
    for pod in pods:
        results.append(await loop.run_in_executor(None, _read, pod))
    return results


class KubeLogStream(LogStream):
    """
    Follow the logs of several pods over one logical connection.

    Each pod is followed on its own worker thread. Complete lines are
    prefixed with ``[pod] `` and handed to the event loop, so consumers see
    one merged chunk sequence in arrival order. The stream ends once every
    pod's log has ended; ``close`` stops all workers.

    A pod whose log cannot be opened while other pods stream contributes one
    ``[pod] <now> ERROR: <message>`` line. ``chunks`` raises StreamError when
    no pod could be opened or when an established follow breaks.

    Example:
        ```python
        stream = KubeLogStream(kube.core, "default", ["api-1", "api-2"], tail_lines=100)
        await stream.open()
        async for chunk in stream.chunks():
            print(chunk, end="")
        ```
    """

    def __init__(
        self,
        core: client.CoreV1Api,
        namespace: str,
        pods: Sequence[str],
        container: Optional[str] = None,
        tail_lines: Optional[int] = None,
        timestamps: bool = True,
        since_time: Optional[datetime] = None,
    ):
        self.core = core
        self.namespace = namespace
        self.pods = list(pods)
        self.container = container
        self.tail_lines = tail_lines
        self.timestamps = timestamps
        self.since_time = since_time
        self._stop = threading.Event()
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._responses: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._remaining = 0
        self._opened = 0
        self._pending_errors: List[str] = []
        self._failures: List[str] = []
        self._closed = False

    async def open(self) -> None:
        if self._closed:
            raise StreamError("stream already closed")
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._remaining = len(self.pods)
        if not self.pods:
            self._queue.put_nowait(_EOF)
            return
        for pod in self.pods:
            t = threading.Thread(target=self._follow, args=(pod,), name=f"podlens-follow-{pod}", daemon=True)
            t.start()
        log.info(f"[stream] following {len(self.pods)} pod(s) in namespace={self.namespace}")

    def _emit(self, item: Any) -> None:
        if self._stop.is_set() and item is not _EOF:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Event loop already closed
            pass

    def _follow(self, pod: str) -> None:
        kwargs: Dict[str, Any] = {'follow': True, 'timestamps': self.timestamps, '_preload_content': False}
        if self.container:
            kwargs['container'] = self.container
        if self.tail_lines is not None:
            kwargs['tail_lines'] = self.tail_lines
        seconds = since_seconds(self.since_time)
        if seconds is not None:
            kwargs['since_seconds'] = seconds
        partial = ""
        opened = False
        try:
            resp = self.core.read_namespaced_pod_log(name=pod, namespace=self.namespace, **kwargs)
            with self._lock:
                if self._stop.is_set():
                    resp.close()
                    return
                self._responses[pod] = resp
                self._opened += 1
                pending, self._pending_errors = self._pending_errors, []
            opened = True
            log.info(f"[stream] log stream started for pod {pod}")
            for line in pending:
                self._emit(line)
            for data in resp.stream():  # type: ignore
                if self._stop.is_set():
                    break
                text = partial + data.decode('utf-8', 'replace')
                lines = text.split('\n')
                partial = lines.pop()
                if lines:
                    self._emit("".join(f"[{pod}] {line}\n" for line in lines))
            if partial and not self._stop.is_set():
                self._emit(f"[{pod}] {partial}\n")
            log.info(f"[stream] log stream ended for pod {pod} (EOF)")
        except Exception as e:
            if not self._stop.is_set():
                msg = api_error_message(e)
                if opened:
                    log.warning(f"[stream] log stream for pod {pod} broke: {msg}")
                    self._emit(StreamError(f"log stream for pod {pod} failed: {msg}"))
                else:
                    log.warning(f"[stream] failed to open log stream for pod {pod}: {msg}")
                    line = f"[{pod}] {now_iso()} ERROR: {msg}\n"
                    with self._lock:
                        self._failures.append(f"{pod}: {msg}")
                        # Held back until another pod is streaming
                        if not self._opened:
                            self._pending_errors.append(line)
                            line = None
                    if line:
                        self._emit(line)
        finally:
            with self._lock:
                self._responses.pop(pod, None)
                self._remaining -= 1
                done = self._remaining == 0
                all_failed = self._opened == 0
            if done:
                if all_failed and self._failures:
                    self._emit(StreamError(f"no pod log stream could be opened ({'; '.join(self._failures)})"))
                self._emit(_EOF)

    async def chunks(self) -> AsyncIterator[str]:
        if self._queue is None:
            raise StreamError("stream not opened")
        while True:
            item = await self._queue.get()
            if item is _EOF or self._closed:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        with self._lock:
            responses = list(self._responses.values())
            self._responses.clear()
        for resp in responses:
            try:
                resp.close()
                resp.release_conn()
            except Exception as e:
                log.debug(f"[stream] error closing response: {e}")
        if self._queue is not None:
            self._queue.put_nowait(_EOF)


class KubeTransport(LogTransport):
    """
    LogTransport backed by the Kubernetes API for one namespace.

    Attributes:
        kube: Loaded Kubernetes API clients
        namespace: Namespace all requests are scoped to
        pod_pattern: Optional regex limiting which pods are listed
    """

    def __init__(self, kube: KubeContext, namespace: str, pod_pattern: Optional[Pattern[str]] = None):
        self.kube = kube
        self.namespace = namespace
        self.pod_pattern = pod_pattern

    async def fetch(self, pods, container=None, tail_lines=None, timestamps=True, previous=False, since_time=None):
        return await fetch_pod_logs(
            self.kube.core, self.namespace, pods,
            container=container, tail_lines=tail_lines, timestamps=timestamps,
            previous=previous, since_time=since_time,
        )

    async def open_stream(self, pods, container=None, tail_lines=None, timestamps=True, since_time=None):
        stream = KubeLogStream(
            self.kube.core, self.namespace, pods,
            container=container, tail_lines=tail_lines, timestamps=timestamps, since_time=since_time,
        )
        await stream.open()
        return stream

    async def list_pods(self) -> List[str]:
        return await list_pod_names(self.kube.core, self.namespace, self.pod_pattern)
