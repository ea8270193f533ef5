import asyncio
import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from kubernetes.client import ApiException

from podlens.buffer import LogBuffer
from podlens.exceptions import StreamError
from podlens.kube import (
    KubeContext, KubeLogStream, KubeTransport, api_error_message, fetch_pod_logs,
    list_pod_names, prefix_lines, since_seconds,
)
from podlens.models import Selection
from podlens.streaming import StreamManager, StreamState


class FakeResponse:

    def __init__(self, chunks):
        self._chunks = chunks
        self.closed = False

    def stream(self):
        for chunk in self._chunks:
            if self.closed:
                return
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def close(self):
        self.closed = True

    def release_conn(self):
        pass


class FakeCore:
    """Stands in for CoreV1Api: ``logs`` maps pod to text, chunk list or exception."""

    def __init__(self, logs, pods=()):
        self.logs = logs
        self.pods = list(pods)
        self.calls = []

    def list_namespaced_pod(self, namespace):
        return SimpleNamespace(items=[SimpleNamespace(metadata=SimpleNamespace(name=n)) for n in self.pods])

    def read_namespaced_pod_log(self, name, namespace, **kwargs):
        self.calls.append((name, namespace, kwargs))
        value = self.logs[name]
        if isinstance(value, Exception):
            raise value
        if kwargs.get('follow'):
            return FakeResponse(value)
        return value


def api_error(status, reason, body=None):
    exc = ApiException(status=status, reason=reason)
    exc.body = body
    return exc


async def collect(stream, timeout=5):
    chunks = []

    async def _read():
        async for chunk in stream.chunks():
            chunks.append(chunk)
    await asyncio.wait_for(_read(), timeout)
    return "".join(chunks)


def test_api_error_message_prefers_body_message():
    exc = api_error(400, "Bad Request", '{"kind":"Status","message":"container \\"x\\" not found"}')
    assert api_error_message(exc) == 'container "x" not found'


def test_api_error_message_falls_back_to_status():
    assert api_error_message(api_error(404, "Not Found")) == "404 Not Found"
    assert api_error_message(api_error(500, "Internal", "not json")) == "500 Internal"
    assert api_error_message(TimeoutError()) == "TimeoutError"


def test_since_seconds_rounds_up():
    now = datetime(2025, 10, 27, 2, 30, tzinfo=timezone.utc)
    assert since_seconds(now - timedelta(seconds=90, milliseconds=200), now) == 91
    assert since_seconds(now, now) == 1
    assert since_seconds(None) is None


def test_prefix_lines():
    assert prefix_lines("api-1", "a\nb\n") == "[api-1] a\n[api-1] b"


@pytest.mark.asyncio
async def test_list_pod_names_filters_and_sorts():
    core = FakeCore({}, pods=["worker-1", "api-2", "api-1"])
    assert await list_pod_names(core, "default") == ["api-1", "api-2", "worker-1"]
    assert await list_pod_names(core, "default", re.compile("^api-")) == ["api-1", "api-2"]


@pytest.mark.asyncio
async def test_fetch_pod_logs_records_per_pod_errors():
    core = FakeCore({
        "api-1": "2025-10-27T02:25:38Z a\n2025-10-27T02:25:39Z b\n",
        "api-2": api_error(400, "Bad Request", '{"message":"previous terminated container not found"}'),
    })
    since = datetime.now(timezone.utc) - timedelta(minutes=5)
    results = await fetch_pod_logs(core, "prod", ["api-1", "api-2"], container="app",
                                   tail_lines=50, previous=True, since_time=since)

    assert results[0].logs == "[api-1] 2025-10-27T02:25:38Z a\n[api-1] 2025-10-27T02:25:39Z b"
    assert results[0].error is None
    assert results[1].error == "previous terminated container not found"

    name, namespace, kwargs = core.calls[0]
    assert (name, namespace) == ("api-1", "prod")
    assert kwargs["container"] == "app"
    assert kwargs["tail_lines"] == 50
    assert kwargs["previous"] is True
    assert 299 <= kwargs["since_seconds"] <= 310


@pytest.mark.asyncio
async def test_stream_merges_pods_and_buffers_partial_lines():
    core = FakeCore({"api-1": [b"line one\nline ", b"two\n", b"tail"]})
    stream = KubeLogStream(core, "default", ["api-1"], tail_lines=100)
    await stream.open()
    text = await collect(stream)

    assert text == "[api-1] line one\n[api-1] line two\n[api-1] tail\n"
    kwargs = core.calls[0][2]
    assert kwargs["follow"] is True
    assert kwargs["_preload_content"] is False
    assert kwargs["tail_lines"] == 100
    await stream.close()


@pytest.mark.asyncio
async def test_stream_reports_pod_failure_inline():
    core = FakeCore({"api-1": [b"ok\n"], "api-2": api_error(404, "Not Found")})
    stream = KubeLogStream(core, "default", ["api-1", "api-2"])
    await stream.open()
    lines = (await collect(stream)).splitlines()

    assert "[api-1] ok" in lines
    errors = [line for line in lines if line.startswith("[api-2] ")]
    assert len(errors) == 1
    assert errors[0].endswith("ERROR: 404 Not Found")
    await stream.close()


@pytest.mark.asyncio
async def test_closed_stream_delivers_nothing():
    core = FakeCore({"api-1": [b"never\n"]})
    stream = KubeLogStream(core, "default", ["api-1"])
    await stream.open()
    await stream.close()
    assert await collect(stream) == ""


@pytest.mark.asyncio
async def test_transport_delegates_to_core():
    core = FakeCore({"api-1": "hello\n"}, pods=["api-1"])
    transport = KubeTransport(KubeContext(core), "prod")
    assert await transport.list_pods() == ["api-1"]
    results = await transport.fetch(["api-1"])
    assert results[0].logs == "[api-1] hello"


@pytest.mark.asyncio
async def test_stream_raises_when_no_pod_can_be_opened():
    core = FakeCore({"api-1": api_error(500, "Internal Server Error")})
    stream = KubeLogStream(core, "default", ["api-1"])
    await stream.open()
    with pytest.raises(StreamError, match="500 Internal Server Error"):
        await collect(stream)
    await stream.close()


@pytest.mark.asyncio
async def test_stream_raises_when_follow_breaks():
    core = FakeCore({"api-1": [b"ok\n", ConnectionResetError("reset by peer")]})
    stream = KubeLogStream(core, "default", ["api-1"])
    await stream.open()
    chunks = []
    with pytest.raises(StreamError, match="reset by peer"):
        async for chunk in stream.chunks():
            chunks.append(chunk)
    assert chunks == ["[api-1] ok\n"]
    await stream.close()


async def wait_until_inactive(manager, timeout=5):
    async def _wait():
        while manager.active:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_wait(), timeout)


@pytest.mark.asyncio
async def test_manager_reports_kubernetes_stream_failure():
    core = FakeCore({"api-1": api_error(500, "Internal Server Error")})
    states = []
    buffer = LogBuffer(max_entries=100)
    manager = StreamManager(KubeTransport(KubeContext(core), "default"), buffer,
                            on_status=lambda state, streaming: states.append(state))

    await manager.start(Selection(sources=("api-1",)))
    await wait_until_inactive(manager)

    assert StreamState.ERRORING in states
    assert manager.state is StreamState.IDLE
    assert manager.streaming is False
    assert "500 Internal Server Error" in manager.last_error
    assert buffer.snapshot() == []


@pytest.mark.asyncio
async def test_manager_keeps_lines_received_before_follow_breaks():
    core = FakeCore({"api-1": [b"2025-10-27T02:25:38Z ok\n", ConnectionResetError("reset by peer")]})
    buffer = LogBuffer(max_entries=100)
    manager = StreamManager(KubeTransport(KubeContext(core), "default"), buffer)

    await manager.start(Selection(sources=("api-1",)))
    await wait_until_inactive(manager)

    assert manager.last_error == "log stream for pod api-1 failed: reset by peer"
    assert [e.message for e in buffer] == ["ok"]
