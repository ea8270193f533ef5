import asyncio

import pytest

from podlens.models import PodLogResult
from podlens.transport import LogStream, LogTransport

_END = object()


class FakeStream(LogStream):
    """In-memory live connection; tests push chunks, failures and EOF."""

    def __init__(self, pods, container=None, since_time=None, script=None, end=False):
        self.pods = list(pods)
        self.container = container
        self.since_time = since_time
        self.closed = False
        self._queue = asyncio.Queue()
        for chunk in script or []:
            self._queue.put_nowait(chunk)
        if end:
            self._queue.put_nowait(_END)

    def push(self, chunk):
        self._queue.put_nowait(chunk)

    def fail(self, exc):
        self._queue.put_nowait(exc)

    def end(self):
        self._queue.put_nowait(_END)

    async def chunks(self):
        while True:
            item = await self._queue.get()
            if item is _END or self.closed:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self):
        self.closed = True
        self._queue.put_nowait(_END)


class FakeTransport(LogTransport):
    """
    In-memory transport.

    ``logs`` maps pod name to log text (already ``[pod]``-prefixed, as the
    server sends it) or to an Exception/str error.
    """

    def __init__(self, pods=None, logs=None):
        self.pods = list(pods or [])
        self.logs = dict(logs or {})
        self.streams = []
        self.fetch_calls = []
        self.open_error = None
        self.fetch_error = None
        self.stream_script = []
        self.stream_end = False

    async def list_pods(self):
        return list(self.pods)

    async def fetch(self, pods, container=None, tail_lines=None, timestamps=True, previous=False, since_time=None):
        self.fetch_calls.append({
            'pods': list(pods), 'container': container, 'tail_lines': tail_lines,
            'previous': previous, 'since_time': since_time,
        })
        if self.fetch_error:
            raise self.fetch_error
        results = []
        for pod in pods:
            value = self.logs.get(pod, "")
            if isinstance(value, Exception):
                results.append(PodLogResult(pod_name=pod, error=str(value)))
            else:
                results.append(PodLogResult(pod_name=pod, logs=value))
        return results

    async def open_stream(self, pods, container=None, tail_lines=None, timestamps=True, since_time=None):
        if self.open_error:
            raise self.open_error
        stream = FakeStream(pods, container, since_time, script=self.stream_script, end=self.stream_end)
        self.streams.append(stream)
        return stream

    def open_streams(self):
        return [s for s in self.streams if not s.closed]


async def settle(rounds=10):
    """Let pending tasks (stream pumps) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def transport():
    return FakeTransport(pods=["api-1", "api-2", "api-3"])
