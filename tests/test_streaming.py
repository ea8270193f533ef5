import pytest

from conftest import settle
from podlens.buffer import LogBuffer
from podlens.exceptions import StreamError
from podlens.log_parsing import parse_log_line
from podlens.models import Selection
from podlens.streaming import StreamManager, StreamState

LINE_1 = "[api-1] 2025-10-27T02:25:38Z first\n"
LINE_2 = "[api-2] 2025-10-27T02:25:39Z second\n"


@pytest.fixture
def buffer():
    return LogBuffer(max_entries=100)


@pytest.mark.asyncio
async def test_start_clears_buffer_before_first_chunk(transport, buffer):
    buffer.extend([parse_log_line("[old] 2025-10-27T00:00:00Z stale", 0)])
    transport.stream_script = [LINE_1]
    manager = StreamManager(transport, buffer)

    handle = await manager.start(Selection(sources=("api-1",)))
    assert handle is not None
    assert buffer.snapshot() == []
    assert manager.state is StreamState.STREAMING
    assert manager.streaming is True

    await settle()
    assert [e.message for e in buffer] == ["first"]
    await manager.stop()


@pytest.mark.asyncio
async def test_chunks_append_in_arrival_order(transport, buffer):
    manager = StreamManager(transport, buffer)
    await manager.start(Selection(sources=("api-1", "api-2")))
    stream = transport.streams[-1]
    stream.push(LINE_1 + LINE_2)
    stream.push("[api-1] 2025-10-27T02:25:40Z third\n")
    await settle()

    assert [e.message for e in buffer] == ["first", "second", "third"]
    await manager.stop()


@pytest.mark.asyncio
async def test_selection_change_keeps_one_open_connection(transport, buffer):
    manager = StreamManager(transport, buffer)
    first = await manager.start(Selection(sources=("api-1",)))
    second = await manager.start(Selection(sources=("api-2",)))
    third = await manager.start(Selection(sources=("api-1", "api-3")))

    assert len(transport.streams) == 3
    assert transport.open_streams() == [transport.streams[-1]]
    assert len({first.connection_id, second.connection_id, third.connection_id}) == 3
    assert manager.handle is third
    await manager.stop()
    assert transport.open_streams() == []


@pytest.mark.asyncio
async def test_chunks_for_replaced_connection_are_dropped(transport, buffer):
    manager = StreamManager(transport, buffer)
    old = await manager.start(Selection(sources=("api-1",)))
    await manager.start(Selection(sources=("api-2",)))

    assert manager.ingest(old, LINE_1) == []
    transport.streams[0].push(LINE_1)
    await settle()
    assert buffer.snapshot() == []
    await manager.stop()


@pytest.mark.asyncio
async def test_transport_failure_keeps_buffer_and_does_not_retry(transport, buffer):
    statuses = []
    manager = StreamManager(transport, buffer, on_status=lambda state, streaming: statuses.append(state))
    await manager.start(Selection(sources=("api-1",)))
    stream = transport.streams[-1]
    stream.push(LINE_1)
    await settle()
    stream.fail(ConnectionResetError("connection reset by peer"))
    await settle()

    assert manager.streaming is False
    assert manager.state is StreamState.IDLE
    assert manager.last_error == "connection reset by peer"
    assert manager.handle is None
    assert [e.message for e in buffer] == ["first"]
    assert len(transport.streams) == 1
    assert stream.closed
    assert StreamState.ERRORING in statuses


@pytest.mark.asyncio
async def test_open_failure_leaves_buffer_untouched(transport, buffer):
    buffer.extend([parse_log_line("[old] 2025-10-27T00:00:00Z kept", 0)])
    transport.open_error = ConnectionRefusedError("refused")
    manager = StreamManager(transport, buffer)

    assert await manager.start(Selection(sources=("api-1",))) is None
    assert manager.state is StreamState.IDLE
    assert manager.streaming is False
    assert manager.last_error == "refused"
    assert [e.message for e in buffer] == ["kept"]


@pytest.mark.asyncio
async def test_stop_keeps_buffer(transport, buffer):
    statuses = []
    manager = StreamManager(transport, buffer, on_status=lambda state, streaming: statuses.append(state))
    await manager.start(Selection(sources=("api-1",)))
    transport.streams[-1].push(LINE_1)
    await settle()
    await manager.stop()

    assert [e.message for e in buffer] == ["first"]
    assert transport.streams[-1].closed
    assert manager.streaming is False
    assert statuses == [StreamState.CONNECTING, StreamState.STREAMING, StreamState.CLOSING, StreamState.IDLE]


@pytest.mark.asyncio
async def test_server_end_returns_to_idle(transport, buffer):
    manager = StreamManager(transport, buffer)
    await manager.start(Selection(sources=("api-1",)))
    transport.streams[-1].end()
    await settle()

    assert manager.state is StreamState.IDLE
    assert manager.streaming is False
    assert manager.handle is None
    assert transport.open_streams() == []


@pytest.mark.asyncio
async def test_untagged_line_attribution(transport, buffer):
    manager = StreamManager(transport, buffer)
    await manager.start(Selection(sources=("api-1",)))
    transport.streams[-1].push("2025-10-27T02:25:38Z boot ok\n")
    await settle()
    await manager.start(Selection(sources=("api-1", "api-2")))
    transport.streams[-1].push("continuation line\n")
    await settle()

    assert [(e.pod_name, e.message) for e in buffer] == [("multiple", "continuation line")]
    await manager.stop()


@pytest.mark.asyncio
async def test_single_source_untagged_line(transport, buffer):
    manager = StreamManager(transport, buffer)
    await manager.start(Selection(sources=("web-1",)))
    transport.streams[-1].push("2025-10-27T02:25:38Z boot ok\n")
    await settle()

    assert [(e.pod_name, e.message) for e in buffer] == [("web-1", "boot ok")]
    await manager.stop()


@pytest.mark.asyncio
async def test_time_filter_passed_to_stream(transport, buffer):
    manager = StreamManager(transport, buffer)
    await manager.start(Selection(sources=("api-1",), time_filter="5m", container="app"))
    stream = transport.streams[-1]

    assert stream.since_time is not None
    assert stream.container == "app"
    await manager.stop()


@pytest.mark.asyncio
async def test_start_without_sources_rejected(transport, buffer):
    manager = StreamManager(transport, buffer)
    with pytest.raises(StreamError):
        await manager.start(Selection())
    assert transport.streams == []
