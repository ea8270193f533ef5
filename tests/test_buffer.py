import logging

import pytest

from podlens.buffer import LogBuffer
from podlens.exceptions import ConfigurationError
from podlens.models import LogEntry


def make_entries(count, start=0):
    return [
        LogEntry(id=str(i), pod_name="p", timestamp="t", message=f"m{i}", raw_line=f"[p] t m{i}")
        for i in range(start, start + count)
    ]


def test_extend_keeps_arrival_order():
    buf = LogBuffer(max_entries=100)
    buf.extend(make_entries(3))
    buf.extend(make_entries(2, start=3))
    assert [e.message for e in buf.snapshot()] == ["m0", "m1", "m2", "m3", "m4"]
    assert len(buf) == 5


def test_cap_evicts_oldest_and_warns_once(caplog):
    buf = LogBuffer(max_entries=3)
    with caplog.at_level(logging.WARNING, logger="podlens"):
        buf.extend(make_entries(2))
        buf.extend(make_entries(2, start=2))
        buf.extend(make_entries(2, start=4))
    assert [e.message for e in buf] == ["m3", "m4", "m5"]
    assert buf.dropped == 3
    assert sum("limit of 3 entries" in r.message for r in caplog.records) == 1


def test_replace_swaps_contents_and_resets_dropped():
    buf = LogBuffer(max_entries=3)
    buf.extend(make_entries(5))
    buf.replace(make_entries(2, start=10))
    assert [e.message for e in buf] == ["m10", "m11"]
    assert buf.dropped == 0


def test_replace_truncates_to_newest():
    buf = LogBuffer(max_entries=2)
    buf.replace(make_entries(4))
    assert [e.message for e in buf] == ["m2", "m3"]
    assert buf.dropped == 2


def test_clear_empties_buffer():
    buf = LogBuffer(max_entries=10)
    buf.extend(make_entries(3))
    buf.clear()
    assert buf.snapshot() == []


def test_listeners_receive_appends_and_resets():
    buf = LogBuffer(max_entries=10)
    events = []
    unsubscribe = buf.subscribe(lambda kind, entries: events.append((kind, len(entries))))
    buf.extend(make_entries(2))
    buf.extend([])
    buf.clear()
    unsubscribe()
    buf.extend(make_entries(1))
    assert events == [("append", 2), ("reset", 0)]


@pytest.mark.parametrize("value", [0, -1, True, "10"])
def test_invalid_cap_rejected(value):
    with pytest.raises(ConfigurationError):
        LogBuffer(max_entries=value)


def test_oversized_append_notifies_only_retained_entries():
    buf = LogBuffer(max_entries=3)
    events = []
    buf.subscribe(lambda kind, entries: events.append([e.message for e in entries]))
    buf.extend(make_entries(5))

    assert events == [["m2", "m3", "m4"]]
    assert [e.message for e in buf] == ["m2", "m3", "m4"]
