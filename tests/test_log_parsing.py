import pytest

from podlens.log_parsing import (
    Fallback, Tagged, Timestamped, default_source_for, match_line, parse_log_line,
    split_lines, strip_control_codes,
)

SAMPLE_LINES = [
    '[api-7f9-abc] 2025-10-27T02:25:38.877723355Z {"level":"warn"}',
    '2025-10-27T02:25:38Z boot ok',
    'garbled text no timestamp',
    '    at com.example.Handler.run(Handler.java:42)',
    '[only-a-tag]',
    '[pod] single',
    '2025-10-27 not iso',
    'x',
]

CONTROL_SAMPLES = [
    "\x1b[31mERROR\x1b[0m",
    "plain text",
    "[1;32mgreen[0m remnant",
    "[[31mm",
    "[3\x01m",
    "\x1b[\x1b[31m1m",
    "bell\x07 and null\x00 and del\x7f",
    "tab\tand\nnewline",
    "\x1b[2K\x1b[1Gprogress 50%",
    "",
]


class TestStripControlCodes:

    def test_ansi_colour_removed(self):
        assert strip_control_codes("\x1b[31mERROR\x1b[0m") == "ERROR"

    def test_bare_colour_remnants_removed(self):
        assert strip_control_codes("[1;32mgreen[0m") == "green"

    def test_control_characters_removed_but_tab_newline_kept(self):
        assert strip_control_codes("a\x07b\x00c\x7fd\te\nf") == "abcd\te\nf"

    def test_printable_payload_untouched(self):
        text = '[api-1] 2025-10-27T02:25:38Z {"items":[1,2,3]} array[0] done'
        assert strip_control_codes(text) == text

    @pytest.mark.parametrize("text", CONTROL_SAMPLES)
    def test_idempotent(self, text):
        once = strip_control_codes(text)
        assert strip_control_codes(once) == once

    def test_nested_remnant_fully_removed(self):
        assert strip_control_codes("[3\x01m") == ""


class TestMatchLine:

    def test_tagged_shape(self):
        shape = match_line("[web-1] 2025-10-27T02:25:38Z hello world")
        assert shape == Tagged("web-1", "2025-10-27T02:25:38Z", "hello world")

    def test_timestamped_shape(self):
        shape = match_line("2025-10-27T02:25:38Z hello")
        assert shape == Timestamped("2025-10-27T02:25:38Z", "hello")

    def test_fallback_shape(self):
        assert match_line("no structure here") == Fallback("no structure here")

    def test_tag_without_message_falls_back(self):
        assert isinstance(match_line("[only-a-tag]"), Fallback)


class TestParseLogLine:

    def test_scenario_tagged_line(self):
        line = '[api-7f9-abc] 2025-10-27T02:25:38.877723355Z {"level":"warn"}'
        entry = parse_log_line(line, 0)
        assert entry.pod_name == "api-7f9-abc"
        assert entry.timestamp == "2025-10-27T02:25:38.877723355Z"
        assert entry.message == '{"level":"warn"}'
        assert entry.raw_line == line

    def test_scenario_untagged_single_source(self):
        line = "2025-10-27T02:25:38Z boot ok"
        entry = parse_log_line(line, 0, default_source_for(line, ["web-1"]))
        assert entry.pod_name == "web-1"
        assert entry.timestamp == "2025-10-27T02:25:38Z"
        assert entry.message == "boot ok"

    def test_scenario_fallback(self):
        entry = parse_log_line("garbled text no timestamp", 0)
        assert entry.message == "garbled text no timestamp"
        assert entry.pod_name == "unknown"
        assert entry.timestamp.endswith("Z")

    def test_fallback_uses_default_source(self):
        entry = parse_log_line("Traceback (most recent call last):", 3, "worker-0")
        assert entry.pod_name == "worker-0"

    @pytest.mark.parametrize("line", ["", "   ", "\t"])
    def test_blank_lines_yield_nothing(self, line):
        assert parse_log_line(line, 0) is None

    @pytest.mark.parametrize("line", SAMPLE_LINES)
    def test_every_non_empty_line_parses(self, line):
        entry = parse_log_line(line, 0)
        assert entry is not None
        assert entry.raw_line == line

    def test_ids_are_unique(self):
        ids = {parse_log_line("same line", 0).id for _ in range(50)}
        assert len(ids) == 50

    def test_entries_are_immutable(self):
        entry = parse_log_line("[a] 2025-10-27T02:25:38Z msg", 0)
        with pytest.raises(Exception):
            entry.message = "changed"


class TestDefaultSource:

    def test_tagged_line_has_no_default(self):
        assert default_source_for("[a] ts msg", ["a", "b"]) is None

    def test_single_selected_source(self):
        assert default_source_for("untagged", ["only"]) == "only"

    def test_multiple_selected_sources(self):
        assert default_source_for("untagged", ["a", "b"]) == "multiple"


def test_split_lines_drops_blank_lines_and_carriage_returns():
    assert split_lines("one\r\n\n  \ntwo\n") == ["one", "two"]
