"""Tests for longrun.core.decoder: stream-json line decoding."""

from __future__ import annotations

import json

import pytest

from longrun.core.decoder import (
    MAX_COMMAND_CHARS,
    MAX_DETAIL_CHARS,
    MAX_RESULT_CHARS,
    MAX_TEXT_CHARS,
    MAX_THINKING_CHARS,
    ToolKind,
    decode_line,
    summarize_tool,
)
from longrun.types.events import (
    AssistantMessage,
    OtherEvent,
    TerminalResult,
    ToolResult,
)
from tests.conftest import assistant_line, result_line, tool_result_line


class TestDecodeAssistant:
    def test_text_and_usage(self):
        event = decode_line(assistant_line("hello", input_tokens=7, output_tokens=3))
        assert event == AssistantMessage(text="hello", input_tokens=7, output_tokens=3)

    def test_multiple_text_blocks_joined(self):
        line = json.dumps({"type": "assistant", "message": {"content": [
            {"type": "text", "text": "one"},
            {"type": "text", "text": "two"},
        ]}})
        assert decode_line(line).text == "one two"

    def test_thinking(self):
        event = decode_line(assistant_line(thinking="pondering"))
        assert event.thinking == "pondering"
        assert event.text == ""

    def test_tool_invocations(self):
        event = decode_line(assistant_line(tools=[
            {"name": "Bash", "input": {"command": "ls -la"}},
            {"name": "Read", "input": {"file_path": "/tmp/a.py"}},
        ]))
        assert event.tool_names == "Bash,Read"
        assert [inv.summary for inv in event.tool_invocations] == [
            "Bash: ls -la", "Read: /tmp/a.py",
        ]

    def test_text_truncated(self):
        event = decode_line(assistant_line("x" * 1000))
        assert event.text == "x" * MAX_TEXT_CHARS

    def test_thinking_truncated(self):
        event = decode_line(assistant_line(thinking="t" * 2000))
        assert len(event.thinking) == MAX_THINKING_CHARS

    def test_missing_message_yields_empty(self):
        assert decode_line('{"type": "assistant"}') == AssistantMessage()

    def test_bad_usage_values_become_zero(self):
        line = json.dumps({"type": "assistant", "message": {
            "content": [], "usage": {"input_tokens": "12", "output_tokens": -4},
        }})
        event = decode_line(line)
        assert event.input_tokens == 0
        assert event.output_tokens == 0

    def test_boolean_usage_is_not_a_count(self):
        line = json.dumps({"type": "assistant", "message": {
            "content": [], "usage": {"input_tokens": True},
        }})
        assert decode_line(line).input_tokens == 0

    def test_unknown_blocks_ignored(self):
        line = json.dumps({"type": "assistant", "message": {"content": [
            {"type": "image", "source": {}}, "not-a-block", {"type": "text", "text": "ok"},
        ]}})
        assert decode_line(line).text == "ok"


class TestDecodeUser:
    def test_tool_result_string_content(self):
        assert decode_line(tool_result_line("file contents")) == ToolResult("file contents")

    def test_tool_result_error(self):
        event = decode_line(tool_result_line("boom", is_error=True))
        assert event.is_error is True

    def test_tool_result_block_content(self):
        event = decode_line(tool_result_line([{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]))
        assert event.content == "a\nb"

    def test_tool_result_truncated(self):
        event = decode_line(tool_result_line("r" * 5000))
        assert len(event.content) == MAX_RESULT_CHARS

    def test_several_results_one_error(self):
        line = json.dumps({"type": "user", "message": {"content": [
            {"type": "tool_result", "content": "ok"},
            {"type": "tool_result", "content": "bad", "is_error": True},
        ]}})
        assert decode_line(line) == ToolResult("ok\nbad", is_error=True)

    def test_user_without_tool_results_is_other(self):
        line = json.dumps({"type": "user", "message": {"content": [{"type": "text", "text": "hi"}]}})
        assert decode_line(line) == OtherEvent("user")


class TestDecodeResult:
    def test_success(self):
        assert decode_line(result_line(input_tokens=10, output_tokens=2)) == TerminalResult(
            is_error=False, input_tokens=10, output_tokens=2,
        )

    def test_error(self):
        assert decode_line(result_line(is_error=True)).is_error is True

    def test_truthy_non_bool_is_not_error(self):
        assert decode_line('{"type": "result", "is_error": "yes"}').is_error is False


class TestMalformed:
    @pytest.mark.parametrize("line", [
        "",
        "plain text output",
        "{not json",
        '{"type": "assistant", "message": ',  # partial write
        '["type"]',
        '{"type": 3}',
        '{"type": ""}',
        '"type"',
    ])
    def test_rejected(self, line):
        assert decode_line(line) is None

    def test_deeply_nested_does_not_raise(self):
        line = '{"type": "x", "a": ' + "[" * 100_000 + "]" * 100_000 + "}"
        assert decode_line(line) in (None, OtherEvent("x"))

    def test_other_kinds(self):
        assert decode_line('{"type": "system", "subtype": "init"}') == OtherEvent("system")

    def test_idempotent(self):
        line = assistant_line("same", tools=[{"name": "Glob", "input": {"pattern": "*.py"}}])
        assert decode_line(line) == decode_line(line)


class TestSummarizeTool:
    def test_bash_command_truncated(self):
        summary = summarize_tool("Bash", {"command": "c" * 500})
        assert summary == "Bash: " + "c" * MAX_COMMAND_CHARS

    def test_grep_defaults_path(self):
        assert summarize_tool("Grep", {"pattern": "TODO"}) == "Grep: TODO in ."
        assert summarize_tool("Grep", {"pattern": "x", "path": "src"}) == "Grep: x in src"

    def test_glob_task_webfetch(self):
        assert summarize_tool("Glob", {"pattern": "**/*.md"}) == "Glob: **/*.md"
        assert summarize_tool("Task", {"description": "explore"}) == "Task: explore"
        assert summarize_tool("WebFetch", {"url": "https://x.io"}) == "WebFetch: https://x.io"

    def test_unknown_kind_is_bare_name(self):
        assert summarize_tool("TodoWrite", {"todos": []}) == "TodoWrite"

    def test_non_string_argument(self):
        assert summarize_tool("Read", {"file_path": 42}) == "Read: "

    def test_detail_cap(self):
        assert len(summarize_tool("Write", {"file_path": "p" * 1000})) == MAX_DETAIL_CHARS

    def test_tool_kind_lookup(self):
        assert ToolKind.from_name("WebFetch") is ToolKind.WEB_FETCH
        assert ToolKind.from_name("Nope") is ToolKind.OTHER
