"""Tests for sprintflow.agents.events module."""

import json

import pytest

from sprintflow.agents.events import (
    AgentError,
    Completion,
    FileWrite,
    MalformedEvent,
    ToolUse,
    decode_event,
)


class TestDecodeEvent:
    """Tests for decode_event()."""

    def test_tool_use(self):
        event = decode_event('{"type": "tool_use", "tool": "shell", "target": "pytest -q"}')
        assert event == ToolUse(tool="shell", target="pytest -q")

    def test_file_write(self):
        line = json.dumps({"type": "file_write", "path": "src/app.py", "content": "x = 1\n"})
        assert decode_event(line) == FileWrite(path="src/app.py", content="x = 1\n")

    def test_error(self):
        assert decode_event('{"type": "error", "message": "stuck"}') == AgentError(message="stuck")

    def test_completion(self):
        assert decode_event('{"type": "completion"}') == Completion()

    def test_extra_keys_ignored(self):
        event = decode_event('{"type": "completion", "usage": {"turns": 4}}')
        assert isinstance(event, Completion)

    def test_events_are_frozen(self):
        event = decode_event('{"type": "error", "message": "stuck"}')
        with pytest.raises(AttributeError):
            event.message = "other"

    @pytest.mark.parametrize("line,reason", [
        ("not json at all", "invalid JSON"),
        ('["tool_use"]', "not a JSON object"),
        ('{"type": "thinking"}', "unknown event type"),
        ('{"tool": "shell"}', "unknown event type"),
        ('{"type": ["completion"]}', "unknown event type"),
        ('{"type": {"name": "completion"}}', "unknown event type"),
        ('{"type": "tool_use", "tool": "shell"}', "needs string field 'target'"),
        ('{"type": "file_write", "path": "a.py", "content": 3}', "needs string field 'content'"),
    ])
    def test_malformed(self, line, reason):
        with pytest.raises(MalformedEvent, match=reason) as exc:
            decode_event(line)
        assert exc.value.line == line

    def test_long_line_preview_truncated(self):
        line = "x" * 500
        with pytest.raises(MalformedEvent) as exc:
            decode_event(line)
        assert "..." in str(exc.value)
        assert len(str(exc.value)) < 200
