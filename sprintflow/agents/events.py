"""
Events emitted by an agent subprocess, one JSON object per stdout line.

    {"type": "tool_use", "tool": "shell", "target": "pytest -q"}
    {"type": "file_write", "path": "src/app.py", "content": "..."}
    {"type": "error", "message": "cannot satisfy acceptance criteria"}
    {"type": "completion"}

Lines are decoded eagerly at the boundary; nothing past decode_event ever
sees a raw dict. Unknown extra keys are ignored.
"""

import json
from dataclasses import dataclass
from typing import Union


class MalformedEvent(Exception):
    """A stdout line is not a valid event."""

    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        preview = line if len(line) <= 120 else line[:117] + "..."
        super().__init__(f"{reason}: {preview!r}")


@dataclass(frozen=True)
class ToolUse:
    tool: str
    target: str


@dataclass(frozen=True)
class FileWrite:
    path: str
    content: str


@dataclass(frozen=True)
class AgentError:
    message: str


@dataclass(frozen=True)
class Completion:
    pass


AgentEvent = Union[ToolUse, FileWrite, AgentError, Completion]

_REQUIRED_FIELDS = {
    "tool_use": (ToolUse, ("tool", "target")),
    "file_write": (FileWrite, ("path", "content")),
    "error": (AgentError, ("message",)),
    "completion": (Completion, ()),
}


def decode_event(line: str) -> AgentEvent:
    """Decode one stdout line.

    Raises:
        MalformedEvent: not JSON, not an object, unknown type, or a missing/non-string field
    """
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedEvent(line, f"invalid JSON ({e.msg})") from None

    if not isinstance(raw, dict):
        raise MalformedEvent(line, "event is not a JSON object")

    event_type = raw.get("type")
    if not isinstance(event_type, str) or event_type not in _REQUIRED_FIELDS:
        raise MalformedEvent(line, f"unknown event type {event_type!r}")

    cls, fields = _REQUIRED_FIELDS[event_type]
    values = {}
    for name in fields:
        value = raw.get(name)
        if not isinstance(value, str):
            raise MalformedEvent(line, f"{event_type} event needs string field '{name}'")
        values[name] = value
    return cls(**values)
