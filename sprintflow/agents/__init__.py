"""Agent subprocess invocation."""

from sprintflow.agents.channel import (
    AgentChannel,
    FailureKind,
    InvocationBudget,
    InvocationResult,
)
from sprintflow.agents.context import ContextBuilder, build_sprint_context
from sprintflow.agents.events import (
    AgentError,
    Completion,
    FileWrite,
    MalformedEvent,
    ToolUse,
    decode_event,
)

__all__ = [
    "AgentChannel",
    "FailureKind",
    "InvocationBudget",
    "InvocationResult",
    "ContextBuilder",
    "build_sprint_context",
    "AgentError",
    "Completion",
    "FileWrite",
    "MalformedEvent",
    "ToolUse",
    "decode_event",
]
