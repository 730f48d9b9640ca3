"""Events produced by the conversation driver."""

from dataclasses import dataclass, field
from typing import Any, Literal

from deepsearch.models.llm import LLMMessage, LLMUsage


@dataclass
class TextDelta:
    """A chunk of model text, in arrival order."""

    text: str


@dataclass
class ToolCallEvent:
    """The model requested a tool invocation."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass
class ToolResultEvent:
    """A tool invocation settled (successfully or as a structured error)."""

    tool_call_id: str
    tool_name: str
    result: Any
    is_error: bool = False


@dataclass
class Done:
    """The loop finished; no more events follow."""

    text: str
    finish_reason: Literal["stop", "max_steps"]
    steps: int
    response_messages: list[LLMMessage] = field(default_factory=list)
    usage: LLMUsage = field(default_factory=LLMUsage)


@dataclass
class Error:
    """The loop terminated early; no more events follow."""

    kind: Literal["ModelInvocationError", "Cancelled"]
    message: str


DriverEvent = TextDelta | ToolCallEvent | ToolResultEvent | Done | Error
