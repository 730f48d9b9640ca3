"""Chat message models exchanged with clients and the chat store."""

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from deepsearch.models.llm import ContentBlock, LLMMessage, TextBlock, ToolResultBlock, ToolUseBlock


class TextPart(BaseModel):
    """Plain text."""

    type: Literal["text"] = "text"
    text: str


class ToolCallPart(BaseModel):
    """A tool invocation requested by the assistant."""

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class ToolResultPart(BaseModel):
    """The result of a tool invocation."""

    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str | None = Field(default=None, alias="toolName")
    result: Any = None
    is_error: bool = Field(default=False, alias="isError")

    class Config:
        populate_by_name = True


Part = Annotated[TextPart | ToolCallPart | ToolResultPart, Field(discriminator="type")]


class ChatMessage(BaseModel):
    """A message in a conversation, as the client and chat store see it."""

    role: Literal["user", "assistant", "tool"]
    content: str = ""
    parts: list[Part] = Field(default_factory=list)

    def text(self) -> str:
        """Message text, taken from `content` or from the text parts."""
        if self.content:
            return self.content
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))


def _serialize_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False)


def _deserialize_result(content: str) -> Any:
    try:
        return json.loads(content)
    except ValueError:
        return content


def to_llm_message(message: ChatMessage) -> LLMMessage | None:
    """Convert a chat message into the model's message format.

    Returns None for messages with nothing to send (empty text, no parts).
    """
    if message.role == "tool":
        results: list[ContentBlock] = [
            ToolResultBlock(
                tool_use_id=part.tool_call_id,
                content=_serialize_result(part.result),
                is_error=part.is_error,
            )
            for part in message.parts
            if isinstance(part, ToolResultPart)
        ]
        return LLMMessage(role="tool", content=results) if results else None

    if message.role == "assistant" and any(isinstance(part, ToolCallPart) for part in message.parts):
        blocks: list[ContentBlock] = []
        for part in message.parts:
            if isinstance(part, TextPart) and part.text:
                blocks.append(TextBlock(text=part.text))
            elif isinstance(part, ToolCallPart):
                blocks.append(ToolUseBlock(id=part.tool_call_id, name=part.tool_name, input=part.args))
        return LLMMessage(role="assistant", content=blocks)

    text = message.text()
    if not text:
        return None
    return LLMMessage(role=message.role, content=text)


def to_llm_messages(messages: list[ChatMessage]) -> list[LLMMessage]:
    """Convert a chat history, dropping empty messages."""
    converted = (to_llm_message(message) for message in messages)
    return [message for message in converted if message is not None]


def to_chat_messages(messages: list[LLMMessage]) -> list[ChatMessage]:
    """Convert model messages back into chat messages for storage."""
    tool_names: dict[str, str] = {}
    chat_messages: list[ChatMessage] = []

    for message in messages:
        if isinstance(message.content, str):
            chat_messages.append(ChatMessage(role=message.role, content=message.content))
            continue

        parts: list[TextPart | ToolCallPart | ToolResultPart] = []
        for block in message.content:
            if isinstance(block, TextBlock):
                parts.append(TextPart(text=block.text))
            elif isinstance(block, ToolUseBlock):
                tool_names[block.id] = block.name
                parts.append(ToolCallPart(tool_call_id=block.id, tool_name=block.name, args=block.input))
            elif isinstance(block, ToolResultBlock):
                parts.append(
                    ToolResultPart(
                        tool_call_id=block.tool_use_id,
                        tool_name=tool_names.get(block.tool_use_id),
                        result=_deserialize_result(block.content),
                        is_error=block.is_error,
                    )
                )

        chat_messages.append(ChatMessage(role=message.role, content=message.text(), parts=parts))

    return chat_messages
