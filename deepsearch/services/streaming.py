"""Streaming transport: relays driver events to the client as a data stream.

Each part is one line, `<code>:<json>\\n`:

    0  text delta
    2  data (sideband control events)
    3  error
    9  tool call
    a  tool result
    d  finish
"""

import json
from collections.abc import AsyncIterator
from typing import Any

from deepsearch.models.events import Done, DriverEvent, Error, TextDelta, ToolCallEvent, ToolResultEvent
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)

DATA_STREAM_HEADERS = {"x-vercel-ai-data-stream": "v1"}
DATA_STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"

DEFAULT_ERROR_MESSAGE = "Oops, an error occurred!"

FINISH_REASONS = {"stop": "stop", "max_steps": "tool-calls"}


def format_part(code: str, value: Any) -> str:
    """Encode one stream part."""
    return f"{code}:{json.dumps(value, ensure_ascii=False, separators=(',', ':'), default=str)}\n"


class StreamingTransport:
    """Relays a driver's event sequence, plus sideband data, in arrival order."""

    def __init__(self, error_message: str = DEFAULT_ERROR_MESSAGE):
        self.error_message = error_message
        self._pending_data: list[Any] = []

    def write_data(self, value: Any) -> None:
        """Queue a sideband event; it goes out before the next relayed part."""
        self._pending_data.append(value)

    def _flush_data(self) -> list[str]:
        parts = [format_part("2", [value]) for value in self._pending_data]
        self._pending_data.clear()
        return parts

    def encode(self, event: DriverEvent) -> str:
        """Encode a driver event as a stream part."""
        match event:
            case TextDelta(text=text):
                return format_part("0", text)
            case ToolCallEvent(tool_call_id=tool_call_id, tool_name=tool_name, args=args):
                return format_part("9", {"toolCallId": tool_call_id, "toolName": tool_name, "args": args})
            case ToolResultEvent(tool_call_id=tool_call_id, result=result):
                return format_part("a", {"toolCallId": tool_call_id, "result": result})
            case Done(finish_reason=finish_reason, usage=usage):
                return format_part(
                    "d",
                    {
                        "finishReason": FINISH_REASONS[finish_reason],
                        "usage": {"promptTokens": usage.input_tokens, "completionTokens": usage.output_tokens},
                    },
                )
            case Error():
                return format_part("3", self.error_message)
        raise TypeError(f"Unknown driver event: {event!r}")

    async def stream(self, events: AsyncIterator[DriverEvent]) -> AsyncIterator[str]:
        """Relay events until `Done` or `Error`, then end the stream.

        Any failure while producing events is reported as a single error part;
        the stream always ends cleanly.
        """
        for part in self._flush_data():
            yield part

        try:
            async for event in events:
                for part in self._flush_data():
                    yield part

                if isinstance(event, Error):
                    logger.warning(f"Stream ended with error ({event.kind}): {event.message}")

                yield self.encode(event)

                if isinstance(event, Done | Error):
                    return

        except Exception as e:
            logger.error(f"Streaming failed: {e}", exc_info=True)
            yield format_part("3", self.error_message)
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
