"""Test doubles shared by the test modules."""

import asyncio

from deepsearch.models.llm import LLMResponse, LLMUsage, TextBlock, ToolUseBlock


def text_response(text: str, input_tokens: int = 10, output_tokens: int = 5) -> LLMResponse:
    """A final model response with plain text only."""
    return LLMResponse(
        content=[TextBlock(text=text)],
        stop_reason="end_turn",
        usage=LLMUsage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens),
        model="fake-model",
    )


def tool_response(*calls: tuple[str, str, dict], text: str = "") -> LLMResponse:
    """A final model response requesting tool calls given as (id, name, input)."""
    content = [TextBlock(text=text)] if text else []
    content += [ToolUseBlock(id=call_id, name=name, input=args) for call_id, name, args in calls]
    return LLMResponse(
        content=content,
        stop_reason="tool_use",
        usage=LLMUsage(input_tokens=10, output_tokens=5, total_tokens=15),
        model="fake-model",
    )


class FakeModelClient:
    """Scripted model client; each invocation plays the next step.

    A step is a list of text chunks and at most one `LLMResponse`. An
    exception in the list is raised when reached; an `asyncio.Event` stalls
    the stream until it is set.
    """

    def __init__(self, steps, repeat_last: bool = False):
        self.steps = list(steps)
        self.repeat_last = repeat_last
        self.calls: list[list] = []
        self.tools_seen: list[list] = []

    async def stream_message(self, messages, system_prompt, tools=None, **kwargs):
        self.calls.append(list(messages))
        self.tools_seen.append(list(tools or []))

        if self.repeat_last and len(self.steps) == 1:
            step = self.steps[0]
        else:
            step = self.steps.pop(0)

        for chunk in step:
            if isinstance(chunk, Exception):
                raise chunk
            if isinstance(chunk, asyncio.Event):
                await chunk.wait()
                continue
            yield chunk
