"""Conversation driver: the bounded model/tool step loop."""

import asyncio
import json
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Any, Protocol

from deepsearch.clients.anthropic import get_anthropic_client
from deepsearch.errors import ModelInvocationError, OperationCancelled
from deepsearch.models.events import Done, DriverEvent, Error, TextDelta, ToolCallEvent, ToolResultEvent
from deepsearch.models.llm import LLMMessage, LLMResponse, LLMToolDefinition, LLMUsage, ToolResultBlock, ToolUseBlock
from deepsearch.services.tracing import Trace
from deepsearch.tools.base import StructuredToolError
from deepsearch.tools.registry import ToolsRegistry
from deepsearch.utils.cancellation import CancellationToken
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_STEPS = 10

_END_OF_STREAM = object()


class ModelClient(Protocol):
    """Anything that can stream one model invocation."""

    def stream_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
        **kwargs,
    ) -> AsyncGenerator[str | LLMResponse, None]:
        """Yield text deltas, then exactly one `LLMResponse`."""
        ...


async def _next_chunk(stream: AsyncIterator[Any]) -> Any:
    try:
        return await anext(stream)
    except StopAsyncIteration:
        return _END_OF_STREAM


class ConversationDriver:
    """Runs one request's conversation: model call, tool calls, repeat.

    The driver owns no conversation state between runs; each `run()` works on
    its own copy of the history.
    """

    def __init__(self, client: ModelClient | None = None):
        """Initialize the driver.

        Args:
            client: Model client (defaults to the global Anthropic client)
        """
        self.client = client or get_anthropic_client()

    async def run(
        self,
        messages: list[LLMMessage],
        registry: ToolsRegistry,
        system_prompt: str,
        cancellation: CancellationToken,
        max_steps: int = DEFAULT_MAX_STEPS,
        trace: Trace | None = None,
    ) -> AsyncIterator[DriverEvent]:
        """Run the step loop, yielding events as they happen.

        The sequence always ends with exactly one `Done` or `Error`. Reaching
        `max_steps` while the model still wants tools ends with `Done`.

        Args:
            messages: Conversation history so far
            registry: Tools the model may call
            system_prompt: System prompt for the model
            cancellation: Request cancellation scope
            max_steps: Maximum number of model invocations
            trace: Tracing context for the request
        """
        if max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {max_steps}")

        tools = registry.get_tool_definitions()
        logger.info(
            f"Starting agent loop with {len(messages)} initial messages, {len(tools)} tools, max_steps: {max_steps}"
        )

        history = list(messages)
        initial_count = len(history)
        usage = LLMUsage()
        text_parts: list[str] = []
        steps = 0

        while steps < max_steps:
            steps += 1
            logger.debug(f"Agent loop step {steps}/{max_steps}")
            span = trace.span(f"model-step-{steps}", {"messages": len(history)}) if trace else None

            response: LLMResponse | None = None
            step_text: list[str] = []
            stream = self.client.stream_message(history, system_prompt, tools)

            try:
                while True:
                    chunk = await cancellation.run(_next_chunk(stream))
                    if chunk is _END_OF_STREAM:
                        break
                    if isinstance(chunk, LLMResponse):
                        response = chunk
                    elif chunk:
                        step_text.append(chunk)
                        yield TextDelta(text=chunk)

                if response is None:
                    raise ModelInvocationError("Model stream ended without a final response")

            except OperationCancelled as e:
                logger.warning(f"Agent loop cancelled at step {steps}: {e.reason}")
                if span:
                    span.end({"error": e.reason})
                yield Error(kind="Cancelled", message=e.reason)
                return
            except ModelInvocationError as e:
                logger.error(f"Model invocation failed at step {steps}: {e}")
                if span:
                    span.end({"error": str(e)})
                yield Error(kind="ModelInvocationError", message=str(e))
                return
            except Exception as e:
                logger.error(f"Model stream failed at step {steps}: {e!r}", exc_info=True)
                if span:
                    span.end({"error": repr(e)})
                yield Error(kind="ModelInvocationError", message=f"Model stream failed: {e!r}")
                return
            finally:
                await stream.aclose()

            usage.add(response.usage)
            text_parts.extend(step_text)

            assistant_message = LLMMessage(role="assistant", content=response.content)
            if response.content:
                history.append(assistant_message)

            tool_calls = assistant_message.tool_calls()
            if span:
                span.end(
                    {
                        "stop_reason": response.stop_reason,
                        "text": "".join(step_text),
                        "tool_calls": [call.name for call in tool_calls],
                    }
                )

            if not tool_calls:
                logger.info(f"Agent loop completed successfully in {steps} steps")
                yield Done(
                    text="".join(text_parts),
                    finish_reason="stop",
                    steps=steps,
                    response_messages=history[initial_count:],
                    usage=usage,
                )
                return

            logger.info(f"LLM wants to use {len(tool_calls)} tools")
            for call in tool_calls:
                yield ToolCallEvent(tool_call_id=call.id, tool_name=call.name, args=call.input)

            result_blocks: list[ToolResultBlock] = []
            for block, event in await self._execute_tools(tool_calls, registry, cancellation, trace):
                result_blocks.append(block)
                yield event

            history.append(LLMMessage(role="tool", content=result_blocks))

        logger.warning(f"Agent loop reached max steps ({max_steps})")
        yield Done(
            text="".join(text_parts),
            finish_reason="max_steps",
            steps=steps,
            response_messages=history[initial_count:],
            usage=usage,
        )

    async def _execute_tools(
        self,
        tool_calls: list[ToolUseBlock],
        registry: ToolsRegistry,
        cancellation: CancellationToken,
        trace: Trace | None,
    ) -> list[tuple[ToolResultBlock, ToolResultEvent]]:
        """Run one step's tool calls concurrently; return results in invocation order."""
        settled: dict[int, Any] = {}

        async def execute(index: int, call: ToolUseBlock) -> None:
            settled[index] = await registry.dispatch(call.name, call.input, cancellation, trace)

        await asyncio.gather(*(execute(index, call) for index, call in enumerate(tool_calls)))

        results = []
        for index, call in enumerate(tool_calls):
            result = settled[index]
            is_error = isinstance(result, StructuredToolError)
            payload = result.as_payload() if is_error else result

            results.append(
                (
                    ToolResultBlock(
                        tool_use_id=call.id,
                        content=json.dumps(payload, ensure_ascii=False, default=str),
                        is_error=is_error,
                    ),
                    ToolResultEvent(tool_call_id=call.id, tool_name=call.name, result=payload, is_error=is_error),
                )
            )

        return results


_conversation_driver: ConversationDriver | None = None


def get_conversation_driver() -> ConversationDriver:
    """Get or create conversation driver instance."""
    global _conversation_driver
    if _conversation_driver is None:
        _conversation_driver = ConversationDriver()
    return _conversation_driver
