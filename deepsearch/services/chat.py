"""Chat service: runs one chat request from authorization to persisted history."""

import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from deepsearch.clients.anthropic import get_anthropic_client
from deepsearch.errors import ChatNotFoundError
from deepsearch.models.conversation import ChatRequest
from deepsearch.models.events import Done, DriverEvent
from deepsearch.models.messages import ChatMessage, to_chat_messages, to_llm_messages
from deepsearch.services.auth import Identity
from deepsearch.services.chat_store import ChatStore, get_chat_store
from deepsearch.services.crawler import get_crawler_service
from deepsearch.services.driver import DEFAULT_MAX_STEPS, ConversationDriver, get_conversation_driver
from deepsearch.services.prompts import get_system_prompt
from deepsearch.services.search import get_search_service
from deepsearch.services.streaming import StreamingTransport
from deepsearch.services.tracing import Trace, TraceRecorder, get_trace_recorder
from deepsearch.tools.registry import ToolsRegistry, get_tools_registry
from deepsearch.utils.cancellation import CancellationToken
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0
TITLE_LENGTH = 50


def make_title(messages: list[ChatMessage]) -> str:
    """Title a chat after the first characters of its latest message."""
    return messages[-1].text()[:TITLE_LENGTH] + "..."


@dataclass
class ChatSession:
    """A validated chat request, ready to stream."""

    user_id: str
    chat_id: str
    messages: list[ChatMessage]
    is_new_chat: bool
    trace: Trace


class ChatService:
    """Prepares chat requests and streams the driver's answer back."""

    def __init__(
        self,
        driver: ConversationDriver,
        registry: ToolsRegistry,
        store: ChatStore,
        trace_recorder: TraceRecorder,
        max_steps: int | None = None,
        request_timeout: float | None = None,
        token_validator: Callable[[str], None] | None = None,
    ):
        """Initialize chat service.

        Args:
            driver: Conversation driver
            registry: Tools available to the model
            store: Chat persistence
            trace_recorder: Sink for request spans
            max_steps: Step bound per request (defaults to DEEPSEARCH_MAX_STEPS env var)
            request_timeout: Seconds before a request is cancelled (defaults to REQUEST_TIMEOUT_SECONDS env var)
            token_validator: Rejects an oversized user message by raising ValueError
        """
        self.driver = driver
        self.registry = registry
        self.store = store
        self.trace_recorder = trace_recorder
        self.token_validator = token_validator
        self.max_steps = max_steps or int(os.getenv("DEEPSEARCH_MAX_STEPS", str(DEFAULT_MAX_STEPS)))
        self.request_timeout = request_timeout or float(
            os.getenv("REQUEST_TIMEOUT_SECONDS", str(DEFAULT_REQUEST_TIMEOUT_SECONDS))
        )

    async def prepare(self, identity: Identity, request: ChatRequest) -> ChatSession:
        """Validate the request and create or verify its chat.

        Raises:
            ValueError: If the request has no messages or lacks a chat ID.
                Also raised when the latest user message exceeds the token limit.
            ChatNotFoundError: If the chat does not exist or belongs to someone else
        """
        if not request.messages:
            raise ValueError("No messages provided")

        latest = request.messages[-1]
        if self.token_validator and latest.role == "user":
            self.token_validator(latest.text())

        trace = Trace(name="chat", recorder=self.trace_recorder, user_id=identity.user_id)

        if request.is_new_chat:
            chat_id = request.chat_id or self.store.generate_chat_id()
            span = trace.span("create-new-chat", {"user_id": identity.user_id, "chat_id": chat_id})
            try:
                await self.store.upsert_chat(
                    user_id=identity.user_id,
                    chat_id=chat_id,
                    title=make_title(request.messages),
                    messages=request.messages,
                )
            except Exception as e:
                span.end({"error": str(e)})
                raise
            span.end({"chat_id": chat_id})
            logger.info(f"Created new chat {chat_id} for user {identity.user_id}")

        else:
            if not request.chat_id:
                raise ValueError("chatId is required for an existing chat")

            chat_id = request.chat_id
            span = trace.span("verify-chat-ownership", {"user_id": identity.user_id, "chat_id": chat_id})
            chat = await self.store.get_chat(chat_id)
            if chat is None or chat.user_id != identity.user_id:
                span.end({"verified": False})
                logger.warning(f"User {identity.user_id} denied access to chat {chat_id}")
                raise ChatNotFoundError("Chat not found or unauthorized")
            span.end({"verified": True})

        trace.update(session_id=chat_id)

        return ChatSession(
            user_id=identity.user_id,
            chat_id=chat_id,
            messages=list(request.messages),
            is_new_chat=request.is_new_chat,
            trace=trace,
        )

    async def stream(self, session: ChatSession) -> AsyncIterator[str]:
        """Run the driver for a prepared chat and yield wire-format parts."""
        transport = StreamingTransport()
        if session.is_new_chat:
            transport.write_data({"type": "NEW_CHAT_CREATED", "chatId": session.chat_id})

        cancellation = CancellationToken(timeout=self.request_timeout)
        events = self.driver.run(
            to_llm_messages(session.messages),
            self.registry,
            get_system_prompt(),
            cancellation,
            max_steps=self.max_steps,
            trace=session.trace,
        )

        completed = False
        try:
            async for part in transport.stream(self._persist_on_done(session, events)):
                yield part
            completed = True
        finally:
            if not completed:
                cancellation.cancel("Client disconnected")
            cancellation.close()

    async def _persist_on_done(self, session: ChatSession, events: AsyncIterator[DriverEvent]):
        """Save the chat history before `Done` reaches the client."""
        try:
            async for event in events:
                if isinstance(event, Done):
                    await self._save_history(session, event)
                yield event
        finally:
            await events.aclose()

    async def _save_history(self, session: ChatSession, done: Done) -> None:
        messages = session.messages + to_chat_messages(done.response_messages)
        span = session.trace.span("save-chat-history", {"chat_id": session.chat_id, "messages": len(messages)})

        try:
            await self.store.upsert_chat(
                user_id=session.user_id,
                chat_id=session.chat_id,
                title=make_title(session.messages),
                messages=messages,
            )
        except Exception as e:
            logger.error(f"Failed to save chat {session.chat_id}: {e}", exc_info=True)
            span.end({"error": str(e)})
            raise

        span.end({"saved": len(messages)})
        logger.info(
            f"Saved chat {session.chat_id} after {done.steps} steps "
            f"(input tokens: {done.usage.input_tokens}, output tokens: {done.usage.output_tokens})"
        )


_chat_service: ChatService | None = None


def get_chat_service() -> ChatService:
    """Get or create chat service instance."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService(
            driver=get_conversation_driver(),
            registry=get_tools_registry(get_search_service(), get_crawler_service()),
            store=get_chat_store(),
            trace_recorder=get_trace_recorder(),
            token_validator=get_anthropic_client().validate_message_tokens,
        )
    return _chat_service
