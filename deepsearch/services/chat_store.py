"""Chat persistence: the store the service hands finished conversations to."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from cuid2 import cuid_wrapper

from deepsearch.errors import ChatNotFoundError
from deepsearch.models.messages import ChatMessage
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


@dataclass
class Chat:
    """A stored conversation."""

    id: str
    user_id: str
    title: str
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class ChatStore(Protocol):
    """Interface for chat persistence backends."""

    async def upsert_chat(self, user_id: str, chat_id: str, title: str, messages: list[ChatMessage]) -> Chat:
        """Create the chat or replace its title and messages."""
        ...

    async def get_chat(self, chat_id: str) -> Chat | None:
        """Get a chat by ID."""
        ...

    def generate_chat_id(self) -> str:
        """Generate an identifier for a new chat."""
        ...


class InMemoryChatStore:
    """In-memory chat store for development and tests."""

    def __init__(self):
        self.chats: dict[str, Chat] = {}

    async def upsert_chat(self, user_id: str, chat_id: str, title: str, messages: list[ChatMessage]) -> Chat:
        """Create or update a chat.

        Raises:
            ChatNotFoundError: If the chat exists but belongs to another user
        """
        chat = self.chats.get(chat_id)

        if chat is None:
            chat = Chat(id=chat_id, user_id=user_id, title=title, messages=list(messages))
            self.chats[chat_id] = chat
            logger.info(f"Created chat {chat_id} for user {user_id}")
            return chat

        if chat.user_id != user_id:
            raise ChatNotFoundError(f"Chat {chat_id} not found")

        chat.title = title
        chat.messages = list(messages)
        chat.updated_at = datetime.now(UTC)
        logger.info(f"Updated chat {chat_id} with {len(messages)} messages")
        return chat

    async def get_chat(self, chat_id: str) -> Chat | None:
        return self.chats.get(chat_id)

    async def list_chats(self, user_id: str) -> list[Chat]:
        """Get a user's chats, most recently updated first."""
        chats = [chat for chat in self.chats.values() if chat.user_id == user_id]
        return sorted(chats, key=lambda chat: chat.updated_at, reverse=True)

    async def delete_chat(self, chat_id: str) -> bool:
        """Delete a chat.

        Returns:
            True if the chat was deleted, False if not found
        """
        if chat_id in self.chats:
            del self.chats[chat_id]
            return True
        return False

    def generate_chat_id(self) -> str:
        """Generate a new CUID-based chat ID."""
        return cuid()


_chat_store: InMemoryChatStore | None = None


def get_chat_store() -> InMemoryChatStore:
    """Get or create chat store instance."""
    global _chat_store
    if _chat_store is None:
        _chat_store = InMemoryChatStore()
    return _chat_store
