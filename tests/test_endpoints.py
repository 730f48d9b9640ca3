"""Tests for API endpoints."""

import json

import pytest
from fakes import FakeModelClient, text_response
from fastapi.testclient import TestClient

from deepsearch.clients.anthropic import AnthropicClient, AnthropicConfig
from deepsearch.main import app
from deepsearch.services.auth import TokenAuthorizer, get_authorizer
from deepsearch.services.chat import ChatService, get_chat_service
from deepsearch.services.chat_store import InMemoryChatStore
from deepsearch.services.driver import ConversationDriver
from deepsearch.services.tracing import LoggingTraceRecorder
from deepsearch.tools.registry import ToolsRegistry

AUTH = {"Authorization": "Bearer test-token"}

client = TestClient(app)

anthropic_client = AnthropicClient(api_key="test-key", config=AnthropicConfig(max_message_tokens=50))


@pytest.fixture
def store():
    return InMemoryChatStore()


@pytest.fixture
def model():
    return FakeModelClient([["Rust 1.80 is the latest.", text_response("Rust 1.80 is the latest.")]])


@pytest.fixture(autouse=True)
def overrides(store, model):
    """Wire the app to in-memory collaborators and a scripted model."""
    service = ChatService(
        driver=ConversationDriver(model),
        registry=ToolsRegistry(),
        store=store,
        trace_recorder=LoggingTraceRecorder(),
        max_steps=3,
        request_timeout=5,
        token_validator=anthropic_client.validate_message_tokens,
    )
    app.dependency_overrides[get_chat_service] = lambda: service
    app.dependency_overrides[get_authorizer] = lambda: TokenAuthorizer({"test-token": "alice"})
    yield
    app.dependency_overrides.clear()


def parse_stream(body: str) -> list[tuple[str, object]]:
    parts = []
    for line in body.splitlines():
        code, _, raw = line.partition(":")
        parts.append((code, json.loads(raw)))
    return parts


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_200(self):
        """Test that health check returns 200 status."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_response_structure(self):
        """Test that health check returns expected JSON structure."""
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert "timestamp" in data

    def test_health_check_content_type(self):
        """Test that health check returns JSON content type."""
        response = client.get("/health")
        assert response.headers["content-type"] == "application/json"


class TestChatEndpoint:
    """Tests for the chat endpoint."""

    def test_requires_token(self):
        """Requests without a valid bearer token are rejected."""
        body = {"messages": [{"role": "user", "content": "Hi"}], "isNewChat": True}

        assert client.post("/api/chat", json=body).status_code == 401
        response = client.post("/api/chat", json=body, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Unauthorized"

    def test_no_messages(self):
        """An empty message list is a bad request."""
        response = client.post("/api/chat", json={"messages": [], "isNewChat": True}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["detail"] == "No messages provided"

    def test_existing_chat_without_id(self):
        """Continuing a chat requires its ID."""
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "Hi"}]}, headers=AUTH)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_chat(self, store):
        """Chats that are missing or owned by someone else are not found."""
        await store.upsert_chat("bob", "bobs-chat", "Secret...", [])

        for chat_id in ("missing", "bobs-chat"):
            response = client.post(
                "/api/chat",
                json={"messages": [{"role": "user", "content": "Hi"}], "chatId": chat_id, "isNewChat": False},
                headers=AUTH,
            )
            assert response.status_code == 404
            assert response.json()["detail"] == "Chat not found or unauthorized"

    @pytest.mark.asyncio
    async def test_streams_new_chat(self, store):
        """A new chat streams the sideband ID, the answer text and the finish part."""
        response = client.post(
            "/api/chat",
            json={"messages": [{"role": "user", "content": "Latest Rust?"}], "isNewChat": True},
            headers=AUTH,
        )

        assert response.status_code == 200
        assert response.headers["x-vercel-ai-data-stream"] == "v1"
        assert response.headers["content-type"].startswith("text/plain")

        parts = parse_stream(response.text)
        code, data = parts[0]
        assert code == "2"
        assert data[0]["type"] == "NEW_CHAT_CREATED"
        chat_id = data[0]["chatId"]

        assert parts[1] == ("0", "Rust 1.80 is the latest.")
        assert parts[-1][0] == "d"
        assert parts[-1][1]["finishReason"] == "stop"

        chat = await store.get_chat(chat_id)
        assert chat.user_id == "alice"
        assert [message.role for message in chat.messages] == ["user", "assistant"]

    def test_message_too_long(self, store):
        """An oversized user message is a bad request and creates no chat."""
        response = client.post(
            "/api/chat",
            json={"messages": [{"role": "user", "content": "word " * 2000}], "isNewChat": True},
            headers=AUTH,
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Your message is too long. Please keep messages under 50 tokens."
        assert store.chats == {}
