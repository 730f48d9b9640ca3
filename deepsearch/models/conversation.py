"""Request and response models for the HTTP API."""

from datetime import datetime

from pydantic import BaseModel, Field

from deepsearch.models.messages import ChatMessage


class ChatRequest(BaseModel):
    """Request model for the chat endpoint."""

    messages: list[ChatMessage]
    chat_id: str | None = Field(default=None, alias="chatId")
    is_new_chat: bool = Field(default=False, alias="isNewChat")

    class Config:
        populate_by_name = True


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
