"""API endpoints for the deep search service."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import StreamingResponse

from deepsearch import __version__
from deepsearch.errors import ChatNotFoundError
from deepsearch.models.conversation import ChatRequest, HealthResponse
from deepsearch.services.auth import Identity, TokenAuthorizer, get_authorizer
from deepsearch.services.chat import ChatService, get_chat_service
from deepsearch.services.streaming import DATA_STREAM_HEADERS, DATA_STREAM_MEDIA_TYPE
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def require_identity(
    authorization: str | None = Header(default=None),
    authorizer: TokenAuthorizer = Depends(get_authorizer),
) -> Identity:
    """Resolve the bearer token, rejecting the request with 401 if it is missing or unknown."""
    identity = authorizer.authorize(authorization)
    if identity is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return identity


@router.post("/api/chat", tags=["Chat"])
async def handle_chat(
    request: ChatRequest,
    identity: Identity = Depends(require_identity),
    chat_service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    """Answer the latest message, streaming text, tool activity and the finish part."""
    try:
        session = await chat_service.prepare(identity, request)
    except ValueError as e:
        logger.warning(f"Rejected chat request from user {identity.user_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ChatNotFoundError as e:
        raise HTTPException(status_code=404, detail="Chat not found or unauthorized") from e

    logger.info(f"Streaming chat {session.chat_id} for user {identity.user_id}: {request.messages[-1].text()[:50]}...")

    return StreamingResponse(
        chat_service.stream(session),
        media_type=DATA_STREAM_MEDIA_TYPE,
        headers=DATA_STREAM_HEADERS,
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
