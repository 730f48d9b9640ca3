"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deepsearch import __version__
from deepsearch.api.endpoints import router
from deepsearch.utils.logging import setup_logging

setup_logging()

# Create FastAPI application
app = FastAPI(
    title="Deep Search",
    description=(
        "A research assistant that answers questions by searching the web and reading pages, "
        "streaming its answer with markdown citations."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "Chat",
            "description": (
                "Stream an answer to the latest message in a chat. "
                "Requires a bearer token; new chats are created on first use."
            ),
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-vercel-ai-data-stream"],
)

# Include routers
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("deepsearch.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
