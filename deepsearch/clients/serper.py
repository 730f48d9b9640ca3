"""Serper (Google search) API client."""

import os
from dataclasses import dataclass
from typing import Any

import httpx

from deepsearch.errors import ProviderError
from deepsearch.utils.cancellation import CancellationToken
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)

SERPER_SEARCH_URL = "https://google.serper.dev/search"


@dataclass
class SearchConfig:
    """Configuration for the search provider."""

    default_result_count: int = 10
    max_result_count: int = 100
    timeout: float = 15.0


class SerperClient:
    """Thin async client for the Serper search endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        config: SearchConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Serper client.

        Args:
            api_key: Serper API key (defaults to SERPER_API_KEY env var)
            config: Search configuration
            transport: Optional httpx transport, mainly for tests
        """
        serper_api_key = api_key or os.getenv("SERPER_API_KEY")
        if not serper_api_key:
            raise ValueError("SERPER_API_KEY environment variable is required")

        self.api_key = serper_api_key
        self.config = config or SearchConfig()
        self.transport = transport

    async def search(self, query: str, num: int, cancellation: CancellationToken | None = None) -> dict[str, Any]:
        """Run one search and return the provider's raw JSON payload.

        Raises:
            ProviderError: On HTTP errors, transport errors or a malformed response
            OperationCancelled: If the cancellation token fires mid-request
        """
        logger.debug(f"Serper search: {query!r} (num={num})")

        async with httpx.AsyncClient(timeout=self.config.timeout, transport=self.transport) as client:
            request = client.post(
                SERPER_SEARCH_URL,
                json={"q": query, "num": num},
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            )
            try:
                response = await (cancellation.run(request) if cancellation else request)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ProviderError(
                    f"Search provider returned HTTP {e.response.status_code}: {e.response.text}"
                ) from e
            except httpx.HTTPError as e:
                raise ProviderError(f"Search provider request failed: {e!r}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("Search provider returned malformed JSON") from e

        if not isinstance(payload, dict):
            raise ProviderError("Search provider returned an unexpected payload")

        return payload
