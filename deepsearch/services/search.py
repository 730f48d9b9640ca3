"""Search adapter: one query in, normalized results out."""

from typing import Any

from deepsearch.clients.serper import SerperClient
from deepsearch.errors import ProviderError
from deepsearch.models.crawl import SearchResult
from deepsearch.utils.cancellation import CancellationToken
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)


class SearchService:
    """Issues queries to the search provider and normalizes organic results."""

    def __init__(self, client: SerperClient):
        self.client = client
        self.config = client.config

    async def search(
        self,
        query: str,
        result_count: int | None = None,
        cancellation: CancellationToken | None = None,
    ) -> list[SearchResult]:
        """Search the web.

        Args:
            query: Search query
            result_count: Number of results wanted; capped by the provider limit
            cancellation: Request cancellation scope

        Returns:
            Organic results in provider order

        Raises:
            ValueError: If result_count is not positive
            ProviderError: If the provider call fails
            OperationCancelled: If cancelled mid-request
        """
        count = self.config.default_result_count if result_count is None else result_count
        if count <= 0:
            raise ValueError(f"result_count must be a positive integer, got {count}")
        count = min(count, self.config.max_result_count)

        payload = await self.client.search(query, count, cancellation)

        organic = payload.get("organic") or []
        if not isinstance(organic, list):
            raise ProviderError("Search provider returned malformed organic results")

        results = [result for result in (self._normalize(item) for item in organic) if result is not None]
        logger.info(f"Search {query!r} returned {len(results)} results")

        return results[:count]

    @staticmethod
    def _normalize(item: Any) -> SearchResult | None:
        if not isinstance(item, dict) or not item.get("link"):
            return None

        return SearchResult(
            title=item.get("title") or "",
            link=item["link"],
            snippet=item.get("snippet") or "",
            published_date=item.get("date"),
        )


_search_service: SearchService | None = None


def get_search_service() -> SearchService:
    """Get or create search service instance."""
    global _search_service
    if _search_service is None:
        _search_service = SearchService(SerperClient())
    return _search_service
