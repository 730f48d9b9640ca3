"""Web search tool."""

from typing import Any

from pydantic import BaseModel, Field

from deepsearch.services.search import SearchService
from deepsearch.tools.base import ToolDefinition
from deepsearch.utils.cancellation import CancellationToken

SEARCH_WEB_DESCRIPTION = """Search the web for up-to-date information.

Returns an ordered list of organic results, each with a title, link, snippet
and, when the provider knows it, a publication date. Use it first to find
candidate sources, then scrape the most relevant links with scrapePages."""


class SearchWebInput(BaseModel):
    """Input schema for the web search tool."""

    query: str = Field(
        ...,
        min_length=1,
        description="The query to search the web for",
        examples=["latest Rust version", "python 3.13 release notes"],
    )


def create_search_web_tool(search_service: SearchService) -> ToolDefinition:
    async def search_web_handler(params: SearchWebInput, cancellation: CancellationToken) -> list[dict[str, Any]]:
        results = await search_service.search(
            params.query,
            search_service.config.default_result_count,
            cancellation,
        )
        return [result.as_dict() for result in results]

    return ToolDefinition(
        name="searchWeb",
        description=SEARCH_WEB_DESCRIPTION,
        input_schema_class=SearchWebInput,
        handler=search_web_handler,
    )
