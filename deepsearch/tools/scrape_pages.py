"""Bulk page scraping tool."""

from typing import Any

from pydantic import BaseModel, Field

from deepsearch.models.crawl import CrawlBatchResult
from deepsearch.services.crawler import CrawlerService
from deepsearch.tools.base import ToolDefinition
from deepsearch.utils.cancellation import CancellationToken

SCRAPE_PAGES_DESCRIPTION = """Fetch web pages and extract their main text content as Markdown.

Use it when search snippets are not enough: articles, blog posts,
documentation pages. Results come back in the same order as the URLs, one
entry per URL with `success` and either the page text or an error
description. A top-level `error` is present only if some pages failed."""


class ScrapePagesInput(BaseModel):
    """Input schema for the scrape pages tool."""

    urls: list[str] = Field(
        ...,
        min_length=1,
        description=(
            "Array of URLs to scrape and extract content from. "
            "IMPORTANT: Always provide 4-6 URLs for comprehensive coverage and diverse perspectives."
        ),
    )


def format_crawl_result(result: CrawlBatchResult) -> dict[str, Any]:
    """Shape a crawl batch the way the model sees it."""
    payload: dict[str, Any] = {
        "results": [
            {
                "url": outcome.url,
                "success": outcome.success,
                "data": outcome.data if outcome.success else outcome.error.message,
            }
            for outcome in result.outcomes
        ]
    }

    if not result.overall_success:
        payload["error"] = result.error

    return payload


def create_scrape_pages_tool(crawler_service: CrawlerService) -> ToolDefinition:
    async def scrape_pages_handler(params: ScrapePagesInput, cancellation: CancellationToken) -> dict[str, Any]:
        result = await crawler_service.crawl_all(params.urls, cancellation)
        return format_crawl_result(result)

    return ToolDefinition(
        name="scrapePages",
        description=SCRAPE_PAGES_DESCRIPTION,
        input_schema_class=ScrapePagesInput,
        handler=scrape_pages_handler,
    )
