"""Crawl engine: bounded-concurrency page fetching with per-URL isolation."""

import asyncio
import os
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from urllib.parse import urlparse

import html2text
import httpx
from bs4 import BeautifulSoup

from deepsearch.errors import OperationCancelled
from deepsearch.models.crawl import CrawlBatchResult, FetchOutcome
from deepsearch.utils.cancellation import CancellationToken
from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
TEXT_CONTENT_TYPES = ("text/plain",)

BOILERPLATE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "form", "iframe", "svg"]
BOILERPLATE_ROLES = ("navigation", "banner", "contentinfo")


@dataclass
class CrawlerConfig:
    """Configuration for the crawl engine."""

    max_concurrency: int = field(default_factory=lambda: int(os.getenv("CRAWL_MAX_CONCURRENCY", "5")))
    request_timeout: float = 10.0
    max_content_chars: int = 20000
    max_response_bytes: int = 2_000_000
    user_agent: str = DEFAULT_USER_AGENT


def extract_main_text(html: str, base_url: str = "") -> str:
    """Strip navigation and boilerplate from an HTML page and render the rest as Markdown."""
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""

    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()

    selector = ", ".join(f'[role="{role}"]' for role in BOILERPLATE_ROLES)
    for tag in soup.select(selector):
        if not tag.decomposed:
            tag.decompose()

    root = soup.find("main") or soup.find("article") or soup.body or soup

    converter = html2text.HTML2Text(baseurl=base_url)
    converter.ignore_images = True
    converter.body_width = 0  # No hard wrapping

    text = converter.handle(str(root))
    text = re.sub(r"\n{3,}", "\n\n", text).strip()

    if text and title and not text.startswith("#"):
        text = f"# {title}\n\n{text}"

    return text


def _media_type(response: httpx.Response) -> str:
    return response.headers.get("content-type", "").split(";")[0].strip().lower()


async def _download(client: httpx.AsyncClient, url: str, config: CrawlerConfig) -> tuple[str, str | None, str]:
    """Stream a page and return its media type, decoded body and final URL.

    The body is only read for supported content types (otherwise it is
    `None`) and never beyond `config.max_response_bytes`.
    """
    async with client.stream("GET", url) as response:
        response.raise_for_status()

        media_type = _media_type(response)
        if media_type not in HTML_CONTENT_TYPES + TEXT_CONTENT_TYPES:
            return media_type, None, str(response.url)

        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) >= config.max_response_bytes:
                logger.debug(f"Stopped reading {url} at {config.max_response_bytes} bytes")
                del body[config.max_response_bytes :]
                break

        return media_type, body.decode(response.encoding or "utf-8", errors="replace"), str(response.url)


async def fetch_page(
    client: httpx.AsyncClient,
    url: str,
    config: CrawlerConfig,
    cancellation: CancellationToken | None = None,
) -> FetchOutcome:
    """Fetch one URL and extract its readable text.

    Never raises for per-URL problems; every failure becomes a failed outcome.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return FetchOutcome.failed(url, "Invalid URL: only absolute http(s) URLs can be crawled")

    try:
        download = _download(client, url, config)
        media_type, body, final_url = await (cancellation.run(download) if cancellation else download)

        if body is None:
            return FetchOutcome.failed(url, f"Unsupported content type: {media_type or 'unknown'}")
        if media_type in HTML_CONTENT_TYPES:
            text = await asyncio.to_thread(extract_main_text, body, final_url)
        else:
            text = body.strip()

    except OperationCancelled as e:
        return FetchOutcome.failed(url, e.reason, kind="Cancelled")
    except httpx.TimeoutException:
        return FetchOutcome.failed(url, f"Request timed out after {config.request_timeout:g}s")
    except httpx.HTTPStatusError as e:
        return FetchOutcome.failed(url, f"HTTP {e.response.status_code} {e.response.reason_phrase}".strip())
    except httpx.HTTPError as e:
        return FetchOutcome.failed(url, f"Network error: {e!r}")
    except Exception as e:
        logger.warning(f"Extraction failed for {url}: {e}", exc_info=True)
        return FetchOutcome.failed(url, f"Extraction failed: {e}")

    if not text:
        return FetchOutcome.failed(url, "No readable content could be extracted")

    if len(text) > config.max_content_chars:
        text = text[: config.max_content_chars]

    return FetchOutcome.ok(url, text)


class CrawlerService:
    """Fans a batch of URLs out over the fetch/extract unit.

    Each batch gets its own concurrency budget; outcomes are reported in
    input order whatever order the fetches complete in.
    """

    def __init__(self, config: CrawlerConfig | None = None, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize crawler.

        Args:
            config: Crawler configuration
            transport: Optional httpx transport, mainly for tests
        """
        self.config = config or CrawlerConfig()
        self.transport = transport

    async def crawl_all(self, urls: Sequence[str], cancellation: CancellationToken | None = None) -> CrawlBatchResult:
        """Crawl every URL and wait for all of them to settle.

        Args:
            urls: URLs to crawl, in the order results should be reported
            cancellation: Request cancellation scope

        Returns:
            One outcome per input URL, positionally aligned with `urls`
        """
        if not urls:
            return CrawlBatchResult(outcomes=[])

        logger.info(f"Crawling {len(urls)} URLs with concurrency {self.config.max_concurrency}")
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        async with httpx.AsyncClient(
            timeout=self.config.request_timeout,
            follow_redirects=True,
            headers={"User-Agent": self.config.user_agent},
            transport=self.transport,
        ) as client:

            async def crawl_one(url: str) -> FetchOutcome:
                async with semaphore:
                    if cancellation and cancellation.cancelled:
                        return FetchOutcome.failed(url, cancellation.reason or "Operation cancelled", kind="Cancelled")
                    return await fetch_page(client, url, self.config, cancellation)

            outcomes = await asyncio.gather(*(crawl_one(url) for url in urls))

        result = CrawlBatchResult(outcomes=list(outcomes))
        if result.overall_success:
            logger.info(f"Crawled {len(urls)} URLs successfully")
        else:
            logger.warning(f"Crawl batch finished with {len(result.failures)} of {len(urls)} failures")

        return result


_crawler_service: CrawlerService | None = None


def get_crawler_service() -> CrawlerService:
    """Get or create crawler service instance."""
    global _crawler_service
    if _crawler_service is None:
        _crawler_service = CrawlerService()
    return _crawler_service
