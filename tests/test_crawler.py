"""Tests for the crawl engine."""

import asyncio
import threading
from unittest.mock import patch

import httpx
import pytest

from deepsearch.services.crawler import CrawlerConfig, CrawlerService, extract_main_text
from deepsearch.utils.cancellation import CancellationToken

ARTICLE_HTML = """
<html>
  <head><title>Rust Blog</title><script>var tracking = 1;</script></head>
  <body>
    <nav><a href="/">Home</a> | <a href="/about">About us</a></nav>
    <header>Site banner</header>
    <main>
      <h1>Announcing Rust 1.80</h1>
      <p>The Rust team is happy to announce a new version.</p>
      <p>Read the <a href="https://example.com/docs">docs</a> for details.</p>
    </main>
    <div role="navigation">Sidebar links</div>
    <footer>Copyright notice</footer>
  </body>
</html>
"""


def html_response(body: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, text=body, headers={"content-type": "text/html; charset=utf-8"})


class TestExtractMainText:
    """Tests for HTML to text extraction."""

    def test_strips_boilerplate(self):
        """Navigation, scripts and footers are not part of the extracted text."""
        text = extract_main_text(ARTICLE_HTML)

        assert "Announcing Rust 1.80" in text
        assert "happy to announce" in text
        assert "About us" not in text
        assert "tracking" not in text
        assert "Copyright notice" not in text
        assert "Sidebar links" not in text

    def test_renders_links_as_markdown(self):
        """Links survive extraction as markdown links."""
        text = extract_main_text(ARTICLE_HTML)
        assert "[docs](https://example.com/docs)" in text

    def test_prepends_title_when_no_heading(self):
        """The page title leads the text when the content has no heading of its own."""
        text = extract_main_text("<html><head><title>Notes</title></head><body><p>Some notes.</p></body></html>")
        assert text.startswith("# Notes")
        assert "Some notes." in text

    def test_empty_page(self):
        """A page with only boilerplate extracts to an empty string."""
        assert extract_main_text("<html><body><nav>Menu</nav><script>x()</script></body></html>") == ""


class TestCrawlAll:
    """Tests for batch crawling."""

    @pytest.mark.asyncio
    async def test_all_success_preserves_order(self):
        """Outcomes come back in input order even when later URLs finish first."""
        urls = [f"https://example.com/page{i}" for i in range(5)]

        async def handler(request: httpx.Request) -> httpx.Response:
            index = int(request.url.path.removeprefix("/page"))
            # Earlier pages take longer
            await asyncio.sleep(0.01 * (5 - index))
            return html_response(f"<html><body><main><p>Content of page {index}</p></main></body></html>")

        crawler = CrawlerService(transport=httpx.MockTransport(handler))
        result = await crawler.crawl_all(urls)

        assert len(result.outcomes) == len(urls)
        assert [outcome.url for outcome in result.outcomes] == urls
        assert result.overall_success is True
        assert result.error is None
        for index, outcome in enumerate(result.outcomes):
            assert outcome.success is True
            assert f"Content of page {index}" in outcome.data
            assert outcome.error is None

    @pytest.mark.asyncio
    async def test_partial_failure_isolated_per_url(self):
        """One URL failing never prevents the others from succeeding."""

        def handler(request: httpx.Request) -> httpx.Response:
            match request.url.path:
                case "/ok":
                    return html_response(ARTICLE_HTML)
                case "/missing":
                    return html_response("Not found", status_code=404)
                case "/plain":
                    return httpx.Response(200, text="Plain text body", headers={"content-type": "text/plain"})
                case "/report.pdf":
                    return httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"})
                case _:
                    raise httpx.ConnectError("Connection refused", request=request)

        urls = [
            "https://example.com/ok",
            "https://example.com/missing",
            "https://example.com/plain",
            "https://example.com/report.pdf",
            "ftp://example.com/file",
            "https://example.com/down",
        ]

        crawler = CrawlerService(transport=httpx.MockTransport(handler))
        result = await crawler.crawl_all(urls)

        assert [outcome.url for outcome in result.outcomes] == urls
        assert [outcome.success for outcome in result.outcomes] == [True, False, True, False, False, False]
        assert result.overall_success is False

        ok, missing, plain, pdf, ftp, down = result.outcomes
        assert "Announcing Rust 1.80" in ok.data
        assert missing.error.message.startswith("HTTP 404")
        assert plain.data == "Plain text body"
        assert "Unsupported content type: application/pdf" in pdf.error.message
        assert ftp.error.message.startswith("Invalid URL")
        assert down.error.message.startswith("Network error")

        for outcome in result.failures:
            assert outcome.data is None
            assert outcome.error.kind == "FetchFailure"

        assert result.error.startswith("Failed to crawl 4 of 6 pages")
        assert "https://example.com/missing" in result.error

    @pytest.mark.asyncio
    async def test_timeout_is_a_per_url_failure(self):
        """A timed out fetch becomes a failed outcome."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        crawler = CrawlerService(CrawlerConfig(request_timeout=2), transport=httpx.MockTransport(handler))
        result = await crawler.crawl_all(["https://example.com/slow"])

        assert result.outcomes[0].success is False
        assert result.outcomes[0].error.message == "Request timed out after 2s"

    @pytest.mark.asyncio
    async def test_truncates_long_content(self):
        """Extracted text is capped at the configured size."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="x" * 500, headers={"content-type": "text/plain"})

        crawler = CrawlerService(CrawlerConfig(max_content_chars=100), transport=httpx.MockTransport(handler))
        result = await crawler.crawl_all(["https://example.com/long"])

        assert result.outcomes[0].data == "x" * 100

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        """An empty batch succeeds trivially."""
        result = await CrawlerService().crawl_all([])
        assert result.outcomes == []
        assert result.overall_success is True

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        """No more fetches run at once than the configured limit."""
        in_flight = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(200, text="ok", headers={"content-type": "text/plain"})

        crawler = CrawlerService(CrawlerConfig(max_concurrency=2), transport=httpx.MockTransport(handler))
        result = await crawler.crawl_all([f"https://example.com/{i}" for i in range(8)])

        assert result.overall_success is True
        assert peak == 2

    @pytest.mark.asyncio
    async def test_cancellation_mid_batch(self):
        """Cancelling with three fetches in flight settles all six as cancelled."""
        started: list[str] = []
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.append(str(request.url))
            await release.wait()
            return httpx.Response(200, text="late", headers={"content-type": "text/plain"})

        urls = [f"https://example.com/{i}" for i in range(6)]
        crawler = CrawlerService(CrawlerConfig(max_concurrency=3), transport=httpx.MockTransport(handler))
        cancellation = CancellationToken()

        task = asyncio.create_task(crawler.crawl_all(urls, cancellation))
        for _ in range(100):
            if len(started) == 3:
                break
            await asyncio.sleep(0.01)
        assert len(started) == 3

        cancellation.cancel("User aborted")
        result = await asyncio.wait_for(task, timeout=2)

        assert len(result.outcomes) == 6
        assert [outcome.url for outcome in result.outcomes] == urls
        for outcome in result.outcomes:
            assert outcome.success is False
            assert outcome.error.kind == "Cancelled"
            assert outcome.error.message == "User aborted"

        # The queued fetches never started
        assert len(started) == 3

    @pytest.mark.asyncio
    async def test_cancellation_keeps_completed_outcomes(self):
        """Fetches that finished before cancellation keep their real outcome."""
        started: list[str] = []
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.append(request.url.path)
            if request.url.path.startswith("/slow"):
                await release.wait()
            return httpx.Response(200, text=f"Body of {request.url.path}", headers={"content-type": "text/plain"})

        urls = [f"https://example.com/fast{i}" for i in range(3)] + [f"https://example.com/slow{i}" for i in range(3)]
        crawler = CrawlerService(CrawlerConfig(max_concurrency=6), transport=httpx.MockTransport(handler))
        cancellation = CancellationToken()

        task = asyncio.create_task(crawler.crawl_all(urls, cancellation))
        for _ in range(100):
            if len(started) == 6:
                break
            await asyncio.sleep(0.01)

        cancellation.cancel("Request timed out after 60s")
        result = await asyncio.wait_for(task, timeout=2)

        assert [outcome.url for outcome in result.outcomes] == urls
        assert [outcome.data for outcome in result.outcomes[:3]] == [f"Body of /fast{i}" for i in range(3)]
        for outcome in result.outcomes[3:]:
            assert outcome.success is False
            assert outcome.error.kind == "Cancelled"
        assert result.overall_success is False


class TrackedBody(httpx.AsyncByteStream):
    """Response body that records how much of it was consumed."""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks
        self.chunks_read = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            self.chunks_read += 1
            yield chunk


class TestResponseBodies:
    """Tests for how much of a response the crawler reads."""

    @pytest.mark.asyncio
    async def test_unsupported_body_is_never_read(self):
        """A PDF is rejected from its headers alone."""
        body = TrackedBody([b"%PDF-1.4" + b"\0" * 1024] * 50)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "application/pdf"}, stream=body)

        crawler = CrawlerService(transport=httpx.MockTransport(handler))
        result = await crawler.crawl_all(["https://example.com/report.pdf"])

        outcome = result.outcomes[0]
        assert outcome.success is False
        assert outcome.error.message == "Unsupported content type: application/pdf"
        assert body.chunks_read == 0

    @pytest.mark.asyncio
    async def test_stops_reading_at_byte_limit(self):
        """Bodies are read only up to the configured number of bytes."""
        body = TrackedBody([b"y" * 100] * 100)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "text/plain"}, stream=body)

        config = CrawlerConfig(max_response_bytes=1000)
        crawler = CrawlerService(config, transport=httpx.MockTransport(handler))
        result = await crawler.crawl_all(["https://example.com/huge.txt"])

        assert result.outcomes[0].data == "y" * 1000
        assert body.chunks_read == 10

    @pytest.mark.asyncio
    async def test_html_extraction_runs_off_the_event_loop(self):
        """HTML parsing happens in a worker thread."""
        extraction_threads = []

        def record_thread(html: str, base_url: str = "") -> str:
            extraction_threads.append(threading.current_thread())
            return extract_main_text(html, base_url)

        def handler(request: httpx.Request) -> httpx.Response:
            return html_response(ARTICLE_HTML)

        crawler = CrawlerService(transport=httpx.MockTransport(handler))
        with patch("deepsearch.services.crawler.extract_main_text", side_effect=record_thread):
            result = await crawler.crawl_all(["https://example.com/post"])

        assert "Announcing Rust 1.80" in result.outcomes[0].data
        assert len(extraction_threads) == 1
        assert extraction_threads[0] is not threading.main_thread()
