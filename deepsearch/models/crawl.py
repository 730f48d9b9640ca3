"""Search and crawl result models."""

from dataclasses import dataclass, field
from typing import Any, Literal

FetchErrorKind = Literal["FetchFailure", "Cancelled"]


@dataclass(frozen=True)
class SearchResult:
    """A single normalized organic search result."""

    title: str
    link: str
    snippet: str
    published_date: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return the result in the shape exposed to the model."""
        result: dict[str, Any] = {"title": self.title, "link": self.link, "snippet": self.snippet}
        if self.published_date:
            result["date"] = self.published_date
        return result


@dataclass(frozen=True)
class ErrorInfo:
    """Why a single URL could not be crawled."""

    kind: FetchErrorKind
    message: str


@dataclass(frozen=True)
class FetchOutcome:
    """Outcome of fetching and extracting one URL.

    Exactly one of `data` and `error` is set, matching `success`.
    """

    url: str
    success: bool
    data: str | None = None
    error: ErrorInfo | None = None

    def __post_init__(self) -> None:
        if self.success and (self.data is None or self.error is not None):
            raise ValueError("A successful outcome carries data and no error")
        if not self.success and (self.error is None or self.data is not None):
            raise ValueError("A failed outcome carries an error and no data")

    @classmethod
    def ok(cls, url: str, data: str) -> "FetchOutcome":
        return cls(url=url, success=True, data=data)

    @classmethod
    def failed(cls, url: str, message: str, kind: FetchErrorKind = "FetchFailure") -> "FetchOutcome":
        return cls(url=url, success=False, error=ErrorInfo(kind=kind, message=message))


@dataclass(frozen=True)
class CrawlBatchResult:
    """Outcomes of one crawl batch, positionally matching the requested URLs."""

    outcomes: list[FetchOutcome] = field(default_factory=list)

    @property
    def overall_success(self) -> bool:
        return all(outcome.success for outcome in self.outcomes)

    @property
    def failures(self) -> list[FetchOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def error(self) -> str | None:
        """Summary of the failed URLs, or None when every fetch succeeded."""
        failures = self.failures
        if not failures:
            return None

        details = "; ".join(f"{outcome.url}: {outcome.error.message}" for outcome in failures if outcome.error)
        return f"Failed to crawl {len(failures)} of {len(self.outcomes)} pages: {details}"
