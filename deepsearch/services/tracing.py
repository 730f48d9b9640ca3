"""Request tracing passed explicitly through the chat service, driver and tools."""

import json
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from cuid2 import cuid_wrapper

from deepsearch.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class TraceRecorder(Protocol):
    """Sink for finished spans (e.g. an observability backend)."""

    def record_trace(self, span_name: str, input: Any, output: Any, metadata: dict[str, Any]) -> None:
        """Record one finished span."""
        ...


@dataclass
class SpanRecord:
    """A finished span as stored by `LoggingTraceRecorder`."""

    name: str
    input: Any
    output: Any
    metadata: dict[str, Any]
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def summarize(value: Any, max_chars: int) -> Any:
    """Return `value` unchanged if its serialized form fits, else a truncated string."""
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    if len(text) <= max_chars:
        return value
    return f"{text[:max_chars]}... [{len(text) - max_chars} more characters]"


class LoggingTraceRecorder:
    """Writes spans to the application log and keeps the most recent ones in memory.

    Span inputs and outputs are kept only up to `max_value_chars` characters.
    """

    def __init__(self, max_spans: int = 1000, max_value_chars: int = 2000):
        self.spans: deque[SpanRecord] = deque(maxlen=max_spans)
        self.max_value_chars = max_value_chars

    def record_trace(self, span_name: str, input: Any, output: Any, metadata: dict[str, Any]) -> None:
        input = summarize(input, self.max_value_chars)
        output = summarize(output, self.max_value_chars)
        self.spans.append(SpanRecord(name=span_name, input=input, output=output, metadata=metadata))
        logger.debug(f"Span {span_name} [{metadata.get('trace_id')}]: input={input!r} output={output!r}")


class Span:
    """An open span; `end()` hands it to the trace's recorder."""

    def __init__(self, trace: "Trace", name: str, input: Any):
        self.trace = trace
        self.name = name
        self.input = input
        self._started = time.monotonic()

    def end(self, output: Any) -> None:
        duration_ms = round((time.monotonic() - self._started) * 1000, 1)
        self.trace.record(self.name, self.input, output, duration_ms=duration_ms)


@dataclass
class Trace:
    """Tracing context for one request."""

    name: str
    recorder: TraceRecorder
    user_id: str | None = None
    session_id: str | None = None
    trace_id: str = field(default_factory=cuid)

    def update(self, session_id: str) -> None:
        self.session_id = session_id

    def span(self, name: str, input: Any = None) -> Span:
        return Span(self, name, input)

    def record(self, span_name: str, input: Any, output: Any, **metadata: Any) -> None:
        """Record a span; recorder failures are logged and never reach the request."""
        metadata = {
            "trace_id": self.trace_id,
            "trace_name": self.name,
            "user_id": self.user_id,
            "session_id": self.session_id,
            **metadata,
        }
        try:
            self.recorder.record_trace(span_name, input, output, metadata)
        except Exception as e:
            logger.warning(f"Failed to record span {span_name}: {e}")


_trace_recorder: LoggingTraceRecorder | None = None


def get_trace_recorder() -> LoggingTraceRecorder:
    """Get or create the trace recorder instance."""
    global _trace_recorder
    if _trace_recorder is None:
        _trace_recorder = LoggingTraceRecorder()
    return _trace_recorder
