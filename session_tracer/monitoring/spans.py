"""
Spans and the append-only span store

Span types:
- generation: one assistant message (LLM call)
- tool_execution: one tool call
- retry: one automatic retry after a failed LLM call
- compaction: one context compaction pass

The store keeps spans in the order their start events arrived and a
transient correlation-id index of open spans. Closing a span removes it
from the index; the sequence itself is never reordered.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional

from session_tracer.monitoring.errors import DuplicateSpanError, UnknownSpanError


class SpanType(str, Enum):
    """Span type classification"""
    GENERATION = "generation"
    TOOL_EXECUTION = "tool_execution"
    RETRY = "retry"
    COMPACTION = "compaction"


class SpanStatus(str, Enum):
    """Span execution status"""
    OPEN = "open"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class Span:
    """
    Span - a timed unit of traced work

    ``end_time`` stays None while the span is open. Once set it is never
    earlier than ``start_time``.
    """
    trace_id: str
    span_id: str
    parent_span_id: Optional[str]
    name: str
    span_type: SpanType
    start_time: float
    correlation_id: Optional[str] = None
    end_time: Optional[float] = None
    status: SpanStatus = SpanStatus.OPEN
    attributes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Convert string span_type/status to Enum if needed"""
        if isinstance(self.span_type, str):
            self.span_type = SpanType(self.span_type)
        if isinstance(self.status, str):
            self.status = SpanStatus(self.status)

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def is_error(self) -> bool:
        return self.status == SpanStatus.ERROR

    @property
    def duration_ms(self) -> Optional[float]:
        """Duration in milliseconds, None while open"""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    def end(
        self,
        end_time: float,
        is_error: bool = False,
        attributes: Optional[Dict[str, Any]] = None
    ) -> None:
        """Close the span, clamping ``end_time`` to ``start_time``"""
        self.end_time = max(end_time, self.start_time)
        self.status = SpanStatus.ERROR if is_error else SpanStatus.SUCCESS
        if attributes:
            self.attributes.update(attributes)
        self.attributes["is_error"] = is_error
        self.attributes["duration_ms"] = self.duration_ms

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "name": self.name,
            "span_type": self.span_type.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "correlation_id": self.correlation_id,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Span":
        """Rebuild a span from ``to_dict`` output"""
        return cls(
            trace_id=data["trace_id"],
            span_id=data["span_id"],
            parent_span_id=data.get("parent_span_id"),
            name=data["name"],
            span_type=data["span_type"],
            start_time=data["start_time"],
            correlation_id=data.get("correlation_id"),
            end_time=data.get("end_time"),
            status=data.get("status", SpanStatus.OPEN),
            attributes=dict(data.get("attributes") or {}),
        )


class SpanStore:
    """
    Append-only span sequence with an open-span index

    Usage:
        store = SpanStore(trace_id)
        span = store.open_span("bash", SpanType.TOOL_EXECUTION, start_time=t0,
                               correlation_id="tool:call_1")
        store.close_span("tool:call_1", end_time=t1, is_error=False)
    """

    def __init__(self, trace_id: str, spans: Optional[Iterable[Span]] = None):
        self.trace_id = trace_id
        self._spans: List[Span] = []
        self._by_id: Dict[str, Span] = {}
        self._open: Dict[str, Span] = {}
        # Most recent span per correlation id, open or closed (parent lookup)
        self._latest: Dict[str, Span] = {}

        for span in spans or ():
            self._append(span)

    def _append(self, span: Span) -> None:
        self._spans.append(span)
        self._by_id[span.span_id] = span
        if span.correlation_id is not None:
            self._latest[span.correlation_id] = span
            if span.is_open:
                self._open[span.correlation_id] = span

    def open_span(
        self,
        name: str,
        span_type: SpanType,
        start_time: float,
        correlation_id: str,
        parent_span_id: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None
    ) -> Span:
        """
        Append a new open span

        Raises:
            DuplicateSpanError: a span with this correlation id is still open
        """
        if correlation_id in self._open:
            raise DuplicateSpanError(
                f"Span already open for correlation id {correlation_id}",
                correlation_id
            )

        span = Span(
            trace_id=self.trace_id,
            span_id=f"span_{span_type.value}_{uuid.uuid4().hex[:8]}",
            parent_span_id=parent_span_id,
            name=name,
            span_type=span_type,
            start_time=start_time,
            correlation_id=correlation_id,
            attributes=dict(attributes or {}),
        )
        self._append(span)
        return span

    def get_open(self, correlation_id: str) -> Span:
        """
        Look up an open span by correlation id

        Raises:
            UnknownSpanError: no open span carries this id
        """
        span = self._open.get(correlation_id)
        if span is None:
            raise UnknownSpanError(
                f"No open span for correlation id {correlation_id}",
                correlation_id
            )
        return span

    def close_span(
        self,
        correlation_id: str,
        end_time: float,
        is_error: bool = False,
        attributes: Optional[Dict[str, Any]] = None
    ) -> Span:
        """
        Close an open span and drop it from the index

        Raises:
            UnknownSpanError: no open span carries this id
        """
        span = self.get_open(correlation_id)
        span.end(end_time, is_error=is_error, attributes=attributes)
        del self._open[correlation_id]
        return span

    def find_latest(self, correlation_id: Optional[str]) -> Optional[Span]:
        """Most recent span opened with this correlation id, open or closed"""
        if correlation_id is None:
            return None
        return self._latest.get(correlation_id)

    def open_spans(self) -> List[Span]:
        """Open spans in insertion order"""
        return [span for span in self._spans if span.is_open]

    def by_id(self, span_id: str) -> Optional[Span]:
        """Find a span by span id"""
        return self._by_id.get(span_id)

    def __iter__(self) -> Iterator[Span]:
        return iter(self._spans)

    def __len__(self) -> int:
        return len(self._spans)


__all__ = [
    "SpanType",
    "SpanStatus",
    "Span",
    "SpanStore",
]
