"""
Trace - the aggregate root for one agent session

A trace owns its span store, running totals and trace-level diagnostics.
It is mutated only by its ``TraceAggregator``; once finalized it is handed
to readers (alert evaluation, eval scoring, persistence) as-is.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from session_tracer.monitoring.errors import ErrorKind
from session_tracer.monitoring.spans import Span, SpanStore, SpanType


@dataclass
class Diagnostic:
    """A trace-level warning (leaked span, suspected loop, budget stop)"""
    kind: ErrorKind
    message: str
    span_id: Optional[str] = None
    timestamp: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.kind, str):
            self.kind = ErrorKind(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "span_id": self.span_id,
            "timestamp": self.timestamp,
        }


@dataclass
class Trace:
    """
    Trace - complete record of one session

    Contains:
    - Ordered spans (insertion order = arrival order of start events)
    - Running cost and token totals (never decrease)
    - A success latch that flips to False on the first failed tool span
    - Diagnostics raised while building the trace
    """
    trace_id: str
    session_id: str
    start_time: float
    end_time: Optional[float] = None
    total_cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    turn_count: int = 0
    success: bool = True
    finalized: bool = False
    warnings: List[Diagnostic] = field(default_factory=list)
    error_kinds: List[ErrorKind] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    span_store: Optional[SpanStore] = None

    def __post_init__(self):
        if self.span_store is None:
            self.span_store = SpanStore(self.trace_id)

    # ----- Readers -----

    @property
    def spans(self) -> List[Span]:
        return list(self.span_store)

    @property
    def span_count(self) -> int:
        return len(self.span_store)

    def spans_of_type(self, span_type: SpanType) -> List[Span]:
        return [span for span in self.span_store if span.span_type == span_type]

    @property
    def generation_spans(self) -> List[Span]:
        return self.spans_of_type(SpanType.GENERATION)

    @property
    def tool_spans(self) -> List[Span]:
        return self.spans_of_type(SpanType.TOOL_EXECUTION)

    @property
    def error_tool_spans(self) -> List[Span]:
        return [span for span in self.tool_spans if span.is_error]

    @property
    def tool_names(self) -> List[str]:
        """Tool names in call order"""
        return [span.name for span in self.tool_spans]

    @property
    def tool_error_rate(self) -> float:
        tool_spans = self.tool_spans
        if not tool_spans:
            return 0.0
        return len([span for span in tool_spans if span.is_error]) / len(tool_spans)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens + self.cache_read_tokens + self.cache_write_tokens

    @property
    def leaked_spans(self) -> List[Span]:
        """Spans still open (after finalization these are leaks)"""
        return self.span_store.open_spans()

    def duration_ms(self, now: Optional[float] = None) -> float:
        """Elapsed time in ms; in-flight traces measure up to ``now``"""
        end = self.end_time
        if end is None:
            end = now if now is not None else time.time()
        return max(0.0, (end - self.start_time) * 1000)

    def has_warning(self, kind: ErrorKind) -> bool:
        return any(warning.kind == kind for warning in self.warnings)

    # ----- Bookkeeping used by the aggregator -----

    def add_warning(
        self,
        kind: ErrorKind,
        message: str,
        span_id: Optional[str] = None,
        timestamp: Optional[float] = None
    ) -> Diagnostic:
        diagnostic = Diagnostic(kind=kind, message=message, span_id=span_id, timestamp=timestamp)
        self.warnings.append(diagnostic)
        self.note_error_kind(kind)
        return diagnostic

    def note_error_kind(self, kind: ErrorKind) -> None:
        if kind not in self.error_kinds:
            self.error_kinds.append(kind)

    # ----- Serialization -----

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "trace_id": self.trace_id,
            "session_id": self.session_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms() if self.end_time is not None else None,
            "total_cost": self.total_cost,
            "usage": {
                "input": self.input_tokens,
                "output": self.output_tokens,
                "cache_read": self.cache_read_tokens,
                "cache_write": self.cache_write_tokens,
            },
            "turn_count": self.turn_count,
            "success": self.success,
            "finalized": self.finalized,
            "warnings": [warning.to_dict() for warning in self.warnings],
            "error_kinds": [kind.value for kind in self.error_kinds],
            "attributes": dict(self.attributes),
            "spans": [span.to_dict() for span in self.span_store],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trace":
        """Rebuild a trace from ``to_dict`` output"""
        usage = data.get("usage") or {}
        spans = [Span.from_dict(item) for item in data.get("spans", [])]
        return cls(
            trace_id=data["trace_id"],
            session_id=data["session_id"],
            start_time=data["start_time"],
            end_time=data.get("end_time"),
            total_cost=data.get("total_cost", 0.0),
            input_tokens=usage.get("input", 0),
            output_tokens=usage.get("output", 0),
            cache_read_tokens=usage.get("cache_read", 0),
            cache_write_tokens=usage.get("cache_write", 0),
            turn_count=data.get("turn_count", 0),
            success=data.get("success", True),
            finalized=data.get("finalized", False),
            warnings=[Diagnostic(**item) for item in data.get("warnings", [])],
            error_kinds=[ErrorKind(kind) for kind in data.get("error_kinds", [])],
            attributes=dict(data.get("attributes") or {}),
            span_store=SpanStore(data["trace_id"], spans),
        )

    def to_mermaid(self) -> str:
        """
        Generate Mermaid flowchart representation

        The session is the root node; spans hang off their parent span or,
        when they have none, off the root.
        """
        root_id = _mermaid_id(self.trace_id)
        status_icon = "✓" if self.success else "✗"
        lines = ["graph TD", f"    {root_id}[\"session {self.session_id}\\n{status_icon}\"]"]

        for span in self.span_store:
            node_id = _mermaid_id(span.span_id)
            duration_str = f"{span.duration_ms:.0f}ms" if span.duration_ms is not None else "running"
            if span.is_open:
                icon = "○"
            else:
                icon = "✗" if span.is_error else "✓"
            lines.append(f"    {node_id}[\"{span.span_type.value}: {span.name}\\n{duration_str} {icon}\"]")

            parent_id = _mermaid_id(span.parent_span_id) if span.parent_span_id else root_id
            lines.append(f"    {parent_id} --> {node_id}")

        return "\n".join(lines)


def _mermaid_id(raw: str) -> str:
    return raw.replace("-", "_").replace(":", "_")


__all__ = [
    "Diagnostic",
    "Trace",
]
