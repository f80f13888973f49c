"""
Pricing and trace metrics

- Cost estimation for generations whose events carry token usage but no
  cost
- Per-tool call statistics and a performance breakdown computed from a
  trace's spans
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from session_tracer.monitoring.events import TokenUsage
from session_tracer.monitoring.spans import SpanType
from session_tracer.monitoring.trace import Trace


# Model pricing (USD per 1M tokens)
MODEL_PRICING = {
    # Claude models
    "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0, "cache_read": 0.30, "cache_write": 3.75},
    "claude-haiku-4-5-20251001": {"input": 1.0, "output": 5.0, "cache_read": 0.10, "cache_write": 1.25},
    "claude-opus-4-20250514": {"input": 15.0, "output": 75.0, "cache_read": 1.50, "cache_write": 18.75},
    "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0, "cache_read": 0.30, "cache_write": 3.75},

    # GPT models
    "gpt-4.1": {"input": 2.0, "output": 8.0, "cache_read": 0.50, "cache_write": 0.0},
    "gpt-4o": {"input": 2.5, "output": 10.0, "cache_read": 1.25, "cache_write": 0.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60, "cache_read": 0.075, "cache_write": 0.0},

    # Default pricing
    "default": {"input": 1.0, "output": 2.0, "cache_read": 0.1, "cache_write": 1.0},
}


def estimate_cost(model: Optional[str], usage: TokenUsage) -> float:
    """
    Estimate generation cost from token usage

    Args:
        model: Model identifier, unknown models use the default pricing
        usage: Token counts for the generation

    Returns:
        Estimated cost in USD
    """
    pricing = MODEL_PRICING.get(model or "default", MODEL_PRICING["default"])
    return (
        usage.input * pricing["input"]
        + usage.output * pricing["output"]
        + usage.cache_read * pricing["cache_read"]
        + usage.cache_write * pricing["cache_write"]
    ) / 1_000_000


@dataclass
class ToolCallStats:
    """Statistics for a single tool"""
    tool_name: str
    call_count: int = 0
    success_count: int = 0
    error_count: int = 0
    open_count: int = 0
    total_duration_ms: float = 0.0

    @property
    def avg_duration_ms(self) -> float:
        """Average duration per completed call"""
        completed = self.success_count + self.error_count
        return self.total_duration_ms / completed if completed > 0 else 0.0

    @property
    def success_rate(self) -> float:
        """Success rate (0-1)"""
        return self.success_count / self.call_count if self.call_count > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "call_count": self.call_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "open_count": self.open_count,
            "avg_duration_ms": self.avg_duration_ms,
            "success_rate": self.success_rate,
        }


@dataclass
class TraceMetrics:
    """
    Rollup metrics for one trace

    Durations only count closed spans.
    """
    trace_id: str
    session_id: str
    total_cost: float = 0.0
    total_tokens: int = 0
    total_duration_ms: float = 0.0
    generation_duration_ms: float = 0.0
    tool_duration_ms: float = 0.0
    other_duration_ms: float = 0.0
    generation_count: int = 0
    tool_calls_count: int = 0
    tool_errors: int = 0
    retry_count: int = 0
    compaction_count: int = 0
    tool_calls_by_name: Dict[str, ToolCallStats] = field(default_factory=dict)
    models_used: List[str] = field(default_factory=list)

    @property
    def tool_error_rate(self) -> float:
        return self.tool_errors / self.tool_calls_count if self.tool_calls_count > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "session_id": self.session_id,
            "total_cost": self.total_cost,
            "total_tokens": self.total_tokens,
            "total_duration_ms": self.total_duration_ms,
            "generation_duration_ms": self.generation_duration_ms,
            "tool_duration_ms": self.tool_duration_ms,
            "other_duration_ms": self.other_duration_ms,
            "generation_count": self.generation_count,
            "tool_calls_count": self.tool_calls_count,
            "tool_errors": self.tool_errors,
            "tool_error_rate": self.tool_error_rate,
            "retry_count": self.retry_count,
            "compaction_count": self.compaction_count,
            "tool_calls_by_name": {
                name: stats.to_dict()
                for name, stats in self.tool_calls_by_name.items()
            },
            "models_used": list(self.models_used),
        }


def summarize_trace(trace: Trace, now: Optional[float] = None) -> TraceMetrics:
    """Compute rollup metrics from a trace without mutating it"""
    metrics = TraceMetrics(
        trace_id=trace.trace_id,
        session_id=trace.session_id,
        total_cost=trace.total_cost,
        total_tokens=trace.total_tokens,
        total_duration_ms=trace.duration_ms(now),
    )

    for span in trace.span_store:
        duration = span.duration_ms or 0.0

        if span.span_type == SpanType.GENERATION:
            metrics.generation_count += 1
            metrics.generation_duration_ms += duration
            model = span.attributes.get("model")
            if model and model not in metrics.models_used:
                metrics.models_used.append(model)

        elif span.span_type == SpanType.TOOL_EXECUTION:
            metrics.tool_calls_count += 1
            metrics.tool_duration_ms += duration

            stats = metrics.tool_calls_by_name.get(span.name)
            if stats is None:
                stats = ToolCallStats(tool_name=span.name)
                metrics.tool_calls_by_name[span.name] = stats
            stats.call_count += 1
            stats.total_duration_ms += duration
            if span.is_open:
                stats.open_count += 1
            elif span.is_error:
                stats.error_count += 1
                metrics.tool_errors += 1
            else:
                stats.success_count += 1

        elif span.span_type == SpanType.RETRY:
            metrics.retry_count += 1

        elif span.span_type == SpanType.COMPACTION:
            metrics.compaction_count += 1

    accounted = metrics.generation_duration_ms + metrics.tool_duration_ms
    metrics.other_duration_ms = max(0.0, metrics.total_duration_ms - accounted)

    return metrics


__all__ = [
    "MODEL_PRICING",
    "estimate_cost",
    "ToolCallStats",
    "TraceMetrics",
    "summarize_trace",
]
