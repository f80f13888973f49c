"""
Event Classifier - maps lifecycle events to span-lifecycle actions

Classification is pure: the result depends only on the event and the short
history of recent tool names the aggregator passes in. Start and end events
are paired by correlation keys derived from ids carried on the events
(``msg:<message_id>``, ``tool:<tool_call_id>``, ``retry:<attempt>``,
``compaction``), never by arrival order, because tool executions can
interleave.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from session_tracer.monitoring.errors import ErrorKind
from session_tracer.monitoring.events import (
    BaseEvent,
    CompactionEndEvent,
    CompactionStartEvent,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    RetryEndEvent,
    RetryStartEvent,
    SessionEndEvent,
    SessionStartEvent,
    TokenUsage,
    ToolEndEvent,
    ToolStartEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from session_tracer.monitoring.heuristics import DEFAULT_LOOP_THRESHOLD, detect_tool_loop
from session_tracer.monitoring.metrics import estimate_cost
from session_tracer.monitoring.spans import SpanType


RATE_LIMIT_PATTERN = re.compile(
    r"rate.?limit|overloaded|too many requests|\b429\b|\b529\b|\b503\b|service unavailable",
    re.IGNORECASE,
)
CONTEXT_OVERFLOW_PATTERN = re.compile(
    r"context.?(length|window)|prompt is too long|maximum context|too many tokens",
    re.IGNORECASE,
)
TIMEOUT_PATTERN = re.compile(r"timed? ?out|timeout|deadline exceeded", re.IGNORECASE)

PREVIEW_LIMIT = 200
COMPACTION_KEY = "compaction"


# ===== Actions =====

@dataclass(frozen=True)
class OpenSpan:
    span_type: SpanType
    name: str
    correlation_id: str
    parent_hint: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None


@dataclass(frozen=True)
class UpdateSpan:
    correlation_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CloseSpan:
    correlation_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    is_error: bool = False
    error_kind: Optional[ErrorKind] = None


@dataclass(frozen=True)
class RecordMetric:
    cost: float = 0.0
    usage: TokenUsage = field(default_factory=TokenUsage)
    turns: int = 0


@dataclass(frozen=True)
class NoOp:
    reason: str = ""
    error_kind: Optional[ErrorKind] = None


ClassifiedAction = Union[OpenSpan, UpdateSpan, CloseSpan, RecordMetric, NoOp]


# ===== Correlation keys =====

def message_key(message_id: str) -> str:
    return f"msg:{message_id}"


def tool_key(tool_call_id: str) -> str:
    return f"tool:{tool_call_id}"


def retry_key(attempt: int) -> str:
    return f"retry:{attempt}"


# ===== Error classification =====

def classify_llm_error(message: Optional[str]) -> ErrorKind:
    """Classify an LLM-side error message"""
    if not message:
        return ErrorKind.UNKNOWN
    # Rate-limit wording wins: a 429 about tokens per minute is not an overflow
    if RATE_LIMIT_PATTERN.search(message):
        return ErrorKind.LLM_API_ERROR
    if CONTEXT_OVERFLOW_PATTERN.search(message):
        return ErrorKind.LLM_CONTEXT_OVERFLOW
    return ErrorKind.UNKNOWN


def classify_tool_error(result_preview: Optional[str]) -> ErrorKind:
    """Classify a failed tool result"""
    if result_preview and TIMEOUT_PATTERN.search(result_preview):
        return ErrorKind.TOOL_TIMEOUT
    return ErrorKind.TOOL_EXECUTION_ERROR


def _preview(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return text if len(text) <= PREVIEW_LIMIT else text[:PREVIEW_LIMIT] + "..."


class EventClassifier:
    """
    Event Classifier

    Usage:
        classifier = EventClassifier(loop_threshold=3)
        actions = classifier.classify(event, recent_tool_names=["read", "read"])
    """

    def __init__(
        self,
        loop_threshold: int = DEFAULT_LOOP_THRESHOLD,
        estimate_missing_cost: bool = True
    ):
        """
        Args:
            loop_threshold: Consecutive identical tool calls treated as a loop
            estimate_missing_cost: Price generations from token usage when the
                event carries no cost
        """
        if loop_threshold < 2:
            raise ValueError(f"loop_threshold must be >= 2, got {loop_threshold}")
        self.loop_threshold = loop_threshold
        self.estimate_missing_cost = estimate_missing_cost

    @classmethod
    def from_config(cls, tracer_config) -> "EventClassifier":
        return cls(
            loop_threshold=tracer_config.loop_threshold,
            estimate_missing_cost=tracer_config.estimate_missing_cost,
        )

    def classify(
        self,
        event: BaseEvent,
        recent_tool_names: Sequence[str] = ()
    ) -> List[ClassifiedAction]:
        """
        Classify one event

        Args:
            event: The incoming event
            recent_tool_names: Most recent tool names, oldest first

        Returns:
            Ordered actions for the aggregator to apply (usually one)
        """
        if isinstance(event, (SessionStartEvent, SessionEndEvent)):
            return [NoOp(reason="session lifecycle is handled by the aggregator")]

        if isinstance(event, TurnStartEvent):
            return [RecordMetric(turns=1)]

        if isinstance(event, TurnEndEvent):
            return [NoOp(reason="turn end")]

        if isinstance(event, MessageStartEvent):
            return self._classify_message_start(event)

        if isinstance(event, MessageUpdateEvent):
            if event.role != "assistant":
                return [NoOp(reason=f"{event.role} message update")]
            return [UpdateSpan(
                correlation_id=message_key(event.message_id),
                attributes={"streamed_chars": len(event.text_delta or "")},
            )]

        if isinstance(event, MessageEndEvent):
            return self._classify_message_end(event)

        if isinstance(event, ToolStartEvent):
            return self._classify_tool_start(event, recent_tool_names)

        if isinstance(event, ToolEndEvent):
            error_kind = classify_tool_error(event.result_preview) if event.is_error else None
            return [CloseSpan(
                correlation_id=tool_key(event.tool_call_id),
                attributes={"result_preview": _preview(event.result_preview)},
                is_error=event.is_error,
                error_kind=error_kind,
            )]

        if isinstance(event, RetryStartEvent):
            return [OpenSpan(
                span_type=SpanType.RETRY,
                name=f"retry {event.attempt}",
                correlation_id=retry_key(event.attempt),
                attributes={
                    "attempt": event.attempt,
                    "max_attempts": event.max_attempts,
                    "delay_ms": event.delay_ms,
                    "error_message": _preview(event.error_message),
                },
                error_kind=classify_llm_error(event.error_message),
            )]

        if isinstance(event, RetryEndEvent):
            return [CloseSpan(
                correlation_id=retry_key(event.attempt),
                attributes={"final_error": _preview(event.final_error)},
                is_error=not event.success,
                error_kind=None if event.success else classify_llm_error(event.final_error),
            )]

        if isinstance(event, CompactionStartEvent):
            return [OpenSpan(
                span_type=SpanType.COMPACTION,
                name=f"compaction ({event.reason})",
                correlation_id=COMPACTION_KEY,
                attributes={"reason": event.reason, "tokens_before": event.tokens_before},
                error_kind=ErrorKind.LLM_CONTEXT_OVERFLOW if event.reason == "overflow" else None,
            )]

        if isinstance(event, CompactionEndEvent):
            return [CloseSpan(
                correlation_id=COMPACTION_KEY,
                attributes={"tokens_after": event.tokens_after, "aborted": event.aborted},
                is_error=event.aborted,
            )]

        return [NoOp(reason=f"unhandled event type {type(event).__name__}")]

    def _classify_message_start(self, event: MessageStartEvent) -> List[ClassifiedAction]:
        if event.role != "assistant":
            return [NoOp(reason=f"{event.role} message")]
        return [OpenSpan(
            span_type=SpanType.GENERATION,
            name=event.model or "generation",
            correlation_id=message_key(event.message_id),
            attributes={"model": event.model},
        )]

    def _classify_message_end(self, event: MessageEndEvent) -> List[ClassifiedAction]:
        if event.role != "assistant":
            return [NoOp(reason=f"{event.role} message")]

        cost = event.cost
        cost_estimated = False
        if cost is None:
            cost = estimate_cost(event.model, event.usage) if self.estimate_missing_cost else 0.0
            cost_estimated = self.estimate_missing_cost

        is_error = event.stop_reason in ("error", "aborted")
        error_kind = None
        if is_error:
            error_kind = classify_llm_error(event.error_message)
            if error_kind == ErrorKind.UNKNOWN:
                error_kind = ErrorKind.LLM_API_ERROR

        attributes = {
            "model": event.model,
            "input_tokens": event.usage.input,
            "output_tokens": event.usage.output,
            "cache_read_tokens": event.usage.cache_read,
            "cache_write_tokens": event.usage.cache_write,
            "cost": cost,
            "cost_estimated": cost_estimated,
            "stop_reason": event.stop_reason,
        }
        if event.error_message:
            attributes["error_message"] = _preview(event.error_message)

        return [
            CloseSpan(
                correlation_id=message_key(event.message_id),
                attributes=attributes,
                is_error=is_error,
                error_kind=error_kind,
            ),
            RecordMetric(cost=cost, usage=event.usage),
        ]

    def _classify_tool_start(
        self,
        event: ToolStartEvent,
        recent_tool_names: Sequence[str]
    ) -> List[ClassifiedAction]:
        window = list(recent_tool_names)[-(self.loop_threshold - 1):] + [event.tool_name]
        loop_suspected = detect_tool_loop(window, self.loop_threshold)

        attributes: Dict[str, Any] = {"arguments": dict(event.arguments)}
        if loop_suspected:
            attributes["loop_suspected"] = True

        return [OpenSpan(
            span_type=SpanType.TOOL_EXECUTION,
            name=event.tool_name,
            correlation_id=tool_key(event.tool_call_id),
            parent_hint=message_key(event.message_id) if event.message_id else None,
            attributes=attributes,
            error_kind=ErrorKind.AGENT_STUCK if loop_suspected else None,
        )]


_default_classifier = EventClassifier()


def classify(event: BaseEvent, recent_tool_names: Sequence[str] = ()) -> List[ClassifiedAction]:
    """Classify with default settings"""
    return _default_classifier.classify(event, recent_tool_names)


__all__ = [
    "OpenSpan",
    "UpdateSpan",
    "CloseSpan",
    "RecordMetric",
    "NoOp",
    "ClassifiedAction",
    "message_key",
    "tool_key",
    "retry_key",
    "COMPACTION_KEY",
    "classify_llm_error",
    "classify_tool_error",
    "EventClassifier",
    "classify",
]
