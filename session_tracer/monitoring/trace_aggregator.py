"""
Trace Aggregator - builds one trace per session from ordered events

Design principles:
- ``on_event`` is the only mutating entry point, called in arrival order
- Bad input never raises across the ingestion boundary; it degrades into a
  NoOp or a logged protocol violation so the rest of the session is still
  observed
- Only bookkeeping contract failures (an aggregator routed events of
  another session) raise ``TraceInvariantError``
- No module-level state: one aggregator per session, one router per
  consumer
"""

import logging
import time
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from session_tracer.monitoring.budget_guard import BudgetGuard, BudgetOutcome, build_budget_guard
from session_tracer.monitoring.classifier import (
    ClassifiedAction,
    CloseSpan,
    EventClassifier,
    NoOp,
    OpenSpan,
    RecordMetric,
    UpdateSpan,
)
from session_tracer.monitoring.errors import (
    ErrorKind,
    ProtocolViolationError,
    TraceInvariantError,
)
from session_tracer.monitoring.events import (
    BaseEvent,
    SessionEndEvent,
    SessionStartEvent,
    parse_event,
)
from session_tracer.monitoring.spans import SpanType
from session_tracer.monitoring.trace import Diagnostic, Trace


logger = logging.getLogger(__name__)

RawEvent = Union[BaseEvent, Mapping[str, Any]]

DEFAULT_HISTORY_SIZE = 3


class SessionCanceller(Protocol):
    """The agent session's cancellation primitive"""

    def request_cancel(self, session_id: str, reason: str) -> None:
        ...


class TraceAggregator:
    """
    Trace Aggregator for a single session

    Usage:
        aggregator = TraceAggregator("session_1", budget_guard=guard, canceller=session)
        for event in engine_events:
            aggregator.on_event(event)
        trace = aggregator.trace
    """

    def __init__(
        self,
        session_id: str,
        classifier: Optional[EventClassifier] = None,
        budget_guard: Optional[BudgetGuard] = None,
        canceller: Optional[SessionCanceller] = None,
        history_size: Optional[int] = None
    ):
        """
        Args:
            session_id: Session this aggregator is bound to
            classifier: Event classifier (default settings if None)
            budget_guard: Optional per-session budget guard
            canceller: Collaborator asked to cancel the session when the
                budget is exceeded
            history_size: Recent tool names kept for loop detection,
                defaults to 3 and never less than ``loop_threshold - 1``
        """
        self.session_id = session_id
        self.classifier = classifier or EventClassifier()
        self.budget_guard = budget_guard
        self.canceller = canceller

        min_history = self.classifier.loop_threshold - 1
        if history_size is None:
            history_size = max(DEFAULT_HISTORY_SIZE, min_history)
        if history_size < min_history:
            raise ValueError(
                f"history_size must be >= {min_history} for loop_threshold "
                f"{self.classifier.loop_threshold}"
            )
        self._tool_history: Deque[str] = deque(maxlen=history_size)

        self._trace: Optional[Trace] = None
        self._cancel_requested = False
        self._budget_outcomes: List[BudgetOutcome] = []
        self._protocol_violations: List[Diagnostic] = []
        self._rejected_events = 0

    @classmethod
    def from_config(
        cls,
        session_id: str,
        config,
        canceller: Optional[SessionCanceller] = None
    ) -> "TraceAggregator":
        """Build an aggregator from the top-level ``Config``"""
        return cls(
            session_id=session_id,
            classifier=EventClassifier.from_config(config.tracer),
            budget_guard=build_budget_guard(config.budget),
            canceller=canceller,
            history_size=config.tracer.history_size,
        )

    # ----- State -----

    @property
    def trace(self) -> Optional[Trace]:
        return self._trace

    @property
    def is_finalized(self) -> bool:
        return self._trace is not None and self._trace.finalized

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def budget_outcomes(self) -> List[BudgetOutcome]:
        """Non-OK budget outcomes in the order they occurred"""
        return list(self._budget_outcomes)

    @property
    def protocol_violations(self) -> List[Diagnostic]:
        return list(self._protocol_violations)

    @property
    def rejected_events(self) -> int:
        return self._rejected_events

    # ----- Ingestion -----

    def on_event(self, event: RawEvent) -> List[ClassifiedAction]:
        """
        Apply one event

        Args:
            event: An event model or a raw mapping to validate

        Returns:
            The actions that were derived from the event
        """
        if not isinstance(event, BaseEvent):
            try:
                event = parse_event(dict(event))
            except (ValidationError, TypeError, ValueError) as e:
                return self._reject(f"malformed event: {e}")

        if event.session_id != self.session_id:
            return self._reject(
                f"event for session {event.session_id} sent to aggregator for {self.session_id}"
            )

        if isinstance(event, SessionStartEvent):
            return self._start_trace(event)

        if self._trace is None:
            return self._reject(f"{event.kind} event before session start")

        if self._trace.finalized:
            return self._reject(f"{event.kind} event after trace {self._trace.trace_id} was finalized")

        if isinstance(event, SessionEndEvent):
            self._finalize(event.timestamp, reason=event.reason)
            return [NoOp(reason="session ended")]

        actions = self.classifier.classify(event, tuple(self._tool_history))
        for action in actions:
            # A failed span action voids the rest of the event (e.g. the
            # metric of an unmatched message end)
            if not self._apply(action, event):
                break
        return actions

    def finalize(self, now: Optional[float] = None) -> Optional[Trace]:
        """
        Finalize without a session-end event (e.g. the engine went away)

        Returns:
            The finalized trace, or None if no session started
        """
        if self._trace is None:
            return None
        if not self._trace.finalized:
            self._finalize(now if now is not None else time.time(), reason="finalized by consumer")
        return self._trace

    # ----- Internals -----

    def _reject(self, reason: str) -> List[ClassifiedAction]:
        self._rejected_events += 1
        logger.warning(f"Rejected event for session {self.session_id}: {reason}")
        return [NoOp(reason=reason)]

    def _start_trace(self, event: SessionStartEvent) -> List[ClassifiedAction]:
        if self._trace is not None:
            if self._trace.finalized:
                return self._reject(f"session start after trace {self._trace.trace_id} was finalized")
            reason = f"duplicate session start while trace {self._trace.trace_id} is open"
            self._protocol_violation(ProtocolViolationError(reason, self.session_id), event)
            self._rejected_events += 1
            return [NoOp(reason=reason)]

        trace_id = f"trace_{uuid.uuid4().hex[:16]}_{int(event.timestamp)}"
        self._trace = Trace(
            trace_id=trace_id,
            session_id=self.session_id,
            start_time=event.timestamp,
            attributes={"model": event.model, "task": event.task},
        )
        logger.info(f"Trace {trace_id} started for session {self.session_id}")
        return [NoOp(reason="session started")]

    def _apply(self, action: ClassifiedAction, event: BaseEvent) -> bool:
        """Apply one action, returning False when it was rejected"""
        if isinstance(action, OpenSpan):
            return self._open_span(action, event)
        if isinstance(action, UpdateSpan):
            return self._update_span(action, event)
        if isinstance(action, CloseSpan):
            return self._close_span(action, event)
        if isinstance(action, RecordMetric):
            return self._record_metric(action, event)
        return True

    def _protocol_violation(self, error: ProtocolViolationError, event: BaseEvent) -> None:
        diagnostic = Diagnostic(
            kind=ErrorKind.PROTOCOL_VIOLATION,
            message=f"{event.kind}: {error}",
            timestamp=event.timestamp,
        )
        self._protocol_violations.append(diagnostic)
        logger.warning(f"Protocol violation in session {self.session_id}: {diagnostic.message}")

    def _open_span(self, action: OpenSpan, event: BaseEvent) -> bool:
        trace = self._trace
        parent = trace.span_store.find_latest(action.parent_hint)
        attributes = dict(action.attributes)
        if action.error_kind is not None:
            attributes["error_kind"] = action.error_kind.value

        try:
            span = trace.span_store.open_span(
                name=action.name,
                span_type=action.span_type,
                start_time=event.timestamp,
                correlation_id=action.correlation_id,
                parent_span_id=parent.span_id if parent else None,
                attributes=attributes,
            )
        except ProtocolViolationError as e:
            self._protocol_violation(e, event)
            return False

        if span.span_type == SpanType.TOOL_EXECUTION:
            self._tool_history.append(span.name)

        if action.error_kind == ErrorKind.AGENT_STUCK:
            trace.add_warning(
                ErrorKind.AGENT_STUCK,
                f"Tool {span.name} called {self.classifier.loop_threshold}+ times in a row",
                span_id=span.span_id,
                timestamp=event.timestamp,
            )
            logger.warning(f"Suspected tool loop in session {self.session_id}: {span.name}")
        elif action.error_kind is not None:
            trace.note_error_kind(action.error_kind)

        logger.debug(f"Opened {span.span_type.value} span {span.span_id} ({span.name})")
        return True

    def _update_span(self, action: UpdateSpan, event: BaseEvent) -> bool:
        try:
            span = self._trace.span_store.get_open(action.correlation_id)
        except ProtocolViolationError as e:
            self._protocol_violation(e, event)
            return False

        streamed = action.attributes.get("streamed_chars")
        if streamed is not None:
            span.attributes["streamed_chars"] = span.attributes.get("streamed_chars", 0) + streamed
            span.attributes["update_count"] = span.attributes.get("update_count", 0) + 1
        else:
            span.attributes.update(action.attributes)
        return True

    def _close_span(self, action: CloseSpan, event: BaseEvent) -> bool:
        trace = self._trace
        attributes = dict(action.attributes)
        if action.error_kind is not None:
            attributes["error_kind"] = action.error_kind.value

        try:
            span = trace.span_store.close_span(
                action.correlation_id,
                end_time=event.timestamp,
                is_error=action.is_error,
                attributes=attributes,
            )
        except ProtocolViolationError as e:
            self._protocol_violation(e, event)
            return False

        if action.is_error:
            if action.error_kind is not None:
                trace.note_error_kind(action.error_kind)
            if span.span_type == SpanType.TOOL_EXECUTION and trace.success:
                trace.success = False
                logger.info(f"Trace {trace.trace_id} marked unsuccessful by tool {span.name}")

        logger.debug(f"Closed {span.span_type.value} span {span.span_id} error={action.is_error}")
        return True

    def _record_metric(self, action: RecordMetric, event: BaseEvent) -> bool:
        trace = self._trace

        if action.cost < 0 or action.turns < 0:
            logger.warning(
                f"Ignoring negative metric increment in session {self.session_id}: "
                f"cost={action.cost} turns={action.turns}"
            )
            return False

        trace.turn_count += action.turns
        trace.total_cost += action.cost
        trace.input_tokens += action.usage.input
        trace.output_tokens += action.usage.output
        trace.cache_read_tokens += action.usage.cache_read
        trace.cache_write_tokens += action.usage.cache_write

        if self.budget_guard is not None and action.cost > 0:
            self._check_budget(action.cost, event)
        return True

    def _check_budget(self, amount: float, event: BaseEvent) -> None:
        trace = self._trace
        policy = self.budget_guard.policy

        for outcome in self.budget_guard.on_cost_increment(amount):
            if outcome == BudgetOutcome.OK:
                continue
            self._budget_outcomes.append(outcome)

            if outcome == BudgetOutcome.WARN_THRESHOLD_CROSSED:
                logger.warning(
                    f"Session {self.session_id} reached {policy.warn_at_percent:.0f}% of budget: "
                    f"${self.budget_guard.total:.4f} of ${policy.max_cost_per_request:.2f}"
                )
            elif outcome == BudgetOutcome.BUDGET_EXCEEDED:
                message = (
                    f"Budget exceeded: ${self.budget_guard.total:.4f} >= "
                    f"${policy.max_cost_per_request:.2f}"
                )
                logger.error(f"Session {self.session_id}: {message}")
                trace.add_warning(ErrorKind.BUDGET_EXCEEDED, message, timestamp=event.timestamp)
                self._request_cancel(message)

    def _request_cancel(self, reason: str) -> None:
        if self._cancel_requested or self.canceller is None:
            return
        self._cancel_requested = True
        try:
            self.canceller.request_cancel(self.session_id, reason)
        except Exception:
            logger.exception(f"Cancellation request failed for session {self.session_id}")

    def _finalize(self, timestamp: float, reason: Optional[str] = None) -> None:
        trace = self._trace
        trace.end_time = max(timestamp, trace.start_time)
        if reason:
            trace.attributes["end_reason"] = reason

        for span in trace.span_store.open_spans():
            trace.add_warning(
                ErrorKind.LEAKED_SPAN,
                f"{span.span_type.value} span {span.name} was never closed",
                span_id=span.span_id,
                timestamp=trace.end_time,
            )
            logger.warning(
                f"Leaked span {span.span_id} ({span.name}) in trace {trace.trace_id}"
            )

        trace.finalized = True
        logger.info(
            f"Trace {trace.trace_id} finalized: spans={trace.span_count} "
            f"cost=${trace.total_cost:.4f} tokens={trace.total_tokens} success={trace.success}"
        )


class SessionRouter:
    """
    Routes events from many concurrent sessions to per-session aggregators

    Aggregators share no mutable state. A session's aggregator is created on
    its session-start event and handed back with ``pop``. Finalized sessions
    stay registered (and keep their trace in memory) until popped, so a
    long-running consumer must pop every session it is done with.

    Usage:
        router = SessionRouter()
        for event in bus:
            router.on_event(event)
        trace = router.pop("session_1")
    """

    def __init__(self, aggregator_factory: Optional[Callable[[str], TraceAggregator]] = None):
        self._factory = aggregator_factory or TraceAggregator
        self._aggregators: Dict[str, TraceAggregator] = {}
        self._rejected_events = 0

    @property
    def active_sessions(self) -> List[str]:
        """Sessions whose trace is still open"""
        return [
            session_id for session_id, aggregator in self._aggregators.items()
            if not aggregator.is_finalized
        ]

    @property
    def rejected_events(self) -> int:
        return self._rejected_events

    def get(self, session_id: str) -> Optional[TraceAggregator]:
        return self._aggregators.get(session_id)

    def on_event(self, event: RawEvent) -> List[ClassifiedAction]:
        """
        Route one event to its session's aggregator

        Raises:
            TraceInvariantError: the factory built an aggregator for a
                different session id
        """
        if not isinstance(event, BaseEvent):
            try:
                event = parse_event(dict(event))
            except (ValidationError, TypeError, ValueError) as e:
                self._rejected_events += 1
                logger.warning(f"Rejected malformed event: {e}")
                return [NoOp(reason=f"malformed event: {e}")]

        aggregator = self._aggregators.get(event.session_id)
        if aggregator is None:
            if not isinstance(event, SessionStartEvent):
                self._rejected_events += 1
                logger.warning(f"Rejected {event.kind} event for unknown session {event.session_id}")
                return [NoOp(reason=f"unknown session {event.session_id}")]
            aggregator = self._factory(event.session_id)
            if aggregator.session_id != event.session_id:
                raise TraceInvariantError(
                    f"Factory built aggregator for {aggregator.session_id} "
                    f"when routing session {event.session_id}"
                )
            self._aggregators[event.session_id] = aggregator

        return aggregator.on_event(event)

    def pop(self, session_id: str, finalize: bool = True) -> Optional[Trace]:
        """
        Detach a session and return its trace

        Args:
            session_id: Session to remove
            finalize: Finalize the trace if the session never ended
        """
        aggregator = self._aggregators.pop(session_id, None)
        if aggregator is None:
            return None
        if finalize:
            return aggregator.finalize()
        return aggregator.trace


__all__ = [
    "SessionCanceller",
    "TraceAggregator",
    "SessionRouter",
]
