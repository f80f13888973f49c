"""
Session Tracer Monitoring

Builds structured traces from agent lifecycle events:

Components:
- EventClassifier: Maps each event to span-lifecycle actions
- TraceAggregator: Applies actions to one session's trace
- SessionRouter: Dispatches events to per-session aggregators
- BudgetGuard: Per-session spending ceiling
- AlertEvaluator: Rules over a finished trace
- Eval scorer: Scores a trace against an eval case
- TraceStore: Persistent storage for trace bundles

Architecture:
    Agent events -> SessionRouter -> TraceAggregator -> EventClassifier
                                          |-> SpanStore / running totals
                                          |-> BudgetGuard -> SessionCanceller
    Finalized trace -> AlertEvaluator / eval scorer -> TraceStore -> API

Usage:
    from session_tracer.monitoring import TraceAggregator

    aggregator = TraceAggregator("session-1")
    for event in events:
        aggregator.on_event(event)
    alerts = evaluate(aggregator.trace)
"""

from session_tracer.monitoring.errors import (
    ErrorKind,
    TracerError,
    TraceInvariantError,
    TraceNotFoundError,
)

from session_tracer.monitoring.events import (
    EventKind,
    TokenUsage,
    parse_event,
)

from session_tracer.monitoring.spans import (
    Span,
    SpanStore,
    SpanType,
    SpanStatus,
)

from session_tracer.monitoring.trace import (
    Diagnostic,
    Trace,
)

from session_tracer.monitoring.classifier import (
    EventClassifier,
    classify,
)

from session_tracer.monitoring.budget_guard import (
    BudgetGuard,
    BudgetOutcome,
    CostPolicy,
)

from session_tracer.monitoring.trace_aggregator import (
    SessionCanceller,
    SessionRouter,
    TraceAggregator,
)

from session_tracer.monitoring.alerts import (
    Alert,
    AlertEvaluator,
    AlertRule,
    default_rules,
    evaluate,
)

from session_tracer.monitoring.eval_scorer import (
    EvalCase,
    EvalReport,
    EvalResult,
    score,
    score_suite,
)

from session_tracer.monitoring.metrics import (
    TraceMetrics,
    summarize_trace,
)

from session_tracer.monitoring.trace_store import (
    TraceStore,
    get_trace_store,
)

__all__ = [
    # Errors
    "ErrorKind",
    "TracerError",
    "TraceInvariantError",
    "TraceNotFoundError",

    # Events
    "EventKind",
    "TokenUsage",
    "parse_event",

    # Spans and traces
    "Span",
    "SpanStore",
    "SpanType",
    "SpanStatus",
    "Diagnostic",
    "Trace",

    # Classification and aggregation
    "EventClassifier",
    "classify",
    "BudgetGuard",
    "BudgetOutcome",
    "CostPolicy",
    "SessionCanceller",
    "SessionRouter",
    "TraceAggregator",

    # Evaluation
    "Alert",
    "AlertEvaluator",
    "AlertRule",
    "default_rules",
    "evaluate",
    "EvalCase",
    "EvalReport",
    "EvalResult",
    "score",
    "score_suite",

    # Metrics and storage
    "TraceMetrics",
    "summarize_trace",
    "TraceStore",
    "get_trace_store",
]
