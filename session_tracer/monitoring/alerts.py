"""
Alert Evaluator - runs alert rules over a trace

Rules are pure: a predicate and a message renderer over a trace plus the
evaluation time (used only for in-flight traces). Every firing rule yields
exactly one alert; there is no precedence or suppression between rules.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from config import AlertConfig
from session_tracer.monitoring.trace import Trace


logger = logging.getLogger(__name__)

TracePredicate = Callable[[Trace, float], bool]
TraceRenderer = Callable[[Trace, float], str]


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertAction(str, Enum):
    """What the consuming application is expected to do"""
    LOG = "log"
    NOTIFY = "notify"
    ABORT = "abort"


@dataclass(frozen=True)
class AlertRule:
    """A named predicate over a trace with severity and action"""
    name: str
    severity: AlertSeverity
    action: AlertAction
    predicate: TracePredicate
    render: TraceRenderer


@dataclass(frozen=True)
class Alert:
    """A fired alert"""
    rule_name: str
    severity: AlertSeverity
    action: AlertAction
    message: str
    trace_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_name": self.rule_name,
            "severity": self.severity.value,
            "action": self.action.value,
            "message": self.message,
            "trace_id": self.trace_id,
        }


def default_rules(thresholds: Optional[AlertConfig] = None) -> List[AlertRule]:
    """
    Standard rules

    - high_cost: total cost above ``max_cost_usd``
    - high_turn_count: more than ``max_generation_spans`` generation spans
    - tool_error_rate: failed tool spans above ``max_tool_error_rate``
    - slow_execution: session longer than ``max_duration_ms``
    """
    t = thresholds or AlertConfig()

    def error_rate(trace: Trace) -> float:
        return trace.tool_error_rate

    return [
        AlertRule(
            name="high_cost",
            severity=AlertSeverity.WARNING,
            action=AlertAction.NOTIFY,
            predicate=lambda trace, now: trace.total_cost > t.max_cost_usd,
            render=lambda trace, now: (
                f"Session cost ${trace.total_cost:.4f} exceeds ${t.max_cost_usd:.2f}"
            ),
        ),
        AlertRule(
            name="high_turn_count",
            severity=AlertSeverity.WARNING,
            action=AlertAction.LOG,
            predicate=lambda trace, now: len(trace.generation_spans) > t.max_generation_spans,
            render=lambda trace, now: (
                f"{len(trace.generation_spans)} generations exceed limit of {t.max_generation_spans}"
            ),
        ),
        AlertRule(
            name="tool_error_rate",
            severity=AlertSeverity.CRITICAL,
            action=AlertAction.NOTIFY,
            predicate=lambda trace, now: (
                len(trace.tool_spans) > 0 and error_rate(trace) > t.max_tool_error_rate
            ),
            render=lambda trace, now: (
                f"Tool error rate {error_rate(trace):.0%} "
                f"({len(trace.error_tool_spans)}/{len(trace.tool_spans)}) "
                f"exceeds {t.max_tool_error_rate:.0%}"
            ),
        ),
        AlertRule(
            name="slow_execution",
            severity=AlertSeverity.WARNING,
            action=AlertAction.LOG,
            predicate=lambda trace, now: trace.duration_ms(now) > t.max_duration_ms,
            render=lambda trace, now: (
                f"Session took {trace.duration_ms(now) / 1000:.1f}s, "
                f"limit {t.max_duration_ms / 1000:.1f}s"
            ),
        ),
    ]


class AlertEvaluator:
    """
    Alert Evaluator

    Usage:
        evaluator = AlertEvaluator(default_rules())
        alerts = evaluator.evaluate(trace)
    """

    def __init__(self, rules: Optional[Sequence[AlertRule]] = None):
        self.rules = list(rules) if rules is not None else default_rules()

    @classmethod
    def from_config(cls, alert_config: AlertConfig) -> "AlertEvaluator":
        return cls(default_rules(alert_config))

    def evaluate(self, trace: Trace, now: Optional[float] = None) -> List[Alert]:
        """
        Evaluate every rule against the trace

        Args:
            trace: Finalized or in-flight trace (never mutated)
            now: Reference time for in-flight traces, defaults to the
                current time; finalized traces ignore it

        Returns:
            One alert per firing rule, in rule order
        """
        now = now if now is not None else time.time()
        alerts = []
        for rule in self.rules:
            if not rule.predicate(trace, now):
                continue
            alert = Alert(
                rule_name=rule.name,
                severity=rule.severity,
                action=rule.action,
                message=rule.render(trace, now),
                trace_id=trace.trace_id,
            )
            logger.info(f"Alert {rule.name} [{rule.severity.value}] on {trace.trace_id}: {alert.message}")
            alerts.append(alert)
        return alerts


def evaluate(
    trace: Trace,
    rules: Optional[Sequence[AlertRule]] = None,
    now: Optional[float] = None
) -> List[Alert]:
    """Evaluate ``rules`` (default rules if None) against a trace"""
    return AlertEvaluator(rules).evaluate(trace, now=now)


__all__ = [
    "AlertSeverity",
    "AlertAction",
    "AlertRule",
    "Alert",
    "default_rules",
    "AlertEvaluator",
    "evaluate",
]
