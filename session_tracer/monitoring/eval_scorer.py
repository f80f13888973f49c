"""
Eval Scorer - scores a finished trace against an eval case

Fixed checks run in order: task_completed, expected_tools_used,
within_cost, no_loops. ``within_turn_limit`` and ``custom_validator`` are
appended only when the case configures them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from session_tracer.monitoring.heuristics import DEFAULT_LOOP_THRESHOLD, first_tool_loop
from session_tracer.monitoring.trace import Trace


logger = logging.getLogger(__name__)

TraceValidator = Callable[[Trace], bool]


@dataclass(frozen=True)
class EvalCase:
    """Expected outcome for one agent task"""
    name: str
    task: str
    expected_tools: Sequence[str] = ()
    max_cost: float = 1.00
    max_turns: Optional[int] = None
    validator: Optional[TraceValidator] = None


@dataclass(frozen=True)
class EvalCheck:
    name: str
    passed: bool
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "passed": self.passed, "detail": self.detail}


@dataclass
class EvalResult:
    """Result of scoring one trace; ``passed`` holds only when every check passes"""
    case_name: str
    trace_id: str
    checks: List[EvalCheck] = field(default_factory=list)

    @property
    def score(self) -> float:
        if not self.checks:
            return 0.0
        return sum(1 for check in self.checks if check.passed) / len(self.checks)

    @property
    def passed(self) -> bool:
        return bool(self.checks) and all(check.passed for check in self.checks)

    @property
    def failed_checks(self) -> List[EvalCheck]:
        return [check for check in self.checks if not check.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_name": self.case_name,
            "trace_id": self.trace_id,
            "score": self.score,
            "passed": self.passed,
            "checks": [check.to_dict() for check in self.checks],
        }


@dataclass
class EvalReport:
    """Aggregate over several scored traces"""
    results: List[EvalResult] = field(default_factory=list)

    @property
    def pass_rate(self) -> float:
        if not self.results:
            return 0.0
        return sum(1 for result in self.results if result.passed) / len(self.results)

    @property
    def average_score(self) -> float:
        if not self.results:
            return 0.0
        return sum(result.score for result in self.results) / len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "pass_rate": self.pass_rate,
            "average_score": self.average_score,
        }


def _check_task_completed(trace: Trace) -> EvalCheck:
    if trace.success:
        return EvalCheck("task_completed", True, "no tool errors")
    return EvalCheck(
        "task_completed", False,
        f"{len(trace.error_tool_spans)} tool call(s) failed"
    )


def _check_expected_tools(trace: Trace, expected_tools: Sequence[str]) -> EvalCheck:
    used = set(trace.tool_names)
    missing = [name for name in expected_tools if name not in used]
    if missing:
        return EvalCheck("expected_tools_used", False, f"missing: {', '.join(missing)}")
    return EvalCheck("expected_tools_used", True, f"used: {', '.join(expected_tools) or '-'}")


def _check_cost(trace: Trace, max_cost: float) -> EvalCheck:
    return EvalCheck(
        "within_cost",
        trace.total_cost <= max_cost,
        f"${trace.total_cost:.4f} of ${max_cost:.2f}",
    )


def _check_no_loops(trace: Trace, loop_threshold: int) -> EvalCheck:
    loop = first_tool_loop(trace.tool_names, loop_threshold)
    if loop is None:
        return EvalCheck("no_loops", True, "no repeated tool runs")
    tool_name, start_index, run_length = loop
    return EvalCheck(
        "no_loops", False,
        f"{tool_name} called {run_length} times in a row from call #{start_index + 1}"
    )


def _check_turn_limit(trace: Trace, max_turns: int) -> EvalCheck:
    # Traces without turn events fall back to generation spans
    turns = trace.turn_count or len(trace.generation_spans)
    return EvalCheck("within_turn_limit", turns <= max_turns, f"{turns} of {max_turns} turns")


def _check_validator(trace: Trace, validator: TraceValidator) -> EvalCheck:
    try:
        passed = bool(validator(trace))
    except Exception as e:
        logger.warning(f"Custom validator raised on {trace.trace_id}: {e}")
        return EvalCheck("custom_validator", False, f"validator raised: {e}")
    return EvalCheck("custom_validator", passed, "validator passed" if passed else "validator rejected trace")


def score(
    trace: Trace,
    case: EvalCase,
    loop_threshold: int = DEFAULT_LOOP_THRESHOLD
) -> EvalResult:
    """
    Score a trace against an eval case

    Args:
        trace: Finished trace (never mutated)
        case: Expected outcome
        loop_threshold: Run length treated as a loop, same as live detection

    Returns:
        EvalResult with one check per evaluated criterion
    """
    checks = [
        _check_task_completed(trace),
        _check_expected_tools(trace, case.expected_tools),
        _check_cost(trace, case.max_cost),
        _check_no_loops(trace, loop_threshold),
    ]
    if case.max_turns is not None:
        checks.append(_check_turn_limit(trace, case.max_turns))
    if case.validator is not None:
        checks.append(_check_validator(trace, case.validator))

    result = EvalResult(case_name=case.name, trace_id=trace.trace_id, checks=checks)
    logger.debug(f"Eval {case.name} on {trace.trace_id}: score={result.score:.2f} passed={result.passed}")
    return result


def score_suite(
    pairs: Iterable[Tuple[Trace, EvalCase]],
    loop_threshold: int = DEFAULT_LOOP_THRESHOLD
) -> EvalReport:
    """Score several (trace, case) pairs"""
    report = EvalReport(results=[score(trace, case, loop_threshold) for trace, case in pairs])
    logger.info(
        f"Eval suite: {len(report.results)} case(s), "
        f"pass_rate={report.pass_rate:.2f}, average_score={report.average_score:.2f}"
    )
    return report


__all__ = [
    "EvalCase",
    "EvalCheck",
    "EvalResult",
    "EvalReport",
    "score",
    "score_suite",
]
