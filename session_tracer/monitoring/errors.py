"""
Error kinds and exceptions for the monitoring core

Classification outcomes (``ErrorKind``) are data attached to spans and
traces. Exceptions are reserved for bookkeeping bugs and store lookups.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Classification outcome attached to spans, traces and diagnostics"""
    PROTOCOL_VIOLATION = "protocol_violation"
    LLM_API_ERROR = "llm_api_error"
    LLM_CONTEXT_OVERFLOW = "llm_context_overflow"
    TOOL_EXECUTION_ERROR = "tool_execution_error"
    TOOL_TIMEOUT = "tool_timeout"
    BUDGET_EXCEEDED = "budget_exceeded"
    AGENT_STUCK = "agent_stuck"
    LEAKED_SPAN = "leaked_span"
    UNKNOWN = "unknown"


class TracerError(Exception):
    """Base class for session-tracer exceptions"""


class TraceInvariantError(TracerError):
    """
    The aggregator's own bookkeeping is inconsistent

    Raised for contract failures such as an aggregator registered under
    another session's id. Never raised for noisy input.
    """


class ProtocolViolationError(TracerError):
    """An event referenced span state that does not exist or already exists"""

    def __init__(self, message: str, correlation_id: str):
        self.correlation_id = correlation_id
        super().__init__(message)


class UnknownSpanError(ProtocolViolationError):
    """No open span carries the given correlation id"""


class DuplicateSpanError(ProtocolViolationError):
    """A span with the given correlation id is already open"""


class TraceNotFoundError(TracerError, KeyError):
    """A stored trace could not be found"""

    def __init__(self, trace_id: str):
        self.trace_id = trace_id
        super().__init__(f"Trace not found: {trace_id}")

    def __str__(self) -> str:
        return self.args[0]


__all__ = [
    "ErrorKind",
    "TracerError",
    "TraceInvariantError",
    "ProtocolViolationError",
    "UnknownSpanError",
    "DuplicateSpanError",
    "TraceNotFoundError",
]
