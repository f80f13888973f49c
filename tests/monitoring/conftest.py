"""
Pytest configuration and fixtures for monitoring tests
"""

from typing import List, Optional

import pytest
from unittest.mock import Mock

from session_tracer.monitoring.events import (
    MessageEndEvent,
    MessageStartEvent,
    SessionEndEvent,
    SessionStartEvent,
    TokenUsage,
    ToolEndEvent,
    ToolStartEvent,
    TurnStartEvent,
)
from session_tracer.monitoring.trace import Trace
from session_tracer.monitoring.trace_aggregator import TraceAggregator


SESSION_ID = "session_test"
T0 = 1700000000.0


class EventFactory:
    """Builds a session's events with a monotonically advancing clock"""

    def __init__(self, session_id: str = SESSION_ID, start: float = T0, step: float = 0.5):
        self.session_id = session_id
        self.now = start
        self.step = step
        self._counter = 0

    def _tick(self) -> float:
        stamp = self.now
        self.now += self.step
        return stamp

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    def session_start(self, model: str = "claude-sonnet-4-5", task: str = "test task"):
        return SessionStartEvent(session_id=self.session_id, timestamp=self._tick(), model=model, task=task)

    def session_end(self, reason: Optional[str] = "completed"):
        return SessionEndEvent(session_id=self.session_id, timestamp=self._tick(), reason=reason)

    def turn_start(self, index: int = 0):
        return TurnStartEvent(session_id=self.session_id, timestamp=self._tick(), turn_index=index)

    def message_start(self, message_id: str, model: str = "claude-sonnet-4-5", role: str = "assistant"):
        return MessageStartEvent(
            session_id=self.session_id, timestamp=self._tick(),
            message_id=message_id, role=role, model=model,
        )

    def message_end(
        self,
        message_id: str,
        cost: Optional[float] = 0.01,
        usage: Optional[TokenUsage] = None,
        stop_reason: str = "end_turn",
        error_message: Optional[str] = None,
        model: str = "claude-sonnet-4-5",
        role: str = "assistant"
    ):
        return MessageEndEvent(
            session_id=self.session_id, timestamp=self._tick(),
            message_id=message_id, role=role, model=model,
            usage=usage or TokenUsage(input=100, output=50),
            cost=cost, stop_reason=stop_reason, error_message=error_message,
        )

    def tool_start(self, tool_call_id: str, tool_name: str, message_id: Optional[str] = None):
        return ToolStartEvent(
            session_id=self.session_id, timestamp=self._tick(),
            tool_call_id=tool_call_id, tool_name=tool_name,
            arguments={"arg": tool_call_id}, message_id=message_id,
        )

    def tool_end(self, tool_call_id: str, tool_name: str, is_error: bool = False, result: str = "ok"):
        return ToolEndEvent(
            session_id=self.session_id, timestamp=self._tick(),
            tool_call_id=tool_call_id, tool_name=tool_name,
            is_error=is_error, result_preview=result,
        )

    def generation(self, cost: float = 0.01, usage: Optional[TokenUsage] = None) -> List:
        """Start and end events of one assistant message"""
        message_id = self._next_id("msg")
        return [
            self.message_start(message_id),
            self.message_end(message_id, cost=cost, usage=usage),
        ]

    def tool_call(self, tool_name: str, is_error: bool = False) -> List:
        """Start and end events of one tool call"""
        call_id = self._next_id("call")
        return [
            self.tool_start(call_id, tool_name),
            self.tool_end(call_id, tool_name, is_error=is_error, result="failed" if is_error else "ok"),
        ]


def run_session(events, session_id: str = SESSION_ID, **kwargs) -> TraceAggregator:
    """Feed events to a fresh aggregator and return it"""
    aggregator = TraceAggregator(session_id, **kwargs)
    for event in events:
        aggregator.on_event(event)
    return aggregator


def build_trace(
    tool_calls: List[str] = (),
    failing_tools: int = 0,
    generations: int = 1,
    cost: float = 0.05,
    duration_s: Optional[float] = None
) -> Trace:
    """
    Build a finalized trace through the aggregator

    Args:
        tool_calls: Tool names in call order
        failing_tools: The first N tool calls end in error
        generations: Number of assistant messages
        cost: Total cost spread evenly over the generations
        duration_s: Force the session end this many seconds after start
    """
    factory = EventFactory()
    events = [factory.session_start()]
    for _ in range(generations):
        events.extend(factory.generation(cost=cost / generations if generations else 0.0))
    for index, name in enumerate(tool_calls):
        events.extend(factory.tool_call(name, is_error=index < failing_tools))
    if duration_s is not None:
        factory.now = T0 + duration_s
    events.append(factory.session_end())
    return run_session(events).trace


@pytest.fixture
def events():
    """Event factory for the default test session"""
    return EventFactory()


@pytest.fixture
def canceller():
    """Mock SessionCanceller"""
    return Mock(spec=["request_cancel"])


@pytest.fixture
def event_factory():
    """EventFactory class, for tests that need several sessions"""
    return EventFactory


@pytest.fixture
def session_runner():
    """Feed events to a fresh aggregator: ``session_runner(events, **kwargs)``"""
    return run_session


@pytest.fixture
def make_trace():
    """Build a finalized trace: ``make_trace(tool_calls=[...], cost=...)``"""
    return build_trace
