"""
Unit tests for EventClassifier
"""

import pytest

from session_tracer.monitoring.classifier import (
    CloseSpan,
    EventClassifier,
    NoOp,
    OpenSpan,
    RecordMetric,
    UpdateSpan,
    classify,
    classify_llm_error,
    classify_tool_error,
)
from session_tracer.monitoring.errors import ErrorKind
from session_tracer.monitoring.events import (
    CompactionEndEvent,
    CompactionStartEvent,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    RetryEndEvent,
    RetryStartEvent,
    SessionStartEvent,
    TokenUsage,
    ToolEndEvent,
    ToolStartEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from session_tracer.monitoring.metrics import estimate_cost
from session_tracer.monitoring.spans import SpanType


class TestLifecycleEvents:
    """Test session and turn events"""

    def test_session_events_are_noop(self):
        """Test session lifecycle is left to the aggregator"""
        actions = classify(SessionStartEvent(session_id="s1"))
        assert len(actions) == 1
        assert isinstance(actions[0], NoOp)

    def test_turn_start_records_turn(self):
        """Test turn start increments the turn counter"""
        assert classify(TurnStartEvent(session_id="s1", turn_index=0)) == [RecordMetric(turns=1)]

    def test_turn_end_is_noop(self):
        """Test turn end"""
        assert isinstance(classify(TurnEndEvent(session_id="s1"))[0], NoOp)


class TestMessageEvents:
    """Test generation classification"""

    def test_assistant_message_start_opens_generation(self):
        """Test assistant message start opens a generation span"""
        actions = classify(MessageStartEvent(session_id="s1", message_id="m1", model="gpt-4o"))
        assert len(actions) == 1
        action = actions[0]
        assert isinstance(action, OpenSpan)
        assert action.span_type == SpanType.GENERATION
        assert action.correlation_id == "msg:m1"
        assert action.name == "gpt-4o"

    def test_user_message_is_noop(self):
        """Test non-assistant messages are not traced"""
        actions = classify(MessageStartEvent(session_id="s1", message_id="m1", role="user"))
        assert isinstance(actions[0], NoOp)

    def test_message_update(self):
        """Test streaming updates count characters"""
        actions = classify(MessageUpdateEvent(session_id="s1", message_id="m1", text_delta="hello"))
        assert actions == [UpdateSpan(correlation_id="msg:m1", attributes={"streamed_chars": 5})]

    def test_message_end_closes_and_records(self):
        """Test message end yields close then metric"""
        usage = TokenUsage(input=100, output=20)
        actions = classify(MessageEndEvent(
            session_id="s1", message_id="m1", usage=usage, cost=0.02, stop_reason="end_turn"
        ))

        assert len(actions) == 2
        close, metric = actions
        assert isinstance(close, CloseSpan)
        assert close.correlation_id == "msg:m1"
        assert close.is_error is False
        assert close.attributes["cost_estimated"] is False
        assert metric == RecordMetric(cost=0.02, usage=usage)

    def test_missing_cost_is_estimated(self):
        """Test cost falls back to the pricing table"""
        usage = TokenUsage(input=1_000_000, output=0)
        actions = classify(MessageEndEvent(
            session_id="s1", message_id="m1", model="gpt-4o", usage=usage
        ))

        assert actions[1].cost == pytest.approx(estimate_cost("gpt-4o", usage))
        assert actions[1].cost == pytest.approx(2.5)
        assert actions[0].attributes["cost_estimated"] is True

    def test_missing_cost_without_estimation(self):
        """Test estimation can be turned off"""
        classifier = EventClassifier(estimate_missing_cost=False)
        actions = classifier.classify(MessageEndEvent(
            session_id="s1", message_id="m1", usage=TokenUsage(input=1000)
        ))
        assert actions[1].cost == 0.0

    def test_error_stop_reason(self):
        """Test failed generations default to llm_api_error"""
        actions = classify(MessageEndEvent(
            session_id="s1", message_id="m1", stop_reason="error", error_message="529 overloaded"
        ))
        assert actions[0].is_error is True
        assert actions[0].error_kind == ErrorKind.LLM_API_ERROR

    def test_context_overflow_error(self):
        """Test context overflow is recognised"""
        actions = classify(MessageEndEvent(
            session_id="s1", message_id="m1", stop_reason="error",
            error_message="prompt is too long: 210000 tokens > 200000 maximum"
        ))
        assert actions[0].error_kind == ErrorKind.LLM_CONTEXT_OVERFLOW

    def test_aborted_generation_is_error(self):
        """Test aborted generations close in error"""
        actions = classify(MessageEndEvent(session_id="s1", message_id="m1", stop_reason="aborted"))
        assert actions[0].is_error is True


class TestToolEvents:
    """Test tool classification"""

    def test_tool_start(self):
        """Test tool start opens a tool span linked to its message"""
        actions = classify(ToolStartEvent(
            session_id="s1", tool_call_id="c1", tool_name="bash", message_id="m1"
        ))
        action = actions[0]
        assert isinstance(action, OpenSpan)
        assert action.span_type == SpanType.TOOL_EXECUTION
        assert action.correlation_id == "tool:c1"
        assert action.parent_hint == "msg:m1"
        assert action.error_kind is None
        assert "loop_suspected" not in action.attributes

    def test_tool_end_with_error_flag(self):
        """Test an explicit error flag closes the span in error"""
        actions = classify(ToolEndEvent(
            session_id="s1", tool_call_id="c1", tool_name="bash",
            is_error=True, result_preview="exit code 1"
        ))
        assert actions[0].is_error is True
        assert actions[0].error_kind == ErrorKind.TOOL_EXECUTION_ERROR

    def test_tool_timeout(self):
        """Test timeouts are classified separately"""
        actions = classify(ToolEndEvent(
            session_id="s1", tool_call_id="c1", tool_name="bash",
            is_error=True, result_preview="Command timed out after 120s"
        ))
        assert actions[0].error_kind == ErrorKind.TOOL_TIMEOUT

    def test_tool_loop_detected(self):
        """Test the third identical consecutive call is flagged"""
        event = ToolStartEvent(session_id="s1", tool_call_id="c3", tool_name="read")
        action = classify(event, recent_tool_names=["read", "read"])[0]

        assert action.attributes["loop_suspected"] is True
        assert action.error_kind == ErrorKind.AGENT_STUCK

    def test_tool_loop_needs_consecutive_calls(self):
        """Test an interrupted run is not flagged"""
        event = ToolStartEvent(session_id="s1", tool_call_id="c3", tool_name="read")
        action = classify(event, recent_tool_names=["read", "write"])[0]
        assert action.error_kind is None

    def test_long_result_preview_truncated(self):
        """Test previews are truncated"""
        actions = classify(ToolEndEvent(
            session_id="s1", tool_call_id="c1", tool_name="bash", result_preview="x" * 500
        ))
        assert len(actions[0].attributes["result_preview"]) == 203


class TestRetryAndCompaction:
    """Test retry and compaction classification"""

    def test_rate_limit_retry(self):
        """Test rate-limit retries classify as llm_api_error"""
        actions = classify(RetryStartEvent(
            session_id="s1", attempt=1, max_attempts=3, delay_ms=2000,
            error_message="Error 429: rate limit exceeded"
        ))
        action = actions[0]
        assert action.span_type == SpanType.RETRY
        assert action.correlation_id == "retry:1"
        assert action.error_kind == ErrorKind.LLM_API_ERROR

    def test_rate_limit_wins_over_token_wording(self):
        """Test a rate-limit retry mentioning tokens is an API error, not an overflow"""
        action = classify(RetryStartEvent(
            session_id="s1", error_message="429 rate limit exceeded: too many tokens per minute"
        ))[0]
        assert action.error_kind == ErrorKind.LLM_API_ERROR

    def test_unrecognised_retry_error(self):
        """Test other retry messages are unknown"""
        action = classify(RetryStartEvent(session_id="s1", error_message="socket closed"))[0]
        assert action.error_kind == ErrorKind.UNKNOWN

    def test_retry_end(self):
        """Test retry end closes by attempt"""
        ok = classify(RetryEndEvent(session_id="s1", attempt=2, success=True))[0]
        failed = classify(RetryEndEvent(session_id="s1", attempt=2, success=False, final_error="overloaded"))[0]

        assert ok.correlation_id == "retry:2" and ok.is_error is False
        assert failed.is_error is True
        assert failed.error_kind == ErrorKind.LLM_API_ERROR

    def test_overflow_compaction(self):
        """Test overflow compaction carries the overflow kind"""
        action = classify(CompactionStartEvent(session_id="s1", reason="overflow", tokens_before=190000))[0]
        assert action.span_type == SpanType.COMPACTION
        assert action.error_kind == ErrorKind.LLM_CONTEXT_OVERFLOW

    def test_aborted_compaction(self):
        """Test an aborted compaction closes in error"""
        action = classify(CompactionEndEvent(session_id="s1", aborted=True))[0]
        assert action.correlation_id == "compaction"
        assert action.is_error is True


class TestErrorClassification:
    """Test error message helpers"""

    def test_llm_errors(self):
        """Test LLM error patterns"""
        assert classify_llm_error("Service Unavailable (503)") == ErrorKind.LLM_API_ERROR
        assert classify_llm_error("context length exceeded") == ErrorKind.LLM_CONTEXT_OVERFLOW
        assert classify_llm_error("Overloaded: too many tokens in flight") == ErrorKind.LLM_API_ERROR
        assert classify_llm_error(None) == ErrorKind.UNKNOWN

    def test_tool_errors(self):
        """Test tool error patterns"""
        assert classify_tool_error("deadline exceeded") == ErrorKind.TOOL_TIMEOUT
        assert classify_tool_error(None) == ErrorKind.TOOL_EXECUTION_ERROR

    def test_invalid_loop_threshold(self):
        """Test the classifier rejects thresholds below two"""
        with pytest.raises(ValueError):
            EventClassifier(loop_threshold=1)
