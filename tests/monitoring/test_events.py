"""
Unit tests for the event model
"""

import pytest
from pydantic import ValidationError

from session_tracer.monitoring.events import (
    MessageEndEvent,
    SessionStartEvent,
    TokenUsage,
    ToolStartEvent,
    parse_event,
)


class TestParseEvent:
    """Test raw event validation"""

    def test_discriminates_on_kind(self):
        """Test the kind tag selects the variant"""
        event = parse_event({
            "kind": "tool_start",
            "session_id": "s1",
            "timestamp": 10.0,
            "tool_call_id": "c1",
            "tool_name": "bash",
            "arguments": {"command": "ls"},
        })
        assert isinstance(event, ToolStartEvent)
        assert event.arguments == {"command": "ls"}

    def test_nested_usage(self):
        """Test nested token usage is validated"""
        event = parse_event({
            "kind": "message_end",
            "session_id": "s1",
            "message_id": "m1",
            "usage": {"input": 10, "output": 5, "cache_read": 2},
            "cost": 0.001,
        })
        assert isinstance(event, MessageEndEvent)
        assert event.usage.total == 17

    def test_unknown_kind_rejected(self):
        """Test an unknown kind fails validation"""
        with pytest.raises(ValidationError):
            parse_event({"kind": "mystery", "session_id": "s1"})

    def test_missing_required_field_rejected(self):
        """Test a missing tool name fails validation"""
        with pytest.raises(ValidationError):
            parse_event({"kind": "tool_start", "session_id": "s1", "tool_call_id": "c1"})

    def test_negative_cost_rejected(self):
        """Test cost must be non-negative"""
        with pytest.raises(ValidationError):
            parse_event({"kind": "message_end", "session_id": "s1", "message_id": "m1", "cost": -1})

    def test_extra_fields_ignored(self):
        """Test unknown fields from newer engines are ignored"""
        event = parse_event({"kind": "session_start", "session_id": "s1", "engine_version": "9"})
        assert isinstance(event, SessionStartEvent)


class TestEventImmutability:
    """Test events are frozen"""

    def test_event_is_frozen(self):
        """Test assignment to an event fails"""
        event = SessionStartEvent(session_id="s1")
        with pytest.raises(ValidationError):
            event.session_id = "s2"

    def test_token_usage_defaults(self):
        """Test empty usage"""
        usage = TokenUsage()
        assert usage.is_empty is True
        assert usage.total == 0
