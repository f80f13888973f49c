"""
Unit tests for pricing and trace metrics
"""

import pytest

from session_tracer.monitoring.events import TokenUsage
from session_tracer.monitoring.metrics import MODEL_PRICING, estimate_cost, summarize_trace


class TestEstimateCost:
    """Test cost estimation"""

    def test_known_model(self):
        """Test pricing of a listed model"""
        usage = TokenUsage(input=1_000_000, output=1_000_000)
        assert estimate_cost("claude-sonnet-4-5-20250929", usage) == pytest.approx(18.0)

    def test_cache_tokens(self):
        """Test cache reads and writes are priced"""
        usage = TokenUsage(cache_read=1_000_000, cache_write=1_000_000)
        pricing = MODEL_PRICING["claude-haiku-4-5-20251001"]
        expected = pricing["cache_read"] + pricing["cache_write"]
        assert estimate_cost("claude-haiku-4-5-20251001", usage) == pytest.approx(expected)

    def test_unknown_model_uses_default(self):
        """Test fallback pricing"""
        usage = TokenUsage(input=500_000)
        assert estimate_cost("mystery-model", usage) == pytest.approx(0.5)
        assert estimate_cost(None, usage) == pytest.approx(0.5)


class TestSummarizeTrace:
    """Test trace rollups"""

    def test_breakdown(self, make_trace):
        """Test counts and per-tool statistics"""
        trace = make_trace(tool_calls=["read", "bash", "read"], failing_tools=1, generations=2, cost=0.04)
        metrics = summarize_trace(trace)

        assert metrics.generation_count == 2
        assert metrics.tool_calls_count == 3
        assert metrics.tool_errors == 1
        assert metrics.tool_error_rate == pytest.approx(1 / 3)
        assert metrics.total_cost == pytest.approx(0.04)
        assert metrics.models_used == ["claude-sonnet-4-5"]

        read = metrics.tool_calls_by_name["read"]
        assert read.call_count == 2
        assert read.error_count == 1
        assert read.success_rate == pytest.approx(0.5)
        assert read.avg_duration_ms == pytest.approx(500.0)

    def test_durations_add_up(self, make_trace):
        """Test other time fills the gap between spans"""
        trace = make_trace(tool_calls=["read"])
        metrics = summarize_trace(trace)

        accounted = metrics.generation_duration_ms + metrics.tool_duration_ms + metrics.other_duration_ms
        assert accounted == pytest.approx(metrics.total_duration_ms)

    def test_to_dict(self, make_trace):
        """Test serialization"""
        data = summarize_trace(make_trace(tool_calls=["read"])).to_dict()
        assert data["tool_calls_by_name"]["read"]["call_count"] == 1
        assert data["generation_count"] == 1
