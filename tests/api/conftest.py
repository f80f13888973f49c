"""
Pytest fixtures for API tests
"""

import pytest
from fastapi.testclient import TestClient

from config import Config
from session_tracer.api.main import create_app
from session_tracer.api.state import clear_app_state, set_app_state
from session_tracer.monitoring.events import (
    SessionEndEvent,
    SessionStartEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from session_tracer.monitoring.trace_aggregator import TraceAggregator
from session_tracer.monitoring.trace_store import TraceStore


@pytest.fixture
def trace_store(tmp_path):
    return TraceStore(tmp_path / "traces")


@pytest.fixture
def client(trace_store, tmp_path):
    """TestClient with a temporary trace store"""
    clear_app_state()
    config = Config(environment="test", storage={"trace_dir": str(tmp_path / "traces")})
    app = create_app(config)
    set_app_state("trace_store", trace_store)

    yield TestClient(app)

    clear_app_state()


@pytest.fixture
def stored_trace(trace_store):
    """A finalized trace with one failed tool call, saved to the store"""
    aggregator = TraceAggregator("api_session")
    for event in [
        SessionStartEvent(session_id="api_session", timestamp=1000.0, model="gpt-4o"),
        ToolStartEvent(session_id="api_session", timestamp=1001.0, tool_call_id="c1", tool_name="bash"),
        ToolEndEvent(session_id="api_session", timestamp=1002.0, tool_call_id="c1", tool_name="bash",
                     is_error=True, result_preview="exit 1"),
        SessionEndEvent(session_id="api_session", timestamp=1003.0),
    ]:
        aggregator.on_event(event)

    trace = aggregator.trace
    trace_store.save_trace(trace)
    return trace
