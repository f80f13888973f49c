"""
Monitoring API Routes

Read-only endpoints over stored trace bundles.

Endpoints:
- GET /api/v1/monitoring/traces - List stored traces
- GET /api/v1/monitoring/traces/{trace_id} - Get a trace bundle
- GET /api/v1/monitoring/traces/{trace_id}/visualize - Mermaid or JSON view
- GET /api/v1/monitoring/traces/{trace_id}/alerts - Stored and re-evaluated alerts
- GET /api/v1/monitoring/traces/{trace_id}/metrics - Duration and tool breakdown
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from config import get_config
from session_tracer.api.errors import NotFoundException
from session_tracer.api.state import get_app_state
from session_tracer.monitoring.alerts import default_rules, evaluate
from session_tracer.monitoring.errors import TraceNotFoundError
from session_tracer.monitoring.metrics import summarize_trace
from session_tracer.monitoring.trace import Trace
from session_tracer.monitoring.trace_store import TraceStore, get_trace_store


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


# ===== Response Models =====

class TraceSummary(BaseModel):
    """Index record of a stored trace"""
    trace_id: str
    session_id: str
    start_time: float
    end_time: Optional[float]
    duration_ms: Optional[float]
    success: bool
    total_cost: float
    total_tokens: int
    span_count: int
    tool_calls_count: int
    alert_count: int


# ===== Helpers =====

def _get_store() -> TraceStore:
    """Trace store registered at startup, or the global one"""
    return get_app_state().get("trace_store") or get_trace_store()


def _load_bundle(trace_id: str) -> Dict[str, Any]:
    try:
        return _get_store().load_trace(trace_id)
    except TraceNotFoundError:
        raise NotFoundException(
            f"No trace found with id {trace_id}",
            resource_type="Trace",
            resource_id=trace_id
        )


# ===== Endpoints =====

@router.get("/traces", response_model=List[TraceSummary])
async def list_traces(
    session_id: Optional[str] = Query(None, description="Filter by session ID"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum results")
):
    """List stored traces, newest first"""
    try:
        records = _get_store().list_traces(session_id=session_id, limit=limit)
        return [TraceSummary(**record) for record in records]
    except Exception as e:
        logger.error(f"Failed to list traces: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to list traces: {str(e)}")


@router.get("/traces/{trace_id}")
async def get_trace(trace_id: str):
    """
    Get the postmortem bundle of a trace

    Returns the trace with its spans, warnings, alerts and eval results.
    """
    return _load_bundle(trace_id)


@router.get("/traces/{trace_id}/visualize")
async def visualize_trace(
    trace_id: str,
    format: str = Query("mermaid", pattern="^(mermaid|json)$", description="Visualization format")
):
    """Get a Mermaid flowchart or the JSON span list of a trace"""
    bundle = _load_bundle(trace_id)
    trace = Trace.from_dict(bundle)

    if format == "mermaid":
        return {
            "format": "mermaid",
            "trace_id": trace_id,
            "mermaid": trace.to_mermaid()
        }
    return {
        "format": "json",
        "trace_id": trace_id,
        "spans": [span.to_dict() for span in trace.spans]
    }


@router.get("/traces/{trace_id}/alerts")
async def get_trace_alerts(trace_id: str):
    """
    Get alerts for a trace

    Returns the alerts stored with the bundle and a fresh evaluation with
    the currently configured thresholds.
    """
    bundle = _load_bundle(trace_id)
    trace = Trace.from_dict(bundle)
    config = get_app_state().get("config") or get_config()
    alerts = evaluate(trace, default_rules(config.alerts))

    return {
        "trace_id": trace_id,
        "stored_alerts": bundle.get("alerts", []),
        "alerts": [alert.to_dict() for alert in alerts]
    }


@router.get("/traces/{trace_id}/metrics")
async def get_trace_metrics(trace_id: str):
    """Get the duration, token and tool breakdown of a trace"""
    bundle = _load_bundle(trace_id)
    trace = Trace.from_dict(bundle)
    return summarize_trace(trace).to_dict()


__all__ = ["router"]
