"""
Trace Store - Persistent storage for finalized traces

Design principles:
- One JSON postmortem bundle per trace (trace + alerts + eval results)
- SQLite index for fast queries
- TTL-based cleanup (7 days default)
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from session_tracer.monitoring.alerts import Alert
from session_tracer.monitoring.errors import TraceNotFoundError
from session_tracer.monitoring.eval_scorer import EvalResult
from session_tracer.monitoring.trace import Trace


logger = logging.getLogger(__name__)


class TraceIndex:
    """
    SQLite index for fast trace lookups

    Enables efficient querying by:
    - trace_id
    - session_id
    - start time
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local connection"""
        if not hasattr(self._local, 'conn'):
            self._local.conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False
            )
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    def _init_db(self) -> None:
        """Initialize database schema"""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS traces (
                trace_id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                start_time REAL NOT NULL,
                end_time REAL,
                duration_ms REAL,
                success INTEGER NOT NULL,
                total_cost REAL,
                total_tokens INTEGER,
                span_count INTEGER,
                tool_calls_count INTEGER,
                alert_count INTEGER,
                file_path TEXT,
                created_at REAL NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_session
            ON traces(session_id)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_start_time
            ON traces(start_time)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_created_at
            ON traces(created_at)
        """)
        conn.commit()

    def insert_trace(
        self,
        trace: Trace,
        file_path: str,
        alert_count: int = 0,
        created_at: Optional[float] = None
    ) -> None:
        """Insert or replace the index record of a trace"""
        conn = self._get_connection()
        conn.execute("""
            INSERT OR REPLACE INTO traces
            (trace_id, session_id, start_time, end_time, duration_ms, success,
             total_cost, total_tokens, span_count, tool_calls_count, alert_count,
             file_path, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            trace.trace_id, trace.session_id, trace.start_time, trace.end_time,
            trace.duration_ms() if trace.end_time is not None else None,
            int(trace.success), trace.total_cost, trace.total_tokens,
            trace.span_count, len(trace.tool_spans), alert_count, file_path,
            created_at if created_at is not None else datetime.now().timestamp()
        ))
        conn.commit()

    def get(self, trace_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM traces WHERE trace_id = ?", (trace_id,)
        ).fetchone()
        return _row_to_dict(row) if row else None

    def query_by_session(self, session_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Query traces by session ID, newest first"""
        conn = self._get_connection()
        cursor = conn.execute("""
            SELECT * FROM traces
            WHERE session_id = ?
            ORDER BY start_time DESC
            LIMIT ?
        """, (session_id, limit))
        return [_row_to_dict(row) for row in cursor.fetchall()]

    def get_recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get recent traces"""
        conn = self._get_connection()
        cursor = conn.execute("""
            SELECT * FROM traces
            ORDER BY start_time DESC
            LIMIT ?
        """, (limit,))
        return [_row_to_dict(row) for row in cursor.fetchall()]

    def remove_older_than(self, cutoff: float) -> List[Dict[str, Any]]:
        """Delete records created before ``cutoff`` and return them"""
        conn = self._get_connection()
        rows = [_row_to_dict(row) for row in conn.execute(
            "SELECT * FROM traces WHERE created_at < ?", (cutoff,)
        ).fetchall()]
        conn.execute("DELETE FROM traces WHERE created_at < ?", (cutoff,))
        conn.commit()
        return rows


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    record = dict(row)
    record["success"] = bool(record["success"])
    return record


class TraceStore:
    """
    Trace Store - persistent storage for finalized traces

    Usage:
        store = TraceStore(Path("./data/traces"))
        path = store.save_trace(trace, alerts=alerts, eval_results=[result])
        bundle = store.load_trace(trace.trace_id)
    """

    DEFAULT_TTL_DAYS = 7

    def __init__(
        self,
        storage_dir: Optional[Path] = None,
        ttl_days: int = DEFAULT_TTL_DAYS
    ):
        """
        Args:
            storage_dir: Directory for bundles and the index database
            ttl_days: Time-to-live for traces in days
        """
        self.storage_dir = Path(storage_dir) if storage_dir is not None else Path("./data/traces")
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        self.index = TraceIndex(self.storage_dir / "trace_index.db")
        self.ttl_days = ttl_days

    def _bundle_path(self, trace: Trace) -> Path:
        timestamp = datetime.fromtimestamp(trace.start_time).strftime("%Y%m%d_%H%M%S")
        file_path = self.storage_dir / f"trace_{trace.session_id}_{timestamp}.json"

        # Another trace of the same session started within the same second
        existing = self.index.get(trace.trace_id)
        if existing and existing["file_path"] == str(file_path):
            return file_path
        suffix = 1
        while file_path.exists():
            file_path = self.storage_dir / f"trace_{trace.session_id}_{timestamp}_{suffix}.json"
            suffix += 1
        return file_path

    def save_trace(
        self,
        trace: Trace,
        alerts: Optional[Sequence[Alert]] = None,
        eval_results: Optional[Sequence[EvalResult]] = None
    ) -> str:
        """
        Save a postmortem bundle

        Args:
            trace: Trace to save (normally finalized)
            alerts: Alerts evaluated for the trace
            eval_results: Eval results for the trace

        Returns:
            File path where the bundle was saved
        """
        if not trace.finalized:
            logger.warning(f"Saving trace {trace.trace_id} before it was finalized")

        file_path = self._bundle_path(trace)

        bundle = trace.to_dict()
        bundle["alerts"] = [alert.to_dict() for alert in alerts or ()]
        bundle["eval_results"] = [result.to_dict() for result in eval_results or ()]

        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(bundle, f, indent=2, ensure_ascii=False)

        self.index.insert_trace(trace, str(file_path), alert_count=len(bundle["alerts"]))
        logger.info(f"Saved trace {trace.trace_id} to {file_path}")
        return str(file_path)

    def _read_bundle(self, record: Dict[str, Any]) -> Dict[str, Any]:
        file_path = Path(record["file_path"])
        if not file_path.exists():
            raise TraceNotFoundError(record["trace_id"])
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def load_trace(self, trace_id: str) -> Dict[str, Any]:
        """
        Load the bundle of a trace

        Raises:
            TraceNotFoundError: unknown trace id or missing bundle file
        """
        record = self.index.get(trace_id)
        if record is None:
            raise TraceNotFoundError(trace_id)
        return self._read_bundle(record)

    def load_latest(self, session_id: str) -> Dict[str, Any]:
        """
        Load the most recent bundle of a session

        Raises:
            TraceNotFoundError: the session has no stored traces
        """
        records = self.index.query_by_session(session_id, limit=1)
        if not records:
            raise TraceNotFoundError(f"session {session_id}")
        return self._read_bundle(records[0])

    def list_traces(
        self,
        session_id: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """
        List trace summaries, newest first

        Args:
            session_id: Filter by session (optional)
            limit: Maximum results
        """
        if session_id:
            return self.index.query_by_session(session_id, limit)
        return self.index.get_recent(limit)

    def cleanup_old_traces(self, days: Optional[int] = None) -> int:
        """
        Remove traces older than specified days

        Args:
            days: Days to keep (uses TTL if not specified)

        Returns:
            Number of traces removed
        """
        ttl = days if days is not None else self.ttl_days
        cutoff = (datetime.now() - timedelta(days=ttl)).timestamp()
        removed = self.index.remove_older_than(cutoff)
        for record in removed:
            file_path = Path(record["file_path"])
            if file_path.exists():
                file_path.unlink()
        if removed:
            logger.info(f"Removed {len(removed)} trace(s) older than {ttl} days")
        return len(removed)


# Global singleton instance
_trace_store: Optional[TraceStore] = None


def get_trace_store() -> TraceStore:
    """Get global TraceStore instance configured from the storage section"""
    global _trace_store
    if _trace_store is None:
        from config import get_config

        storage = get_config().storage
        _trace_store = TraceStore(Path(storage.trace_dir), ttl_days=storage.ttl_days)
    return _trace_store


__all__ = [
    "TraceIndex",
    "TraceStore",
    "get_trace_store",
]
