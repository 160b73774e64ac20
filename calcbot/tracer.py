import hashlib
import json
import os
import sqlite3
import uuid
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from opentelemetry import trace as otel_trace
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

DEFAULT_TRACE_DB = "instance/trace.db"

OTEL_TRACE_STEP_KEYS = {
    "status",
    "error",
    "command",
    "route",
    "latency_ms",
    "expression_sha256",
}


def trace_enabled() -> bool:
    return os.getenv("CALC_TRACE_ENABLED", "0") == "1"


def hash_expression(expression: str) -> str:
    return hashlib.sha256((expression or "").encode("utf-8")).hexdigest()[:16]


def engine_from_url(database_url: Optional[str] = None) -> Optional[Engine]:
    """Build an engine for CALC_DATABASE_URL; None keeps receipts in local SQLite."""
    url = (database_url if database_url is not None else os.getenv("CALC_DATABASE_URL", "")).strip()
    if not url:
        return None
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=int(os.getenv("CALC_DB_POOL_RECYCLE", "300")),
        future=True,
    )


@dataclass
class TraceHandle:
    trace_id: str


class TraceStore:
    """Evaluation receipts, one trace per request with its steps."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        enabled: Optional[bool] = None,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
    ):
        self.db_path = db_path or os.getenv("CALC_TRACE_DB_PATH", DEFAULT_TRACE_DB)
        self.enabled = trace_enabled() if enabled is None else enabled
        self.engine: Optional[Engine] = None
        if not self.enabled:
            return
        self.engine = engine if engine is not None else engine_from_url(database_url)
        if not self.engine:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()

    def _step_id_column(self) -> str:
        if self.engine and self.engine.dialect.name == "postgresql":
            return "id BIGSERIAL PRIMARY KEY"
        return "id INTEGER PRIMARY KEY AUTOINCREMENT"

    def _schema(self) -> List[str]:
        return [
            """
            CREATE TABLE IF NOT EXISTS traces (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                metadata_json TEXT
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS trace_steps (
                {self._step_id_column()},
                trace_id TEXT NOT NULL,
                step_type TEXT NOT NULL,
                step_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """,
        ]

    def _init_db(self) -> None:
        if self.engine:
            with self.engine.begin() as conn:
                for statement in self._schema():
                    conn.execute(text(statement))
            return

        with self._connect() as conn:
            for statement in self._schema():
                conn.execute(statement)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        # sqlite3's own context manager commits but never closes.
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn

    def start_trace(self, metadata: Optional[Dict[str, Any]] = None) -> Optional[TraceHandle]:
        if not self.enabled:
            return None
        trace_id = str(uuid.uuid4())
        payload = json.dumps(metadata or {})
        created_at = datetime.now(timezone.utc).isoformat()
        if self.engine:
            with self.engine.begin() as conn:
                conn.execute(
                    text("INSERT INTO traces (id, created_at, metadata_json) VALUES (:id, :created_at, :metadata_json)"),
                    {"id": trace_id, "created_at": created_at, "metadata_json": payload},
                )
        else:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO traces (id, created_at, metadata_json) VALUES (?, ?, ?)",
                    (trace_id, created_at, payload),
                )
        return TraceHandle(trace_id=trace_id)

    def record_step(self, trace_id: str, step_type: str, payload: Dict[str, Any]) -> None:
        if not self.enabled or not trace_id:
            return
        created_at = datetime.now(timezone.utc).isoformat()
        step_json = json.dumps(payload, default=str)
        if self.engine:
            with self.engine.begin() as conn:
                conn.execute(
                    text(
                        """
                        INSERT INTO trace_steps (trace_id, step_type, step_json, created_at)
                        VALUES (:trace_id, :step_type, :step_json, :created_at)
                        """
                    ),
                    {
                        "trace_id": trace_id,
                        "step_type": step_type,
                        "step_json": step_json,
                        "created_at": created_at,
                    },
                )
        else:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO trace_steps (trace_id, step_type, step_json, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (trace_id, step_type, step_json, created_at),
                )

        self._emit_otel_span(trace_id, step_type, created_at, payload)

    def record_evaluation(
        self,
        trace_id: str,
        expression: str,
        status: str,
        error: Optional[str] = None,
        latency_ms: Optional[int] = None,
    ) -> None:
        # Receipts keep a hash of the expression, never the raw text.
        self.record_step(
            trace_id,
            "evaluation",
            {
                "expression_sha256": hash_expression(expression),
                "expression_chars": len(expression or ""),
                "status": status,
                "error": error,
                "latency_ms": latency_ms,
            },
        )

    def get_trace_steps(self, trace_id: str) -> List[Dict[str, Any]]:
        if not self.enabled:
            return []
        query = "SELECT step_type, step_json, created_at FROM trace_steps WHERE trace_id = {} ORDER BY id"
        if self.engine:
            with self.engine.connect() as conn:
                rows = conn.execute(text(query.format(":trace_id")), {"trace_id": trace_id}).all()
        else:
            with self._connect() as conn:
                rows = conn.execute(query.format("?"), (trace_id,)).fetchall()
        return [
            {"step_type": row[0], "payload": json.loads(row[1]), "created_at": row[2]}
            for row in rows
        ]

    def _emit_otel_span(
        self,
        trace_id: str,
        step_type: str,
        created_at: str,
        payload: Dict[str, Any],
    ) -> None:
        if os.getenv("CALC_OTEL_ENABLED", "0") != "1":
            return

        attributes: Dict[str, Any] = {
            "calcbot.trace_id": trace_id,
            "trace.step_type": step_type,
            "trace.created_at": created_at,
        }

        for key in OTEL_TRACE_STEP_KEYS:
            if key in payload:
                value = payload.get(key)
                if isinstance(value, (str, int, float, bool)):
                    attributes[f"trace.{key}"] = value

        tracer = otel_trace.get_tracer("calcbot.trace_steps")
        with tracer.start_as_current_span(f"trace_step.{step_type}", attributes=attributes):
            return


_tracer: Optional[TraceStore] = None


def get_tracer() -> TraceStore:
    global _tracer
    if _tracer is None:
        _tracer = TraceStore()
    return _tracer


def reset_tracer() -> None:
    global _tracer
    if _tracer is not None:
        _tracer.close()
    _tracer = None
