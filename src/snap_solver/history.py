"""SQLite schema, migrations, and call-history helpers."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .utils import json_dumps, json_loads, utc_now_iso

MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS llm_calls (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            stage TEXT NOT NULL,
            provider TEXT NOT NULL,
            model TEXT NOT NULL,
            image_count INTEGER NOT NULL DEFAULT 0,
            tokens_in INTEGER NOT NULL DEFAULT 0,
            tokens_out INTEGER NOT NULL DEFAULT 0,
            latency_ms INTEGER NOT NULL DEFAULT 0,
            success INTEGER NOT NULL DEFAULT 1,
            error TEXT,
            created_at TEXT NOT NULL,
            meta_json TEXT NOT NULL DEFAULT '{}'
        );

        CREATE INDEX IF NOT EXISTS idx_llm_calls_stage_created ON llm_calls(stage, created_at);
        """,
    ),
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS pipeline_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL,
            provider TEXT NOT NULL,
            outcome TEXT NOT NULL,
            answer_type TEXT,
            error TEXT,
            screenshot_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            meta_json TEXT NOT NULL DEFAULT '{}'
        );

        CREATE INDEX IF NOT EXISTS idx_pipeline_runs_created ON pipeline_runs(created_at);
        """,
    ),
]


def get_connection(db_path: str) -> sqlite3.Connection:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def apply_migrations(db_path: str) -> None:
    with get_connection(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        applied = {
            row["version"]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version in applied:
                continue
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )


def log_llm_call(
    conn: sqlite3.Connection,
    stage: str,
    provider: str,
    model: str,
    image_count: int = 0,
    tokens_in: int = 0,
    tokens_out: int = 0,
    latency_ms: int = 0,
    success: bool = True,
    error: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO llm_calls(
            stage, provider, model, image_count, tokens_in, tokens_out,
            latency_ms, success, error, created_at, meta_json
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            stage,
            provider,
            model,
            image_count,
            tokens_in,
            tokens_out,
            latency_ms,
            1 if success else 0,
            error,
            utc_now_iso(),
            json_dumps(meta),
        ),
    )
    conn.commit()
    return int(cur.lastrowid)


def record_run(
    conn: sqlite3.Connection,
    kind: str,
    provider: str,
    outcome: str,
    answer_type: Optional[str] = None,
    error: Optional[str] = None,
    screenshot_count: int = 0,
    meta: Optional[Dict[str, Any]] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO pipeline_runs(
            kind, provider, outcome, answer_type, error, screenshot_count, created_at, meta_json
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (kind, provider, outcome, answer_type, error, screenshot_count, utc_now_iso(), json_dumps(meta)),
    )
    conn.commit()
    return int(cur.lastrowid)


def list_recent_runs(conn: sqlite3.Connection, limit: int = 20) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM pipeline_runs ORDER BY id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    runs = []
    for row in rows:
        item = dict(row)
        item["meta"] = json_loads(item.pop("meta_json", None))
        runs.append(item)
    return runs


def get_call_summary(conn: sqlite3.Connection) -> Dict[str, Any]:
    row = conn.execute(
        """
        SELECT COUNT(*) AS calls,
               COALESCE(SUM(tokens_in), 0) AS tokens_in,
               COALESCE(SUM(tokens_out), 0) AS tokens_out,
               COALESCE(SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END), 0) AS failures
        FROM llm_calls
        """
    ).fetchone()
    return dict(row)


class CallHistory:
    """Serialises writes to one connection shared by pipeline threads."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        apply_migrations(db_path)
        self._conn = get_connection(db_path)
        self._lock = threading.Lock()

    def log_call(self, **kwargs: Any) -> None:
        with self._lock:
            log_llm_call(self._conn, **kwargs)

    def record_run(self, **kwargs: Any) -> None:
        with self._lock:
            record_run(self._conn, **kwargs)

    def recent_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            return list_recent_runs(self._conn, limit)

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            return get_call_summary(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
