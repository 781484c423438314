"""SQLite-backed learner progress store.

One JSON progress record per learner, read fully before each engine call and
written fully after each mutation. ``update_progress`` runs the whole
read-compute-write cycle inside one ``BEGIN IMMEDIATE`` transaction.
"""

import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

from db_pool import SQLiteConnectionPool

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Stored JSON could not be decoded; treating as empty")
        return None


def init():
    if Path(DB_PATH).parent != Path("."):
        Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS learner_progress (
              user_id        TEXT PRIMARY KEY,
              progress_json  TEXT NOT NULL,
              created_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS recommendation_events (
              id              INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id         TEXT NOT NULL,
              path_id         TEXT NOT NULL,
              lesson_id       TEXT,
              reasoning_type  TEXT NOT NULL,
              priority        TEXT NOT NULL,
              path_progress   INTEGER,
              payload         TEXT,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_recommendation_events_user
              ON recommendation_events(user_id, created_at);
            """
        )
        con.commit()


# -------------- progress --------------
def get_progress(user_id: str) -> Optional[Dict[str, Any]]:
    """Return the stored progress blob for ``user_id`` or ``None``."""
    rows = _query("SELECT progress_json FROM learner_progress WHERE user_id = ?", (user_id,))
    if not rows:
        return None
    decoded = _decode_json_field(rows[0]["progress_json"])
    return decoded if isinstance(decoded, dict) else {}


def _upsert(con: sqlite3.Connection, user_id: str, progress: Dict[str, Any]) -> None:
    con.execute(
        """
        INSERT INTO learner_progress(user_id, progress_json, updated_at)
        VALUES (?,?,CURRENT_TIMESTAMP)
        ON CONFLICT(user_id) DO UPDATE SET
          progress_json=excluded.progress_json,
          updated_at=CURRENT_TIMESTAMP
        """,
        (user_id, json_dumps(progress)),
    )


def save_progress(user_id: str, progress: Dict[str, Any]) -> None:
    with _pool.transaction() as con:
        _upsert(con, user_id, progress)


def update_progress(
    user_id: str,
    updater: Callable[[Optional[Dict[str, Any]]], Dict[str, Any]],
) -> Dict[str, Any]:
    """Atomically apply ``updater`` to the stored blob and persist the result.

    ``updater`` receives ``None`` for a learner without a stored record. If it
    raises, nothing is written.
    """
    with _pool.transaction() as con:
        row = con.execute(
            "SELECT progress_json FROM learner_progress WHERE user_id = ?", (user_id,)
        ).fetchone()
        current = _decode_json_field(row["progress_json"]) if row else None
        if row and not isinstance(current, dict):
            current = {}
        updated = updater(current)
        _upsert(con, user_id, updated)
    return updated


def delete_progress(user_id: str) -> bool:
    with _pool.transaction() as con:
        cur = con.execute("DELETE FROM learner_progress WHERE user_id = ?", (user_id,))
        con.execute("DELETE FROM recommendation_events WHERE user_id = ?", (user_id,))
        deleted = cur.rowcount > 0
    return deleted


# -------------- recommendation events --------------
def log_recommendation_event(
    user_id: str,
    path_id: str,
    *,
    lesson_id: Optional[str],
    reasoning_type: str,
    priority: str,
    path_progress: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    _exec(
        """
        INSERT INTO recommendation_events(user_id, path_id, lesson_id, reasoning_type, priority, path_progress, payload)
        VALUES (?,?,?,?,?,?,?)
        """,
        (
            user_id,
            path_id,
            lesson_id,
            reasoning_type,
            priority,
            None if path_progress is None else int(path_progress),
            json_dumps(payload) if payload is not None else None,
        ),
    )


def list_recommendation_events(
    user_id: str,
    path_id: Optional[str] = None,
    *,
    limit: int = 50,
) -> list[dict[str, Any]]:
    clauses = ["user_id = ?"]
    params: list[Any] = [user_id]
    if path_id:
        clauses.append("path_id = ?")
        params.append(path_id)
    params.append(int(limit))
    where = " AND ".join(clauses)
    rows = _query(
        f"SELECT user_id, path_id, lesson_id, reasoning_type, priority, path_progress, payload, created_at "
        f"FROM recommendation_events WHERE {where} ORDER BY created_at DESC, id DESC LIMIT ?",
        params,
    )
    events: list[dict[str, Any]] = []
    for row in rows:
        entry = dict(row)
        entry["payload"] = _decode_json_field(entry.get("payload"))
        events.append(entry)
    return events
