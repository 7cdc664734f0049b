from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Any


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path(db_path: str) -> str:
    """Return a file path usable by sqlite.

    A bind mount of a path that does not exist on the host shows up as a
    directory inside the container; in that case the journal lives inside it.
    """
    p = os.path.abspath(db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "pcr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str) -> None:
    """Create the events table if it does not exist."""
    with connect(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_name TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def record_event(db_path: str, level: str, message: str, service_name: str | None = None, ts: str | None = None) -> None:
    with connect(db_path) as conn:
        conn.execute(
            "INSERT INTO events (ts, level, service_name, message) VALUES (?, ?, ?, ?)",
            (ts or utc_now(), level.upper(), service_name, message),
        )


def latest_events(db_path: str, limit: int = 100) -> list[dict[str, Any]]:
    with connect(db_path) as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
