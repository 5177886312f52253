"""Persistent SQLite-backed timeline store.

Timelines are stored as their export payload (JSON) plus a few indexed
columns for listing.  Loading restores the stored identity; use
``serialization.import_timeline`` to create an independent copy.
"""
from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from backend.services.video.serialization import timeline_from_dict, timeline_to_dict
from backend.services.video.types import Timeline


class TimelineStore:
    """SQLite-backed timeline persistence.

    Creates the database and table on first use.  Thread-safe via the
    ``check_same_thread=False`` SQLite flag (suitable for FastAPI's async
    thread pool workers; each connection is created per-operation).
    """

    _CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS timelines (
        timeline_id   TEXT PRIMARY KEY,
        name          TEXT NOT NULL,
        segment_count INTEGER NOT NULL DEFAULT 0,
        duration_sec  REAL NOT NULL DEFAULT 0.0,
        payload       TEXT NOT NULL,
        created_at    TEXT NOT NULL,
        updated_at    TEXT NOT NULL
    )
    """

    def __init__(self, db_path: str = "backend/data/timelines.db"):
        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    # ── private ──────────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(self._CREATE_TABLE)

    # ── public ───────────────────────────────────────────────────────────────

    def save(self, timeline: Timeline) -> None:
        """Insert or replace a timeline."""
        payload = timeline_to_dict(timeline)
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO timelines
                   (timeline_id, name, segment_count, duration_sec, payload, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(timeline_id) DO UPDATE SET
                       name=excluded.name,
                       segment_count=excluded.segment_count,
                       duration_sec=excluded.duration_sec,
                       payload=excluded.payload,
                       updated_at=excluded.updated_at""",
                (
                    timeline.timeline_id,
                    timeline.name,
                    len(timeline.segments),
                    timeline.total_duration_sec,
                    json.dumps(payload),
                    timeline.created_at,
                    timeline.updated_at,
                ),
            )

    def get(self, timeline_id: str) -> Optional[Timeline]:
        """Return the stored timeline, or None if not found."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload FROM timelines WHERE timeline_id=?", (timeline_id,)
            ).fetchone()
        if row is None:
            return None
        return timeline_from_dict(json.loads(row["payload"]))

    def list_summaries(self) -> List[Dict[str, Any]]:
        """Lightweight listing, most recently updated first."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT timeline_id, name, segment_count, duration_sec, created_at, updated_at
                   FROM timelines ORDER BY updated_at DESC"""
            ).fetchall()
        return [dict(r) for r in rows]

    def delete(self, timeline_id: str) -> bool:
        """Delete a timeline; returns False if it did not exist."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM timelines WHERE timeline_id=?", (timeline_id,))
        return cur.rowcount > 0
