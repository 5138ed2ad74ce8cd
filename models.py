"""
SQLite persistence for SoundScout analysis snapshots.

Lightweight, append-only design. No ORM, just raw sqlite3.
Each row is an immutable audit record of one AnalysisResult plus the
point it was computed for.  Facility data itself is never stored.
"""

import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("SOUNDSCOUT_DB_PATH", "soundscout.db")


def _get_db():
    """Get a sqlite3 connection with WAL mode for concurrent reads."""
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db():
    """Create tables if they don't exist. Safe to call on every startup."""
    conn = _get_db()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS analyses (
            analysis_id   TEXT PRIMARY KEY,
            created_at    TEXT NOT NULL,
            lat           REAL NOT NULL,
            lon           REAL NOT NULL,
            radius_m      REAL NOT NULL,
            total         INTEGER NOT NULL,
            busiest_key   TEXT,
            result_json   TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_analyses_created ON analyses(created_at);
    """)
    conn.commit()
    conn.close()


def generate_analysis_id():
    """Short, URL-safe analysis ID (10 chars)."""
    return uuid.uuid4().hex[:10]


def save_analysis(lat: float, lon: float, result_dict: Dict[str, Any]) -> str:
    """Persist an analysis snapshot. Returns the analysis_id.

    result_dict is AnalysisResult.to_dict() plus any extra plain values
    (counts, request id) the caller wants kept with it.
    """
    analysis_id = generate_analysis_id()
    now = datetime.now(timezone.utc).isoformat()
    busiest = result_dict.get("busiest") or {}

    conn = _get_db()
    conn.execute(
        """INSERT INTO analyses
           (analysis_id, created_at, lat, lon, radius_m, total, busiest_key, result_json)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            analysis_id,
            now,
            lat,
            lon,
            result_dict.get("radius_m", 0),
            result_dict.get("total", 0),
            busiest.get("key"),
            json.dumps(result_dict, sort_keys=True),
        ),
    )
    conn.commit()
    conn.close()
    return analysis_id


def get_analysis(analysis_id: str) -> Optional[Dict[str, Any]]:
    """
    Load an analysis by ID. Returns dict with metadata + parsed result,
    or None if not found.
    """
    conn = _get_db()
    row = conn.execute(
        "SELECT * FROM analyses WHERE analysis_id = ?", (analysis_id,)
    ).fetchone()
    conn.close()

    if not row:
        return None

    data = dict(row)
    try:
        data["result"] = json.loads(data.pop("result_json"))
    except (json.JSONDecodeError, TypeError) as e:
        logger.error("Corrupted result_json for analysis %s: %s", analysis_id, e)
        return None
    return data


def get_recent_analyses(limit: int = 20) -> List[Dict[str, Any]]:
    conn = _get_db()
    rows = conn.execute(
        """SELECT analysis_id, created_at, lat, lon, radius_m, total, busiest_key
           FROM analyses ORDER BY created_at DESC LIMIT ?""",
        (limit,),
    ).fetchall()
    conn.close()
    return [dict(r) for r in rows]
