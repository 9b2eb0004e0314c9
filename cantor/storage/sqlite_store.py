"""
SQLite storage for per-session conversation logs.
One row per session; the log is kept as a JSON array so a get/put is a
single statement and the last write always wins.
"""

import sqlite3
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager

from cantor.storage.models import Message

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    history TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_updated
    ON sessions(updated_at);
"""


class SQLiteStore:
    """Thread-safe SQLite conversation store keyed by session id."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, session_id: str) -> list[Message] | None:
        """Return the stored log for a session, or None if it was never written."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT history FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return [Message.from_dict(m) for m in json.loads(row["history"])]

    def put(self, session_id: str, history: list[Message]):
        """Replace the stored log for a session."""
        now = datetime.now(timezone.utc).isoformat()
        payload = json.dumps([m.to_dict() for m in history], ensure_ascii=False)
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO sessions (id, history, created_at, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       history = excluded.history,
                       updated_at = excluded.updated_at""",
                (session_id, payload, now, now),
            )
        logger.debug("Stored %d messages for session %s", len(history), session_id)

    def list_sessions(self, limit: int = 20) -> list[dict]:
        """Most recently updated sessions with their message count."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT id, created_at, updated_at, history
                   FROM sessions
                   ORDER BY updated_at DESC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
        return [
            {
                "id": r["id"],
                "created_at": r["created_at"],
                "updated_at": r["updated_at"],
                "message_count": len(json.loads(r["history"])),
            }
            for r in rows
        ]

    def export_all(self) -> list[dict]:
        """Export every session as {session_id, updated_at, history}."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, updated_at, history FROM sessions ORDER BY created_at"
            ).fetchall()
        return [
            {
                "session_id": r["id"],
                "updated_at": r["updated_at"],
                "history": json.loads(r["history"]),
            }
            for r in rows
        ]

    def get_stats(self) -> dict:
        with self._connect() as conn:
            rows = conn.execute("SELECT history FROM sessions").fetchall()
        user = assistant = 0
        for r in rows:
            for m in json.loads(r["history"]):
                if m.get("role") == "user":
                    user += 1
                elif m.get("role") == "assistant":
                    assistant += 1
        return {
            "sessions": len(rows),
            "messages": user + assistant,
            "user_messages": user,
            "assistant_messages": assistant,
        }
