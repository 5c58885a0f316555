import sqlite3
import threading
from pathlib import Path

from db.models import SCHEMA_SQL


class Database:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if getattr(self._local, "conn", None) is None:
            self._local.conn = sqlite3.connect(str(self.db_path), timeout=10)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
        return self._local.conn

    def _init_schema(self):
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        conn = self._get_conn()
        cursor = conn.execute(sql, params)
        conn.commit()
        return cursor

    def fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        cursor = self._get_conn().execute(sql, params)
        row = cursor.fetchone()
        return dict(row) if row else None

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = self._get_conn().execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    # -- Sessions --

    def insert_session(self, session_id: str, owner_id: str, name: str, created_at: str) -> dict:
        self.execute(
            "INSERT INTO sessions (id, owner_id, name, status, created_at) "
            "VALUES (?, ?, ?, 'recording', ?)",
            (session_id, owner_id, name, created_at),
        )
        return self.get_session(session_id)

    def get_session(self, session_id: str) -> dict | None:
        return self.fetchone("SELECT * FROM sessions WHERE id = ?", (session_id,))

    def list_sessions(self, owner_id: str) -> list[dict]:
        return self.fetchall(
            "SELECT * FROM sessions WHERE owner_id = ? ORDER BY created_at DESC",
            (owner_id,),
        )

    def list_sessions_by_status(self, *statuses: str) -> list[dict]:
        placeholders = ", ".join("?" for _ in statuses)
        return self.fetchall(
            f"SELECT * FROM sessions WHERE status IN ({placeholders}) ORDER BY created_at",
            statuses,
        )

    def update_session(self, session_id: str, **fields) -> dict | None:
        if not fields:
            return self.get_session(session_id)
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        values = list(fields.values()) + [session_id]
        self.execute(f"UPDATE sessions SET {set_clause} WHERE id = ?", tuple(values))
        return self.get_session(session_id)

    # -- Status ledger --

    def insert_status_event(self, event: dict):
        self.execute(
            "INSERT INTO status_events "
            "(id, session_id, seq, step, status, error_message, duration_ms, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event["id"],
                event["session_id"],
                event["seq"],
                event["step"],
                event["status"],
                event.get("error_message"),
                event.get("duration_ms"),
                event["timestamp"],
            ),
        )

    def list_status_events(self, session_id: str) -> list[dict]:
        return self.fetchall(
            "SELECT * FROM status_events WHERE session_id = ? ORDER BY timestamp ASC, seq ASC",
            (session_id,),
        )
