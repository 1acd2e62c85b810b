"""SQLite persistence layer for sessions and tool audit records."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

SCHEMA_VERSION = 2


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                session_key TEXT PRIMARY KEY,
                metadata_json TEXT NOT NULL,
                last_consolidated INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS session_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_key TEXT NOT NULL,
                position INTEGER NOT NULL,
                record_json TEXT NOT NULL,
                FOREIGN KEY(session_key) REFERENCES sessions(session_key)
            );

            CREATE INDEX IF NOT EXISTS idx_session_messages_key
                ON session_messages(session_key, position);

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_text TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );
            """
        )

    def save_session(
        self,
        session_key: str,
        messages: list[dict[str, Any]],
        metadata: dict[str, Any],
        last_consolidated: int,
        created_at: str,
        updated_at: str,
    ) -> None:
        """Replace the stored copy of a session with the given records."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions(session_key, metadata_json, last_consolidated, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(session_key) DO UPDATE SET
                    metadata_json=excluded.metadata_json,
                    last_consolidated=excluded.last_consolidated,
                    updated_at=excluded.updated_at
                """,
                (session_key, json.dumps(metadata), last_consolidated, created_at, updated_at),
            )
            conn.execute("DELETE FROM session_messages WHERE session_key = ?", (session_key,))
            conn.executemany(
                "INSERT INTO session_messages(session_key, position, record_json) VALUES (?, ?, ?)",
                [
                    (session_key, position, json.dumps(record, ensure_ascii=False, default=str))
                    for position, record in enumerate(messages)
                ],
            )

    def load_session(self, session_key: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT session_key, metadata_json, last_consolidated, created_at, updated_at
                FROM sessions WHERE session_key = ?
                """,
                (session_key,),
            ).fetchone()
            if row is None:
                return None
            records = conn.execute(
                "SELECT record_json FROM session_messages WHERE session_key = ? ORDER BY position ASC",
                (session_key,),
            ).fetchall()
        return {
            "key": row["session_key"],
            "metadata": json.loads(row["metadata_json"]),
            "last_consolidated": int(row["last_consolidated"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "messages": [json.loads(r["record_json"]) for r in records],
        }

    def list_sessions(self) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT session_key, created_at, updated_at FROM sessions ORDER BY updated_at DESC"
            ).fetchall()
        return [
            {"key": row["session_key"], "created_at": row["created_at"], "updated_at": row["updated_at"]}
            for row in rows
        ]

    def log_tool_execution(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: str,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(tool_name, input_json, output_text, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    tool_name,
                    json.dumps(tool_input, default=str),
                    tool_output,
                    int(succeeded),
                    utc_now_iso(),
                ),
            )

    def list_tool_executions(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT tool_name, input_json, output_text, succeeded, created_at
                FROM tool_executions ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
