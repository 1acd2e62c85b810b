"""Conversation sessions and their cache."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from clawbot.db import Database, utc_now_iso

LOGGER = logging.getLogger(__name__)

_HISTORY_KEYS = ("tool_calls", "tool_call_id", "name")


@dataclass
class Session:
    """Ordered turn records for one session key.

    ``last_consolidated`` marks how many leading turns have already been
    folded into long-term memory; history handed to the model starts after it.
    """

    key: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    metadata: dict[str, Any] = field(default_factory=dict)
    last_consolidated: int = 0

    @property
    def unconsolidated_count(self) -> int:
        return len(self.messages) - self.last_consolidated

    def add_message(self, role: str, content: Any, **extra: Any) -> None:
        self.messages.append({"role": role, "content": content, "timestamp": utc_now_iso(), **extra})
        self.updated_at = utc_now_iso()

    def get_history(self, max_messages: int = 500) -> list[dict[str, Any]]:
        """Return the unconsolidated tail, starting on a user turn."""

        unconsolidated = self.messages[self.last_consolidated:]
        sliced = unconsolidated[-max_messages:] if max_messages > 0 else []
        for index, message in enumerate(sliced):
            if message.get("role") == "user":
                sliced = sliced[index:]
                break

        history: list[dict[str, Any]] = []
        for message in sliced:
            entry: dict[str, Any] = {"role": message["role"], "content": message.get("content") or ""}
            for key in _HISTORY_KEYS:
                if key in message:
                    entry[key] = message[key]
            history.append(entry)
        return history

    def advance_cursor(self, position: int) -> None:
        self.last_consolidated = max(self.last_consolidated, min(position, len(self.messages)))

    def clear(self) -> None:
        self.messages = []
        self.last_consolidated = 0
        self.updated_at = utc_now_iso()


class SessionManager:
    """Caches one ``Session`` per key and persists through ``Database``."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._cache: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        """Lock held for the read-modify-persist span of one turn on ``key``."""

        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get_or_create(self, key: str) -> Session:
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        session = self._load(key) or Session(key=key)
        self._cache[key] = session
        return session

    def save(self, session: Session) -> None:
        self._db.save_session(
            session.key,
            session.messages,
            session.metadata,
            session.last_consolidated,
            session.created_at,
            session.updated_at,
        )
        self._cache[session.key] = session

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    def list_sessions(self) -> list[dict[str, Any]]:
        return self._db.list_sessions()

    def _load(self, key: str) -> Session | None:
        try:
            data = self._db.load_session(key)
        except (sqlite3.Error, json.JSONDecodeError, ValueError):
            LOGGER.warning("Failed to load session %s, starting fresh", key, exc_info=True)
            return None
        if data is None:
            return None
        session = Session(
            key=key,
            messages=data["messages"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            metadata=data["metadata"] or {},
        )
        session.last_consolidated = min(max(data["last_consolidated"], 0), len(session.messages))
        return session
