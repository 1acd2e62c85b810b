"""Slash commands handled without a model call.

``/stop`` is answered by the runtime's consumer before queueing; ``/new`` and
``/help`` are handled here inside the session's turn. Anything else returns
None and falls through to the model.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from clawbot.session import Session, SessionManager

LOGGER = logging.getLogger(__name__)

HELP_TEXT = (
    "clawbot commands:\n"
    "/new - Start a new conversation\n"
    "/stop - Stop the current task\n"
    "/help - Show available commands"
)
ARCHIVE_FAILED_TEXT = "Memory archival failed, session not cleared. Please try again."
NEW_SESSION_TEXT = "New session started."

ArchiveFn = Callable[[Session], Awaitable[bool]]


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split a /-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a /command.
    """
    text = text.strip()
    if not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:]


def is_stop_command(text: str) -> bool:
    return parse_command(text) == ("stop", [])


class CommandDispatcher:
    """Routes bare /new and /help to their handlers.

    Commands with trailing arguments are treated as ordinary text.
    """

    def __init__(self, sessions: SessionManager, archive: ArchiveFn) -> None:
        self._sessions = sessions
        self._archive = archive

    async def dispatch(self, content: str, session: Session) -> str | None:
        parsed = parse_command(content)
        if parsed is None:
            return None
        command, args = parsed
        if args:
            return None
        if command == "new":
            return await self._handle_new(session)
        if command == "help":
            return HELP_TEXT
        return None

    async def _handle_new(self, session: Session) -> str:
        LOGGER.info("Command dispatch: new session for %s", session.key)
        if session.messages and not await self._archive(session):
            return ARCHIVE_FAILED_TEXT
        session.clear()
        self._sessions.save(session)
        self._sessions.invalidate(session.key)
        return NEW_SESSION_TEXT
