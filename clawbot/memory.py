"""Markdown-file long-term memory and session consolidation."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from clawbot.llm.base import LLMProvider
from clawbot.session import Session

LOGGER = logging.getLogger(__name__)

_SAVE_MEMORY_TOOL: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "save_memory",
            "description": "Save the memory consolidation result to persistent storage.",
            "parameters": {
                "type": "object",
                "properties": {
                    "history_entry": {
                        "type": "string",
                        "description": (
                            "A paragraph (2-5 sentences) summarizing the key events, decisions "
                            "and topics. Start with a timestamp like [YYYY-MM-DD HH:MM]."
                        ),
                    },
                    "memory_update": {
                        "type": "string",
                        "description": (
                            "The full updated long-term memory as markdown. Include all existing "
                            "facts plus new ones. Return it unchanged if nothing is new."
                        ),
                    },
                },
                "required": ["history_entry", "memory_update"],
            },
        },
    }
]


def _ensure_dirs(memory_dir: Path) -> None:
    memory_dir.mkdir(parents=True, exist_ok=True)


class MemoryStore:
    """Two-layer memory: MEMORY.md (facts) and HISTORY.md (searchable log)."""

    def __init__(self, workspace: Path) -> None:
        self.memory_dir = workspace / "memory"
        _ensure_dirs(self.memory_dir)
        self.memory_file = self.memory_dir / "MEMORY.md"
        self.history_file = self.memory_dir / "HISTORY.md"

    def read_long_term(self) -> str:
        return self.memory_file.read_text(encoding="utf-8") if self.memory_file.exists() else ""

    def write_long_term(self, content: str) -> None:
        self.memory_file.write_text(content, encoding="utf-8")

    def append_history(self, entry: str) -> None:
        with open(self.history_file, "a", encoding="utf-8") as f:
            f.write(f"{entry.strip()}\n\n")

    def get_memory_context(self) -> str:
        long_term = self.read_long_term()
        return f"## Long-term Memory\n{long_term}" if long_term else ""

    async def consolidate(
        self,
        session: Session,
        provider: LLMProvider,
        model: str,
        *,
        archive_all: bool = False,
        memory_window: int = 50,
    ) -> bool:
        """Fold old turns of ``session`` into MEMORY.md/HISTORY.md.

        With ``archive_all`` every turn is processed (used before clearing a
        session). Otherwise the newest ``memory_window // 2`` turns stay
        unconsolidated and the cursor advances past everything older.

        Returns:
            False when the model did not produce a usable ``save_memory`` call
            or the call failed; the session cursor is untouched in that case.
        """
        if archive_all:
            old_messages = list(session.messages)
            end = 0
        else:
            keep_count = memory_window // 2
            if len(session.messages) <= keep_count:
                return True
            if session.unconsolidated_count <= 0:
                return True
            end = len(session.messages) - keep_count
            old_messages = session.messages[session.last_consolidated : end]
            if not old_messages:
                return True

        lines = []
        for message in old_messages:
            if not message.get("content"):
                continue
            tools = ""
            if message.get("role") == "assistant" and message.get("tool_calls"):
                names = [tc.get("function", {}).get("name", "?") for tc in message["tool_calls"]]
                tools = f" [tools: {', '.join(names)}]"
            stamp = str(message.get("timestamp", "?"))[:16]
            lines.append(f"[{stamp}] {str(message.get('role', '?')).upper()}{tools}: {message['content']}")

        current_memory = self.read_long_term()
        prompt = (
            "Process this conversation and call the save_memory tool with your consolidation.\n\n"
            f"## Current Long-term Memory\n{current_memory or '(empty)'}\n\n"
            "## Conversation to Process\n" + "\n".join(lines)
        )

        try:
            response = await provider.chat(
                messages=[
                    {
                        "role": "system",
                        "content": "You are a memory consolidation agent. Call the save_memory tool.",
                    },
                    {"role": "user", "content": prompt},
                ],
                tools=_SAVE_MEMORY_TOOL,
                model=model,
            )
        except Exception:  # noqa: BLE001
            LOGGER.exception("Memory consolidation failed for %s", session.key)
            return False

        if not response.tool_calls:
            LOGGER.warning("Memory consolidation for %s: model did not call save_memory", session.key)
            return False

        args = response.tool_calls[0].arguments or {}
        entry = args.get("history_entry")
        update = args.get("memory_update")
        if entry is not None:
            self.append_history(entry if isinstance(entry, str) else json.dumps(entry, ensure_ascii=False))
        if update is not None:
            text = update if isinstance(update, str) else json.dumps(update, ensure_ascii=False)
            if text != current_memory:
                self.write_long_term(text)

        if archive_all:
            session.last_consolidated = 0
        else:
            session.advance_cursor(end)
        LOGGER.info("Memory consolidation done for %s (cursor=%d)", session.key, session.last_consolidated)
        return True
