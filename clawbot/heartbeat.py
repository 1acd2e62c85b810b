"""Periodic wake-up that checks HEARTBEAT.md for pending work."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from clawbot.llm.base import LLMProvider

LOGGER = logging.getLogger(__name__)

_HEARTBEAT_TOOL: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "heartbeat",
            "description": "Report heartbeat decision after reviewing tasks.",
            "parameters": {
                "type": "object",
                "properties": {
                    "action": {"type": "string", "enum": ["skip", "run"]},
                    "tasks": {"type": "string", "description": "Summary of the tasks to run now."},
                },
                "required": ["action"],
            },
        },
    }
]


class HeartbeatService:
    """Every ``interval_seconds`` asks the model whether HEARTBEAT.md has active tasks.

    A ``run`` decision hands the task summary to ``on_execute`` and forwards
    a non-empty result to ``on_notify``.
    """

    def __init__(
        self,
        workspace: Path,
        provider: LLMProvider,
        model: str,
        on_execute: Callable[[str], Awaitable[str]] | None = None,
        on_notify: Callable[[str], Awaitable[None]] | None = None,
        interval_seconds: float = 1800,
        enabled: bool = True,
    ) -> None:
        self._workspace = workspace
        self._provider = provider
        self._model = model
        self._on_execute = on_execute
        self._on_notify = on_notify
        self._interval_seconds = interval_seconds
        self._enabled = enabled
        self._stop_event = asyncio.Event()

    @property
    def heartbeat_file(self) -> Path:
        return self._workspace / "HEARTBEAT.md"

    def _read_heartbeat(self) -> str | None:
        if not self.heartbeat_file.exists():
            return None
        text = self.heartbeat_file.read_text(encoding="utf-8")
        return text if text.strip() else None

    async def _decide(self, content: str) -> tuple[str, str]:
        response = await self._provider.chat(
            messages=[
                {
                    "role": "system",
                    "content": "You are a heartbeat agent. Call the heartbeat tool to report your decision.",
                },
                {
                    "role": "user",
                    "content": (
                        "Review the following HEARTBEAT.md and decide whether there are active tasks.\n\n"
                        f"{content}"
                    ),
                },
            ],
            tools=_HEARTBEAT_TOOL,
            model=self._model,
        )
        if not response.tool_calls:
            return "skip", ""
        args = response.tool_calls[0].arguments
        action = "run" if args.get("action") == "run" else "skip"
        tasks = args.get("tasks")
        return action, tasks if isinstance(tasks, str) else ""

    async def run_forever(self) -> None:
        """Tick until stop() is called; a failed tick is logged and skipped."""

        if not self._enabled:
            LOGGER.info("Heartbeat disabled")
            return
        LOGGER.info("Heartbeat started (every %ss)", self._interval_seconds)
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self._tick()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Heartbeat tick failed")

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()

    async def _tick(self) -> None:
        response = await self.trigger_now()
        if response and self._on_notify is not None:
            await self._on_notify(response)

    async def trigger_now(self) -> str | None:
        """Run one heartbeat check immediately and return the execution result."""

        content = self._read_heartbeat()
        if content is None:
            return None
        action, tasks = await self._decide(content)
        LOGGER.info("Heartbeat decision: %s", action)
        if action != "run" or self._on_execute is None:
            return None
        return await self._on_execute(tasks)
