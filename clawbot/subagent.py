"""Background subagents: bounded tool loops that report back through the bus."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from clawbot.bus import MessageBus
from clawbot.llm.base import LLMProvider
from clawbot.models import InboundMessage
from clawbot.tools.filesystem import EditFileTool, ListDirTool, ReadFileTool, WriteFileTool
from clawbot.tools.registry import ToolRegistry
from clawbot.tools.shell import ExecTool
from clawbot.tools.web import WebFetchTool, WebSearchTool

LOGGER = logging.getLogger(__name__)

SUBAGENT_MAX_ITERATIONS = 15
_NO_FINAL_RESPONSE = "Task completed but no final response was generated."


class SubagentManager:
    """Spawns subagent tasks and tracks them per originating session.

    Tracking is bookkeeping only: ``cancel_by_session`` reports how many
    tasks are still running for a session but does not interrupt them.
    """

    def __init__(
        self,
        provider: LLMProvider,
        workspace: Path,
        bus: MessageBus,
        model: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        brave_api_key: str = "",
        exec_timeout_seconds: int = 60,
        exec_path_append: str = "",
        restrict_to_workspace: bool = False,
    ) -> None:
        self._provider = provider
        self._workspace = workspace
        self._bus = bus
        self._model = model or provider.default_model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._brave_api_key = brave_api_key
        self._exec_timeout_seconds = exec_timeout_seconds
        self._exec_path_append = exec_path_append
        self._restrict_to_workspace = restrict_to_workspace
        self._running: dict[str, asyncio.Task[None]] = {}
        self._session_tasks: dict[str, set[str]] = {}

    def spawn(
        self,
        task: str,
        label: str | None,
        origin_channel: str,
        origin_chat_id: str,
        session_key: str,
    ) -> str:
        """Start a subagent without waiting for it and return a status line."""

        task_id = uuid.uuid4().hex[:8]
        display_label = label or (task[:30] + "..." if len(task) > 30 else task)
        origin = {"channel": origin_channel, "chat_id": origin_chat_id}

        bg_task = asyncio.create_task(
            self._run_subagent(task_id, task, display_label, origin), name=f"subagent-{task_id}"
        )
        self._running[task_id] = bg_task
        self._session_tasks.setdefault(session_key, set()).add(task_id)
        bg_task.add_done_callback(lambda _: self._forget(task_id, session_key))

        LOGGER.info("Spawned subagent [%s]: %s", task_id, display_label)
        return f"Subagent [{display_label}] started (id: {task_id}). I'll notify you when it completes."

    def _forget(self, task_id: str, session_key: str) -> None:
        self._running.pop(task_id, None)
        ids = self._session_tasks.get(session_key)
        if ids is not None:
            ids.discard(task_id)
            if not ids:
                del self._session_tasks[session_key]

    def _build_tools(self) -> ToolRegistry:
        allowed_dir = self._workspace if self._restrict_to_workspace else None
        tools = ToolRegistry()
        tools.register(ReadFileTool(self._workspace, allowed_dir))
        tools.register(WriteFileTool(self._workspace, allowed_dir))
        tools.register(EditFileTool(self._workspace, allowed_dir))
        tools.register(ListDirTool(self._workspace, allowed_dir))
        tools.register(
            ExecTool(
                timeout_seconds=self._exec_timeout_seconds,
                working_dir=self._workspace,
                restrict_to_workspace=self._restrict_to_workspace,
                path_append=self._exec_path_append,
            )
        )
        tools.register(WebSearchTool(api_key=self._brave_api_key))
        tools.register(WebFetchTool())
        return tools

    async def _run_subagent(self, task_id: str, task: str, label: str, origin: dict[str, str]) -> None:
        LOGGER.info("Subagent [%s] starting task: %s", task_id, label)
        try:
            result = await self._run_loop(task)
            status = "ok"
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Subagent [%s] failed", task_id)
            result = f"Error: {exc}"
            status = "error"
        await self._announce_result(task_id, label, task, result, origin, status)

    async def _run_loop(self, task: str) -> str:
        tools = self._build_tools()
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self._build_subagent_prompt()},
            {"role": "user", "content": task},
        ]

        for _ in range(SUBAGENT_MAX_ITERATIONS):
            response = await self._provider.chat(
                messages=messages,
                tools=tools.get_definitions(),
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
            if not response.has_tool_calls:
                return response.content or _NO_FINAL_RESPONSE

            messages.append(
                {
                    "role": "assistant",
                    "content": response.content or "",
                    "tool_calls": [
                        {
                            "id": tc.call_id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": json.dumps(tc.arguments, ensure_ascii=False)},
                        }
                        for tc in response.tool_calls
                    ],
                }
            )
            for tool_call in response.tool_calls:
                LOGGER.debug("Subagent executing %s", tool_call.name)
                result = await tools.execute(tool_call.name, tool_call.arguments)
                messages.append(
                    {"role": "tool", "tool_call_id": tool_call.call_id, "name": tool_call.name, "content": result}
                )

        return _NO_FINAL_RESPONSE

    async def _announce_result(
        self, task_id: str, label: str, task: str, result: str, origin: dict[str, str], status: str
    ) -> None:
        status_text = "completed successfully" if status == "ok" else "failed"
        content = (
            f"[Subagent '{label}' {status_text}]\n\n"
            f"Task: {task}\n\n"
            f"Result:\n{result}\n\n"
            "Summarize this naturally for the user. Keep it brief (1-2 sentences). "
            'Do not mention technical details like "subagent" or task IDs.'
        )
        await self._bus.publish_inbound(
            InboundMessage(
                channel="system",
                sender_id="subagent",
                chat_id=f"{origin['channel']}:{origin['chat_id']}",
                content=content,
            )
        )
        LOGGER.info("Subagent [%s] announced result to %s:%s", task_id, origin["channel"], origin["chat_id"])

    @staticmethod
    def _build_subagent_prompt() -> str:
        now = datetime.now().astimezone().strftime("%Y-%m-%d %H:%M (%A) %Z")
        return (
            "# Subagent\n\n"
            f"Current Time: {now}\n\n"
            "You are a subagent spawned by the main agent to complete a specific task. "
            "Stay focused on the assigned task and be concise. You cannot message the user "
            "directly or spawn further subagents; your final answer is reported back to the main agent."
        )

    async def cancel_by_session(self, session_key: str) -> int:
        """Count the subagents still running for ``session_key``."""

        ids = self._session_tasks.get(session_key, set())
        return sum(1 for task_id in ids if task_id in self._running)

    @property
    def running_count(self) -> int:
        return len(self._running)
