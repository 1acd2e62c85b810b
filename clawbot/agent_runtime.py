"""Core agent runtime."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable

from clawbot.bus import MessageBus
from clawbot.commands import CommandDispatcher, is_stop_command
from clawbot.context import RUNTIME_CONTEXT_TAG, ContextBuilder
from clawbot.cron.service import CronService
from clawbot.db import utc_now_iso
from clawbot.llm.base import LLMProvider
from clawbot.models import InboundMessage, LLMResponse, LLMToolCall, OutboundMessage
from clawbot.session import Session, SessionManager
from clawbot.subagent import SubagentManager
from clawbot.tools.base import TurnContext
from clawbot.tools.cron import CronTool
from clawbot.tools.filesystem import EditFileTool, ListDirTool, ReadFileTool, WriteFileTool
from clawbot.tools.message import MessageTool
from clawbot.tools.registry import ToolRegistry
from clawbot.tools.shell import ExecTool
from clawbot.tools.spawn import SpawnTool
from clawbot.tools.web import WebFetchTool, WebSearchTool

LOGGER = logging.getLogger(__name__)

ProgressFn = Callable[..., Awaitable[None]]

TOOL_RESULT_MAX_CHARS = 500
ERROR_REPLY = "Sorry, I encountered an error."
EMPTY_REPLY = "I've completed processing but have no response to give."
_THINK_RE = re.compile(r"<think>[\s\S]*?</think>")


def _strip_think(text: str | None) -> str | None:
    if not text:
        return None
    return _THINK_RE.sub("", text).strip() or None


def _tool_hint(tool_calls: list[LLMToolCall]) -> str:
    """Format tool calls as ``name("first arg")`` for progress display."""

    hints = []
    for call in tool_calls:
        first = next(iter((call.arguments or {}).values()), None)
        if not isinstance(first, str):
            hints.append(call.name)
        elif len(first) > 40:
            hints.append(f'{call.name}("{first[:40]}...")')
        else:
            hints.append(f'{call.name}("{first}")')
    return ", ".join(hints)


class AgentRuntime:
    """Session-ordered dispatch loop orchestrating memory, tools and model calls.

    ``run`` is the only consumer of the bus's inbound queue. Messages are
    handed to a single worker that processes them one at a time in arrival
    order; ``/stop`` is answered by the consumer directly so it never waits
    behind queued work. ``process_direct`` bypasses the worker, and turns on
    the same session key are then kept apart by the session lock.
    """

    def __init__(
        self,
        bus: MessageBus,
        llm: LLMProvider,
        workspace: Path,
        sessions: SessionManager,
        model: str | None = None,
        max_iterations: int = 40,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        memory_window: int = 100,
        request_timeout_seconds: float | None = None,
        brave_api_key: str = "",
        web_search_max_results: int = 5,
        exec_timeout_seconds: int = 60,
        exec_path_append: str = "",
        restrict_to_workspace: bool = False,
        cron_service: CronService | None = None,
        tool_registry: ToolRegistry | None = None,
        subagents: SubagentManager | None = None,
    ) -> None:
        self._bus = bus
        self._llm = llm
        self._workspace = workspace
        self._sessions = sessions
        self._model = model or llm.default_model
        self._max_iterations = max_iterations
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._memory_window = memory_window
        self._request_timeout_seconds = request_timeout_seconds
        self._context = ContextBuilder(workspace)
        self._commands = CommandDispatcher(sessions, self._archive_session)
        self.subagents = subagents or SubagentManager(
            llm,
            workspace,
            bus,
            model=self._model,
            temperature=temperature,
            max_tokens=max_tokens,
            brave_api_key=brave_api_key,
            exec_timeout_seconds=exec_timeout_seconds,
            exec_path_append=exec_path_append,
            restrict_to_workspace=restrict_to_workspace,
        )
        self.tools = tool_registry or ToolRegistry()
        self._register_default_tools(
            brave_api_key,
            web_search_max_results,
            exec_timeout_seconds,
            exec_path_append,
            restrict_to_workspace,
            cron_service,
        )

        self._running = False
        self._consumer: asyncio.Task[None] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._queue: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self._active: dict[str, int] = {}
        self._consolidating: set[str] = set()
        self._background: set[asyncio.Task[None]] = set()

    @property
    def model(self) -> str:
        return self._model

    def _register_default_tools(
        self,
        brave_api_key: str,
        web_search_max_results: int,
        exec_timeout_seconds: int,
        exec_path_append: str,
        restrict_to_workspace: bool,
        cron_service: CronService | None,
    ) -> None:
        allowed_dir = self._workspace if restrict_to_workspace else None
        self.tools.register(ReadFileTool(self._workspace, allowed_dir))
        self.tools.register(WriteFileTool(self._workspace, allowed_dir))
        self.tools.register(EditFileTool(self._workspace, allowed_dir))
        self.tools.register(ListDirTool(self._workspace, allowed_dir))
        self.tools.register(
            ExecTool(
                timeout_seconds=exec_timeout_seconds,
                working_dir=self._workspace,
                restrict_to_workspace=restrict_to_workspace,
                path_append=exec_path_append,
            )
        )
        self.tools.register(WebSearchTool(api_key=brave_api_key, max_results=web_search_max_results))
        self.tools.register(WebFetchTool())
        self.tools.register(MessageTool(send_callback=self._bus.publish_outbound))
        self.tools.register(SpawnTool(self.subagents))
        if cron_service is not None:
            self.tools.register(CronTool(cron_service))

    async def run(self) -> None:
        """Consume inbound messages until ``stop`` is called."""

        self._running = True
        self._consumer = asyncio.current_task()
        self._worker = asyncio.create_task(self._work(), name="agent-worker")
        LOGGER.info("Agent runtime started")
        try:
            while self._running:
                msg = await self._bus.consume_inbound()
                if is_stop_command(msg.content):
                    await self._handle_stop(msg)
                    continue
                key = msg.session_key
                self._active[key] = self._active.get(key, 0) + 1
                self._queue.put_nowait(msg)
        except asyncio.CancelledError:
            if self._running:
                raise
        finally:
            self._worker.cancel()
            LOGGER.info("Agent runtime stopped")

    def stop(self) -> None:
        self._running = False
        if self._consumer is not None and self._consumer is not asyncio.current_task():
            self._consumer.cancel()

    async def _work(self) -> None:
        while True:
            msg = await self._queue.get()
            try:
                await self._dispatch(msg)
            finally:
                self._release(msg.session_key)

    def _release(self, key: str) -> None:
        remaining = self._active.get(key, 0) - 1
        if remaining > 0:
            self._active[key] = remaining
        else:
            self._active.pop(key, None)

    async def _dispatch(self, msg: InboundMessage) -> None:
        try:
            response = await self.process_message(msg)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error processing message from %s", msg.session_key)
            await self._bus.publish_outbound(
                OutboundMessage(channel=msg.channel, chat_id=msg.chat_id, content=ERROR_REPLY)
            )
            return
        if response is not None:
            await self._bus.publish_outbound(response)
        elif msg.channel == "cli":
            await self._bus.publish_outbound(
                OutboundMessage(channel=msg.channel, chat_id=msg.chat_id, content="", metadata=dict(msg.metadata))
            )

    async def _handle_stop(self, msg: InboundMessage) -> None:
        # Advisory: in-flight turns and subagents are counted, not interrupted.
        key = msg.session_key
        total = self._active.get(key, 0) + await self.subagents.cancel_by_session(key)
        content = f"Stopped {total} task(s)." if total else "No active task to stop."
        await self._bus.publish_outbound(OutboundMessage(channel=msg.channel, chat_id=msg.chat_id, content=content))

    async def process_direct(
        self,
        content: str,
        session_key: str = "cli:direct",
        channel: str = "cli",
        chat_id: str = "direct",
        on_progress: ProgressFn | None = None,
    ) -> str:
        """Run one turn outside the dispatch queue and return the reply text."""

        msg = InboundMessage(channel=channel, sender_id="user", chat_id=chat_id, content=content)
        response = await self.process_message(msg, session_key=session_key, on_progress=on_progress)
        return response.content if response else ""

    async def process_message(
        self,
        msg: InboundMessage,
        session_key: str | None = None,
        on_progress: ProgressFn | None = None,
    ) -> OutboundMessage | None:
        """Handle one inbound message and return the reply, if any."""

        if msg.channel == "system":
            return await self._process_system_message(msg)

        key = session_key or msg.session_key
        LOGGER.info("Processing message from %s:%s", msg.channel, msg.sender_id)
        async with self._sessions.lock(key):
            session = self._sessions.get_or_create(key)
            command_reply = await self._commands.dispatch(msg.content, session)
            if command_reply is not None:
                return OutboundMessage(channel=msg.channel, chat_id=msg.chat_id, content=command_reply)

            self._maybe_consolidate(session)
            turn = TurnContext(msg.channel, msg.chat_id, key, msg.metadata.get("message_id"))

            history = session.get_history(self._memory_window)
            initial = self._context.build_messages(
                history,
                msg.content,
                media=msg.media,
                channel=msg.channel,
                chat_id=msg.chat_id,
            )

            async def bus_progress(content: str, tool_hint: bool = False) -> None:
                metadata = {**msg.metadata, "_progress": True, "_tool_hint": tool_hint}
                await self._bus.publish_outbound(
                    OutboundMessage(channel=msg.channel, chat_id=msg.chat_id, content=content, metadata=metadata)
                )

            final_content, _, all_messages = await self._run_agent_loop(initial, turn, on_progress or bus_progress)
            self._save_turn(session, all_messages, 1 + len(history))
            self._sessions.save(session)

        if turn.message_sent:
            return None
        return OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=final_content or EMPTY_REPLY,
            metadata=dict(msg.metadata),
        )

    async def _process_system_message(self, msg: InboundMessage) -> OutboundMessage | None:
        channel, sep, chat_id = msg.chat_id.partition(":")
        if not sep:
            channel, chat_id = "cli", msg.chat_id
        key = f"{channel}:{chat_id}"
        LOGGER.info("Processing system message from %s for %s", msg.sender_id, key)

        async with self._sessions.lock(key):
            session = self._sessions.get_or_create(key)
            turn = TurnContext(channel, chat_id, key, msg.metadata.get("message_id"))
            history = session.get_history(self._memory_window)
            initial = self._context.build_messages(history, msg.content, channel=channel, chat_id=chat_id)
            final_content, _, all_messages = await self._run_agent_loop(initial, turn)
            self._save_turn(session, all_messages, 1 + len(history))
            self._sessions.save(session)

        if turn.message_sent:
            return None
        return OutboundMessage(channel=channel, chat_id=chat_id, content=final_content or "Background task completed.")

    async def _run_agent_loop(
        self,
        initial_messages: list[dict[str, Any]],
        turn: TurnContext,
        on_progress: ProgressFn | None = None,
    ) -> tuple[str | None, list[str], list[dict[str, Any]]]:
        """Alternate model calls and tool execution until a final answer.

        Returns:
            (final_content, tools_used, messages) where messages includes the
            initial prompt followed by every turn produced here.
        """
        messages = list(initial_messages)
        final_content: str | None = None
        tools_used: list[str] = []

        for _ in range(self._max_iterations):
            response = await self._chat(messages)

            if not response.has_tool_calls:
                final_content = _strip_think(response.content)
                self._context.add_assistant_message(
                    messages, final_content, reasoning_content=response.reasoning_content
                )
                break

            if on_progress is not None:
                clean = _strip_think(response.content)
                if clean:
                    await on_progress(clean)
                await on_progress(_tool_hint(response.tool_calls), tool_hint=True)

            tool_call_dicts = [
                {
                    "id": tc.call_id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": json.dumps(tc.arguments, ensure_ascii=False)},
                }
                for tc in response.tool_calls
            ]
            self._context.add_assistant_message(
                messages, response.content, tool_call_dicts, reasoning_content=response.reasoning_content
            )
            for tool_call in response.tool_calls:
                tools_used.append(tool_call.name)
                LOGGER.info("Tool call: %s", tool_call.name)
                result = await self.tools.execute(tool_call.name, tool_call.arguments, turn)
                self._context.add_tool_result(messages, tool_call.call_id or "", tool_call.name, result)
        else:
            LOGGER.warning("Max iterations (%d) reached", self._max_iterations)
            final_content = (
                f"I reached the maximum number of tool call iterations ({self._max_iterations}) "
                "without completing the task."
            )

        return final_content, tools_used, messages

    async def _chat(self, messages: list[dict[str, Any]]) -> LLMResponse:
        call = self._llm.chat(
            messages=messages,
            tools=self.tools.get_definitions(),
            model=self._model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        if self._request_timeout_seconds is None:
            return await call
        return await asyncio.wait_for(call, timeout=self._request_timeout_seconds)

    @staticmethod
    def _save_turn(session: Session, messages: list[dict[str, Any]], skip: int) -> None:
        for message in messages[skip:]:
            entry = {k: v for k, v in message.items() if k != "reasoning_content"}
            content = entry.get("content")
            if entry["role"] == "tool" and isinstance(content, str) and len(content) > TOOL_RESULT_MAX_CHARS:
                entry["content"] = content[:TOOL_RESULT_MAX_CHARS] + "\n... (truncated)"
            if entry["role"] == "user" and isinstance(content, str) and content.startswith(RUNTIME_CONTEXT_TAG):
                continue
            entry.setdefault("timestamp", utc_now_iso())
            session.messages.append(entry)
        session.updated_at = utc_now_iso()

    def _maybe_consolidate(self, session: Session) -> None:
        if session.unconsolidated_count < self._memory_window or session.key in self._consolidating:
            return
        self._consolidating.add(session.key)
        task = asyncio.create_task(self._consolidate(session))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _consolidate(self, session: Session) -> None:
        try:
            await self._context.memory.consolidate(
                session, self._llm, self._model, memory_window=self._memory_window
            )
        finally:
            self._consolidating.discard(session.key)

    async def _archive_session(self, session: Session) -> bool:
        return await self._context.memory.consolidate(
            session, self._llm, self._model, archive_all=True, memory_window=self._memory_window
        )
