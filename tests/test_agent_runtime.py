import asyncio

import pytest

from clawbot.agent_runtime import AgentRuntime, _strip_think, _tool_hint
from clawbot.bus import MessageBus
from clawbot.commands import HELP_TEXT
from clawbot.context import RUNTIME_CONTEXT_TAG
from clawbot.db import Database
from clawbot.llm.base import LLMProvider
from clawbot.models import InboundMessage, LLMResponse, LLMToolCall
from clawbot.session import SessionManager
from clawbot.tools.base import FunctionTool


class ScriptedProvider(LLMProvider):
    """Returns queued responses in order, repeating the last one."""

    def __init__(self, *responses: LLMResponse) -> None:
        self._responses = list(responses)
        self.calls: list[list[dict]] = []

    @property
    def default_model(self) -> str:
        return "test-model"

    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7):
        self.calls.append(list(messages))
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


class EchoProvider(LLMProvider):
    """Echoes the last user message and records how many calls overlap."""

    def __init__(self, delay: float = 0.01) -> None:
        self._delay = delay
        self.active = 0
        self.max_active = 0

    @property
    def default_model(self) -> str:
        return "test-model"

    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self._delay)
        finally:
            self.active -= 1
        return LLMResponse(content=f"echo {messages[-1]['content']}")


def _tool_call(name: str, call_id: str = "call-1", **arguments) -> LLMToolCall:
    return LLMToolCall(name=name, arguments=arguments, call_id=call_id)


def _runtime(tmp_path, llm: LLMProvider, bus: MessageBus | None = None, **kwargs) -> AgentRuntime:
    db = Database(tmp_path / "sessions.db")
    db.initialize()
    return AgentRuntime(
        bus=bus or MessageBus(),
        llm=llm,
        workspace=tmp_path / "workspace",
        sessions=SessionManager(db),
        **kwargs,
    )


def _inbound(content: str, channel: str = "signal", chat_id: str = "42") -> InboundMessage:
    return InboundMessage(channel=channel, sender_id="user-1", chat_id=chat_id, content=content)


async def _noop(**kwargs) -> str:
    return "ok"


NOOP_TOOL = FunctionTool(
    name="noop",
    description="Does nothing.",
    parameters_schema={"type": "object", "properties": {"note": {"type": "string"}}},
    func=_noop,
)


@pytest.mark.asyncio
async def test_process_direct_returns_reply_and_persists_turn(tmp_path):
    runtime = _runtime(tmp_path, ScriptedProvider(LLMResponse(content="hello")))

    reply = await runtime.process_direct("hi")

    assert reply == "hello"
    session = runtime._sessions.get_or_create("cli:direct")
    assert [m["role"] for m in session.messages] == ["user", "assistant"]
    assert all(not str(m["content"]).startswith(RUNTIME_CONTEXT_TAG) for m in session.messages)
    assert all("timestamp" in m for m in session.messages)


@pytest.mark.asyncio
async def test_prompt_includes_runtime_context_and_history(tmp_path):
    provider = ScriptedProvider(LLMResponse(content="first"), LLMResponse(content="second"))
    runtime = _runtime(tmp_path, provider)

    await runtime.process_direct("one", channel="signal", chat_id="42", session_key="signal:42")
    await runtime.process_direct("two", channel="signal", chat_id="42", session_key="signal:42")

    prompt = provider.calls[1]
    assert prompt[0]["role"] == "system"
    assert [m["content"] for m in prompt[1:3]] == ["one", "first"]
    assert prompt[-2]["content"].startswith(RUNTIME_CONTEXT_TAG)
    assert "Channel: signal" in prompt[-2]["content"]
    assert prompt[-1] == {"role": "user", "content": "two"}


@pytest.mark.asyncio
async def test_iteration_cap_returns_fallback_after_exact_calls(tmp_path):
    provider = ScriptedProvider(LLMResponse(content=None, tool_calls=[_tool_call("noop")]))
    runtime = _runtime(tmp_path, provider, max_iterations=3)
    runtime.tools.register(NOOP_TOOL)

    reply = await runtime.process_direct("loop forever")

    assert reply == "I reached the maximum number of tool call iterations (3) without completing the task."
    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_tool_results_are_fed_back_and_truncated_when_stored(tmp_path):
    async def big(**kwargs) -> str:
        return "x" * 600

    provider = ScriptedProvider(
        LLMResponse(content="checking", tool_calls=[_tool_call("big", path="/tmp/a")]),
        LLMResponse(content="<think>hmm</think>All done."),
    )
    runtime = _runtime(tmp_path, provider)
    runtime.tools.register(FunctionTool("big", "Big output.", {"type": "object", "properties": {}}, big))

    reply = await runtime.process_direct("go")

    assert reply == "All done."
    second_prompt = provider.calls[1]
    assert second_prompt[-1] == {"role": "tool", "tool_call_id": "call-1", "name": "big", "content": "x" * 600}
    stored = runtime._sessions.get_or_create("cli:direct").messages
    assert [m["role"] for m in stored] == ["user", "assistant", "tool", "assistant"]
    assert stored[2]["content"] == "x" * 500 + "\n... (truncated)"
    assert stored[1]["tool_calls"][0]["function"] == {"name": "big", "arguments": '{"path": "/tmp/a"}'}


@pytest.mark.asyncio
async def test_reasoning_content_is_not_persisted(tmp_path):
    provider = ScriptedProvider(LLMResponse(content="answer", reasoning_content="private"))
    runtime = _runtime(tmp_path, provider)

    await runtime.process_direct("q")

    stored = runtime._sessions.get_or_create("cli:direct").messages
    assert all("reasoning_content" not in m for m in stored)


@pytest.mark.asyncio
async def test_progress_reports_content_and_tool_hint(tmp_path):
    provider = ScriptedProvider(
        LLMResponse(content="Let me look", tool_calls=[_tool_call("noop", note="a" * 50)]),
        LLMResponse(content="done"),
    )
    runtime = _runtime(tmp_path, provider)
    runtime.tools.register(NOOP_TOOL)
    updates: list[tuple[str, bool]] = []

    async def on_progress(content: str, tool_hint: bool = False) -> None:
        updates.append((content, tool_hint))

    await runtime.process_direct("go", on_progress=on_progress)

    assert updates == [("Let me look", False), (f'noop("{"a" * 40}...")', True)]


@pytest.mark.asyncio
async def test_progress_goes_to_bus_with_markers(tmp_path):
    bus = MessageBus()
    provider = ScriptedProvider(
        LLMResponse(content=None, tool_calls=[_tool_call("noop")]),
        LLMResponse(content="done"),
    )
    runtime = _runtime(tmp_path, provider, bus=bus)
    runtime.tools.register(NOOP_TOOL)

    response = await runtime.process_message(_inbound("go"))

    hint = await bus.consume_outbound()
    assert hint.content == "noop"
    assert hint.metadata["_progress"] is True
    assert hint.metadata["_tool_hint"] is True
    assert response.content == "done"


@pytest.mark.asyncio
async def test_message_tool_delivery_suppresses_final_reply(tmp_path):
    bus = MessageBus()
    provider = ScriptedProvider(
        LLMResponse(content=None, tool_calls=[_tool_call("message", content="Here you go")]),
        LLMResponse(content="Sent it."),
    )
    runtime = _runtime(tmp_path, provider, bus=bus)

    response = await runtime.process_message(_inbound("send me the report"), on_progress=_silent)

    assert response is None
    delivered = await bus.consume_outbound()
    assert (delivered.channel, delivered.chat_id, delivered.content) == ("signal", "42", "Here you go")


@pytest.mark.asyncio
async def test_message_to_other_chat_does_not_suppress_reply(tmp_path):
    provider = ScriptedProvider(
        LLMResponse(content=None, tool_calls=[_tool_call("message", content="ping", chat_id="99")]),
        LLMResponse(content="Told them."),
    )
    runtime = _runtime(tmp_path, provider)

    response = await runtime.process_message(_inbound("tell 99"), on_progress=_silent)

    assert response.content == "Told them."


@pytest.mark.asyncio
async def test_overlapping_turns_keep_their_own_message_target(tmp_path):
    class ParkingProvider(ScriptedProvider):
        def __init__(self) -> None:
            super().__init__(LLMResponse(content="unused"))
            self.parked = asyncio.Event()
            self.release = asyncio.Event()

        async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7):
            if messages[-1]["role"] == "tool":
                return LLMResponse(content="done")
            asked = " ".join(str(m["content"]) for m in messages if m["role"] == "user")
            if "alpha request" in asked:
                self.parked.set()
                await self.release.wait()
                return LLMResponse(content=None, tool_calls=[_tool_call("message", content="hi A")])
            return LLMResponse(content="reply B")

    bus = MessageBus()
    provider = ParkingProvider()
    runtime = _runtime(tmp_path, provider, bus=bus)

    first = asyncio.create_task(runtime.process_message(_inbound("alpha request"), on_progress=_silent))
    await asyncio.wait_for(provider.parked.wait(), timeout=2)
    second_reply = await runtime.process_direct("bravo request", session_key="cron:x", channel="signal", chat_id="bob")
    provider.release.set()
    first_response = await asyncio.wait_for(first, timeout=2)

    assert second_reply == "reply B"
    assert first_response is None
    delivered = await asyncio.wait_for(bus.consume_outbound(), timeout=2)
    assert (delivered.channel, delivered.chat_id, delivered.content) == ("signal", "42", "hi A")
    assert bus.outbound_size == 0


async def _silent(content: str, tool_hint: bool = False) -> None:
    return None


@pytest.mark.asyncio
async def test_empty_final_answer_uses_placeholder(tmp_path):
    runtime = _runtime(tmp_path, ScriptedProvider(LLMResponse(content="<think>only thoughts</think>")))

    assert await runtime.process_direct("?") == "I've completed processing but have no response to give."


@pytest.mark.asyncio
async def test_help_command_skips_model(tmp_path):
    provider = ScriptedProvider(LLMResponse(content="unused"))
    runtime = _runtime(tmp_path, provider)

    assert await runtime.process_direct("/help") == HELP_TEXT
    assert provider.calls == []


@pytest.mark.asyncio
async def test_new_command_archives_and_clears_session(tmp_path):
    provider = ScriptedProvider(
        LLMResponse(content="hello"),
        LLMResponse(
            content=None,
            tool_calls=[
                _tool_call("save_memory", history_entry="[2025-01-01 10:00] Said hi.", memory_update="# Facts\n- likes tea")
            ],
        ),
    )
    runtime = _runtime(tmp_path, provider)
    await runtime.process_direct("hi")

    reply = await runtime.process_direct("/new")

    assert reply == "New session started."
    assert runtime._sessions.get_or_create("cli:direct").messages == []
    memory_dir = tmp_path / "workspace" / "memory"
    assert (memory_dir / "MEMORY.md").read_text(encoding="utf-8") == "# Facts\n- likes tea"
    assert "Said hi." in (memory_dir / "HISTORY.md").read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_new_command_keeps_session_when_archive_fails(tmp_path):
    provider = ScriptedProvider(LLMResponse(content="hello"), LLMResponse(content="no tool call"))
    runtime = _runtime(tmp_path, provider)
    await runtime.process_direct("hi")

    reply = await runtime.process_direct("/new")

    assert reply == "Memory archival failed, session not cleared. Please try again."
    assert len(runtime._sessions.get_or_create("cli:direct").messages) == 2


@pytest.mark.asyncio
async def test_system_message_routes_to_origin_session(tmp_path):
    provider = ScriptedProvider(LLMResponse(content="Your report is ready."))
    runtime = _runtime(tmp_path, provider)
    msg = InboundMessage(channel="system", sender_id="subagent", chat_id="signal:42", content="[Subagent done]")

    response = await runtime.process_message(msg)

    assert (response.channel, response.chat_id, response.content) == ("signal", "42", "Your report is ready.")
    assert len(runtime._sessions.get_or_create("signal:42").messages) == 2


@pytest.mark.asyncio
async def test_system_message_without_colon_goes_to_cli(tmp_path):
    runtime = _runtime(tmp_path, ScriptedProvider(LLMResponse(content="ok")))
    msg = InboundMessage(channel="system", sender_id="subagent", chat_id="direct", content="done")

    response = await runtime.process_message(msg)

    assert (response.channel, response.chat_id) == ("cli", "direct")


@pytest.mark.asyncio
async def test_run_processes_messages_one_at_a_time_in_order(tmp_path):
    bus = MessageBus()
    provider = EchoProvider()
    runtime = _runtime(tmp_path, provider, bus=bus)
    task = asyncio.create_task(runtime.run())

    for text, chat in (("a", "1"), ("b", "2"), ("c", "1")):
        await bus.publish_inbound(_inbound(text, chat_id=chat))
    replies = [await asyncio.wait_for(bus.consume_outbound(), timeout=2) for _ in range(3)]

    runtime.stop()
    await task
    assert [r.content for r in replies] == ["echo a", "echo b", "echo c"]
    assert [r.chat_id for r in replies] == ["1", "2", "1"]
    assert provider.max_active == 1


@pytest.mark.asyncio
async def test_stop_is_answered_while_turn_is_running(tmp_path):
    bus = MessageBus()
    release = asyncio.Event()

    class BlockingProvider(ScriptedProvider):
        async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7):
            await release.wait()
            return LLMResponse(content="finished")

    runtime = _runtime(tmp_path, BlockingProvider(), bus=bus)
    task = asyncio.create_task(runtime.run())

    await bus.publish_inbound(_inbound("long job"))
    await bus.publish_inbound(_inbound("/stop"))
    first = await asyncio.wait_for(bus.consume_outbound(), timeout=2)
    release.set()
    second = await asyncio.wait_for(bus.consume_outbound(), timeout=2)

    runtime.stop()
    await task
    assert first.content == "Stopped 1 task(s)."
    assert second.content == "finished"


@pytest.mark.asyncio
async def test_stop_with_nothing_running(tmp_path):
    bus = MessageBus()
    runtime = _runtime(tmp_path, ScriptedProvider(LLMResponse(content="x")), bus=bus)
    task = asyncio.create_task(runtime.run())

    await bus.publish_inbound(_inbound("/stop"))
    reply = await asyncio.wait_for(bus.consume_outbound(), timeout=2)

    runtime.stop()
    await task
    assert reply.content == "No active task to stop."


@pytest.mark.asyncio
async def test_worker_failure_publishes_apology_and_keeps_going(tmp_path):
    bus = MessageBus()

    class FlakyProvider(ScriptedProvider):
        async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7):
            if messages[-1]["content"] == "explode":
                raise RuntimeError("backend down")
            return LLMResponse(content="fine")

    runtime = _runtime(tmp_path, FlakyProvider(), bus=bus)
    task = asyncio.create_task(runtime.run())

    await bus.publish_inbound(_inbound("explode"))
    await bus.publish_inbound(_inbound("again"))
    replies = [await asyncio.wait_for(bus.consume_outbound(), timeout=2) for _ in range(2)]

    runtime.stop()
    await task
    assert [r.content for r in replies] == ["Sorry, I encountered an error.", "fine"]


@pytest.mark.asyncio
async def test_cli_message_without_reply_still_unblocks_caller(tmp_path):
    bus = MessageBus()
    provider = ScriptedProvider(
        LLMResponse(content=None, tool_calls=[_tool_call("message", content="direct note")]),
        LLMResponse(content="sent"),
    )
    runtime = _runtime(tmp_path, provider, bus=bus)
    task = asyncio.create_task(runtime.run())

    await bus.publish_inbound(_inbound("note", channel="cli", chat_id="direct"))
    outbound = [await asyncio.wait_for(bus.consume_outbound(), timeout=2) for _ in range(3)]

    runtime.stop()
    await task
    contents = [m.content for m in outbound if not m.is_progress]
    assert contents == ["direct note", ""]


@pytest.mark.asyncio
async def test_consolidation_starts_when_window_is_full(tmp_path):
    class MemoryProvider(ScriptedProvider):
        async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7):
            if tools and tools[0]["function"]["name"] == "save_memory":
                return LLMResponse(
                    content=None,
                    tool_calls=[_tool_call("save_memory", history_entry="[2025-01-01] old", memory_update="facts")],
                )
            return LLMResponse(content="ok")

    runtime = _runtime(tmp_path, MemoryProvider(), memory_window=4)
    for index in range(2):
        await runtime.process_direct(f"m{index}")

    await runtime.process_direct("trigger")
    for _ in range(50):
        if not runtime._background:
            break
        await asyncio.sleep(0.01)

    session = runtime._sessions.get_or_create("cli:direct")
    assert 2 <= session.last_consolidated <= len(session.messages) - 2
    assert (tmp_path / "workspace" / "memory" / "MEMORY.md").read_text(encoding="utf-8") == "facts"


def test_strip_think_and_tool_hint_helpers():
    assert _strip_think("<think>x</think> answer ") == "answer"
    assert _strip_think("<think>x</think>") is None
    assert _strip_think(None) is None
    assert _tool_hint([_tool_call("exec", command="ls"), _tool_call("list_dir", depth=2)]) == 'exec("ls"), list_dir'
