from clawbot.context import RUNTIME_CONTEXT_TAG, ContextBuilder


def test_system_prompt_includes_bootstrap_files_and_memory(tmp_path):
    (tmp_path / "SOUL.md").write_text("Be kind.", encoding="utf-8")
    builder = ContextBuilder(tmp_path)
    builder.memory.write_long_term("- Prefers metric units")

    prompt = builder.build_system_prompt()

    assert prompt.startswith("# clawbot")
    assert "## SOUL.md\n\nBe kind." in prompt
    assert "# Memory\n\n## Long-term Memory\n- Prefers metric units" in prompt
    assert f"Your workspace is at: {tmp_path}" in prompt


def test_runtime_context_names_channel_only_when_known():
    with_chat = ContextBuilder.build_runtime_context("signal", "42")
    without_chat = ContextBuilder.build_runtime_context()

    assert with_chat.startswith(RUNTIME_CONTEXT_TAG + "\nCurrent Time: ")
    assert with_chat.endswith("Channel: signal\nChat ID: 42")
    assert "Channel:" not in without_chat


def test_messages_are_system_history_context_then_user(tmp_path):
    builder = ContextBuilder(tmp_path)
    history = [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "reply"}]

    messages = builder.build_messages(history, "now", media=["/tmp/a.jpg"], channel="signal", chat_id="42")

    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user", "user"]
    assert messages[3]["content"].startswith(RUNTIME_CONTEXT_TAG)
    assert messages[4]["content"] == "now\n[Attachment: /tmp/a.jpg]"


def test_assistant_and_tool_messages_are_appended():
    messages: list[dict] = []
    tool_calls = [{"id": "c1", "type": "function", "function": {"name": "noop", "arguments": "{}"}}]

    ContextBuilder.add_assistant_message(messages, None, tool_calls, reasoning_content="thinking")
    ContextBuilder.add_tool_result(messages, "c1", "noop", "ok")

    assert messages == [
        {"role": "assistant", "content": None, "tool_calls": tool_calls, "reasoning_content": "thinking"},
        {"role": "tool", "tool_call_id": "c1", "name": "noop", "content": "ok"},
    ]
