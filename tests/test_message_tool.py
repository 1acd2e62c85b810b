from unittest.mock import AsyncMock

import pytest

from clawbot.tools.base import TurnContext
from clawbot.tools.message import MessageTool


@pytest.mark.asyncio
async def test_sends_to_context_target_and_marks_turn():
    send = AsyncMock()
    tool = MessageTool(send_callback=send)
    turn = TurnContext("signal", "42", "signal:42", "m-1")

    result = await tool.run_in_context(turn, content="hello")

    assert result == "Message sent to signal:42"
    sent = send.await_args.args[0]
    assert (sent.channel, sent.chat_id, sent.content) == ("signal", "42", "hello")
    assert sent.metadata == {"message_id": "m-1"}
    assert turn.message_sent is True


@pytest.mark.asyncio
async def test_explicit_target_elsewhere_does_not_mark_turn():
    send = AsyncMock()
    tool = MessageTool(send_callback=send)
    turn = TurnContext("signal", "42", "signal:42")

    result = await tool.run_in_context(turn, content="fyi", channel="signal", chat_id="7", media=["/tmp/a.png"])

    assert result == "Message sent to signal:7 with 1 attachments"
    assert send.await_args.args[0].media == ["/tmp/a.png"]
    assert turn.message_sent is False


@pytest.mark.asyncio
async def test_each_turn_tracks_its_own_delivery():
    tool = MessageTool(send_callback=AsyncMock())
    first = TurnContext("cli", "direct", "cli:direct")
    second = TurnContext("signal", "7", "signal:7")

    await tool.run_in_context(first, content="x")

    assert first.message_sent is True
    assert second.message_sent is False


@pytest.mark.asyncio
async def test_missing_target_or_callback_is_an_error():
    assert await MessageTool(send_callback=AsyncMock()).run(content="x") == "Error: No target channel/chat specified"

    tool = MessageTool()
    turn = TurnContext("cli", "direct", "cli:direct")
    assert await tool.run_in_context(turn, content="x") == "Error: Message sending not configured"

    late = AsyncMock()
    tool.set_send_callback(late)
    assert await tool.run_in_context(turn, content="x") == "Message sent to cli:direct"
    late.assert_awaited_once()
