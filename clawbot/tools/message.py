"""Tool that lets the model deliver a message mid-turn."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from clawbot.models import OutboundMessage
from clawbot.tools.base import ContextualTool, TurnContext

SendCallback = Callable[[OutboundMessage], Awaitable[None]]


class MessageTool(ContextualTool):
    """Sends content to a channel/chat, defaulting to the current conversation.

    Delivering to the turn's own conversation sets ``context.message_sent``;
    the runtime then skips its own final reply.
    """

    name = "message"
    description = "Send a message to the user. Use this when you want to communicate something."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "The message content to send."},
            "channel": {"type": "string", "description": "Optional target channel."},
            "chat_id": {"type": "string", "description": "Optional target chat/user ID."},
            "media": {"type": "array", "items": {"type": "string"}, "description": "Optional file attachments."},
        },
        "required": ["content"],
    }

    def __init__(self, send_callback: SendCallback | None = None) -> None:
        self._send_callback = send_callback

    def set_send_callback(self, callback: SendCallback) -> None:
        self._send_callback = callback

    async def run_in_context(self, context: TurnContext, **kwargs: Any) -> str:
        content: str = kwargs["content"]
        channel = kwargs.get("channel") or context.channel
        chat_id = kwargs.get("chat_id") or context.chat_id
        media: list[str] = kwargs.get("media") or []

        if not channel or not chat_id:
            return "Error: No target channel/chat specified"
        if self._send_callback is None:
            return "Error: Message sending not configured"

        await self._send_callback(
            OutboundMessage(
                channel=channel,
                chat_id=chat_id,
                content=content,
                media=media,
                metadata={"message_id": context.message_id or ""},
            )
        )
        if channel == context.channel and chat_id == context.chat_id:
            context.message_sent = True
        suffix = f" with {len(media)} attachments" if media else ""
        return f"Message sent to {channel}:{chat_id}{suffix}"
