"""Outbound fan-out to the enabled channels."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from clawbot.bus import MessageBus
from clawbot.channels.base import BaseChannel
from clawbot.models import OutboundMessage

LOGGER = logging.getLogger(__name__)


class ChannelManager:
    """Owns the channels and the single consumer of the outbound queue."""

    def __init__(
        self,
        bus: MessageBus,
        channels: list[BaseChannel] | None = None,
        send_progress: bool = True,
        send_tool_hints: bool = False,
    ) -> None:
        self._bus = bus
        self.channels: dict[str, BaseChannel] = {c.name: c for c in channels or []}
        self._send_progress = send_progress
        self._send_tool_hints = send_tool_hints
        self._dispatch_task: asyncio.Task[None] | None = None

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels)

    async def start_all(self) -> None:
        """Start outbound dispatch and run every channel until they stop."""

        if not self.channels:
            LOGGER.warning("No channels enabled")
            return
        self._dispatch_task = asyncio.create_task(self._dispatch_outbound(), name="outbound-dispatch")
        await asyncio.gather(*(self._start_channel(channel) for channel in self.channels.values()))

    async def _start_channel(self, channel: BaseChannel) -> None:
        try:
            await channel.start()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Channel %s failed", channel.name)

    async def stop_all(self) -> None:
        for channel in self.channels.values():
            try:
                await channel.stop()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Error stopping channel %s", channel.name)
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            self._dispatch_task = None

    async def _dispatch_outbound(self) -> None:
        while True:
            msg = await self._bus.consume_outbound()
            await self.deliver(msg)

    def should_deliver(self, msg: OutboundMessage) -> bool:
        if not msg.is_progress:
            return True
        if msg.metadata.get("_tool_hint"):
            return self._send_tool_hints
        return self._send_progress

    async def deliver(self, msg: OutboundMessage) -> bool:
        """Send ``msg`` through its channel; False when filtered or undeliverable."""

        if not self.should_deliver(msg):
            return False
        channel = self.channels.get(msg.channel)
        if channel is None:
            LOGGER.debug("No channel %s for outbound message", msg.channel)
            return False
        try:
            await channel.send(msg)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error sending to %s:%s", msg.channel, msg.chat_id)
            return False
        return True

    def get_status(self) -> dict[str, Any]:
        return {name: {"enabled": True, "running": c.is_running} for name, c in self.channels.items()}
