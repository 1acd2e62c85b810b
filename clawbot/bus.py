"""In-process message bus between channels and the agent runtime."""

from __future__ import annotations

import asyncio

from clawbot.models import InboundMessage, OutboundMessage


class MessageBus:
    """Two independent unbounded FIFO queues.

    Channels publish inbound messages and consume outbound ones; the agent
    runtime does the reverse. Contents are lost on process exit.
    """

    def __init__(self) -> None:
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()

    async def publish_inbound(self, msg: InboundMessage) -> None:
        self.inbound.put_nowait(msg)

    async def consume_inbound(self) -> InboundMessage:
        return await self.inbound.get()

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        self.outbound.put_nowait(msg)

    async def consume_outbound(self) -> OutboundMessage:
        return await self.outbound.get()

    @property
    def inbound_size(self) -> int:
        return self.inbound.qsize()

    @property
    def outbound_size(self) -> int:
        return self.outbound.qsize()
