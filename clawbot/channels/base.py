"""Channel adapter contract."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from clawbot.bus import MessageBus
from clawbot.models import InboundMessage, OutboundMessage

LOGGER = logging.getLogger(__name__)


class BaseChannel(ABC):
    """A chat front-end that feeds the bus and delivers replies.

    ``start`` runs until ``stop`` is called. Inbound traffic goes through
    ``_handle_message`` so the sender allow-list is applied in one place.
    """

    name: str

    def __init__(self, bus: MessageBus, allow_from: frozenset[str] = frozenset()) -> None:
        self.bus = bus
        self._allow_from = allow_from
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """Connect and receive messages until stopped."""

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect and release resources."""

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """Deliver one outbound message."""

    @property
    def is_running(self) -> bool:
        return self._running

    def is_allowed(self, sender_id: str) -> bool:
        if not self._allow_from:
            return True
        if sender_id in self._allow_from:
            return True
        # Composite ids like "+15550001|alice" match on any part.
        if "|" in sender_id:
            return any(part in self._allow_from for part in sender_id.split("|") if part)
        return False

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        media: list[str] | None = None,
        metadata: dict | None = None,
        session_key: str | None = None,
    ) -> None:
        if not self.is_allowed(sender_id):
            LOGGER.warning("Dropping %s message from unauthorized sender %s", self.name, sender_id)
            return
        preview = content if len(content) <= 80 else content[:80] + "..."
        LOGGER.info("[%s] from=%s chat=%s %r", self.name, sender_id, chat_id, preview)
        await self.bus.publish_inbound(
            InboundMessage(
                channel=self.name,
                sender_id=str(sender_id),
                chat_id=str(chat_id),
                content=content,
                media=media or [],
                metadata=metadata or {},
                session_key_override=session_key,
            )
        )
