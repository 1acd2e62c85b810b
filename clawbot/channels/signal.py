"""Signal channel backed by the signal-cli JSON interface."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import Any

from clawbot.bus import MessageBus
from clawbot.channels.base import BaseChannel
from clawbot.models import OutboundMessage

LOGGER = logging.getLogger(__name__)

_SIGNAL_ATTACHMENTS_DIR = "~/.local/share/signal-cli/attachments"


class SignalChannel(BaseChannel):
    """Polls ``signal-cli receive`` and sends replies with ``signal-cli send``.

    Group chats use the group id as chat id; direct chats use the sender's
    number. ``metadata["is_group"]`` tells ``send`` which form to use.
    """

    name = "signal"

    def __init__(
        self,
        bus: MessageBus,
        signal_cli_path: str,
        account: str,
        poll_interval_seconds: float,
        allow_from: frozenset[str] = frozenset(),
    ) -> None:
        super().__init__(bus, allow_from)
        self._cli = signal_cli_path
        self._account = account
        self._poll_seconds = poll_interval_seconds
        self._stop_event = asyncio.Event()
        self._group_ids: set[str] = set()

    async def start(self) -> None:
        self._running = True
        self._stop_event.clear()
        LOGGER.info("Signal channel polling as %s", self._account)
        try:
            while not self._stop_event.is_set():
                await self._poll_once()
        finally:
            self._running = False

    async def stop(self) -> None:
        self._stop_event.set()

    async def _signal_cli(self, *args: str, json_output: bool = False) -> tuple[int, str, str]:
        """Run one signal-cli subcommand for the configured account."""

        prefix = [self._cli, "-o", "json"] if json_output else [self._cli]
        process = await asyncio.create_subprocess_exec(
            *prefix,
            "-a",
            self._account,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        out, err = await process.communicate()
        return process.returncode or 0, out.decode(), err.decode().strip()

    async def _poll_once(self) -> None:
        code, out, err = await self._signal_cli("receive", "-t", str(int(self._poll_seconds)), json_output=True)
        if code != 0:
            LOGGER.warning("signal-cli receive exited with %d: %s", code, err)
            await asyncio.sleep(self._poll_seconds)
            return

        for raw_line in out.splitlines():
            if not raw_line.strip():
                continue
            try:
                parsed = parse_envelope(json.loads(raw_line))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                LOGGER.debug("Skipping unparseable signal-cli line %r", raw_line[:120])
                continue
            if parsed is None:
                continue
            await self._publish(parsed)

    async def _publish(self, parsed: dict[str, Any]) -> None:
        sender = parsed["sender_id"]
        if not sender.startswith("+"):
            sender = await self.resolve_number(sender)
        group_id = parsed["group_id"]
        if group_id:
            self._group_ids.add(group_id)
        await self._handle_message(
            sender_id=sender,
            chat_id=group_id or sender,
            content=parsed["text"],
            media=parsed["media"],
            metadata={"message_id": parsed["message_id"], "is_group": bool(group_id)},
        )

    async def resolve_number(self, uuid: str) -> str:
        """Map a sender UUID to a phone number via ``listContacts``; the UUID if unknown."""

        _, out, _ = await self._signal_cli("listContacts", json_output=True)
        for raw_line in out.splitlines():
            try:
                contact = json.loads(raw_line)
            except json.JSONDecodeError:
                continue
            if isinstance(contact, dict) and contact.get("uuid") == uuid and contact.get("number"):
                return contact["number"]
        LOGGER.warning("No contact number for %s, keeping the UUID", uuid)
        return uuid

    async def send(self, msg: OutboundMessage) -> None:
        """Send text to a Signal recipient, with any media as attachments."""

        is_group = bool(msg.metadata.get("is_group", msg.chat_id in self._group_ids))
        target = ["-g", msg.chat_id] if is_group else [msg.chat_id]
        attachments = [arg for path in msg.media for arg in ("-a", path)]
        code, _, err = await self._signal_cli("send", "-m", to_signal_formatting(msg.content), *target, *attachments)
        if code != 0:
            raise RuntimeError(f"signal-cli send failed: {err}")


def _attachment_paths(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    # Newer signal-cli versions report where the file was stored; older ones only the id.
    return [
        str(item.get("file") or item.get("storedFilename") or os.path.expanduser(f"{_SIGNAL_ATTACHMENTS_DIR}/{item.get('id', '')}"))
        for item in raw
        if isinstance(item, dict)
    ]


def parse_envelope(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Extract sender, chat, text and attachments from one receive line.

    Returns None for receipts, typing notices and empty data messages.
    """

    envelope = payload.get("envelope") or {}
    data = envelope.get("dataMessage") if isinstance(envelope, dict) else None
    if not isinstance(data, dict):
        return None

    body = data.get("message")
    text = body.strip() if isinstance(body, str) else ""
    media = _attachment_paths(data.get("attachments"))
    if not text and not media:
        return None

    group = data.get("groupInfo")
    group_id = group.get("groupId") if isinstance(group, dict) else None

    return {
        "sender_id": str(envelope.get("source") or envelope.get("sourceUuid") or "unknown"),
        "group_id": group_id if isinstance(group_id, str) else "",
        "text": text,
        "media": media,
        "message_id": str(envelope.get("timestamp") or ""),
    }


_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"```[^\n]*\n?(.*?)```", re.DOTALL), r"\1"),
    (re.compile(r"\*{1,3}(.+?)\*{1,3}", re.DOTALL), r"\1"),
    (re.compile(r"_{1,2}(.+?)_{1,2}", re.DOTALL), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"`(.+?)`"), r"\1"),
    (re.compile(r"\[(.+?)\]\((.+?)\)"), r"\1 (\2)"),
]


def to_signal_formatting(text: str) -> str:
    """Strip markdown that Signal would show literally; links become ``text (url)``."""

    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()
