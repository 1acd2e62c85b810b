"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from clawbot.models import LLMResponse


class LLMProvider(ABC):
    """Abstract model provider used by the agent runtime."""

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Generate a model response.

        Implementations must accept an empty or missing ``tools`` list and
        report transport failures as an error-shaped response instead of
        raising.
        """

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Model id used when the caller does not pick one."""


def sanitize_empty_content(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Replace empty string content, which some providers reject."""

    cleaned: list[dict[str, Any]] = []
    for message in messages:
        content = message.get("content")
        if isinstance(content, str) and not content:
            if message.get("role") == "assistant" and message.get("tool_calls"):
                cleaned.append({**message, "content": None})
            else:
                cleaned.append({**message, "content": "(empty)"})
            continue
        cleaned.append(message)
    return cleaned
