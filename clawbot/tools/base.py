"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable


class Tool(ABC):
    """Base class for all assistant tools."""

    name: str
    description: str
    parameters_schema: dict[str, Any]

    @abstractmethod
    async def run(self, **kwargs: Any) -> str:
        """Execute tool with validated arguments."""

    def to_spec(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }


@dataclass(slots=True)
class TurnContext:
    """The conversation one agent turn acts for.

    Built fresh for every turn and passed to contextual tools through
    ``ToolRegistry.execute``. ``message_sent`` is set by the message tool
    when it delivers to this conversation.
    """

    channel: str = ""
    chat_id: str = ""
    session_key: str = ""
    message_id: str | None = None
    message_sent: bool = False


class ContextualTool(Tool):
    """Tool that needs to know which conversation it is acting for."""

    async def run(self, **kwargs: Any) -> str:
        return await self.run_in_context(TurnContext(), **kwargs)

    @abstractmethod
    async def run_in_context(self, context: TurnContext, **kwargs: Any) -> str:
        """Execute on behalf of the conversation in ``context``."""


@dataclass
class FunctionTool(Tool):
    """A tool built from a plain async callable."""

    name: str
    description: str
    parameters_schema: dict[str, Any]
    func: Callable[..., Awaitable[str]]

    async def run(self, **kwargs: Any) -> str:
        return await self.func(**kwargs)
