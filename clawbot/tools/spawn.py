"""Tool that delegates a task to a background subagent."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from clawbot.tools.base import ContextualTool, TurnContext

if TYPE_CHECKING:
    from clawbot.subagent import SubagentManager


class SpawnTool(ContextualTool):
    """Start a subagent for a task; the result comes back later as a new message."""

    name = "spawn"
    description = (
        "Spawn a subagent to handle a task in the background. Use this for complex or "
        "time-consuming work that can run independently; it reports back when done."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "task": {"type": "string", "description": "The task for the subagent to complete."},
            "label": {"type": "string", "description": "Optional short label for the task (for display)."},
        },
        "required": ["task"],
    }

    def __init__(self, manager: SubagentManager) -> None:
        self._manager = manager

    async def run_in_context(self, context: TurnContext, **kwargs: Any) -> str:
        channel = context.channel or "cli"
        chat_id = context.chat_id or "direct"
        return self._manager.spawn(
            task=kwargs["task"],
            label=kwargs.get("label"),
            origin_channel=channel,
            origin_chat_id=chat_id,
            session_key=context.session_key or f"{channel}:{chat_id}",
        )
