"""Registry for tool registration and normalized execution."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from clawbot.db import Database
from clawbot.tools.base import ContextualTool, Tool, TurnContext
from clawbot.tools.validation import validate_params

LOGGER = logging.getLogger(__name__)

COACHING_SUFFIX = "\n\n[Analyze the error above and try a different approach.]"


class ToolRegistry:
    """Name-to-tool mapping that funnels every outcome into text for the model."""

    def __init__(self, db: Database | None = None) -> None:
        self._db = db
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        return [tool.to_spec() for tool in self._tools.values()]

    async def execute(
        self, tool_name: str, arguments: dict[str, Any], context: TurnContext | None = None
    ) -> str:
        """Validate and run one call; ``context`` reaches contextual tools only."""

        tool = self._tools.get(tool_name)
        if tool is None:
            return f"Error: Tool '{tool_name}' not found. Available: {', '.join(self.tool_names)}"

        try:
            issues = validate_params(tool.parameters_schema, arguments)
            if issues:
                detail = "; ".join(str(issue) for issue in issues)
                result = f"Error: Invalid parameters for tool '{tool_name}': {detail}"
                self._audit(tool_name, arguments, result, succeeded=False)
                return result + COACHING_SUFFIX
            if isinstance(tool, ContextualTool) and context is not None:
                result = await tool.run_in_context(context, **arguments)
            else:
                result = await tool.run(**arguments)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Tool %s raised: %s", tool_name, exc)
            result = f"Error executing {tool_name}: {exc}"
            self._audit(tool_name, arguments, result, succeeded=False)
            return result + COACHING_SUFFIX

        if not isinstance(result, str):
            result = str(result)
        failed = result.startswith("Error")
        self._audit(tool_name, arguments, result, succeeded=not failed)
        return result + COACHING_SUFFIX if failed else result

    def _audit(self, tool_name: str, arguments: Any, result: str, succeeded: bool) -> None:
        if self._db is None:
            return
        try:
            self._db.log_tool_execution(
                tool_name, arguments if isinstance(arguments, dict) else {"_raw": arguments}, result, succeeded
            )
        except sqlite3.Error:
            LOGGER.warning("Failed to record execution of %s", tool_name, exc_info=True)
