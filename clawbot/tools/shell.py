"""Shell command tool."""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import Any

from clawbot.tools.base import Tool

_MAX_OUTPUT_CHARS = 10_000

_DENY_PATTERNS = [
    r"\brm\s+-[rf]{1,2}\b",
    r"\bdel\s+/[fq]\b",
    r"\brmdir\s+/s\b",
    r"(?:^|[;&|]\s*)format\b",
    r"\b(mkfs|diskpart)\b",
    r"\bdd\s+if=",
    r">\s*/dev/sd",
    r"\b(shutdown|reboot|poweroff)\b",
    r":\(\)\s*\{.*\};\s*:",
]


class ExecTool(Tool):
    """Run a shell command with a timeout and a deny-list guard."""

    name = "exec"
    description = "Execute a shell command and return its output. Use with caution."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute."},
            "working_dir": {"type": "string", "description": "Optional working directory for the command."},
        },
        "required": ["command"],
    }

    def __init__(
        self,
        timeout_seconds: int = 60,
        working_dir: Path | None = None,
        restrict_to_workspace: bool = False,
        path_append: str = "",
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._working_dir = working_dir
        self._restrict_to_workspace = restrict_to_workspace
        self._path_append = path_append

    def _guard(self, command: str, cwd: Path) -> str | None:
        lower = command.lower()
        if any(re.search(pattern, lower) for pattern in _DENY_PATTERNS):
            return "Error: Command blocked by safety guard (dangerous pattern detected)"
        if self._restrict_to_workspace:
            if "../" in command or "..\\" in command:
                return "Error: Command blocked by safety guard (path traversal detected)"
            for raw in re.findall(r"(?:^|\s)(/[^\s\"']+)", command):
                if not Path(raw).resolve().is_relative_to(cwd.resolve()):
                    return "Error: Command blocked by safety guard (path outside working dir)"
        return None

    async def run(self, **kwargs: Any) -> str:
        command: str = kwargs["command"]
        cwd = Path(kwargs.get("working_dir") or self._working_dir or Path.cwd())
        blocked = self._guard(command, cwd)
        if blocked:
            return blocked

        env = dict(os.environ)
        if self._path_append:
            env["PATH"] = env.get("PATH", "") + os.pathsep + self._path_append

        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return f"Error: Command timed out after {self._timeout_seconds} seconds"

        parts = []
        if stdout:
            parts.append(stdout.decode(errors="replace"))
        if stderr and stderr.strip():
            parts.append(f"STDERR:\n{stderr.decode(errors='replace')}")
        if process.returncode:
            parts.append(f"Exit code: {process.returncode}")
        output = "\n".join(parts) or "(no output)"
        if len(output) > _MAX_OUTPUT_CHARS:
            extra = len(output) - _MAX_OUTPUT_CHARS
            output = f"{output[:_MAX_OUTPUT_CHARS]}\n... (truncated, {extra} more chars)"
        return output
