"""Workspace file tools."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from clawbot.tools.base import Tool


def _resolve_path(raw: str, workspace: Path | None, allowed_dir: Path | None) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute() and workspace is not None:
        path = workspace / path
    resolved = path.resolve()
    if allowed_dir is not None and not resolved.is_relative_to(allowed_dir.resolve()):
        raise PermissionError(f"Path {raw} is outside allowed directory {allowed_dir}")
    return resolved


class _FileTool(Tool):
    def __init__(self, workspace: Path | None = None, allowed_dir: Path | None = None) -> None:
        self._workspace = workspace
        self._allowed_dir = allowed_dir

    def _path(self, raw: str) -> Path:
        return _resolve_path(raw, self._workspace, self._allowed_dir)


class ReadFileTool(_FileTool):
    """Read a text file."""

    name = "read_file"
    description = "Read the contents of a file at the given path."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "The file path to read."}},
        "required": ["path"],
    }

    async def run(self, **kwargs: Any) -> str:
        raw = kwargs["path"]
        try:
            path = self._path(raw)
            if not path.exists():
                return f"Error: File not found: {raw}"
            if not path.is_file():
                return f"Error: Not a file: {raw}"
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return f"Error reading file: {exc}"


class WriteFileTool(_FileTool):
    """Write a text file, creating parent directories."""

    name = "write_file"
    description = "Write content to a file at the given path. Creates parent directories if needed."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to write to."},
            "content": {"type": "string", "description": "The content to write."},
        },
        "required": ["path", "content"],
    }

    async def run(self, **kwargs: Any) -> str:
        content: str = kwargs["content"]
        try:
            path = self._path(kwargs["path"])
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            return f"Error writing file: {exc}"
        return f"Successfully wrote {len(content)} bytes to {path}"


class EditFileTool(_FileTool):
    """Replace one exact occurrence of text in a file."""

    name = "edit_file"
    description = "Edit a file by replacing old_text with new_text. The old_text must exist exactly in the file."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to edit."},
            "old_text": {"type": "string", "description": "The exact text to find and replace."},
            "new_text": {"type": "string", "description": "The text to replace with."},
        },
        "required": ["path", "old_text", "new_text"],
    }

    async def run(self, **kwargs: Any) -> str:
        raw = kwargs["path"]
        old_text: str = kwargs["old_text"]
        new_text: str = kwargs["new_text"]
        try:
            path = self._path(raw)
            if not path.exists():
                return f"Error: File not found: {raw}"
            content = path.read_text(encoding="utf-8")
            count = content.count(old_text)
            if count == 0:
                return f"Error: old_text not found in {raw}. Verify the file content."
            if count > 1:
                return f"Warning: old_text appears {count} times. Please provide more context to make it unique."
            path.write_text(content.replace(old_text, new_text, 1), encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return f"Error editing file: {exc}"
        return f"Successfully edited {path}"


class ListDirTool(_FileTool):
    """List a directory."""

    name = "list_dir"
    description = "List the contents of a directory."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "The directory path to list."}},
        "required": ["path"],
    }

    async def run(self, **kwargs: Any) -> str:
        raw = kwargs["path"]
        try:
            path = self._path(raw)
            if not path.exists():
                return f"Error: Directory not found: {raw}"
            if not path.is_dir():
                return f"Error: Not a directory: {raw}"
            items = [
                f"{'[DIR]' if child.is_dir() else '[FILE]'} {child.name}"
                for child in sorted(path.iterdir(), key=lambda p: p.name)
            ]
        except OSError as exc:
            return f"Error listing directory: {exc}"
        if not items:
            return f"Directory {raw} is empty"
        return "\n".join(items)
