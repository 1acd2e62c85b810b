"""Workspace skills: markdown instructions the agent can load on demand."""

from __future__ import annotations

import json
import os
import re
import shutil
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape

_FRONTMATTER_RE = re.compile(r"^---\n(.*?)\n---\n?", re.DOTALL)


class SkillsLoader:
    """Discovers ``skills/<name>/SKILL.md`` files in the workspace and a builtin dir."""

    def __init__(self, workspace: Path, builtin_skills_dir: Path | None = None) -> None:
        self._workspace_skills = workspace / "skills"
        self._builtin_skills = builtin_skills_dir

    def list_skills(self, filter_unavailable: bool = True) -> list[dict[str, str]]:
        skills: list[dict[str, str]] = []
        seen: set[str] = set()
        for root, source in ((self._workspace_skills, "workspace"), (self._builtin_skills, "builtin")):
            if root is None or not root.is_dir():
                continue
            for skill_dir in sorted(root.iterdir()):
                skill_file = skill_dir / "SKILL.md"
                if skill_dir.name in seen or not skill_file.is_file():
                    continue
                seen.add(skill_dir.name)
                skills.append({"name": skill_dir.name, "path": str(skill_file), "source": source})
        if not filter_unavailable:
            return skills
        return [s for s in skills if self._requirements_met(self._skill_requirements(s["name"]))]

    def load_skill(self, name: str) -> str | None:
        for root in (self._workspace_skills, self._builtin_skills):
            if root is None:
                continue
            skill_file = root / name / "SKILL.md"
            if skill_file.is_file():
                return skill_file.read_text(encoding="utf-8")
        return None

    def load_skills_for_context(self, names: list[str]) -> str:
        parts = []
        for name in names:
            content = self.load_skill(name)
            if content:
                parts.append(f"### Skill: {name}\n\n{_strip_frontmatter(content)}")
        return "\n\n---\n\n".join(parts)

    def build_skills_summary(self) -> str:
        skills = self.list_skills(filter_unavailable=False)
        if not skills:
            return ""
        lines = ["<skills>"]
        for skill in skills:
            meta = self.get_skill_metadata(skill["name"]) or {}
            available = self._requirements_met(self._skill_requirements(skill["name"]))
            lines.append(f'  <skill available="{str(available).lower()}">')
            lines.append(f"    <name>{escape(skill['name'])}</name>")
            lines.append(f"    <description>{escape(meta.get('description') or skill['name'])}</description>")
            lines.append(f"    <location>{skill['path']}</location>")
            lines.append("  </skill>")
        lines.append("</skills>")
        return "\n".join(lines)

    def get_always_skills(self) -> list[str]:
        result = []
        for skill in self.list_skills(filter_unavailable=True):
            meta = self.get_skill_metadata(skill["name"]) or {}
            extra = self._skill_requirements(skill["name"])
            if _truthy(meta.get("always")) or _truthy(extra.get("always")):
                result.append(skill["name"])
        return result

    def get_skill_metadata(self, name: str) -> dict[str, str] | None:
        content = self.load_skill(name)
        if not content:
            return None
        match = _FRONTMATTER_RE.match(content)
        if not match:
            return None
        meta: dict[str, str] = {}
        for line in match.group(1).splitlines():
            key, sep, value = line.partition(":")
            if not sep or not key.strip():
                continue
            meta[key.strip()] = value.strip().strip("\"'")
        return meta

    def _skill_requirements(self, name: str) -> dict[str, Any]:
        raw = (self.get_skill_metadata(name) or {}).get("metadata", "{}")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        scoped = data.get("clawbot") or data.get("openclaw") or {}
        return scoped if isinstance(scoped, dict) else {}

    @staticmethod
    def _requirements_met(skill_meta: dict[str, Any]) -> bool:
        requires = skill_meta.get("requires") or {}
        bins = requires.get("bins") or []
        env = requires.get("env") or []
        return all(shutil.which(b) for b in bins) and all(os.environ.get(k) for k in env)


def _strip_frontmatter(content: str) -> str:
    match = _FRONTMATTER_RE.match(content)
    return content[match.end():].strip() if match else content


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("true", "yes", "1")
    return bool(value)
