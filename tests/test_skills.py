from clawbot.skills import SkillsLoader


def _write_skill(root, name: str, body: str) -> None:
    skill_dir = root / "skills" / name
    skill_dir.mkdir(parents=True)
    (skill_dir / "SKILL.md").write_text(body, encoding="utf-8")


def test_lists_workspace_skills_with_metadata(tmp_path):
    _write_skill(tmp_path, "weather", "---\nname: weather\ndescription: Check the forecast\n---\nUse curl.")
    loader = SkillsLoader(tmp_path)

    skills = loader.list_skills()

    assert [s["name"] for s in skills] == ["weather"]
    assert skills[0]["source"] == "workspace"
    assert loader.get_skill_metadata("weather") == {"name": "weather", "description": "Check the forecast"}


def test_workspace_skill_shadows_builtin(tmp_path):
    builtin = tmp_path / "builtin"
    _write_skill(tmp_path, "notes", "workspace version")
    (builtin / "notes").mkdir(parents=True)
    (builtin / "notes" / "SKILL.md").write_text("builtin version", encoding="utf-8")
    (builtin / "extra").mkdir()
    (builtin / "extra" / "SKILL.md").write_text("extra", encoding="utf-8")
    loader = SkillsLoader(tmp_path, builtin_skills_dir=builtin)

    assert loader.load_skill("notes") == "workspace version"
    assert {s["name"]: s["source"] for s in loader.list_skills()} == {"notes": "workspace", "extra": "builtin"}


def test_missing_requirements_mark_skill_unavailable(tmp_path):
    _write_skill(
        tmp_path,
        "deploy",
        '---\ndescription: Deploy things\nmetadata: {"clawbot": {"requires": {"bins": ["no-such-binary-xyz"]}}}\n---\nRun it.',
    )
    loader = SkillsLoader(tmp_path)

    assert loader.list_skills() == []
    assert len(loader.list_skills(filter_unavailable=False)) == 1
    assert '<skill available="false">' in loader.build_skills_summary()


def test_always_skills_are_loaded_without_frontmatter(tmp_path):
    _write_skill(tmp_path, "style", "---\ndescription: House style\nalways: true\n---\nBe brief.")
    _write_skill(tmp_path, "other", "---\ndescription: Other\n---\nIgnore.")
    loader = SkillsLoader(tmp_path)

    assert loader.get_always_skills() == ["style"]
    assert loader.load_skills_for_context(["style"]) == "### Skill: style\n\nBe brief."


def test_summary_escapes_descriptions(tmp_path):
    _write_skill(tmp_path, "cmp", "---\ndescription: a < b & c\n---\nbody")

    summary = SkillsLoader(tmp_path).build_skills_summary()

    assert "<description>a &lt; b &amp; c</description>" in summary
    assert summary.startswith("<skills>")
