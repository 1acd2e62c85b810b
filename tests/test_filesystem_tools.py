import pytest

from clawbot.tools.filesystem import EditFileTool, ListDirTool, ReadFileTool, WriteFileTool


@pytest.mark.asyncio
async def test_write_then_read_relative_to_workspace(tmp_path):
    write = WriteFileTool(workspace=tmp_path)
    read = ReadFileTool(workspace=tmp_path)

    result = await write.run(path="notes/today.md", content="buy milk")

    assert result == f"Successfully wrote 8 bytes to {tmp_path.resolve() / 'notes' / 'today.md'}"
    assert await read.run(path="notes/today.md") == "buy milk"


@pytest.mark.asyncio
async def test_read_reports_missing_and_directories(tmp_path):
    read = ReadFileTool(workspace=tmp_path)
    (tmp_path / "dir").mkdir()

    assert await read.run(path="nope.txt") == "Error: File not found: nope.txt"
    assert await read.run(path="dir") == "Error: Not a file: dir"


@pytest.mark.asyncio
async def test_allowed_dir_blocks_escape(tmp_path):
    inside = tmp_path / "ws"
    inside.mkdir()
    (tmp_path / "secret.txt").write_text("s", encoding="utf-8")
    read = ReadFileTool(workspace=inside, allowed_dir=inside)

    result = await read.run(path="../secret.txt")

    assert result.startswith("Error reading file: Path ../secret.txt is outside allowed directory")


@pytest.mark.asyncio
async def test_edit_requires_unique_match(tmp_path):
    target = tmp_path / "config.txt"
    target.write_text("a=1\nb=1\n", encoding="utf-8")
    edit = EditFileTool(workspace=tmp_path)

    assert await edit.run(path="config.txt", old_text="=1", new_text="=2") == (
        "Warning: old_text appears 2 times. Please provide more context to make it unique."
    )
    assert await edit.run(path="config.txt", old_text="c=1", new_text="c=2") == (
        "Error: old_text not found in config.txt. Verify the file content."
    )
    assert await edit.run(path="config.txt", old_text="b=1", new_text="b=3") == f"Successfully edited {target.resolve()}"
    assert target.read_text(encoding="utf-8") == "a=1\nb=3\n"


@pytest.mark.asyncio
async def test_list_dir_marks_entries(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "file.txt").write_text("x", encoding="utf-8")
    (tmp_path / "empty").mkdir()
    list_dir = ListDirTool(workspace=tmp_path)

    assert await list_dir.run(path=".") == "[DIR] empty\n[FILE] file.txt\n[DIR] sub"
    assert await list_dir.run(path="empty") == "Directory empty is empty"
    assert await list_dir.run(path="file.txt") == "Error: Not a directory: file.txt"
    assert await list_dir.run(path="missing") == "Error: Directory not found: missing"
