"""
Unit tests for the filesystem tools.
"""

import pytest

from warden.exceptions import ConstraintViolationError, ExecutionFaultError
from warden.tools.filesystem import (
    GlobParameters,
    GlobTool,
    GrepParameters,
    GrepTool,
    ReadParameters,
    ReadTool,
    WriteParameters,
    WriteTool,
)


@pytest.fixture
def workspace(tmp_path):
    """A small project tree."""
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("import os\n\ndef main():\n    return os.getcwd()\n")
    (tmp_path / "src" / "util.py").write_text("def helper():\n    return 1\n")
    (tmp_path / "README.md").write_text("# Demo\nmain entry point\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config").write_text("def main in git internals\n")
    return tmp_path


class TestReadTool:
    """Tests for ReadTool."""

    @pytest.mark.asyncio
    async def test_reads_with_line_numbers(self, workspace, make_context) -> None:
        """Test numbered output."""
        result = await ReadTool().execute(
            ReadParameters(path=str(workspace / "src" / "util.py")), make_context()
        )

        assert result.text == "     1\tdef helper():\n     2\t    return 1"
        assert result.data == {"total_lines": 2}

    @pytest.mark.asyncio
    async def test_offset_and_limit(self, workspace, make_context) -> None:
        """Test paging through a file."""
        result = await ReadTool().execute(
            ReadParameters(path=str(workspace / "src" / "app.py"), offset=1, limit=2),
            make_context(),
        )

        assert result.text.startswith("     2\t\n     3\tdef main():")
        assert "[Showing lines 2-3 of 4 total lines. 1 more lines available]" in result.text

    @pytest.mark.asyncio
    async def test_offset_past_end(self, workspace, make_context) -> None:
        """Test that an offset beyond the file fails."""
        with pytest.raises(ExecutionFaultError, match="exceeds file length"):
            await ReadTool().execute(
                ReadParameters(path=str(workspace / "README.md"), offset=10), make_context()
            )

    @pytest.mark.asyncio
    async def test_missing_file(self, workspace, make_context) -> None:
        """Test that a missing file fails."""
        with pytest.raises(ExecutionFaultError, match="File not found"):
            await ReadTool().execute(
                ReadParameters(path=str(workspace / "nope.txt")), make_context()
            )

    @pytest.mark.asyncio
    async def test_outside_prefix(self, workspace, make_context) -> None:
        """Test that path constraints block reads outside the prefix."""
        context = make_context(path_prefixes=(str(workspace / "src"),))
        with pytest.raises(ConstraintViolationError):
            await ReadTool().execute(ReadParameters(path=str(workspace / "README.md")), context)


class TestWriteTool:
    """Tests for WriteTool."""

    @pytest.mark.asyncio
    async def test_creates_parents(self, tmp_path, make_context) -> None:
        """Test that parent directories are created."""
        target = tmp_path / "a" / "b" / "out.txt"

        result = await WriteTool().execute(
            WriteParameters(path=str(target), content="héllo"),
            make_context(path_prefixes=(str(tmp_path),)),
        )

        assert target.read_text(encoding="utf-8") == "héllo"
        assert result.data["bytes_written"] == 6

    @pytest.mark.asyncio
    async def test_outside_prefix(self, tmp_path, make_context) -> None:
        """Test that writes outside the prefix are refused and nothing is written."""
        target = tmp_path / "escape.txt"
        context = make_context(path_prefixes=(str(tmp_path / "jail"),))

        with pytest.raises(ConstraintViolationError):
            await WriteTool().execute(WriteParameters(path=str(target), content="x"), context)
        assert not target.exists()


class TestGlobTool:
    """Tests for GlobTool."""

    @pytest.mark.asyncio
    async def test_recursive_glob(self, workspace, make_context) -> None:
        """Test recursive matching relative to the base path."""
        result = await GlobTool().execute(
            GlobParameters(pattern="**/*.py", path=str(workspace)), make_context()
        )

        assert result.text.splitlines()[:2] == ["src/app.py", "src/util.py"]
        assert result.data == {"matches": 2}

    @pytest.mark.asyncio
    async def test_max_results(self, workspace, make_context) -> None:
        """Test truncation notice."""
        result = await GlobTool().execute(
            GlobParameters(pattern="**/*.py", path=str(workspace), max_results=1),
            make_context(),
        )
        assert "[Showing first 1 of 2 matches]" in result.text

    @pytest.mark.asyncio
    async def test_no_matches(self, workspace, make_context) -> None:
        """Test the empty result message."""
        result = await GlobTool().execute(
            GlobParameters(pattern="*.rs", path=str(workspace)), make_context()
        )
        assert result.text == "No files found matching pattern: *.rs"

    @pytest.mark.asyncio
    async def test_not_a_directory(self, workspace, make_context) -> None:
        """Test that a file base path fails."""
        with pytest.raises(ExecutionFaultError, match="Not a directory"):
            await GlobTool().execute(
                GlobParameters(pattern="*", path=str(workspace / "README.md")), make_context()
            )


class TestGrepTool:
    """Tests for GrepTool."""

    @pytest.mark.asyncio
    async def test_finds_matches_and_skips_vcs(self, workspace, make_context) -> None:
        """Test that matches carry file and line and .git is skipped."""
        result = await GrepTool().execute(
            GrepParameters(pattern=r"def main", path=str(workspace)), make_context()
        )

        assert f"{workspace / 'src' / 'app.py'}:3:def main():" in result.text
        assert ".git" not in result.text
        assert result.data == {"matches": 1}

    @pytest.mark.asyncio
    async def test_glob_filter(self, workspace, make_context) -> None:
        """Test that the file glob narrows candidates."""
        result = await GrepTool().execute(
            GrepParameters(pattern="main", path=str(workspace), glob="*.md"), make_context()
        )

        assert "README.md:2:main entry point" in result.text
        assert "app.py" not in result.text

    @pytest.mark.asyncio
    async def test_invalid_pattern(self, workspace, make_context) -> None:
        """Test that a bad regex fails cleanly."""
        with pytest.raises(ExecutionFaultError, match="Invalid pattern"):
            await GrepTool().execute(
                GrepParameters(pattern="(unclosed", path=str(workspace)), make_context()
            )

    @pytest.mark.asyncio
    async def test_no_matches(self, workspace, make_context) -> None:
        """Test the empty result message."""
        result = await GrepTool().execute(
            GrepParameters(pattern="zzz", path=str(workspace)), make_context()
        )
        assert result.text == "No matches found for pattern: zzz"
