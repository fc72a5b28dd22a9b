"""
Unit tests for the folder scanner.

Tests cover:
- Exclude glob translation
- Extension, exclude, size and count filtering
- Pre-flight validation messages
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from agent_memory.config import Config, IndexingOptions
from agent_memory.indexing.scanner import FolderScanner, glob_to_regex


def write(root: Path, rel: str, content: str = "x = 1\n") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def rel_names(root: Path, paths: list[Path]) -> list[str]:
    return [p.relative_to(root).as_posix() for p in paths]


# ==============================================================================
# Glob Translation Tests
# ==============================================================================

class TestGlobToRegex:
    """Tests for exclude pattern matching."""

    @pytest.mark.parametrize(
        "pattern,path,matches",
        [
            ("**/node_modules/**", "node_modules/a.js", True),
            ("**/node_modules/**", "pkg/node_modules/lib/a.js", True),
            ("**/node_modules/**", "my_node_modules/a.js", False),
            ("**/*.min.js", "app.min.js", True),
            ("**/*.min.js", "static/js/app.min.js", True),
            ("**/*.min.js", "app.js", False),
            ("**/*.map", "dist.js.map", True),
            ("*.py", "main.py", True),
            ("*.py", "pkg/main.py", True),
            ("*.py", "main.pyc", False),
            ("x.py", "a/x.py", True),
            ("x.py", "a/xx.py", False),
            ("gen", "gen/sub/y.py", True),
            ("gen", "a/gen/y.py", True),
            ("gen", "generated/y.py", False),
            ("src/gen", "src/gen/y.py", True),
            ("src/gen", "lib/src/gen/y.py", False),
            ("docs/**", "docs", True),
            ("docs/**", "a/docs/b.md", False),
            ("src/?.ts", "src/a.ts", True),
            ("src/?.ts", "src/ab.ts", False),
            ("docs/**", "docs/a/b/c.md", True),
            ("a+b/**", "a+b/x.py", True),
            ("a+b/**", "aab/x.py", False),
        ],
    )
    def test_pattern(self, pattern: str, path: str, matches: bool):
        assert (glob_to_regex(pattern).fullmatch(path) is not None) == matches


# ==============================================================================
# File Selection Tests
# ==============================================================================

class TestGetFilesToIndex:
    """Tests for qualifying file enumeration."""

    @pytest.fixture
    def scanner(self, test_config: Config) -> FolderScanner:
        return FolderScanner(test_config)

    @pytest.mark.asyncio
    async def test_default_excludes(self, scanner: FolderScanner, project_dir: Path):
        """Dependency and build folders are skipped."""
        write(project_dir, "src/app.ts")
        write(project_dir, "node_modules/pkg/index.js")
        write(project_dir, "src/node_modules/x.ts")
        write(project_dir, "dist/bundle.js")
        write(project_dir, "static/app.min.js")
        write(project_dir, ".git/hooks/pre-commit.py")
        write(project_dir, "main.py")

        files = await scanner.get_files_to_index(project_dir)

        assert rel_names(project_dir, files) == ["src/app.ts", "main.py"]

    @pytest.mark.asyncio
    async def test_grouped_by_extension_order(
        self, scanner: FolderScanner, project_dir: Path
    ):
        """Files are listed extension by extension in declared order."""
        write(project_dir, "a.py")
        write(project_dir, "b.ts")
        write(project_dir, "c.go")
        write(project_dir, "notes.txt")

        options = IndexingOptions(include_extensions=["go", ".py", ".ts", ".go"])
        files = await scanner.get_files_to_index(project_dir, options)

        assert rel_names(project_dir, files) == ["c.go", "a.py", "b.ts"]

    @pytest.mark.asyncio
    async def test_size_limit(self, scanner: FolderScanner, project_dir: Path):
        """Files over max_file_size are skipped."""
        write(project_dir, "small.py", "a" * 10)
        write(project_dir, "large.py", "a" * 2000)

        options = IndexingOptions(max_file_size=1000)
        files = await scanner.get_files_to_index(project_dir, options)

        assert rel_names(project_dir, files) == ["small.py"]

    @pytest.mark.asyncio
    async def test_max_files(self, scanner: FolderScanner, project_dir: Path):
        """Enumeration stops at max_files."""
        for i in range(12):
            write(project_dir, f"mod_{i:02d}.py")

        options = IndexingOptions(max_files=5)
        files = await scanner.get_files_to_index(project_dir, options)

        assert len(files) == 5
        assert rel_names(project_dir, files) == [f"mod_{i:02d}.py" for i in range(5)]

    @pytest.mark.asyncio
    async def test_custom_excludes(self, scanner: FolderScanner, project_dir: Path):
        """Caller-supplied exclude patterns replace the defaults."""
        write(project_dir, "tests/test_a.py")
        write(project_dir, "pkg/a.py")
        write(project_dir, "node_modules/b.js")

        options = IndexingOptions(exclude_patterns=["tests/**"])
        files = await scanner.get_files_to_index(project_dir, options)

        assert rel_names(project_dir, files) == ["node_modules/b.js", "pkg/a.py"]

    @pytest.mark.asyncio
    async def test_bare_name_excludes_nested(
        self, scanner: FolderScanner, project_dir: Path
    ):
        """A pattern without a slash matches at any depth and covers subtrees."""
        write(project_dir, "a/x.py")
        write(project_dir, "a/keep.py")
        write(project_dir, "gen/sub/y.py")
        write(project_dir, "generated/z.py")

        options = IndexingOptions(
            include_extensions=[".py"], exclude_patterns=["x.py", "gen"]
        )
        files = await scanner.get_files_to_index(project_dir, options)

        assert rel_names(project_dir, files) == ["a/keep.py", "generated/z.py"]

    @pytest.mark.asyncio
    async def test_excluded_directory_not_walked(
        self,
        scanner: FolderScanner,
        project_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
    ):
        write(project_dir, "gen/sub/y.py")
        write(project_dir, "main.py")
        visited: list[str] = []
        real_walk = os.walk

        def recording_walk(top):
            for dirpath, dirnames, filenames in real_walk(top):
                visited.append(Path(dirpath).name)
                yield dirpath, dirnames, filenames

        monkeypatch.setattr(os, "walk", recording_walk)
        options = IndexingOptions(exclude_patterns=["gen"])
        files = await scanner.get_files_to_index(project_dir, options)

        assert rel_names(project_dir, files) == ["main.py"]
        assert "gen" not in visited
        assert "sub" not in visited

    @pytest.mark.asyncio
    async def test_missing_folder(self, scanner: FolderScanner, tmp_path: Path):
        """A folder that does not exist yields nothing."""
        assert await scanner.get_files_to_index(tmp_path / "missing") == []


# ==============================================================================
# Validation Tests
# ==============================================================================

class TestValidateIndexingOperation:
    """Tests for the pre-flight report."""

    @pytest.fixture
    def scanner(self, test_config: Config) -> FolderScanner:
        return FolderScanner(test_config)

    @pytest.mark.asyncio
    async def test_empty_folder(self, scanner: FolderScanner, project_dir: Path):
        result = await scanner.validate_indexing_operation(project_dir)

        assert result.valid is False
        assert result.file_count == 0
        assert result.message == "No files found to index in this folder."

    @pytest.mark.asyncio
    async def test_too_many_files(self, scanner: FolderScanner, project_dir: Path):
        for i in range(4):
            write(project_dir, f"f{i}.py")

        options = IndexingOptions(max_files=3)
        result = await scanner.validate_indexing_operation(project_dir, options)

        assert result.valid is False
        assert result.file_count == 4
        assert result.message == (
            "Too many files (more than 3). Maximum is 3. Consider using exclude patterns."
        )

    @pytest.mark.asyncio
    async def test_exactly_max_files_is_valid(
        self, scanner: FolderScanner, project_dir: Path
    ):
        for i in range(3):
            write(project_dir, f"f{i}.py")

        options = IndexingOptions(max_files=3)
        result = await scanner.validate_indexing_operation(project_dir, options)

        assert result.valid is True
        assert result.file_count == 3

    @pytest.mark.asyncio
    async def test_ready_message(self, scanner: FolderScanner, project_dir: Path):
        write(project_dir, "a.py", "a" * (512 * 1024))
        write(project_dir, "b.py", "b" * (512 * 1024))

        result = await scanner.validate_indexing_operation(project_dir)

        assert result.valid is True
        assert result.file_count == 2
        assert result.message == (
            "Ready to index 2 files (~1.0 MB). This may take a few minutes."
        )
