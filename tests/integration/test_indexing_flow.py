"""
Integration tests for the indexing flow.

Tests cover:
- Document indexing through chunker, embedder and store
- Re-indexing without upsert
- Embedding failures
- Folder indexing with skips, failures and cancellation
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from agent_memory.config import Config, IndexingOptions
from agent_memory.errors import NotInitializedError
from agent_memory.service import MemoryService

pytestmark = pytest.mark.integration


class TestAddDocument:
    """Tests for single-document indexing."""

    @pytest.mark.asyncio
    async def test_add_creates_chunks(self, memory_service: MemoryService):
        text = "\n".join(f"line {i} " + "w" * 40 for i in range(40))

        result = await memory_service.add_document(text, "/proj/notes.txt", "plaintext")

        assert result.chunks_created >= 2
        assert await memory_service.get_indexed_chunk_count() == result.chunks_created
        chunks = await memory_service.get_file_chunks("/proj/notes.txt")
        assert "".join(c["text"] for c in chunks) == text + "\n"

    @pytest.mark.asyncio
    async def test_adding_twice_doubles_records(self, memory_service: MemoryService):
        """Re-adding the same document appends a second set of records."""
        text = "first line\nsecond line\n"

        first = await memory_service.add_document(text, "/proj/a.txt")
        second = await memory_service.add_document(text, "/proj/a.txt")

        assert first.chunks_created == second.chunks_created
        chunks = await memory_service.get_file_chunks("/proj/a.txt")
        assert len(chunks) == 2 * first.chunks_created
        assert len({c["id"] for c in chunks}) == len(chunks)

    @pytest.mark.asyncio
    async def test_blank_document(self, memory_service: MemoryService, mock_embedder):
        result = await memory_service.add_document("  \n\t\n", "/proj/blank.txt")

        assert result.chunks_created == 0
        assert mock_embedder.call_count == 0
        assert await memory_service.get_all_indexed_files() == []

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_nothing(
        self, memory_service: MemoryService, mock_embedder
    ):
        """A failing chunk aborts the document before anything is written."""
        text = "a" * 300 + "\n" + "b" * 300
        mock_embedder.fail_on = {"b" * 300 + "\n"}

        with pytest.raises(RuntimeError):
            await memory_service.add_document(text, "/proj/fail.txt")

        assert mock_embedder.call_count == 2
        assert await memory_service.get_indexed_chunk_count() == 0

    @pytest.mark.asyncio
    async def test_structural_chunking_for_supported_language(
        self, memory_service: MemoryService
    ):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_javascript")
        source = "function foo(){ return 1; }"

        result = await memory_service.add_document(source, "/proj/foo.js", "javascript")

        assert result.chunks_created == 1
        chunks = await memory_service.get_file_chunks("/proj/foo.js")
        assert chunks[0]["text"] == source

    @pytest.mark.asyncio
    async def test_requires_initialize(self, test_config: Config, mock_embedder):
        service = MemoryService(test_config, embedder=mock_embedder)

        with pytest.raises(NotInitializedError):
            await service.add_document("x", "/proj/x.txt")
        with pytest.raises(NotInitializedError):
            await service.clear_all_indexes()

    @pytest.mark.asyncio
    async def test_reads_before_initialize_are_empty(
        self, test_config: Config, mock_embedder
    ):
        """Listings on an unopened service log and return empty results."""
        service = MemoryService(test_config, embedder=mock_embedder)

        assert await service.get_all_indexed_files() == []
        assert await service.get_file_chunks("/proj/x.txt") == []
        assert await service.get_file_chunks_with_vectors("/proj/x.txt") == []
        assert await service.get_indexed_chunk_count() == 0

    @pytest.mark.asyncio
    async def test_initialize_does_not_load_model(
        self, test_config: Config, mock_embedder
    ):
        """The embedder is only touched when something is embedded."""

        async def broken_initialize() -> None:
            raise RuntimeError("model download failed")

        mock_embedder.initialize = broken_initialize

        async with MemoryService(test_config, embedder=mock_embedder).session() as service:
            assert await service.get_all_indexed_files() == []
            assert await service.get_indexed_chunk_count() == 0
            assert await service.delete_file_index("/proj/x.txt") == 0

    @pytest.mark.asyncio
    async def test_session_persists_records(self, test_config: Config, mock_embedder):
        async with MemoryService(test_config, embedder=mock_embedder).session() as service:
            await service.add_document("persisted\n", "/proj/p.txt")

        async with MemoryService(test_config, embedder=mock_embedder).session() as service:
            files = await service.get_all_indexed_files()

        assert [(f.filepath, f.count) for f in files] == [("/proj/p.txt", 1)]


class TestFolderIndexing:
    """Tests for index_file and index_folder."""

    @pytest.mark.asyncio
    async def test_index_file(self, memory_service: MemoryService, project_dir: Path):
        path = project_dir / "notes.md"
        path.write_text("# Notes\n\nSome text.\n")

        result = await memory_service.index_file(path)

        assert result.chunks_created == 1
        files = await memory_service.get_all_indexed_files()
        assert files[0].filepath == str(path)

    @pytest.mark.asyncio
    async def test_index_folder_tally(
        self, memory_service: MemoryService, project_dir: Path
    ):
        (project_dir / "src").mkdir()
        (project_dir / "src" / "app.ts").write_text("const a = 1;\n")
        (project_dir / "main.py").write_text("x = 1\n")
        (project_dir / "empty.py").write_text("")
        (project_dir / "broken.py").write_bytes(b"\xff\xfe\xfa invalid utf-8")
        (project_dir / "node_modules").mkdir()
        (project_dir / "node_modules" / "dep.js").write_text("module.exports = 1;\n")

        seen: list[tuple[int, int, str]] = []
        result = await memory_service.index_folder(
            project_dir,
            progress=lambda pos, total, path: seen.append((pos, total, path.name)),
        )

        assert result.total_files == 4
        assert result.indexed_files == 2
        assert result.skipped_files == 1
        assert result.failed_files == 1
        assert result.errors[0][0] == str(project_dir / "broken.py")
        assert result.cancelled is False
        assert result.total_chunks == await memory_service.get_indexed_chunk_count()
        assert [s[0] for s in seen] == [1, 2, 3, 4]
        assert all(s[1] == 4 for s in seen)

        indexed = {f.filepath for f in await memory_service.get_all_indexed_files()}
        assert indexed == {str(project_dir / "src" / "app.ts"), str(project_dir / "main.py")}

    @pytest.mark.asyncio
    async def test_index_folder_cancel(
        self, memory_service: MemoryService, project_dir: Path
    ):
        """Cancellation stops before the next file and keeps earlier work."""
        for i in range(5):
            (project_dir / f"m{i}.py").write_text(f"value = {i}\n")

        cancel = asyncio.Event()

        def on_progress(position: int, total: int, path: Path) -> None:
            if position == 2:
                cancel.set()

        result = await memory_service.index_folder(
            project_dir, cancel_event=cancel, progress=on_progress
        )

        assert result.cancelled is True
        assert result.indexed_files == 2
        assert len(await memory_service.get_all_indexed_files()) == 2

    @pytest.mark.asyncio
    async def test_index_folder_with_options(
        self, memory_service: MemoryService, project_dir: Path
    ):
        for i in range(4):
            (project_dir / f"m{i}.py").write_text(f"value = {i}\n")

        result = await memory_service.index_folder(
            project_dir, IndexingOptions(max_files=3)
        )

        assert result.total_files == 3
        assert result.indexed_files == 3

    @pytest.mark.asyncio
    async def test_validate_folder(
        self, memory_service: MemoryService, project_dir: Path
    ):
        (project_dir / "main.py").write_text("x = 1\n")

        result = await memory_service.validate_folder(project_dir)

        assert result.valid is True
        assert result.file_count == 1
        assert result.message.startswith("Ready to index 1 files")
