"""
Memory service.

Public async surface over the indexing pipeline, the folder indexer and the
record store.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator

import structlog

from agent_memory.config import Config
from agent_memory.errors import NotInitializedError
from agent_memory.storage.record_store import SENTINEL_FILEPATH, eq_predicate

if TYPE_CHECKING:
    from agent_memory.config import IndexingOptions
    from agent_memory.indexing.embedder import EmbeddingBackend
    from agent_memory.indexing.folder_indexer import (
        FolderIndexer,
        IndexingResult,
        ProgressCallback,
    )
    from agent_memory.indexing.grammar import GrammarCache
    from agent_memory.indexing.pipeline import AddDocumentResult, IndexingPipeline
    from agent_memory.indexing.scanner import FolderScanner, ValidationResult
    from agent_memory.storage.record_store import Record, RecordStore

logger = structlog.get_logger(__name__)


@dataclass
class IndexedFile:
    """A file present in the store and how many chunks it holds."""

    filepath: str
    count: int


class MemoryService:
    """
    Main agent-memory service.

    It manages:
    - Record store lifecycle
    - Embedding backend lifecycle
    - Document and folder indexing
    - Similarity search and index maintenance
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        embedder: "EmbeddingBackend | None" = None,
        grammars: "GrammarCache | None" = None,
    ) -> None:
        """
        Initialize the memory service.

        Args:
            config: Configuration instance. Uses default if not provided.
            embedder: Embedding backend; the local ONNX backend if omitted.
            grammars: Grammar cache to share with other services.
        """
        self.config = config or Config()

        self._embedder = embedder
        self._grammars = grammars
        self._store: RecordStore | None = None
        self._pipeline: IndexingPipeline | None = None
        self._scanner: FolderScanner | None = None
        self._folder_indexer: FolderIndexer | None = None

        self._initialized = False

        logger.info(
            "Memory service created",
            project_root=str(self.config.project_root),
            data_dir=str(self.config.absolute_data_dir),
        )

    async def initialize(self) -> None:
        """Open the record store and wire up the indexing components."""
        if self._initialized:
            return

        logger.info("Initializing memory service")

        # Import here to keep CLI startup light
        from agent_memory.indexing.chunker import Chunker
        from agent_memory.indexing.embedder import create_embedder
        from agent_memory.indexing.folder_indexer import FolderIndexer
        from agent_memory.indexing.pipeline import IndexingPipeline
        from agent_memory.indexing.scanner import FolderScanner
        from agent_memory.storage.record_store import RecordStore

        self.config.ensure_directories()

        self._store = RecordStore(self.config)
        await self._store.initialize()

        # The model loads on first embed so store-only commands work offline
        if self._embedder is None:
            self._embedder = create_embedder(self.config)

        chunker = Chunker(self.config, self._grammars)
        self._pipeline = IndexingPipeline(chunker, self._embedder, self._store)
        self._scanner = FolderScanner(self.config)
        self._folder_indexer = FolderIndexer(self.config, self._pipeline, self._scanner)

        self._initialized = True
        logger.info("Memory service initialized")

    async def shutdown(self) -> None:
        """Close the store and the embedding backend."""
        logger.info("Shutting down memory service")

        if self._embedder:
            await self._embedder.close()

        if self._store:
            await self._store.close()
            self._store = None

        self._pipeline = None
        self._folder_indexer = None
        self._initialized = False
        logger.info("Memory service shutdown complete")

    @asynccontextmanager
    async def session(self) -> AsyncIterator["MemoryService"]:
        """Context manager for service lifecycle."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    def _require_store(self) -> "RecordStore":
        if not self._store:
            raise NotInitializedError("Memory service not initialized")
        return self._store

    def _require_pipeline(self) -> "IndexingPipeline":
        if not self._pipeline:
            raise NotInitializedError("Memory service not initialized")
        return self._pipeline

    def _require_folder_indexer(self) -> "FolderIndexer":
        if not self._folder_indexer:
            raise NotInitializedError("Memory service not initialized")
        return self._folder_indexer

    # Indexing

    async def add_document(
        self,
        text: str,
        filepath: str,
        language_id: str | None = None,
    ) -> "AddDocumentResult":
        """
        Chunk, embed and store a document.

        Args:
            text: Document text.
            filepath: Path recorded on every chunk.
            language_id: Editor language id, e.g. "typescript".

        Returns:
            AddDocumentResult with the number of chunks stored.
        """
        return await self._require_pipeline().add_document(text, filepath, language_id)

    async def index_file(self, path: str | Path) -> "AddDocumentResult":
        """Read a file from disk and index it."""
        return await self._require_folder_indexer().index_file(path)

    async def index_folder(
        self,
        root: str | Path,
        options: "IndexingOptions | None" = None,
        *,
        cancel_event: asyncio.Event | None = None,
        progress: "ProgressCallback | None" = None,
    ) -> "IndexingResult":
        """
        Index every qualifying file under a folder.

        Args:
            root: Folder to index.
            options: Indexing policy; configured defaults when omitted.
            cancel_event: Set to stop before the next file.
            progress: Called before each file with (position, total, path).

        Returns:
            IndexingResult tally.
        """
        return await self._require_folder_indexer().index_folder(
            root,
            options,
            cancel_event=cancel_event,
            progress=progress,
        )

    async def validate_folder(
        self,
        root: str | Path,
        options: "IndexingOptions | None" = None,
    ) -> "ValidationResult":
        """Pre-flight check of a folder before indexing it."""
        from agent_memory.indexing.scanner import FolderScanner

        scanner = self._scanner or FolderScanner(self.config)
        return await scanner.validate_indexing_operation(root, options)

    # Retrieval

    async def search(self, query: str, limit: int = 3) -> list["Record"]:
        """
        Find the chunks most similar to a query.

        Args:
            query: Natural-language or code query.
            limit: Maximum number of results.

        Returns:
            Records ordered from most to least similar.
        """
        store = self._require_store()
        if self._embedder is None:
            raise NotInitializedError("Memory service not initialized")

        vector = await self._embedder.embed(query)
        results = await store.search(vector, limit=limit)
        return [r for r in results if not r.is_sentinel]

    async def get_all_indexed_files(self) -> list[IndexedFile]:
        """Group stored chunks by file, in first-indexed order."""
        if not self._store:
            logger.warning("Memory service not initialized", operation="get_all_indexed_files")
            return []

        try:
            records = await self._store.query()
        except Exception as e:
            logger.error("Error getting indexed files", error=str(e))
            return []

        counts: dict[str, int] = {}
        for record in records:
            if record.filepath and not record.is_sentinel:
                counts[record.filepath] = counts.get(record.filepath, 0) + 1

        return [IndexedFile(filepath=f, count=c) for f, c in counts.items()]

    async def get_file_chunks(self, filepath: str) -> list[dict[str, Any]]:
        """Return id / text / filepath for every chunk of a file."""
        return await self._file_chunks(filepath, include_vector=False)

    async def get_file_chunks_with_vectors(self, filepath: str) -> list[dict[str, Any]]:
        """Return every chunk of a file including its embedding."""
        return await self._file_chunks(filepath, include_vector=True)

    async def _file_chunks(
        self,
        filepath: str,
        include_vector: bool,
    ) -> list[dict[str, Any]]:
        if not self._store:
            logger.warning("Memory service not initialized", operation="get_file_chunks")
            return []

        try:
            records = await self._store.query()
        except Exception as e:
            logger.error("Error getting file chunks", filepath=filepath, error=str(e))
            return []

        return [
            r.to_dict(include_vector=include_vector)
            for r in records
            if r.filepath == filepath and not r.is_sentinel
        ]

    async def get_indexed_chunk_count(self) -> int:
        """Count stored chunks, excluding the placeholder row."""
        if not self._store:
            logger.warning("Memory service not initialized", operation="get_indexed_chunk_count")
            return 0

        try:
            records = await self._store.query()
        except Exception as e:
            logger.error("Error getting chunk count", error=str(e))
            return 0

        return sum(1 for r in records if not r.is_sentinel)

    # Maintenance

    async def clear_all_indexes(self) -> int:
        """
        Delete every chunk.

        Chunks are deleted one at a time, so a failure part way through
        leaves the remainder in place.

        Returns:
            Number of deleted chunks.
        """
        store = self._require_store()
        deleted = 0
        try:
            records = await store.query()
            for record in records:
                if record.filepath == SENTINEL_FILEPATH:
                    continue
                deleted += await store.delete(eq_predicate("id", record.id))
        except Exception as e:
            logger.error("Error clearing indexes", deleted=deleted, error=str(e))
            raise

        logger.info("Cleared all indexes", deleted=deleted)
        return deleted

    async def delete_file_index(self, filepath: str) -> int:
        """
        Delete every chunk recorded for a file.

        Args:
            filepath: Exact path the chunks were indexed under.

        Returns:
            Number of deleted chunks.
        """
        store = self._require_store()
        try:
            deleted = await store.delete(eq_predicate("filepath", filepath))
        except Exception as e:
            logger.error("Error deleting file index", filepath=filepath, error=str(e))
            raise

        logger.info("Deleted file index", filepath=filepath, deleted=deleted)
        return deleted

    async def delete_folder_index(self, folder_path: str) -> int:
        """
        Delete the chunks of files directly inside a folder.

        Files in subfolders are kept.

        Args:
            folder_path: Folder path as it appears in stored file paths.

        Returns:
            Number of deleted chunks.
        """
        store = self._require_store()
        try:
            records = await store.query()
            targets = [
                r for r in records
                if not r.is_sentinel and os.path.dirname(r.filepath) == folder_path
            ]
            for record in targets:
                await store.delete(eq_predicate("id", record.id))
        except Exception as e:
            logger.error(
                "Error deleting folder index", folder=folder_path, error=str(e)
            )
            raise

        logger.info("Deleted folder index", folder=folder_path, deleted=len(targets))
        return len(targets)

    async def get_stats(self) -> dict[str, Any]:
        """Get service statistics."""
        stats: dict[str, Any] = {
            "initialized": self._initialized,
            "project_root": str(self.config.project_root),
            "data_dir": str(self.config.absolute_data_dir),
        }

        if self._store:
            stats["store"] = await self._store.get_stats()
            stats["chunks"] = await self.get_indexed_chunk_count()
            stats["files"] = len(await self.get_all_indexed_files())

        return stats
