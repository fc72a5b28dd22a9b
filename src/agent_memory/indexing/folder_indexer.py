"""
Folder indexing.

Walks the files selected by the FolderScanner one at a time and feeds each
through the IndexingPipeline, tallying successes, skips and failures.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import structlog

from agent_memory.indexing.languages import language_for_path

if TYPE_CHECKING:
    from agent_memory.config import Config, IndexingOptions
    from agent_memory.indexing.pipeline import AddDocumentResult, IndexingPipeline
    from agent_memory.indexing.scanner import FolderScanner

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, int, Path], None]


@dataclass
class IndexingResult:
    """Summary of a folder indexing run."""

    total_files: int = 0
    indexed_files: int = 0
    skipped_files: int = 0
    failed_files: int = 0
    total_chunks: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)
    cancelled: bool = False


class FolderIndexer:
    """
    Sequential folder indexer.

    Features:
    - Files processed strictly in scanner order
    - Cooperative cancellation between files
    - Per-file failures recorded without aborting the run
    """

    def __init__(
        self,
        config: "Config",
        pipeline: "IndexingPipeline",
        scanner: "FolderScanner",
    ) -> None:
        self.config = config
        self.pipeline = pipeline
        self.scanner = scanner

    async def index_file(self, path: str | Path) -> "AddDocumentResult":
        """
        Read and index a single file.

        Args:
            path: File to index; its extension selects the language.

        Returns:
            AddDocumentResult from the pipeline.
        """
        file_path = Path(path)
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(
            None, lambda: file_path.read_text(encoding="utf-8")
        )
        return await self.pipeline.add_document(
            text, str(file_path), language_for_path(file_path)
        )

    async def index_folder(
        self,
        root: str | Path,
        options: "IndexingOptions | None" = None,
        *,
        cancel_event: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> IndexingResult:
        """
        Index every qualifying file under a folder.

        Args:
            root: Folder to index.
            options: Indexing policy; configured defaults when omitted.
            cancel_event: When set, no further files are started. Records
                already written are kept.
            progress: Called as progress(position, total, path) before each
                file, position counting from 1.

        Returns:
            IndexingResult tally.
        """
        target = Path(root)
        files = await self.scanner.get_files_to_index(target, options)
        result = IndexingResult(total_files=len(files))

        logger.info("Indexing folder", path=str(target), files=len(files))

        for position, file_path in enumerate(files, 1):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info(
                    "Folder indexing cancelled",
                    path=str(target),
                    indexed=result.indexed_files,
                    total=result.total_files,
                )
                break

            if progress is not None:
                progress(position, len(files), file_path)

            try:
                added = await self.index_file(file_path)
            except Exception as e:
                logger.error("Error indexing file", path=str(file_path), error=str(e))
                result.failed_files += 1
                result.errors.append((str(file_path), str(e)))
                continue

            if added.chunks_created == 0:
                result.skipped_files += 1
            else:
                result.indexed_files += 1
                result.total_chunks += added.chunks_created

            if position % 100 == 0:
                logger.info(
                    "Indexing progress",
                    files=position,
                    chunks=result.total_chunks,
                )

        logger.info(
            "Folder indexing complete",
            path=str(target),
            indexed=result.indexed_files,
            skipped=result.skipped_files,
            failed=result.failed_files,
            chunks=result.total_chunks,
        )
        return result
