"""
Document indexing pipeline.

Chunks one document, embeds each chunk in sequence and writes the resulting
records to the store in a single batch.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from agent_memory.indexing.languages import is_language_supported
from agent_memory.storage.record_store import Record

if TYPE_CHECKING:
    from agent_memory.indexing.chunker import Chunker
    from agent_memory.indexing.embedder import EmbeddingBackend
    from agent_memory.storage.record_store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass
class AddDocumentResult:
    """Outcome of indexing one document."""

    chunks_created: int


class IndexingPipeline:
    """Coordinates chunking, embedding and persistence for one document."""

    def __init__(
        self,
        chunker: "Chunker",
        embedder: "EmbeddingBackend",
        store: "RecordStore",
    ) -> None:
        self.chunker = chunker
        self.embedder = embedder
        self.store = store

    async def add_document(
        self,
        text: str,
        filepath: str,
        language_id: str | None = None,
    ) -> AddDocumentResult:
        """
        Index a document.

        Re-adding the same file appends a second full set of records.
        An embedding failure aborts the call before anything is written.

        Args:
            text: Document text.
            filepath: Path recorded on every record.
            language_id: Editor language id; enables structural chunking
                when a grammar exists for it.

        Returns:
            AddDocumentResult with the number of records written.
        """
        if not text.strip():
            return AddDocumentResult(chunks_created=0)

        if is_language_supported(language_id):
            chunks = await self.chunker.chunk(text, language_id)
        else:
            chunks = await self.chunker.chunk(text, None)

        records: list[Record] = []
        for chunk in chunks:
            if not chunk.strip():
                continue

            vector = await self.embedder.embed(chunk)
            records.append(
                Record(
                    id=str(uuid.uuid4()),
                    vector=vector,
                    text=chunk,
                    filepath=filepath,
                )
            )

        if records:
            await self.store.add(records)

        logger.debug(
            "Indexed document",
            filepath=filepath,
            language=language_id,
            chunks=len(records),
        )
        return AddDocumentResult(chunks_created=len(records))
