"""
Indexing modules for agent-memory.

Provides:
- Structural code chunking with tree-sitter and a line-based fallback
- Per-language grammar cache
- Local ONNX embedding generation
- Folder scanning and sequential folder indexing
"""

from agent_memory.indexing.chunker import Chunker, LineChunker, StructuralChunker
from agent_memory.indexing.embedder import EmbeddingBackend, create_embedder
from agent_memory.indexing.folder_indexer import FolderIndexer, IndexingResult
from agent_memory.indexing.grammar import GrammarCache
from agent_memory.indexing.pipeline import IndexingPipeline
from agent_memory.indexing.scanner import FolderScanner, ValidationResult

__all__ = [
    "Chunker",
    "LineChunker",
    "StructuralChunker",
    "GrammarCache",
    "EmbeddingBackend",
    "create_embedder",
    "IndexingPipeline",
    "FolderScanner",
    "ValidationResult",
    "FolderIndexer",
    "IndexingResult",
]
