"""
Code chunking with tree-sitter and a line-based fallback.

Splits a document into text chunks bounded by a character budget:
- Structural chunking keeps whole functions, methods and classes together
- Oversized or non-block nodes are decomposed into their children
- Line chunking greedily packs lines when no grammar applies
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from agent_memory.indexing.grammar import Grammar, GrammarCache
from agent_memory.indexing.languages import is_language_supported

if TYPE_CHECKING:
    from agent_memory.config import Config

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Structural:
    """Chunk along the syntax tree of a loaded grammar."""

    grammar: Grammar


@dataclass(frozen=True)
class LineBased:
    """Chunk by greedy line accumulation."""


ChunkingStrategy = Structural | LineBased


def _node_text(node: Any) -> str:
    text = node.text
    if text is None:
        return ""
    if isinstance(text, bytes):
        return text.decode("utf-8", errors="replace")
    return text


class StructuralChunker:
    """Depth-first AST walk emitting block nodes whole when they fit."""

    def __init__(self, block_types: frozenset[str] | set[str]) -> None:
        self.block_types = frozenset(block_types)

    def chunk(self, root: Any, max_size: int) -> list[str]:
        """
        Chunk a syntax tree.

        Args:
            root: Root node (anything with type, text and children).
            max_size: Character budget for a block chunk.

        Returns:
            Chunk texts in source order.
        """
        chunks: list[str] = []
        stack = [root]

        while stack:
            node = stack.pop()
            content = _node_text(node)

            if node.type in self.block_types and len(content) <= max_size:
                chunks.append(content)
                continue

            children = list(node.children)
            if children:
                # Reversed so the leftmost child is visited first
                stack.extend(reversed(children))
            elif content.strip():
                # Leaves are emitted whole, even when larger than max_size
                chunks.append(content)

        return chunks


class LineChunker:
    """Greedy line packer used when no grammar is available."""

    def chunk(self, text: str, max_size: int) -> list[str]:
        """
        Chunk text by accumulating lines up to max_size characters.

        A single line longer than max_size becomes its own chunk.
        """
        chunks: list[str] = []
        current = ""

        for line in text.split("\n"):
            if len(current) + len(line) > max_size and current:
                chunks.append(current)
                current = line + "\n"
            else:
                current += line + "\n"

        if current.strip():
            chunks.append(current)

        return chunks if chunks else [text]


class Chunker:
    """
    Language-aware chunker.

    Features:
    - Strategy selected once per document
    - Per-language grammar handles from a GrammarCache
    - Fallback to line chunking on parse errors or empty output
    """

    def __init__(
        self,
        config: "Config",
        grammars: GrammarCache | None = None,
    ) -> None:
        """
        Initialize the chunker.

        Args:
            config: agent-memory configuration.
            grammars: Grammar cache, shared across chunkers if given.
        """
        self.config = config
        self.max_chunk_size = config.chunking.max_chunk_size
        self.grammars = grammars or GrammarCache()
        self._lines = LineChunker()

    async def select_strategy(self, language_id: str | None) -> ChunkingStrategy:
        """Pick structural chunking when the language's grammar loads."""
        if not is_language_supported(language_id):
            return LineBased()

        grammar = await self.grammars.acquire(language_id)
        if grammar is None:
            return LineBased()
        return Structural(grammar)

    def chunk_with(
        self,
        strategy: ChunkingStrategy,
        text: str,
        max_size: int | None = None,
    ) -> list[str]:
        """Chunk text with an already selected strategy."""
        size = self.max_chunk_size if max_size is None else max_size

        if isinstance(strategy, Structural):
            grammar = strategy.grammar
            try:
                tree = grammar.parse(text)
                chunks = StructuralChunker(grammar.block_types).chunk(
                    tree.root_node, size
                )
            except Exception as e:
                logger.warning(
                    "Tree-sitter parsing failed, using line chunking",
                    language=grammar.language_id,
                    error=str(e),
                )
            else:
                if chunks:
                    return chunks
                logger.debug(
                    "No structural chunks, using line chunking",
                    language=grammar.language_id,
                )

        return self._lines.chunk(text, size)

    async def chunk(
        self,
        text: str,
        language_id: str | None = None,
        max_size: int | None = None,
    ) -> list[str]:
        """
        Chunk a document.

        Args:
            text: Document text.
            language_id: Editor language id, or None for plain text.
            max_size: Override for the configured chunk budget.

        Returns:
            Chunk texts in source order.
        """
        strategy = await self.select_strategy(language_id)
        return self.chunk_with(strategy, text, max_size)
