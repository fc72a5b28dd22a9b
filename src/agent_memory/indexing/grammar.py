"""
Tree-sitter grammar cache.

Grammars are loaded lazily per language id and cached for the life of the
process. Each cached grammar owns its own parser, so callers hold an explicit
handle instead of relying on a shared parser's active language.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from agent_memory.indexing.languages import BLOCK_TYPES, GRAMMAR_MODULES

logger = structlog.get_logger(__name__)


class GrammarState(str, Enum):
    """Load state of a language grammar."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    CACHED = "cached"


@dataclass(frozen=True)
class Grammar:
    """A loaded grammar together with its dedicated parser."""

    language_id: str
    parser: Any
    block_types: frozenset[str]

    def parse(self, source: str) -> Any:
        """Parse source text and return the tree."""
        return self.parser.parse(source.encode("utf-8"))


class GrammarCache:
    """
    Per-language cache of tree-sitter grammars.

    Features:
    - Lazy loading from the tree_sitter_<lang> wheels
    - Unsupported languages are never cached
    - Load failures are logged and reported as False, never raised
    """

    def __init__(self) -> None:
        self._grammars: dict[str, Grammar] = {}
        self._states: dict[str, GrammarState] = {}

    def state(self, language_id: str) -> GrammarState:
        """Current load state for a language id."""
        return self._states.get(language_id, GrammarState.UNLOADED)

    def get(self, language_id: str) -> Grammar | None:
        """Return the cached grammar handle, if loaded."""
        return self._grammars.get(language_id)

    async def load_language(self, language_id: str) -> bool:
        """
        Load and cache the grammar for a language id.

        Args:
            language_id: Editor language identifier (e.g. 'typescript').

        Returns:
            True if the grammar is available, False otherwise.
        """
        if language_id in self._grammars:
            return True

        if language_id not in GRAMMAR_MODULES:
            return False

        self._states[language_id] = GrammarState.LOADING
        try:
            grammar = self._build_grammar(language_id)
        except Exception as e:
            self._states[language_id] = GrammarState.UNLOADED
            logger.warning(
                "Failed to load grammar",
                language=language_id,
                error=str(e),
            )
            return False

        self._grammars[language_id] = grammar
        self._states[language_id] = GrammarState.CACHED
        logger.debug("Grammar loaded", language=language_id)
        return True

    async def acquire(self, language_id: str | None) -> Grammar | None:
        """Load if needed and return the grammar handle, or None."""
        if language_id is None:
            return None
        if await self.load_language(language_id):
            return self._grammars[language_id]
        return None

    def _build_grammar(self, language_id: str) -> Grammar:
        """Import the grammar module and create a parser bound to it."""
        import tree_sitter

        module_name, factory_name = GRAMMAR_MODULES[language_id]
        module = importlib.import_module(module_name)
        factory = getattr(module, factory_name)

        parser = tree_sitter.Parser(tree_sitter.Language(factory()))

        return Grammar(
            language_id=language_id,
            parser=parser,
            block_types=BLOCK_TYPES.get(language_id, frozenset()),
        )

    def clear(self) -> None:
        """Drop every cached grammar."""
        self._grammars.clear()
        self._states.clear()
