"""
Static language tables.

Maps file extensions to editor language ids, language ids to tree-sitter
grammar modules, and language ids to the node types treated as whole blocks
by the structural chunker.
"""

from __future__ import annotations

from pathlib import Path

PLAINTEXT = "plaintext"

EXTENSION_LANGUAGES = {
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".py": "python",
    ".c": "c",
    ".cpp": "cpp",
    ".h": "c",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".swift": "swift",
    ".kt": "kotlin",
    ".sh": "bash",
}

# language id -> (grammar module, factory function returning the language pointer)
GRAMMAR_MODULES = {
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "typescriptreact": ("tree_sitter_typescript", "language_tsx"),
    "javascript": ("tree_sitter_javascript", "language"),
    "javascriptreact": ("tree_sitter_javascript", "language"),
    "python": ("tree_sitter_python", "language"),
    "c": ("tree_sitter_c", "language"),
    "cpp": ("tree_sitter_cpp", "language"),
    "bash": ("tree_sitter_bash", "language"),
    "go": ("tree_sitter_go", "language"),
    "rust": ("tree_sitter_rust", "language"),
    "java": ("tree_sitter_java", "language"),
}

_JS_BLOCKS = frozenset(
    {
        "function_declaration",
        "generator_function_declaration",
        "class_declaration",
        "method_definition",
    }
)

BLOCK_TYPES = {
    "typescript": _JS_BLOCKS | {"abstract_class_declaration"},
    "typescriptreact": _JS_BLOCKS | {"abstract_class_declaration"},
    "javascript": _JS_BLOCKS,
    "javascriptreact": _JS_BLOCKS,
    "python": frozenset(
        {"function_definition", "class_definition", "decorated_definition"}
    ),
    "c": frozenset({"function_definition"}),
    "cpp": frozenset({"function_definition", "class_specifier"}),
    "bash": frozenset({"function_definition"}),
    "go": frozenset({"function_declaration", "method_declaration"}),
    "rust": frozenset({"function_item", "impl_item", "trait_item"}),
    "java": frozenset(
        {
            "class_declaration",
            "interface_declaration",
            "method_declaration",
            "constructor_declaration",
        }
    ),
}


def language_for_path(path: str | Path) -> str:
    """Map a file path to a language id, `plaintext` when unmapped."""
    return EXTENSION_LANGUAGES.get(Path(path).suffix.lower(), PLAINTEXT)


def is_language_supported(language_id: str | None) -> bool:
    """Whether structural chunking is available for a language id."""
    return language_id is not None and language_id in GRAMMAR_MODULES


def supported_languages() -> list[str]:
    """Language ids with a known grammar."""
    return list(GRAMMAR_MODULES)
