"""
Folder scanner.

Enumerates the files under a folder that qualify for indexing:
1. Extensions are scanned in their configured order
2. Paths matching an exclude glob are skipped
3. Files above the size limit, or that cannot be stat'ed, are skipped
4. Enumeration stops once max_files files are accepted
"""

from __future__ import annotations

import os
import re
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

import structlog

from agent_memory.config import IndexingOptions

if TYPE_CHECKING:
    from agent_memory.config import Config

logger = structlog.get_logger(__name__)

SIZE_SAMPLE = 100


@dataclass
class ValidationResult:
    """Pre-flight report for a folder indexing run."""

    valid: bool
    message: str
    file_count: int


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile an exclude glob into an anchored regular expression.

    `**/` matches zero or more directories, any other `**` matches any
    characters including `/`, `*` matches within one path segment and `?`
    matches a single non-separator character. A pattern without `/` may match
    after any directory boundary, so `*.py` also matches `pkg/main.py`. A
    match on a directory covers everything below it, and a trailing `/**`
    matches the directory itself.

    Args:
        pattern: Glob relative to the indexed folder.

    Returns:
        Compiled pattern; use fullmatch against POSIX relative paths.
    """
    parts: list[str] = [] if "/" in pattern else ["(?:.*/)?"]
    i = 0
    while i < len(pattern):
        if pattern[i:] == "/**":
            break
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    parts.append("(?:/.*)?")
    return re.compile("".join(parts))


class FolderScanner:
    """Applies include / exclude / size / count policy to a folder."""

    def __init__(self, config: "Config") -> None:
        """
        Initialize the scanner.

        Args:
            config: agent-memory configuration; its indexing section
                supplies the default options.
        """
        self.config = config

    def resolve_options(self, options: IndexingOptions | None = None) -> IndexingOptions:
        """Return explicit options or the configured defaults."""
        return options if options is not None else self.config.indexing

    async def get_files_to_index(
        self,
        root: str | Path,
        options: IndexingOptions | None = None,
    ) -> list[Path]:
        """
        List the files under root that qualify for indexing.

        Args:
            root: Folder to scan.
            options: Indexing policy; configured defaults when omitted.

        Returns:
            At most max_files paths, grouped by extension in declared order.
        """
        opts = self.resolve_options(options)
        return self._collect(Path(root), opts, limit=opts.max_files)

    async def validate_indexing_operation(
        self,
        root: str | Path,
        options: IndexingOptions | None = None,
    ) -> ValidationResult:
        """
        Check whether a folder can be indexed and estimate its size.

        Args:
            root: Folder to scan.
            options: Indexing policy; configured defaults when omitted.

        Returns:
            ValidationResult with a user-facing message.
        """
        opts = self.resolve_options(options)
        # One past the cap so an oversized folder is detectable
        files = self._collect(Path(root), opts, limit=opts.max_files + 1)

        if not files:
            return ValidationResult(
                valid=False,
                message="No files found to index in this folder.",
                file_count=0,
            )

        if len(files) > opts.max_files:
            return ValidationResult(
                valid=False,
                message=(
                    f"Too many files (more than {opts.max_files}). "
                    f"Maximum is {opts.max_files}. Consider using exclude patterns."
                ),
                file_count=len(files),
            )

        sample = files[:SIZE_SAMPLE]
        sampled_size = 0
        for path in sample:
            try:
                sampled_size += path.stat().st_size
            except OSError:
                pass

        estimated = sampled_size / len(sample) * len(files)
        estimated_mb = estimated / (1024 * 1024)

        return ValidationResult(
            valid=True,
            message=(
                f"Ready to index {len(files)} files (~{estimated_mb:.1f} MB). "
                "This may take a few minutes."
            ),
            file_count=len(files),
        )

    def _collect(self, root: Path, opts: IndexingOptions, limit: int) -> list[Path]:
        excludes = [glob_to_regex(p) for p in opts.exclude_patterns]
        # Excluded directories are never descended into
        candidates = list(self._walk(root, excludes))
        accepted: list[Path] = []

        for ext in dict.fromkeys(opts.include_extensions):
            for path in candidates:
                if not path.name.endswith(ext):
                    continue

                rel = path.relative_to(root).as_posix()
                if any(rx.fullmatch(rel) for rx in excludes):
                    continue

                try:
                    st = path.stat()
                except OSError:
                    continue
                if not stat.S_ISREG(st.st_mode) or st.st_size > opts.max_file_size:
                    continue

                accepted.append(path)
                if len(accepted) >= limit:
                    return accepted

        logger.debug("Scanned folder", root=str(root), files=len(accepted))
        return accepted

    def _walk(self, root: Path, prune: list[re.Pattern[str]]) -> Iterator[Path]:
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            kept = []
            for name in sorted(dirnames):
                rel = (current / name).relative_to(root).as_posix()
                if not any(rx.fullmatch(rel) for rx in prune):
                    kept.append(name)
            dirnames[:] = kept

            for name in sorted(filenames):
                yield current / name
