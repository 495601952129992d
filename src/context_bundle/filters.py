"""Per-file acceptance rules applied before any content is read.

Stages run in a fixed order and stop at the first rejection:

1. include/exclude globs (exclude always wins),
2. ignore files (`.gitignore`, nearest one to the file) and VCS metadata,
3. regex on the relative path,
4. byte size bounds,
5. modification time cutoff,
6. provider-reported binary flag.

The line-count bounds need the content and are checked by the pipeline after
reading, through `FilterChain.line_count_ok`.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import pathspec

from context_bundle.config import VCS_DIRECTORIES
from context_bundle.file_manipulation import match_any_glob, relpath
from context_bundle.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from context_bundle.file_manipulation import FileHandle
    from context_bundle.settings import ExportOptions

    Stage = Callable[[FileHandle, str], bool]

IGNORE_FILE_NAME = ".gitignore"


class IgnoreRules:
    """Patterns of one ignore file, matched with git's own ignore semantics.

    The last matching pattern wins, so a `!pattern` listed after a broader rule
    re-admits the paths it matches.
    """

    def __init__(self, lines: Iterable[str]) -> None:
        self.patterns = [ln.rstrip("\r\n") for ln in lines if ln.strip() and not ln.lstrip().startswith("#")]
        self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    @classmethod
    def from_file(cls, path: Path) -> IgnoreRules | None:
        """Load an ignore file, or return None when it does not exist or cannot be read."""
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("filter.ignore_file_unreadable", path=str(path), error=str(e))
            return None
        return cls(text.splitlines())

    def should_ignore(self, rel: str) -> bool:
        """Whether `rel` (relative to the ignore file's directory) is ignored."""
        return self._spec.match_file(rel)


class IgnoreSource:
    """Resolve the ignore file nearest to a path, between its directory and the project root."""

    def __init__(self, root: Path, filename: str = IGNORE_FILE_NAME) -> None:
        self.root = Path(root)
        self.filename = filename
        self._cache: dict[Path, IgnoreRules | None] = {}

    def rules_for(self, directory: Path) -> IgnoreRules | None:
        if directory not in self._cache:
            self._cache[directory] = IgnoreRules.from_file(directory / self.filename)
        return self._cache[directory]

    def should_ignore(self, rel: str) -> bool:
        """Match `rel` against the nearest ignore file found walking up to the root."""
        pure = PurePosixPath(rel)
        if pure.is_absolute() or ".." in pure.parts:
            return False
        parts = pure.parts
        for depth in range(len(parts) - 1, -1, -1):
            rules = self.rules_for(self.root.joinpath(*parts[:depth]))
            if rules is not None:
                return rules.should_ignore("/".join(parts[depth:]))
        return False


def compile_path_regex(options: ExportOptions) -> re.Pattern[str] | None:
    """Compile the path regex, failing open on invalid patterns.

    Args:
        options (ExportOptions): the run options.

    Returns:
        re.Pattern[str] | None: the compiled pattern, or None when regex filtering
            is disabled, empty, or invalid.
    """
    if not options.use_regex_filtering or not options.regex_pattern:
        return None
    try:
        return re.compile(options.regex_pattern)
    except re.error as e:
        logger.warning("filter.invalid_regex", pattern=options.regex_pattern, error=str(e))
        return None


class FilterChain:
    """Ordered, short-circuiting acceptance test for candidate files."""

    def __init__(
        self,
        options: ExportOptions,
        project_root: Path,
        *,
        ignore_source: IgnoreSource | None = None,
    ) -> None:
        self.options = options
        self.root = Path(project_root).resolve()
        self._includes = options.include_globs
        self._excludes = options.exclude_globs
        self._ignore = ignore_source or IgnoreSource(self.root)
        self._regex = compile_path_regex(options)
        self._cutoff = (
            options.include_only_modified_after.timestamp() if options.include_only_modified_after else None
        )
        self._stages: tuple[tuple[str, Stage], ...] = (
            ("glob", self._glob_ok),
            ("ignore", self._ignore_ok),
            ("regex", self._regex_ok),
            ("size", self._size_ok),
            ("modified", self._modified_ok),
            ("binary", self._binary_ok),
        )

    def relative(self, handle: FileHandle) -> str:
        return relpath(handle.path, self.root)

    def accepts(self, handle: FileHandle) -> bool:
        """Run every stage in order; the first rejection decides."""
        rel = self.relative(handle)
        for name, stage in self._stages:
            if not stage(handle, rel):
                logger.debug("filter.rejected", path=rel, stage=name)
                return False
        return True

    def glob_accepts(self, rel: str) -> bool:
        """Include/exclude glob test on a relative path; excludes always win."""
        if self._excludes and match_any_glob(rel, self._excludes):
            return False
        return not self._includes or match_any_glob(rel, self._includes)

    def within_size_cap(self, size: int) -> bool:
        """KB cap from `max_file_size_kb`, also re-checked when content is read."""
        return size // 1024 <= self.options.max_file_size_kb

    def line_count_ok(self, line_count: int) -> bool:
        return self.options.min_line_count <= line_count <= self.options.max_line_count

    def _glob_ok(self, _handle: FileHandle, rel: str) -> bool:
        return self.glob_accepts(rel)

    def _ignore_ok(self, _handle: FileHandle, rel: str) -> bool:
        if not self.options.respect_gitignore:
            return True
        if any(part in VCS_DIRECTORIES for part in PurePosixPath(rel).parts[:-1]):
            return False
        return not self._ignore.should_ignore(rel)

    def _regex_ok(self, _handle: FileHandle, rel: str) -> bool:
        return self._regex is None or self._regex.search(rel) is not None

    def _size_ok(self, handle: FileHandle, _rel: str) -> bool:
        size = handle.size()
        in_bounds = self.options.min_file_size_bytes <= size <= self.options.max_file_size_bytes
        return in_bounds and self.within_size_cap(size)

    def _modified_ok(self, handle: FileHandle, _rel: str) -> bool:
        return self._cutoff is None or handle.mtime() >= self._cutoff

    def _binary_ok(self, handle: FileHandle, _rel: str) -> bool:
        return not handle.is_binary()
