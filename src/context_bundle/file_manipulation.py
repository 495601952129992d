from __future__ import annotations

import fnmatch
import stat
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from context_bundle.config import BINARY_EXTENSIONS

if TYPE_CHECKING:
    from collections.abc import Sequence

BINARY_SNIFF_BYTES = 8000


@runtime_checkable
class FileHandle(Protocol):
    """Minimal capability interface over a file system entry.

    Any file system (local disk, archive, in-memory fixture) can back an export
    as long as its entries implement these methods.
    """

    path: Path

    def is_dir(self) -> bool: ...

    def children(self) -> list[FileHandle]: ...

    def read_bytes(self) -> bytes: ...

    def size(self) -> int: ...

    def mtime(self) -> float: ...

    def is_binary(self) -> bool: ...


class LocalFile:
    """`FileHandle` implementation over the local disk."""

    __slots__ = ("path",)

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).resolve()

    def __repr__(self) -> str:
        return f"LocalFile({str(self.path)!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, LocalFile) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    def is_dir(self) -> bool:
        return self.path.is_dir()

    def children(self) -> list[FileHandle]:
        """List directory entries, sorted by name for stable output.

        Raises:
            OSError: if the directory cannot be listed.
        """
        return [LocalFile(p) for p in sorted(self.path.iterdir(), key=lambda p: p.name)]

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def size(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError:
            return 0

    def mtime(self) -> float:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return 0.0

    def is_binary(self) -> bool:
        """Cheap, extension-based binary check; content sniffing happens at read time."""
        return self.path.suffix.lower() in BINARY_EXTENSIONS or not is_regular_file(self.path)


def is_regular_file(path: Path) -> bool:
    """Check if a file is regular.

    Args:
        path (Path): path to test.

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    try:
        st = path.stat()
        return stat.S_ISREG(st.st_mode)
    except OSError:
        return False


def looks_binary(data: bytes, nbytes: int = BINARY_SNIFF_BYTES) -> bool:
    """Null-byte heuristic: text files practically never contain NUL."""
    return b"\x00" in data[:nbytes]


def decode_text(data: bytes) -> str:
    """Decode file bytes as UTF-8, dropping a BOM and replacing invalid sequences."""
    return data.decode("utf-8-sig", errors="replace")


def count_lines(text: str) -> int:
    """Number of lines in `text` (an empty string has zero lines)."""
    return len(text.splitlines())


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def glob_variants(pattern: str) -> list[str]:
    """Expand a glob so that `**/` can also stand for zero directories.

    `fnmatch` lets `*` cross `/`, so `**/*.py` already matches nested files; the
    stripped variant makes it match top-level files as well.

    Args:
        pattern (str): a glob pattern with POSIX separators.

    Returns:
        list[str]: the pattern followed by its `**/`-collapsed variant when different.
    """
    variants = [pattern]
    collapsed = pattern.replace("**/", "")
    if collapsed and collapsed != pattern:
        variants.append(collapsed)
    return variants


def match_any_glob(rel: str, globs: Sequence[str]) -> bool:
    """Check if a relative path matches any of the provided glob patterns.

    Args:
        rel (str): the relative path to check
        globs (Sequence[str]): the glob patterns to match against

    Returns:
        bool: True if `rel` matches any pattern in `globs`, False otherwise
    """
    return any(fnmatch.fnmatch(rel, v) for g in globs for v in glob_variants(g))


def now_local() -> datetime:
    """Return the current date and time as an aware datetime in the local timezone."""
    return datetime.now(UTC).astimezone()
