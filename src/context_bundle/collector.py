from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from context_bundle.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from context_bundle.file_manipulation import FileHandle


def collect(selection: Iterable[FileHandle | None]) -> list[FileHandle]:
    """Expand a selection of files and directories into distinct leaf files.

    Directories are expanded breadth-first through a work queue; files are kept
    once, keyed by path, in the order they are first reached. Each directory is
    expanded once, so symlink cycles terminate. No filtering is applied here.

    A directory that cannot be listed contributes no children and is logged;
    the rest of the selection is still collected.

    Args:
        selection (Iterable[FileHandle | None]): the initial selection; `None`
            entries are ignored.

    Returns:
        list[FileHandle]: the de-duplicated leaf files.
    """
    collected: dict[Path, FileHandle] = {}
    expanded: set[Path] = set()
    queue: deque[FileHandle] = deque(h for h in selection if h is not None)
    while queue:
        handle = queue.popleft()
        if handle.is_dir():
            if handle.path in expanded:
                continue
            expanded.add(handle.path)
            try:
                queue.extend(handle.children())
            except OSError as e:
                logger.warning("collect.listing_failed", path=str(handle.path), error=str(e))
            continue
        collected.setdefault(handle.path, handle)
    logger.debug("collect.done", files=len(collected))
    return list(collected.values())
