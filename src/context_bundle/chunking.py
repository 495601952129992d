"""Partition file entries into chunks.

Each strategy is a plain function registered under its `ChunkStrategy` member
and returns lists of entries; `plan` turns them into `Chunk` models with their
position set. A file is never split across chunks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from context_bundle.config import NO_EXTENSION, Chunk, ChunkStrategy, FileEntry, make_registry_decorator
from context_bundle.exceptions import InvalidChunkSizeError
from context_bundle.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    Estimate = Callable[[FileEntry], int]

CHUNK_STRATEGIES: dict[ChunkStrategy, Callable[..., list[list[FileEntry]]]] = {}
register_chunk_strategy = make_registry_decorator(CHUNK_STRATEGIES)

DEFAULT_FILES_PER_CHUNK = 50


def entry_tokens(entry: FileEntry) -> int:
    return entry.tokens


def _check_positive(size: int, parameter: str) -> None:
    if size <= 0:
        raise InvalidChunkSizeError(size=size, parameter=parameter)


def _group_in_order(entries: Sequence[FileEntry], key: Callable[[FileEntry], str]) -> list[list[FileEntry]]:
    groups: dict[str, list[FileEntry]] = {}
    for entry in entries:
        groups.setdefault(key(entry), []).append(entry)
    return list(groups.values())


@register_chunk_strategy(ChunkStrategy.BY_SIZE)
def chunk_by_size(
    entries: Sequence[FileEntry],
    *,
    max_tokens: int,
    estimate: Estimate,
    **_: Any,  # noqa: ANN401
) -> list[list[FileEntry]]:
    """Greedy packing in input order.

    A new chunk starts when adding the next file would exceed `max_tokens` and
    the current chunk is not empty, so a file larger than the budget ends up
    alone in its own chunk.
    """
    _check_positive(max_tokens, "max_tokens")
    groups: list[list[FileEntry]] = []
    current: list[FileEntry] = []
    current_tokens = 0
    for entry in entries:
        tokens = estimate(entry)
        if current and current_tokens + tokens > max_tokens:
            groups.append(current)
            current, current_tokens = [], 0
        current.append(entry)
        current_tokens += tokens
    if current:
        groups.append(current)
    return groups


@register_chunk_strategy(ChunkStrategy.BY_FILE_COUNT)
def chunk_by_file_count(
    entries: Sequence[FileEntry],
    *,
    files_per_chunk: int = DEFAULT_FILES_PER_CHUNK,
    **_: Any,  # noqa: ANN401
) -> list[list[FileEntry]]:
    """Consecutive windows of `files_per_chunk` entries; the last may be shorter."""
    _check_positive(files_per_chunk, "files_per_chunk")
    return [list(entries[i : i + files_per_chunk]) for i in range(0, len(entries), files_per_chunk)]


@register_chunk_strategy(ChunkStrategy.BY_DIRECTORY)
def chunk_by_directory(entries: Sequence[FileEntry], **_: Any) -> list[list[FileEntry]]:  # noqa: ANN401
    """One chunk per parent directory, in first-seen order."""
    return _group_in_order(entries, lambda e: e.directory)


@register_chunk_strategy(ChunkStrategy.BY_FILE_TYPE)
def chunk_by_file_type(entries: Sequence[FileEntry], **_: Any) -> list[list[FileEntry]]:  # noqa: ANN401
    """One chunk per lowercase extension, in first-seen order."""
    return _group_in_order(entries, lambda e: e.extension or NO_EXTENSION)


@register_chunk_strategy(ChunkStrategy.SMART)
def chunk_smart(
    entries: Sequence[FileEntry],
    *,
    max_tokens: int,
    estimate: Estimate,
    **_: Any,  # noqa: ANN401
) -> list[list[FileEntry]]:
    """Keep files of the same directory together within the token budget.

    The first unassigned entry seeds a chunk; later unassigned entries from the
    same directory join it as long as the chunk stays within `max_tokens`.
    """
    _check_positive(max_tokens, "max_tokens")
    assigned = [False] * len(entries)
    groups: list[list[FileEntry]] = []
    for i, seed in enumerate(entries):
        if assigned[i]:
            continue
        assigned[i] = True
        group = [seed]
        tokens = estimate(seed)
        for j in range(i + 1, len(entries)):
            candidate = entries[j]
            if assigned[j] or candidate.directory != seed.directory:
                continue
            cost = estimate(candidate)
            if tokens + cost <= max_tokens:
                assigned[j] = True
                group.append(candidate)
                tokens += cost
        groups.append(group)
    return groups


def plan(
    entries: Sequence[FileEntry],
    strategy: ChunkStrategy,
    max_tokens: int,
    root: Path | None = None,
    *,
    files_per_chunk: int = DEFAULT_FILES_PER_CHUNK,
    estimate: Estimate | None = None,
) -> list[Chunk]:
    """Split `entries` into chunks according to `strategy`.

    Args:
        entries (Sequence[FileEntry]): the processed files, in output order.
        strategy (ChunkStrategy): the partitioning strategy.
        max_tokens (int): token budget of the budgeted strategies.
        root (Path | None): project root; entries already carry root-relative
            paths, it is only reported in logs.
        files_per_chunk (int): window size for `BY_FILE_COUNT`.
        estimate (Callable[[FileEntry], int] | None): token cost of an entry,
            defaults to `FileEntry.tokens`.

    Raises:
        InvalidChunkSizeError: if the budget or window size is not positive.

    Returns:
        list[Chunk]: a disjoint partition of `entries`, with `index`/`total` set.
    """
    cost = estimate or entry_tokens
    strategy_func = CHUNK_STRATEGIES[ChunkStrategy(strategy)]
    groups = strategy_func(entries, max_tokens=max_tokens, files_per_chunk=files_per_chunk, estimate=cost)
    total = len(groups)
    chunks = [
        Chunk(
            files=tuple(group),
            estimated_tokens=sum(cost(e) for e in group),
            estimated_bytes=sum(e.byte_size for e in group),
            index=index,
            total=total,
        )
        for index, group in enumerate(groups)
    ]
    logger.info("chunk.planned", strategy=str(strategy), chunks=total, files=len(entries), root=str(root or ""))
    return chunks
