from pathlib import Path

import pytest

from context_bundle.chunking import CHUNK_STRATEGIES, plan
from context_bundle.config import ChunkStrategy, FileEntry
from context_bundle.exceptions import InvalidChunkSizeError

ROOT = Path("/project")


def entry(rel: str, tokens: int = 10, size: int = 100) -> FileEntry:
    return FileEntry(path=f"/project/{rel}", rel=rel, tokens=tokens, byte_size=size)


MIXED = [
    entry("a/x.py", 30),
    entry("b/y.kt", 10),
    entry("a/z.py", 30),
    entry("Makefile", 5),
    entry("a/w.md", 10),
    entry("b/big.py", 500),
]


@pytest.mark.unit
def test_every_strategy_is_registered() -> None:
    assert set(CHUNK_STRATEGIES) == set(ChunkStrategy)


@pytest.mark.unit
@pytest.mark.parametrize("strategy", list(ChunkStrategy))
def test_chunks_cover_all_files_exactly_once(strategy: ChunkStrategy) -> None:
    chunks = plan(MIXED, strategy, 50, ROOT, files_per_chunk=4)

    seen = [f.rel for c in chunks for f in c.files]
    assert sorted(seen) == sorted(e.rel for e in MIXED)
    assert len(seen) == len(set(seen))
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert all(c.total == len(chunks) for c in chunks)


@pytest.mark.unit
@pytest.mark.parametrize("strategy", list(ChunkStrategy))
def test_files_keep_input_order_inside_chunks(strategy: ChunkStrategy) -> None:
    position = {e.rel: i for i, e in enumerate(MIXED)}

    for chunk in plan(MIXED, strategy, 50, ROOT, files_per_chunk=4):
        order = [position[f.rel] for f in chunk.files]
        assert order == sorted(order)


@pytest.mark.unit
def test_by_size_greedy_packing() -> None:
    entries = [entry(f"f{i}.txt") for i in range(10)]

    chunks = plan(entries, ChunkStrategy.BY_SIZE, 50_000, ROOT, estimate=lambda _e: 12_000)

    assert [len(c.files) for c in chunks] == [4, 4, 2]
    assert [c.estimated_tokens for c in chunks] == [48_000, 48_000, 24_000]
    assert all(c.estimated_tokens <= 50_000 for c in chunks)


@pytest.mark.unit
def test_by_size_accepts_exact_budget() -> None:
    chunks = plan([entry("a", 25), entry("b", 25), entry("c", 1)], ChunkStrategy.BY_SIZE, 50, ROOT)

    assert [[f.rel for f in c.files] for c in chunks] == [["a", "b"], ["c"]]


@pytest.mark.unit
def test_oversize_file_gets_its_own_chunk() -> None:
    chunks = plan([entry("a", 10), entry("big", 100), entry("c", 10)], ChunkStrategy.BY_SIZE, 50, ROOT)

    assert [[f.rel for f in c.files] for c in chunks] == [["a"], ["big"], ["c"]]


@pytest.mark.unit
def test_by_file_count_windows() -> None:
    entries = [entry(f"f{i}") for i in range(7)]

    chunks = plan(entries, ChunkStrategy.BY_FILE_COUNT, 1, ROOT, files_per_chunk=3)

    assert [len(c.files) for c in chunks] == [3, 3, 1]


@pytest.mark.unit
def test_by_directory_groups_in_first_seen_order() -> None:
    chunks = plan(MIXED, ChunkStrategy.BY_DIRECTORY, 50, ROOT)

    assert [[f.rel for f in c.files] for c in chunks] == [
        ["a/x.py", "a/z.py", "a/w.md"],
        ["b/y.kt", "b/big.py"],
        ["Makefile"],
    ]


@pytest.mark.unit
def test_by_file_type_groups_by_extension() -> None:
    chunks = plan(MIXED, ChunkStrategy.BY_FILE_TYPE, 50, ROOT)

    assert [[f.rel for f in c.files] for c in chunks] == [
        ["a/x.py", "a/z.py", "b/big.py"],
        ["b/y.kt"],
        ["Makefile"],
        ["a/w.md"],
    ]


@pytest.mark.unit
def test_smart_keeps_directories_together_within_budget() -> None:
    chunks = plan(MIXED, ChunkStrategy.SMART, 50, ROOT)

    assert [[f.rel for f in c.files] for c in chunks] == [
        ["a/x.py", "a/w.md"],
        ["b/y.kt"],
        ["a/z.py"],
        ["Makefile"],
        ["b/big.py"],
    ]
    assert [c.estimated_tokens for c in chunks] == [40, 10, 30, 5, 500]


@pytest.mark.unit
def test_chunk_bytes_are_summed() -> None:
    chunks = plan([entry("a", 1, 10), entry("b", 1, 20)], ChunkStrategy.BY_DIRECTORY, 50, ROOT)

    assert chunks[0].estimated_bytes == 30


@pytest.mark.unit
def test_empty_input_yields_no_chunks() -> None:
    assert plan([], ChunkStrategy.BY_SIZE, 10, ROOT) == []


@pytest.mark.unit
@pytest.mark.parametrize("strategy", [ChunkStrategy.BY_SIZE, ChunkStrategy.SMART])
def test_non_positive_budget_is_rejected(strategy: ChunkStrategy) -> None:
    with pytest.raises(InvalidChunkSizeError) as excinfo:
        plan([entry("a")], strategy, 0, ROOT)

    assert excinfo.value.parameter == "max_tokens"


@pytest.mark.unit
def test_non_positive_window_is_rejected() -> None:
    with pytest.raises(InvalidChunkSizeError) as excinfo:
        plan([entry("a")], ChunkStrategy.BY_FILE_COUNT, 10, ROOT, files_per_chunk=0)

    assert excinfo.value.parameter == "files_per_chunk"
