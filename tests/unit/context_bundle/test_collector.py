import threading
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from context_bundle.collector import collect
from context_bundle.file_manipulation import LocalFile


def make_tree(root: Path) -> None:
    for rel in ("a.py", "src/b.py", "src/pkg/c.py", "docs/readme.md"):
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(rel, encoding="utf-8")


@pytest.mark.unit
def test_collect_expands_directories_breadth_first(tmp_path: Path) -> None:
    make_tree(tmp_path)

    files = collect([LocalFile(tmp_path)])

    rels = [f.path.relative_to(tmp_path.resolve()).as_posix() for f in files]
    assert rels == ["a.py", "docs/readme.md", "src/b.py", "src/pkg/c.py"]


@pytest.mark.unit
def test_collect_deduplicates_overlapping_selection(tmp_path: Path) -> None:
    make_tree(tmp_path)

    files = collect([LocalFile(tmp_path / "src"), LocalFile(tmp_path / "src" / "b.py"), LocalFile(tmp_path)])

    paths = [f.path for f in files]
    assert len(paths) == len(set(paths)) == 4


@pytest.mark.unit
def test_collect_ignores_none_entries(tmp_path: Path) -> None:
    f = tmp_path / "a.py"
    f.write_text("", encoding="utf-8")

    assert collect([None, LocalFile(f), None]) == [LocalFile(f)]


@pytest.mark.unit
def test_unlistable_directory_is_skipped(tmp_path: Path, mocker: MockerFixture) -> None:
    make_tree(tmp_path)
    broken = LocalFile(tmp_path / "src")
    mocker.patch.object(LocalFile, "children", side_effect=PermissionError("denied"))

    files = collect([broken, LocalFile(tmp_path / "a.py")])

    assert files == [LocalFile(tmp_path / "a.py")]


@pytest.mark.unit
def test_symlink_cycle_is_expanded_once(tmp_path: Path) -> None:
    pkg = tmp_path / "pkg"
    pkg.mkdir()
    (pkg / "a.py").write_text("a = 1\n", encoding="utf-8")
    (pkg / "loop").symlink_to(pkg, target_is_directory=True)
    result: list[list[LocalFile]] = []

    worker = threading.Thread(target=lambda: result.append(collect([LocalFile(tmp_path)])), daemon=True)
    worker.start()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert result == [[LocalFile(pkg / "a.py")]]
