from pathlib import Path

import pytest
from pydantic import ValidationError

from context_bundle.config import OutputFormat
from context_bundle.settings import ExportOptions, Settings, split_globs


@pytest.mark.unit
def test_export_options_defaults() -> None:
    options = ExportOptions()

    assert options.output_format is OutputFormat.MARKDOWN
    assert options.include_globs == []
    assert options.max_file_size_kb == 2048
    assert options.detect_secrets is True
    assert options.mask_secrets is True
    assert options.respect_gitignore is True
    assert options.max_tokens == 100_000
    assert options.max_concurrent_tasks == 4


@pytest.mark.unit
def test_export_options_are_frozen() -> None:
    options = ExportOptions()

    with pytest.raises(ValidationError):
        options.strip_comments = True  # type: ignore[misc]


@pytest.mark.unit
def test_export_options_reject_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        ExportOptions(remove_imports=True)  # type: ignore[call-arg]


@pytest.mark.unit
@pytest.mark.parametrize("field", ["max_tokens", "files_per_chunk", "max_concurrent_tasks"])
def test_export_options_reject_non_positive_sizes(field: str) -> None:
    with pytest.raises(ValidationError):
        ExportOptions(**{field: 0})


@pytest.mark.unit
def test_split_globs_accepts_newline_and_comma_separated_text() -> None:
    assert split_globs("**/*.py, **/*.md\n\n src\\*.txt ") == ["**/*.py", "**/*.md", "src/*.txt"]
    assert split_globs(None) == []
    assert split_globs(["a", " ", "b"]) == ["a", "b"]


@pytest.mark.unit
def test_export_options_split_glob_strings() -> None:
    options = ExportOptions(include_globs="**/*.py\n**/*.kt")  # type: ignore[arg-type]

    assert options.include_globs == ["**/*.py", "**/*.kt"]


@pytest.mark.unit
def test_effective_format_folds_table_of_contents_into_markdown() -> None:
    assert ExportOptions(include_table_of_contents=True).effective_format is OutputFormat.MARKDOWN_WITH_TOC
    assert ExportOptions(output_format=OutputFormat.JSON, include_table_of_contents=True).effective_format is (
        OutputFormat.JSON
    )


@pytest.mark.unit
def test_settings_defaults() -> None:
    settings = Settings()

    assert settings.paths == [Path()]
    assert settings.output is None
    assert settings.overrides == {}
    assert settings.split_chunks is False


@pytest.mark.unit
def test_project_root_of_single_file_is_its_parent(tmp_path: Path) -> None:
    f = tmp_path / "a.py"
    f.write_text("x", encoding="utf-8")

    assert Settings(paths=[f]).project_root() == tmp_path.resolve()
    assert Settings(paths=[tmp_path]).project_root() == tmp_path.resolve()


@pytest.mark.unit
def test_project_root_of_several_paths_is_common_parent(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "docs").mkdir()

    settings = Settings(paths=[tmp_path / "src", tmp_path / "docs"])

    assert settings.project_root() == tmp_path.resolve()


@pytest.mark.unit
def test_explicit_root_wins(tmp_path: Path) -> None:
    settings = Settings(paths=[tmp_path / "src"], root=tmp_path)

    assert settings.project_root() == tmp_path.resolve()
