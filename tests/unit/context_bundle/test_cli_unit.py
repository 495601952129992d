from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from context_bundle import cli
from context_bundle.config import OutputFormat


@pytest.mark.unit
def test_parse_args_keeps_only_explicit_options() -> None:
    settings = cli.parse_args(
        [
            "src",
            "--output",
            "out.md",
            "--format",
            "json",
            "--include-glob",
            "**/*.py",
            "--include-glob",
            "**/*.md",
            "--no-metadata",
            "--line-numbers",
            "--max-tokens",
            "5000",
        ],
    )

    assert settings.paths == [Path("src")]
    assert settings.output == Path("out.md")
    assert settings.overrides == {
        "output_format": "json",
        "include_globs": ["**/*.py", "**/*.md"],
        "include_metadata": False,
        "include_line_numbers": True,
        "max_tokens": 5000,
    }


@pytest.mark.unit
def test_parse_args_defaults() -> None:
    settings = cli.parse_args([])

    assert settings.paths == [Path()]
    assert settings.output is None
    assert settings.preset == ""
    assert settings.overrides == {}


@pytest.mark.unit
def test_regex_flag_enables_regex_filtering() -> None:
    settings = cli.parse_args(["--regex", r"src/.*\.py$", "--modified-after", "2024-05-01"])

    assert settings.overrides["use_regex_filtering"] is True
    assert settings.overrides["regex_pattern"] == r"src/.*\.py$"
    assert settings.overrides["include_only_modified_after"] == datetime(2024, 5, 1)


@pytest.mark.unit
def test_parse_args_rejects_unknown_preset(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--preset", "nope"])

    assert exc_info.value.code == 2
    assert "--preset" in capsys.readouterr().err


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    assert "context-bundle" in capsys.readouterr().out


@pytest.mark.unit
@pytest.mark.parametrize(
    ("output", "fmt", "expected"),
    [
        ("bundle", OutputFormat.JSON, "bundle.json"),
        ("bundle", OutputFormat.CLAUDE_OPTIMIZED, "bundle.md"),
        ("bundle.txt", OutputFormat.MARKDOWN, "bundle.txt"),
    ],
)
def test_output_path_adds_missing_extension(output: str, fmt: OutputFormat, expected: str) -> None:
    assert cli.output_path(Path(output), fmt) == Path(expected)


@pytest.mark.unit
def test_chunk_path() -> None:
    assert cli.chunk_path(Path("out/bundle.md"), 2) == Path("out/bundle.part2.md")


@pytest.mark.unit
def test_remove_imports_toggle() -> None:
    assert cli.parse_args(["--remove-imports"]).overrides == {"remove_imports": True}
    assert cli.parse_args(["--no-remove-imports"]).overrides == {"remove_imports": False}
