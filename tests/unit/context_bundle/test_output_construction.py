from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from datetime import UTC, datetime

import pytest

from context_bundle.config import ExportMetadata, FileEntry, FileSortOrder, OutputFormat, PathFormat
from context_bundle.output_construction import (
    RENDERERS,
    escape_json,
    fence_for,
    format_path,
    group_entries,
    render,
    slugify,
    sort_entries,
)
from context_bundle.settings import ExportOptions

TRICKY = 'say "hi"\\n\tand <b>&</b> ]]> then\x01 end'


def make_entries() -> list[FileEntry]:
    return [
        FileEntry(
            path="/work/demo/src/app.py",
            rel="src/app.py",
            language="python",
            content="import os\nprint(1)",
            line_count=2,
            byte_size=18,
            mtime=200.0,
            tokens=6,
        ),
        FileEntry(
            path="/work/demo/README.md",
            rel="README.md",
            language="markdown",
            content=TRICKY,
            line_count=1,
            byte_size=40,
            mtime=100.0,
            tokens=12,
        ),
    ]


META = ExportMetadata(
    files_processed=2,
    files_skipped=1,
    total_bytes=58,
    estimated_tokens=18,
    export_time=datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
    project_name="demo",
    git_branch="main",
    git_commit="0123456789abcdef",
)


@pytest.mark.unit
def test_every_format_has_a_renderer() -> None:
    assert set(RENDERERS) == set(OutputFormat)


@pytest.mark.unit
@pytest.mark.parametrize("fmt", list(OutputFormat))
def test_every_format_mentions_each_path(fmt: OutputFormat) -> None:
    out = render(make_entries(), ExportOptions(output_format=fmt), META)

    assert "src/app.py" in out
    assert "README.md" in out


@pytest.mark.unit
def test_json_output_parses_and_lists_each_path_once() -> None:
    out = render(make_entries(), ExportOptions(output_format=OutputFormat.JSON), META)

    data = json.loads(out)

    assert [f["path"] for f in data["files"]] == ["README.md", "src/app.py"]
    assert data["files"][0]["content"] == TRICKY
    assert data["files"][1]["lineCount"] == 2
    assert data["metadata"]["filesProcessed"] == 2
    assert data["metadata"]["projectName"] == "demo"
    assert "gitBranch" not in data["metadata"]


@pytest.mark.unit
def test_json_output_without_files_or_metadata() -> None:
    out = render([], ExportOptions(output_format=OutputFormat.JSON, include_metadata=False), META)

    assert json.loads(out) == {"files": []}


@pytest.mark.unit
def test_escape_json_control_characters() -> None:
    assert escape_json('a"b\\c\n\r\t\x01') == 'a\\"b\\\\c\\n\\r\\t\\u0001'


@pytest.mark.unit
def test_xml_output_parses_and_round_trips_content() -> None:
    out = render(make_entries(), ExportOptions(output_format=OutputFormat.XML, include_git_info=True), META)

    root = ET.fromstring(out.encode("utf-8"))

    files = root.findall("./files/file")
    assert [f.findtext("path") for f in files] == ["README.md", "src/app.py"]
    assert files[0].findtext("content") == TRICKY.replace("\x01", "")
    assert root.findtext("./metadata/gitBranch") == "main"
    assert root.findtext("./metadata/filesSkipped") == "1"


@pytest.mark.unit
def test_markdown_fences_each_file_with_its_language() -> None:
    out = render(make_entries(), ExportOptions(), META)

    assert "```python\nimport os\nprint(1)\n```" in out
    assert "## Export Statistics" in out
    assert "- **Files Skipped:** 1" in out
    assert "- **Export Time:** 2024-01-02T03:04:05+00:00" in out
    assert "Git Branch" not in out
    assert "## Directory: `src`" in out


@pytest.mark.unit
def test_markdown_header_toggles() -> None:
    options = ExportOptions(include_timestamp=False, include_git_info=True, include_metadata=True)

    out = render(make_entries(), options, META)

    assert "Export Time" not in out
    assert "- **Git Branch:** main" in out
    assert "- **Git Commit:** 0123456789abcdef" in out
    assert "Export Statistics" not in render(make_entries(), ExportOptions(include_metadata=False), META)


@pytest.mark.unit
def test_markdown_table_of_contents() -> None:
    out = render(make_entries(), ExportOptions(include_table_of_contents=True), META)

    assert "## Table of Contents\n\n1. [README.md](#readme-md)\n2. [src/app.py](#src-app-py)\n" in out
    assert out.index("Table of Contents") < out.index("### `README.md`")


@pytest.mark.unit
def test_html_escapes_content() -> None:
    entry = make_entries()[0].model_copy(update={"content": '<script>alert("x")</script> & more'})

    out = render([entry], ExportOptions(output_format=OutputFormat.HTML), META)

    assert "&lt;script&gt;alert(&quot;x&quot;)&lt;/script&gt; &amp; more" in out
    assert "<script>" not in out
    assert out.startswith("<!DOCTYPE html>")


@pytest.mark.unit
def test_plain_text_rules() -> None:
    out = render(make_entries(), ExportOptions(output_format=OutputFormat.PLAIN_TEXT), META)

    assert out.startswith("=" * 80 + "\nEXPORT METADATA\n")
    assert "-" * 80 + "\nFile: src/app.py\n" in out


@pytest.mark.unit
def test_vendor_variants_have_their_own_headings() -> None:
    entries = make_entries()

    assert render(entries, ExportOptions(output_format=OutputFormat.CLAUDE_OPTIMIZED), META).startswith(
        "# Project Export for Claude"
    )
    assert '<file path="src/app.py">' in render(entries, ExportOptions(output_format=OutputFormat.CLAUDE_OPTIMIZED), META)
    assert render(entries, ExportOptions(output_format=OutputFormat.CHATGPT_OPTIMIZED), META).startswith(
        "# Code Context"
    )
    assert "### File 2: src/app.py" in render(entries, ExportOptions(output_format=OutputFormat.GEMINI_OPTIMIZED), META)


@pytest.mark.unit
def test_fence_grows_past_backticks_in_content() -> None:
    assert fence_for("plain") == "```"
    assert fence_for("```python\nx\n```") == "````"


@pytest.mark.unit
def test_slugify() -> None:
    assert slugify("src/My File.py") == "src-my-file-py"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("path_format", "prefix", "expected"),
    [
        (PathFormat.RELATIVE, "", "src/app.py"),
        (PathFormat.ABSOLUTE, "", "/work/demo/src/app.py"),
        (PathFormat.PROJECT_RELATIVE, "", "demo/src/app.py"),
        (PathFormat.CUSTOM, "repo://", "repo://src/app.py"),
    ],
)
def test_format_path(path_format: PathFormat, prefix: str, expected: str) -> None:
    options = ExportOptions(path_format=path_format, custom_path_prefix=prefix)

    assert format_path(make_entries()[0], options, "demo") == expected


@pytest.mark.unit
def test_sort_and_group_entries() -> None:
    entries = make_entries()

    assert [e.rel for e in sort_entries(entries, FileSortOrder.SIZE_DESCENDING)] == ["README.md", "src/app.py"]
    assert [e.rel for e in sort_entries(entries, FileSortOrder.MODIFIED_DATE)] == ["src/app.py", "README.md"]
    assert [e.rel for e in sort_entries(entries, FileSortOrder.EXTENSION)] == ["README.md", "src/app.py"]
    assert [d for d, _ in group_entries(entries, by_directory=True)] == ["src", ""]
    assert group_entries(entries, by_directory=False) == [("", entries)]
