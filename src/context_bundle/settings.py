from __future__ import annotations

import os
import sys
from datetime import datetime  # noqa: TC003
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from context_bundle.config import ChunkStrategy, FileSortOrder, OutputFormat, PathFormat


def split_globs(value: Any) -> list[str]:  # noqa: ANN401
    """Normalize glob input into a clean list of patterns.

    Accepts either a sequence of patterns or a single string where patterns are
    separated by newlines or commas (the shape settings screens tend to produce).

    Args:
        value (Any): a string, a sequence of strings, or None.

    Returns:
        list[str]: stripped, non-empty patterns using POSIX separators.
    """
    if value is None:
        return []
    raw = value.replace(",", "\n").splitlines() if isinstance(value, str) else list(value)
    out: list[str] = []
    for g in raw:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


class ExportOptions(BaseModel):
    """Immutable configuration of one export run.

    Built once by the presentation layer (CLI, preset file...) and passed
    explicitly to every pipeline stage.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Basic filtering
    include_globs: list[str] = Field(default_factory=list, description="Include globs (empty = all).")
    exclude_globs: list[str] = Field(default_factory=list, description="Exclude globs, win over includes.")
    max_file_size_kb: int = Field(default=2048, ge=0, description="Files above this size are skipped.")

    # Output
    output_format: OutputFormat = Field(default=OutputFormat.MARKDOWN, description="Output encoding.")

    # Content options
    include_line_numbers: bool = Field(default=False, description="Prefix each line with its number.")
    remove_imports: bool = Field(default=False, description="Drop import and #include lines.")
    strip_comments: bool = Field(default=False, description="Remove comments (language aware).")
    strip_whitespace: bool = Field(default=False, description="Trim trailing spaces and leading blank lines.")
    collapse_blank_lines: bool = Field(default=False, description="Collapse runs of blank lines.")
    include_metadata: bool = Field(default=True, description="Emit the metadata header.")
    include_git_info: bool = Field(default=False, description="Add git branch/commit to metadata.")
    include_timestamp: bool = Field(default=True, description="Add the export time to metadata.")
    include_table_of_contents: bool = Field(default=False, description="Emit a table of contents.")
    include_statistics: bool = Field(default=True, description="Emit per-file size/lines statistics.")
    extract_todos: bool = Field(default=False, description="Prepend a TODO/FIXME summary per file.")
    extract_documentation: bool = Field(default=False, description="Prepend doc comments per file.")

    # Size management
    enable_chunking: bool = Field(default=False, description="Split output when over the token budget.")
    max_tokens: int = Field(default=100_000, gt=0, description="Token budget per chunk.")
    chunk_strategy: ChunkStrategy = Field(default=ChunkStrategy.BY_SIZE, description="Chunking strategy.")
    files_per_chunk: int = Field(default=50, gt=0, description="Window size for BY_FILE_COUNT.")

    # Advanced filtering
    use_regex_filtering: bool = Field(default=False, description="Filter relative paths by regex.")
    regex_pattern: str = Field(default="", description="Regex a relative path must contain.")
    respect_gitignore: bool = Field(default=True, description="Honor the nearest .gitignore.")
    min_file_size_bytes: int = Field(default=0, ge=0, description="Minimum file size in bytes.")
    max_file_size_bytes: int = Field(default=sys.maxsize, ge=0, description="Maximum file size in bytes.")
    include_only_modified_after: datetime | None = Field(default=None, description="Modification cutoff.")
    min_line_count: int = Field(default=0, ge=0, description="Minimum line count.")
    max_line_count: int = Field(default=sys.maxsize, ge=0, description="Maximum line count.")

    # Security
    detect_secrets: bool = Field(default=True, description="Scan content for credentials.")
    mask_secrets: bool = Field(default=True, description="Mask detected credentials.")
    warn_pii: bool = Field(default=True, description="Report PII-like content.")

    # Paths and grouping
    path_format: PathFormat = Field(default=PathFormat.RELATIVE, description="How paths are displayed.")
    custom_path_prefix: str = Field(default="", description="Prefix used by PathFormat.CUSTOM.")
    group_by_directory: bool = Field(default=True, description="Group file sections by directory.")
    sort_files: FileSortOrder = Field(default=FileSortOrder.PATH_ALPHABETICAL, description="Section ordering.")

    # Concurrency
    enable_concurrency: bool = Field(default=True, description="Read files on a worker pool.")
    max_concurrent_tasks: int = Field(default=4, gt=0, description="Worker pool size.")

    @field_validator("include_globs", "exclude_globs", mode="before")
    @classmethod
    def _split_globs(cls, value: Any) -> list[str]:  # noqa: ANN401
        return split_globs(value)

    @property
    def effective_format(self) -> OutputFormat:
        """Output format after folding the table-of-contents toggle into Markdown."""
        if self.output_format is OutputFormat.MARKDOWN and self.include_table_of_contents:
            return OutputFormat.MARKDOWN_WITH_TOC
        return self.output_format


class Settings(BaseModel):
    """Run configuration for the command line front-end."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    paths: list[Path] = Field(default_factory=lambda: [Path()], description="Files/directories to export.")
    root: Path | None = Field(default=None, description="Project root (defaults to the common parent).")
    output: Path | None = Field(default=None, description="Output file; stdout when omitted.")
    log_file: str = Field(default="", description="Log file path.")
    preset: str = Field(default="", description="Built-in preset name.")
    config: Path | None = Field(default=None, description="YAML options file.")
    split_chunks: bool = Field(default=False, description="Write one file per chunk.")
    overrides: dict[str, Any] = Field(default_factory=dict, description="Explicit option flags.")

    def project_root(self) -> Path:
        """Resolve the project root used for relative paths and ignore rules."""
        if self.root is not None:
            return self.root.resolve()
        resolved = [p.resolve() for p in self.paths] or [Path.cwd()]
        if len(resolved) == 1:
            only = resolved[0]
            return only if only.is_dir() else only.parent
        common = Path(os.path.commonpath(resolved))
        return common if common.is_dir() else common.parent
