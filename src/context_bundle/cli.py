"""
context_bundle: bundle source files into one document for review or an LLM.

Overview
--------
The selected files and directories are collected, filtered (globs, .gitignore,
regex, size, date, line count), scanned for secrets, optionally transformed
(comment stripping, line numbers...), and rendered in one of several formats
(Markdown, XML, JSON, plain text, HTML, or LLM-flavoured Markdown). Large
exports can be split into token-budgeted chunks.

Usage
-----
Run `python -m context_bundle.cli --help` for full options. Common examples:
    - Markdown of the current project on stdout:
        context-bundle .

    - Python sources as JSON into a file:
        context-bundle src --include-glob "**/*.py" --format json --output bundle.json

    - LLM preset, one file per chunk:
        context-bundle . --preset ai-llm --max-tokens 50000 --output bundle.md --split-chunks

    - Options from a YAML file, logs to a file:
        context-bundle . --config bundle.yaml --log-file export.log
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from context_bundle.config import ChunkStrategy, FileSortOrder, OutputFormat, PathFormat
from context_bundle.exceptions import ContextBundleError, ExportCancelledError
from context_bundle.file_manipulation import LocalFile
from context_bundle.logging import logger, setup_logging
from context_bundle.pipeline import CancellableProgress, process_files
from context_bundle.presets import BUILTIN_PRESETS, resolve_options
from context_bundle.settings import ExportOptions, Settings
from context_bundle.tokens import context_window_fit, format_token_count

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_bundle.config import FormattedOutput

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_CANCELLED = 130

# (flag, ExportOptions field, help)
_TOGGLES: tuple[tuple[str, str, str], ...] = (
    ("line-numbers", "include_line_numbers", "Prefix each line with its number."),
    ("remove-imports", "remove_imports", "Drop import and #include lines."),
    ("strip-comments", "strip_comments", "Remove comments (language aware)."),
    ("strip-whitespace", "strip_whitespace", "Trim trailing spaces and surrounding blank lines."),
    ("collapse-blank-lines", "collapse_blank_lines", "Collapse runs of blank lines."),
    ("metadata", "include_metadata", "Emit the metadata header."),
    ("git-info", "include_git_info", "Add git branch and commit to the metadata."),
    ("timestamp", "include_timestamp", "Add the export time to the metadata."),
    ("toc", "include_table_of_contents", "Emit a table of contents (Markdown)."),
    ("statistics", "include_statistics", "Emit per-file statistics."),
    ("extract-todos", "extract_todos", "Prepend a TODO/FIXME summary to each file."),
    ("extract-docs", "extract_documentation", "Prepend documentation comments to each file."),
    ("chunking", "enable_chunking", "Split the output when over the token budget."),
    ("respect-gitignore", "respect_gitignore", "Honor .gitignore files."),
    ("detect-secrets", "detect_secrets", "Scan content for credentials."),
    ("mask-secrets", "mask_secrets", "Mask detected credentials."),
    ("warn-pii", "warn_pii", "Warn about PII-like content."),
    ("group-by-directory", "group_by_directory", "Group file sections by directory."),
    ("concurrency", "enable_concurrency", "Read files on a worker pool."),
)

_SETTINGS_FIELDS = ("paths", "root", "output", "log_file", "preset", "config", "split_chunks")


def package_version() -> str:
    try:
        return version("context-bundle")
    except PackageNotFoundError:
        return "unknown"


def build_parser() -> argparse.ArgumentParser:
    """Command line parser; option flags default to None so only explicit ones override."""
    p = argparse.ArgumentParser(
        prog="context-bundle",
        description="Bundle source files into one document (Markdown, XML, JSON, HTML...).",
    )
    p.add_argument("paths", nargs="*", type=Path, default=[Path()], help="Files or directories to export.")
    p.add_argument("--root", type=Path, default=None, help="Project root (default: common parent).")
    p.add_argument("-o", "--output", type=Path, default=None, help="Output file (default: stdout).")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument("--version", action="version", version=f"%(prog)s {package_version()}")

    presets = p.add_argument_group("presets")
    presets.add_argument("--preset", choices=sorted(BUILTIN_PRESETS), default="", help="Built-in preset.")
    presets.add_argument("--config", type=Path, default=None, help="YAML options file.")

    output = p.add_argument_group("output")
    output.add_argument(
        "--format",
        dest="output_format",
        choices=[f.value for f in OutputFormat],
        default=None,
        help="Output format.",
    )
    output.add_argument(
        "--path-format",
        choices=[f.value for f in PathFormat],
        default=None,
        help="How paths are displayed.",
    )
    output.add_argument("--path-prefix", dest="custom_path_prefix", default=None, help="Prefix for custom paths.")
    output.add_argument(
        "--sort",
        dest="sort_files",
        choices=[s.value for s in FileSortOrder],
        default=None,
        help="Order of file sections.",
    )
    output.add_argument("--split-chunks", action="store_true", help="Write one output file per chunk.")

    filters = p.add_argument_group("filters")
    filters.add_argument(
        "--include-glob",
        dest="include_globs",
        action="append",
        default=None,
        help="Include glob (repeatable).",
    )
    filters.add_argument(
        "--exclude-glob",
        dest="exclude_globs",
        action="append",
        default=None,
        help="Exclude glob (repeatable), wins over includes.",
    )
    filters.add_argument("--regex", dest="regex_pattern", default=None, help="Regex a relative path must contain.")
    filters.add_argument("--max-file-size-kb", type=int, default=None, help="Skip files above this size.")
    filters.add_argument("--min-size", dest="min_file_size_bytes", type=int, default=None, help="Minimum bytes.")
    filters.add_argument("--max-size", dest="max_file_size_bytes", type=int, default=None, help="Maximum bytes.")
    filters.add_argument("--min-lines", dest="min_line_count", type=int, default=None, help="Minimum lines.")
    filters.add_argument("--max-lines", dest="max_line_count", type=int, default=None, help="Maximum lines.")
    filters.add_argument(
        "--modified-after",
        dest="include_only_modified_after",
        type=datetime.fromisoformat,
        default=None,
        help="Only files modified after this ISO date/time.",
    )

    chunks = p.add_argument_group("chunking")
    chunks.add_argument("--max-tokens", type=int, default=None, help="Token budget per chunk.")
    chunks.add_argument(
        "--chunk-strategy",
        choices=[s.value for s in ChunkStrategy],
        default=None,
        help="Chunking strategy.",
    )
    chunks.add_argument("--files-per-chunk", type=int, default=None, help="Window size for by_file_count.")
    chunks.add_argument("--max-workers", dest="max_concurrent_tasks", type=int, default=None, help="Worker pool size.")

    toggles = p.add_argument_group("content")
    for flag, dest, help_text in _TOGGLES:
        toggles.add_argument(
            f"--{flag}",
            dest=dest,
            action=argparse.BooleanOptionalAction,
            default=None,
            help=help_text,
        )
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    args = vars(build_parser().parse_args(argv))
    overrides: dict[str, Any] = {
        k: v for k, v in args.items() if k in ExportOptions.model_fields and v is not None
    }
    if overrides.get("regex_pattern"):
        overrides.setdefault("use_regex_filtering", True)
    return Settings(**{k: args[k] for k in _SETTINGS_FIELDS}, overrides=overrides)


def output_path(output: Path, fmt: OutputFormat) -> Path:
    """Add the format's extension when the output path has none."""
    return output if output.suffix else output.with_suffix(f".{fmt.file_extension}")


def chunk_path(path: Path, number: int) -> Path:
    """`bundle.md` -> `bundle.part1.md`."""
    return path.with_name(f"{path.stem}.part{number}{path.suffix}")


def write_output(result: FormattedOutput, settings: Settings, options: ExportOptions) -> list[Path]:
    """Write the export to the output file(s), or stdout when none is set.

    Returns:
        list[Path]: the written files (empty for stdout).
    """
    if settings.output is None:
        sys.stdout.write(result.content)
        return []
    path = output_path(settings.output, options.effective_format)
    path.parent.mkdir(parents=True, exist_ok=True)
    if settings.split_chunks and len(result.chunks) > 1:
        written = [chunk_path(path, i) for i in range(1, len(result.chunks) + 1)]
        for target, part in zip(written, result.chunks, strict=True):
            target.write_text(part, encoding="utf-8")
        return written
    path.write_text(result.content, encoding="utf-8")
    return [path]


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    if settings.log_file:
        setup_logging(settings.log_file)

    try:
        options = resolve_options(settings.preset or None, settings.config, settings.overrides)
    except (ContextBundleError, ValidationError) as e:
        print(f"context-bundle: error: {e}", file=sys.stderr)
        return EXIT_USAGE

    selection = []
    for p in settings.paths:
        if not p.exists():
            logger.warning("cli.missing_path", path=str(p))
            print(f"context-bundle: warning: {p} does not exist", file=sys.stderr)
        selection.append(LocalFile(p) if p.exists() else None)

    progress = CancellableProgress()
    try:
        result = process_files(selection, options, settings.project_root(), progress)
    except (ExportCancelledError, KeyboardInterrupt):
        progress.cancel()
        logger.warning("cli.cancelled")
        print("context-bundle: export cancelled", file=sys.stderr)
        return EXIT_CANCELLED

    written = write_output(result, settings, options)
    meta = result.metadata
    targets = ", ".join(str(p) for p in written) or "stdout"
    print(
        f"Wrote {targets} format={options.effective_format} files={meta.files_processed} "
        f"skipped={meta.files_skipped} tokens={format_token_count(meta.estimated_tokens)} "
        f"({context_window_fit(meta.estimated_tokens)}) chunks={meta.chunk_count}",
        file=sys.stderr,
    )
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
