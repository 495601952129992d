from __future__ import annotations

import html
import io
import re
from typing import TYPE_CHECKING

from context_bundle.config import FileSortOrder, OutputFormat, PathFormat, make_registry_decorator
from context_bundle.tokens import context_window_fit, format_byte_size, format_token_count

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from context_bundle.config import ExportMetadata, FileEntry
    from context_bundle.settings import ExportOptions

    Renderer = Callable[[Sequence[FileEntry], ExportOptions, ExportMetadata], str]

RENDERERS: dict[OutputFormat, Renderer] = {}
register_renderer = make_registry_decorator(RENDERERS)

EXPORT_TITLE = "Context Bundle Export"
RULE_WIDTH = 80

_SLUG_PATTERN = re.compile(r"[^a-z0-9]")
_BACKTICK_RUN = re.compile(r"`{3,}")
_XML_ILLEGAL = re.compile("[^\t\n\r\x20-\uD7FF\uE000-\uFFFD\U00010000-\U0010ffff]")
_JSON_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"}

_SORT_KEYS: dict[FileSortOrder, tuple[Callable[[FileEntry], object], bool]] = {
    FileSortOrder.PATH_ALPHABETICAL: (lambda e: e.rel, False),
    FileSortOrder.NAME_ALPHABETICAL: (lambda e: e.name, False),
    FileSortOrder.SIZE_ASCENDING: (lambda e: e.byte_size, False),
    FileSortOrder.SIZE_DESCENDING: (lambda e: e.byte_size, True),
    FileSortOrder.MODIFIED_DATE: (lambda e: e.mtime, True),
    FileSortOrder.EXTENSION: (lambda e: e.extension, False),
}


def sort_entries(entries: Sequence[FileEntry], order: FileSortOrder) -> list[FileEntry]:
    """Stable sort of the entries; MODIFIED_DATE puts the newest first."""
    key, reverse = _SORT_KEYS[order]
    return sorted(entries, key=key, reverse=reverse)


def group_entries(entries: Sequence[FileEntry], *, by_directory: bool) -> list[tuple[str, list[FileEntry]]]:
    """Group entries by parent directory in first-seen order, or return one anonymous group."""
    if not by_directory:
        return [("", list(entries))]
    groups: dict[str, list[FileEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.directory, []).append(entry)
    return list(groups.items())


def ordered_entries(entries: Sequence[FileEntry], options: ExportOptions) -> list[FileEntry]:
    """Entries in the order their sections are emitted (sorted, then grouped)."""
    grouped = group_entries(sort_entries(entries, options.sort_files), by_directory=options.group_by_directory)
    return [entry for _, group in grouped for entry in group]


def format_path(entry: FileEntry, options: ExportOptions, project_name: str | None = None) -> str:
    """Display form of an entry path according to `options.path_format`.

    Args:
        entry (FileEntry): the entry to display.
        options (ExportOptions): the run options.
        project_name (str | None): prefix of `PROJECT_RELATIVE` paths.

    Returns:
        str: the path to show in the rendered output.
    """
    match options.path_format:
        case PathFormat.ABSOLUTE:
            return entry.path
        case PathFormat.PROJECT_RELATIVE:
            return f"{project_name}/{entry.rel}" if project_name else entry.rel
        case PathFormat.CUSTOM:
            return f"{options.custom_path_prefix}{entry.rel}"
        case _:
            return entry.rel


def slugify(text: str) -> str:
    """Anchor used by table of contents links: lowercase, non-alphanumerics as `-`."""
    return _SLUG_PATTERN.sub("-", text.lower())


def fence_for(content: str) -> str:
    """Shortest backtick fence that cannot be closed by the content itself."""
    longest = max((len(m.group(0)) for m in _BACKTICK_RUN.finditer(content)), default=2)
    return "`" * (longest + 1)


def escape_xml(text: str) -> str:
    """Escape `& < > " '` and drop characters that XML 1.0 does not allow."""
    return html.escape(_XML_ILLEGAL.sub("", text), quote=True).replace("&#x27;", "&apos;")


def cdata(text: str) -> str:
    """Wrap text in CDATA, splitting any `]]>` across two sections."""
    cleaned = _XML_ILLEGAL.sub("", text).replace("]]>", "]]]]><![CDATA[>")
    return f"<![CDATA[{cleaned}]]>"


def escape_json(text: str) -> str:
    r"""Escape a string for a JSON literal: `\ " \n \r \t`, other controls as `\u00XX`."""
    return "".join(_JSON_ESCAPES.get(ch) or (f"\\u{ord(ch):04x}" if ord(ch) < 0x20 else ch) for ch in text)


def escape_html(text: str) -> str:
    return html.escape(text, quote=False).replace('"', "&quot;")


def _timestamp(metadata: ExportMetadata) -> str:
    return metadata.export_time.isoformat(timespec="seconds")


def build_metadata_header(metadata: ExportMetadata, options: ExportOptions) -> str:
    """Markdown statistics block shared by the Markdown renderers."""
    out = io.StringIO()
    out.write(f"# {EXPORT_TITLE}\n\n")
    out.write("## Export Statistics\n\n")
    out.write(f"- **Files Processed:** {metadata.files_processed}\n")
    out.write(f"- **Files Skipped:** {metadata.files_skipped}\n")
    out.write(f"- **Total Size:** {format_byte_size(metadata.total_bytes)}\n")
    out.write(f"- **Estimated Tokens:** {format_token_count(metadata.estimated_tokens)}\n")
    out.write(f"- **Context Window:** {context_window_fit(metadata.estimated_tokens)}\n")
    if options.include_timestamp:
        out.write(f"- **Export Time:** {_timestamp(metadata)}\n")
    if metadata.project_name:
        out.write(f"- **Project:** {metadata.project_name}\n")
    if options.include_git_info:
        if metadata.git_branch:
            out.write(f"- **Git Branch:** {metadata.git_branch}\n")
        if metadata.git_commit:
            out.write(f"- **Git Commit:** {metadata.git_commit}\n")
    if metadata.secrets_detected:
        out.write(f"- **Secrets Detected:** {metadata.secrets_detected}\n")
    out.write("\n---\n\n")
    return out.getvalue()


def _fenced(content: str, language: str) -> str:
    fence = fence_for(content)
    return f"{fence}{language}\n{content}\n{fence}\n\n"


def _markdown_sections(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    out = io.StringIO()
    grouped = group_entries(sort_entries(entries, options.sort_files), by_directory=options.group_by_directory)
    for directory, group in grouped:
        if options.group_by_directory and directory:
            out.write(f"\n## Directory: `{directory}`\n\n")
        for entry in group:
            out.write("---\n")
            out.write(f"### `{format_path(entry, options, metadata.project_name)}`\n\n")
            if options.include_statistics:
                out.write(
                    f"*Size: {format_byte_size(entry.byte_size)} | Lines: {entry.line_count} | "
                    f"Language: {entry.language}*\n\n"
                )
            out.write(_fenced(entry.content, entry.language))
    return out.getvalue()


@register_renderer(OutputFormat.MARKDOWN)
def render_markdown(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    """Build a Markdown document with one fenced block per file.

    Args:
        entries (Sequence[FileEntry]): the processed files.
        options (ExportOptions): the run options (sorting, grouping, paths...).
        metadata (ExportMetadata): the run statistics.

    Returns:
        str: the Markdown document.
    """
    header = build_metadata_header(metadata, options) if options.include_metadata else ""
    return header + _markdown_sections(entries, options, metadata)


@register_renderer(OutputFormat.MARKDOWN_WITH_TOC)
def render_markdown_with_toc(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    """Markdown with a numbered table of contents linking to each file section."""
    out = io.StringIO()
    if options.include_metadata:
        out.write(build_metadata_header(metadata, options))
    out.write("## Table of Contents\n\n")
    for index, entry in enumerate(ordered_entries(entries, options), start=1):
        shown = format_path(entry, options, metadata.project_name)
        out.write(f"{index}. [{shown}](#{slugify(shown)})\n")
    out.write("\n---\n\n")
    out.write(_markdown_sections(entries, options, metadata))
    return out.getvalue()


@register_renderer(OutputFormat.XML)
def render_xml(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    out = io.StringIO()
    out.write('<?xml version="1.0" encoding="UTF-8"?>\n')
    out.write("<export>\n")
    if options.include_metadata:
        out.write("  <metadata>\n")
        out.write(f"    <filesProcessed>{metadata.files_processed}</filesProcessed>\n")
        out.write(f"    <filesSkipped>{metadata.files_skipped}</filesSkipped>\n")
        out.write(f"    <totalBytes>{metadata.total_bytes}</totalBytes>\n")
        out.write(f"    <estimatedTokens>{metadata.estimated_tokens}</estimatedTokens>\n")
        if options.include_timestamp:
            out.write(f"    <exportTime>{_timestamp(metadata)}</exportTime>\n")
        if metadata.project_name:
            out.write(f"    <projectName>{escape_xml(metadata.project_name)}</projectName>\n")
        if options.include_git_info:
            if metadata.git_branch:
                out.write(f"    <gitBranch>{escape_xml(metadata.git_branch)}</gitBranch>\n")
            if metadata.git_commit:
                out.write(f"    <gitCommit>{escape_xml(metadata.git_commit)}</gitCommit>\n")
        out.write("  </metadata>\n")
    out.write("  <files>\n")
    for entry in ordered_entries(entries, options):
        out.write("    <file>\n")
        out.write(f"      <path>{escape_xml(format_path(entry, options, metadata.project_name))}</path>\n")
        out.write(f"      <language>{escape_xml(entry.language)}</language>\n")
        out.write(f"      <lineCount>{entry.line_count}</lineCount>\n")
        out.write(f"      <byteSize>{entry.byte_size}</byteSize>\n")
        out.write(f"      <content>{cdata(entry.content)}</content>\n")
        out.write("    </file>\n")
    out.write("  </files>\n")
    out.write("</export>\n")
    return out.getvalue()


@register_renderer(OutputFormat.JSON)
def render_json(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    """Hand-built JSON document with `metadata` and `files` keys."""
    out = io.StringIO()
    out.write("{\n")
    if options.include_metadata:
        fields = [
            f'"filesProcessed": {metadata.files_processed}',
            f'"filesSkipped": {metadata.files_skipped}',
            f'"totalBytes": {metadata.total_bytes}',
            f'"estimatedTokens": {metadata.estimated_tokens}',
        ]
        if options.include_timestamp:
            fields.append(f'"exportTime": "{_timestamp(metadata)}"')
        if metadata.project_name:
            fields.append(f'"projectName": "{escape_json(metadata.project_name)}"')
        if options.include_git_info:
            if metadata.git_branch:
                fields.append(f'"gitBranch": "{escape_json(metadata.git_branch)}"')
            if metadata.git_commit:
                fields.append(f'"gitCommit": "{escape_json(metadata.git_commit)}"')
        out.write('  "metadata": {\n    ')
        out.write(",\n    ".join(fields))
        out.write("\n  },\n")
    files = [
        "    {\n"
        f'      "path": "{escape_json(format_path(entry, options, metadata.project_name))}",\n'
        f'      "language": "{escape_json(entry.language)}",\n'
        f'      "lineCount": {entry.line_count},\n'
        f'      "byteSize": {entry.byte_size},\n'
        f'      "content": "{escape_json(entry.content)}"\n'
        "    }"
        for entry in ordered_entries(entries, options)
    ]
    out.write('  "files": [')
    if files:
        out.write("\n" + ",\n".join(files) + "\n  ")
    out.write("]\n}\n")
    return out.getvalue()


@register_renderer(OutputFormat.PLAIN_TEXT)
def render_plain_text(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    out = io.StringIO()
    heavy, light = "=" * RULE_WIDTH, "-" * RULE_WIDTH
    if options.include_metadata:
        out.write(f"{heavy}\nEXPORT METADATA\n{heavy}\n")
        out.write(f"Files Processed: {metadata.files_processed}\n")
        out.write(f"Files Skipped: {metadata.files_skipped}\n")
        out.write(f"Total Bytes: {format_byte_size(metadata.total_bytes)}\n")
        out.write(f"Estimated Tokens: {format_token_count(metadata.estimated_tokens)}\n")
        if options.include_timestamp:
            out.write(f"Export Time: {_timestamp(metadata)}\n")
        if metadata.project_name:
            out.write(f"Project: {metadata.project_name}\n")
        if options.include_git_info:
            if metadata.git_branch:
                out.write(f"Git Branch: {metadata.git_branch}\n")
            if metadata.git_commit:
                out.write(f"Git Commit: {metadata.git_commit}\n")
        out.write(f"{heavy}\n\n")
    for entry in ordered_entries(entries, options):
        out.write(f"{light}\nFile: {format_path(entry, options, metadata.project_name)}\n")
        out.write(
            f"Language: {entry.language} | Lines: {entry.line_count} | Size: {format_byte_size(entry.byte_size)}\n"
        )
        out.write(f"{light}\n{entry.content}\n\n")
    return out.getvalue()


_HTML_STYLE = """\
    body { font-family: monospace; margin: 20px; }
    .metadata { background: #f0f0f0; padding: 15px; margin-bottom: 20px; }
    .file-entry { margin-bottom: 30px; border: 1px solid #ccc; padding: 10px; }
    .file-header { background: #e0e0e0; padding: 10px; font-weight: bold; }
    pre { background: #fafafa; padding: 15px; overflow-x: auto; }
"""


@register_renderer(OutputFormat.HTML)
def render_html(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    """Self-contained HTML page with inline styles and one `<pre><code>` per file."""
    out = io.StringIO()
    out.write('<!DOCTYPE html>\n<html>\n<head>\n  <meta charset="UTF-8">\n')
    out.write(f"  <title>{EXPORT_TITLE}</title>\n  <style>\n{_HTML_STYLE}  </style>\n</head>\n<body>\n")
    if options.include_metadata:
        out.write('  <div class="metadata">\n    <h2>Export Metadata</h2>\n')
        out.write(f"    <p>Files Processed: {metadata.files_processed}</p>\n")
        out.write(f"    <p>Files Skipped: {metadata.files_skipped}</p>\n")
        out.write(f"    <p>Total Bytes: {format_byte_size(metadata.total_bytes)}</p>\n")
        out.write(f"    <p>Estimated Tokens: {format_token_count(metadata.estimated_tokens)}</p>\n")
        if options.include_timestamp:
            out.write(f"    <p>Export Time: {_timestamp(metadata)}</p>\n")
        if metadata.project_name:
            out.write(f"    <p>Project: {escape_html(metadata.project_name)}</p>\n")
        if options.include_git_info:
            if metadata.git_branch:
                out.write(f"    <p>Git Branch: {escape_html(metadata.git_branch)}</p>\n")
            if metadata.git_commit:
                out.write(f"    <p>Git Commit: {escape_html(metadata.git_commit)}</p>\n")
        out.write("  </div>\n")
    for entry in ordered_entries(entries, options):
        shown = escape_html(format_path(entry, options, metadata.project_name))
        out.write('  <div class="file-entry">\n')
        out.write(f'    <div class="file-header">{shown}</div>\n')
        out.write(
            f"    <p>Language: {escape_html(entry.language)} | Lines: {entry.line_count} | "
            f"Size: {format_byte_size(entry.byte_size)}</p>\n"
        )
        out.write(f"    <pre><code>{escape_html(entry.content)}</code></pre>\n")
        out.write("  </div>\n")
    out.write("</body>\n</html>\n")
    return out.getvalue()


@register_renderer(OutputFormat.CLAUDE_OPTIMIZED)
def render_claude(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    out = io.StringIO()
    out.write("# Project Export for Claude\n\n")
    if options.include_metadata:
        out.write("## Context Information\n\n")
        out.write(f"- Files: {metadata.files_processed}\n")
        out.write(f"- Estimated tokens: {format_token_count(metadata.estimated_tokens)}\n")
        out.write(f"- Context window fit: {context_window_fit(metadata.estimated_tokens)}\n")
        if metadata.project_name:
            out.write(f"- Project: {metadata.project_name}\n")
        if options.include_git_info and metadata.git_branch:
            out.write(f"- Branch: {metadata.git_branch}\n")
        out.write("\n")
    out.write("## Files\n\n")
    for entry in ordered_entries(entries, options):
        out.write(f'<file path="{escape_xml(format_path(entry, options, metadata.project_name))}">\n')
        out.write(_fenced(entry.content, entry.language).rstrip("\n"))
        out.write("\n</file>\n\n")
    return out.getvalue()


@register_renderer(OutputFormat.CHATGPT_OPTIMIZED)
def render_chatgpt(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    out = io.StringIO()
    out.write("# Code Context\n\n")
    if options.include_metadata:
        out.write("**Export Summary:**\n")
        out.write(f"- {metadata.files_processed} files, {format_token_count(metadata.estimated_tokens)}\n")
        if metadata.project_name:
            out.write(f"- Project: {metadata.project_name}\n")
        out.write("\n---\n\n")
    for entry in ordered_entries(entries, options):
        out.write(f"## \U0001f4c4 `{format_path(entry, options, metadata.project_name)}`\n\n")
        out.write(_fenced(entry.content, entry.language))
    return out.getvalue()


@register_renderer(OutputFormat.GEMINI_OPTIMIZED)
def render_gemini(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    out = io.StringIO()
    out.write("# Code Analysis Context\n\n")
    if options.include_metadata:
        out.write("## Metadata\n")
        out.write(
            f"Total files: {metadata.files_processed} | "
            f"Estimated tokens: {format_token_count(metadata.estimated_tokens)}\n\n"
        )
    for index, entry in enumerate(ordered_entries(entries, options), start=1):
        out.write(f"### File {index}: {format_path(entry, options, metadata.project_name)}\n")
        out.write(f"Language: {entry.language}, Lines: {entry.line_count}\n\n")
        out.write(_fenced(entry.content, entry.language))
    return out.getvalue()


def render(entries: Sequence[FileEntry], options: ExportOptions, metadata: ExportMetadata) -> str:
    """Render `entries` in the format selected by the options.

    Args:
        entries (Sequence[FileEntry]): the processed files.
        options (ExportOptions): the run options; `effective_format` picks the renderer.
        metadata (ExportMetadata): the run statistics.

    Returns:
        str: the rendered document.
    """
    return RENDERERS[options.effective_format](entries, options, metadata)
