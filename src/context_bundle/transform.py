"""Content rewrites applied to each file after it has been read.

Each step is a pure `str -> str` function. `transform` composes the enabled
ones in a fixed order: masking, import removal, comment stripping, whitespace
normalization, TODO extraction, documentation extraction, line numbering. Line
numbers come last so every other step works on un-numbered text.
"""

from __future__ import annotations

import ast
import io
import re
import tokenize
from itertools import dropwhile
from typing import TYPE_CHECKING

from context_bundle.config import C_FAMILY_LANGUAGES, SCRIPT_FAMILY_LANGUAGES
from context_bundle.secret_scanner import mask_secrets

if TYPE_CHECKING:
    from context_bundle.settings import ExportOptions

PYTHON_IMPORT_PREFIXES = ("import ", "from ")
IMPORT_PREFIXES = ("import ", "#include ")
TODO_PATTERN = re.compile(r"\b(TODO|FIXME|XXX|HACK|NOTE)\b:?\s*(.*)")
DOC_COMMENT_PATTERN = re.compile(r"/\*\*.*?\*/", re.DOTALL)
_QUOTES = "\"'`"


def _drop_emptied_lines(original: str, stripped: str) -> str:
    """Keep blank lines that were already blank; drop the ones emptied by stripping."""
    out: list[str] = []
    for before, after in zip(original.split("\n"), stripped.split("\n"), strict=False):
        if after.strip() or not before.strip():
            out.append(after.rstrip())
    return "\n".join(out)


def strip_c_comments(text: str) -> str:
    """Remove `//` and `/* ... */` comments outside string literals.

    Block comments are replaced by as many newlines as they spanned, so line
    structure is preserved until emptied lines are dropped.

    Args:
        text (str): C-family source code.

    Returns:
        str: the source without comments.
    """
    out: list[str] = []
    i, n = 0, len(text)
    quote = ""
    while i < n:
        ch = text[i]
        if quote:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == quote or (ch == "\n" and quote != "`"):
                quote = ""
            i += 1
            continue
        if ch in _QUOTES:
            quote = ch
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            stop = n if end == -1 else end
            out.append("\n" * text.count("\n", i, stop))
            i = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1
    return _drop_emptied_lines(text, "".join(out))


def strip_hash_comments(text: str) -> str:
    """Remove full-line `#` comments, keeping a shebang on the first line."""
    out: list[str] = []
    for lineno, line in enumerate(text.split("\n"), start=1):
        if lineno == 1 and line.startswith("#!"):
            out.append(line)
        elif not line.lstrip().startswith("#"):
            out.append(line)
    return "\n".join(out)


def strip_python_comments(text: str) -> str:
    """Remove Python comments, including trailing ones, using the tokenizer.

    Falls back to `strip_hash_comments` when the source cannot be tokenized.
    """
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(text).readline))
    except (tokenize.TokenError, SyntaxError):
        return strip_hash_comments(text)
    cuts = {tok.start[0]: tok.start[1] for tok in tokens if tok.type == tokenize.COMMENT}
    lines = text.split("\n")
    for lineno, col in cuts.items():
        line = lines[lineno - 1]
        if lineno == 1 and line.startswith("#!"):
            continue
        lines[lineno - 1] = line[:col]
    return _drop_emptied_lines(text, "\n".join(lines))


def remove_imports(text: str, language: str) -> str:
    """Drop import lines: `import`/`from` for Python, `import`/`#include` otherwise."""
    prefixes = PYTHON_IMPORT_PREFIXES if language == "python" else IMPORT_PREFIXES
    return "\n".join(line for line in text.split("\n") if not line.lstrip().startswith(prefixes))


def strip_comments(text: str, language: str) -> str:
    """Language-aware comment stripping; unknown languages are returned unchanged."""
    if language == "python":
        return strip_python_comments(text)
    if language in C_FAMILY_LANGUAGES:
        return strip_c_comments(text)
    if language in SCRIPT_FAMILY_LANGUAGES:
        return strip_hash_comments(text)
    return text


def normalize_whitespace(text: str, *, collapse_blank_lines: bool = False) -> str:
    """Trim trailing spaces, leading/trailing blank lines and optionally blank runs.

    Args:
        text (str): the text to normalize.
        collapse_blank_lines (bool): collapse consecutive blank lines into one.

    Returns:
        str: the normalized text.
    """
    lines = [ln.replace("\u200b", "").rstrip() for ln in text.splitlines()]
    lines = list(dropwhile(lambda ln: not ln, lines))
    while lines and not lines[-1]:
        lines.pop()
    if collapse_blank_lines:
        lines = [ln for i, ln in enumerate(lines) if ln or (i > 0 and lines[i - 1])]
    return "\n".join(lines)


def extract_todos(text: str) -> str:
    """Prepend a summary of TODO/FIXME/XXX/HACK/NOTE markers with their line numbers."""
    items: list[str] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        m = TODO_PATTERN.search(line)
        if m:
            items.append(f"  line {lineno}: {m.group(1)} {m.group(2).strip()}".rstrip())
    if not items:
        return text
    return "\n".join(["TODO summary:", *items]) + "\n\n" + text


def python_docstrings(source: str) -> list[str]:
    """Module, class and function docstrings of a Python source, in tree order."""
    try:
        tree = ast.parse(source)
    except (SyntaxError, ValueError):
        return []
    docs: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, (ast.Module, ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
            doc = ast.get_docstring(node)
            if doc:
                docs.append(f"{getattr(node, 'name', 'module')}: {doc}")
    return docs


def extract_documentation(text: str, language: str) -> str:
    """Prepend the `/** ... */` documentation comments (and Python docstrings)."""
    docs = [m.group(0) for m in DOC_COMMENT_PATTERN.finditer(text)]
    if language == "python":
        docs.extend(python_docstrings(text))
    if not docs:
        return text
    return "Documentation:\n" + "\n\n".join(docs) + "\n\n" + text


def add_line_numbers(text: str) -> str:
    """Prefix each line with its 1-based number, right-aligned on 4 columns."""
    return "\n".join(f"{i:>4}: {line}" for i, line in enumerate(text.splitlines(), start=1))


def transform(raw: str, options: ExportOptions, language: str) -> str:
    """Apply the enabled rewrites to `raw` in their fixed order.

    Args:
        raw (str): decoded file content.
        options (ExportOptions): the run options selecting the steps.
        language (str): fence language of the file, drives comment syntax.

    Returns:
        str: the transformed content.
    """
    content = raw
    if options.detect_secrets and options.mask_secrets:
        content = mask_secrets(content)
    if options.remove_imports:
        content = remove_imports(content, language)
    if options.strip_comments:
        content = strip_comments(content, language)
    if options.strip_whitespace:
        content = normalize_whitespace(content, collapse_blank_lines=options.collapse_blank_lines)
    if options.extract_todos:
        content = extract_todos(content)
    if options.extract_documentation:
        content = extract_documentation(content, language)
    if options.include_line_numbers:
        content = add_line_numbers(content)
    return content
