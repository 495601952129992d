from __future__ import annotations

from datetime import datetime  # noqa: TC003
from enum import StrEnum, auto
from functools import wraps
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

if TYPE_CHECKING:
    from collections.abc import Callable


class OutputFormat(StrEnum):
    """Closed set of output encodings a render can produce."""

    MARKDOWN = auto()
    MARKDOWN_WITH_TOC = auto()
    XML = auto()
    JSON = auto()
    PLAIN_TEXT = auto()
    HTML = auto()
    CLAUDE_OPTIMIZED = auto()
    CHATGPT_OPTIMIZED = auto()
    GEMINI_OPTIMIZED = auto()

    @property
    def file_extension(self) -> str:
        """File extension (without dot) used when writing this format to disk."""
        return _FORMAT_EXTENSION[self]

    @property
    def display_name(self) -> str:
        """Human readable name of the format."""
        return _FORMAT_DISPLAY_NAME[self]


_FORMAT_EXTENSION: dict[OutputFormat, str] = {
    OutputFormat.MARKDOWN: "md",
    OutputFormat.MARKDOWN_WITH_TOC: "md",
    OutputFormat.XML: "xml",
    OutputFormat.JSON: "json",
    OutputFormat.PLAIN_TEXT: "txt",
    OutputFormat.HTML: "html",
    OutputFormat.CLAUDE_OPTIMIZED: "md",
    OutputFormat.CHATGPT_OPTIMIZED: "md",
    OutputFormat.GEMINI_OPTIMIZED: "md",
}

_FORMAT_DISPLAY_NAME: dict[OutputFormat, str] = {
    OutputFormat.MARKDOWN: "Markdown",
    OutputFormat.MARKDOWN_WITH_TOC: "Markdown with Table of Contents",
    OutputFormat.XML: "XML",
    OutputFormat.JSON: "JSON",
    OutputFormat.PLAIN_TEXT: "Plain Text",
    OutputFormat.HTML: "HTML",
    OutputFormat.CLAUDE_OPTIMIZED: "Claude-Optimized",
    OutputFormat.CHATGPT_OPTIMIZED: "ChatGPT-Optimized",
    OutputFormat.GEMINI_OPTIMIZED: "Gemini-Optimized",
}


class ChunkStrategy(StrEnum):
    """How the file set is partitioned when the token budget is exceeded."""

    BY_SIZE = auto()
    BY_FILE_COUNT = auto()
    BY_DIRECTORY = auto()
    BY_FILE_TYPE = auto()
    SMART = auto()


class PathFormat(StrEnum):
    """How file paths are displayed in rendered output."""

    RELATIVE = auto()
    ABSOLUTE = auto()
    PROJECT_RELATIVE = auto()
    CUSTOM = auto()


class FileSortOrder(StrEnum):
    """Ordering of file sections inside a rendered document."""

    PATH_ALPHABETICAL = auto()
    NAME_ALPHABETICAL = auto()
    SIZE_ASCENDING = auto()
    SIZE_DESCENDING = auto()
    MODIFIED_DATE = auto()
    EXTENSION = auto()


EXT2LANG: dict[str, str] = {
    ".bash": "bash",
    ".c": "c",
    ".cc": "cpp",
    ".cfg": "ini",
    ".conf": "ini",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".css": "css",
    ".cxx": "cpp",
    ".go": "go",
    ".gradle": "groovy",
    ".groovy": "groovy",
    ".h": "cpp",
    ".hpp": "cpp",
    ".htm": "html",
    ".html": "html",
    ".ini": "ini",
    ".java": "java",
    ".js": "javascript",
    ".json": "json",
    ".jsx": "javascript",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".markdown": "markdown",
    ".md": "markdown",
    ".mjs": "javascript",
    ".php": "php",
    ".pl": "perl",
    ".ps1": "powershell",
    ".py": "python",
    ".pyi": "python",
    ".r": "r",
    ".rb": "ruby",
    ".rs": "rust",
    ".sass": "scss",
    ".scala": "scala",
    ".scss": "scss",
    ".sh": "bash",
    ".sql": "sql",
    ".swift": "swift",
    ".tex": "latex",
    ".toml": "toml",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".txt": "text",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".zsh": "bash",
}

NAME2LANG: dict[str, str] = {
    "dockerfile": "dockerfile",
    "makefile": "makefile",
    "gemfile": "ruby",
    "rakefile": "ruby",
}

# Languages whose comments are `//` and `/* ... */`.
C_FAMILY_LANGUAGES = frozenset({
    "c",
    "cpp",
    "csharp",
    "go",
    "groovy",
    "java",
    "javascript",
    "kotlin",
    "php",
    "rust",
    "scala",
    "scss",
    "swift",
    "typescript",
})

# Languages whose comments start with `#`.
SCRIPT_FAMILY_LANGUAGES = frozenset({
    "bash",
    "dockerfile",
    "makefile",
    "perl",
    "powershell",
    "python",
    "r",
    "ruby",
    "toml",
    "yaml",
})

BINARY_EXTENSIONS = frozenset({
    ".7z",
    ".a",
    ".bin",
    ".bmp",
    ".class",
    ".dll",
    ".dylib",
    ".exe",
    ".gif",
    ".gz",
    ".ico",
    ".jar",
    ".jpeg",
    ".jpg",
    ".mp3",
    ".mp4",
    ".o",
    ".otf",
    ".pdf",
    ".png",
    ".pyc",
    ".so",
    ".tar",
    ".tiff",
    ".ttf",
    ".webp",
    ".woff",
    ".woff2",
    ".zip",
})

VCS_DIRECTORIES = frozenset({".git", ".hg", ".svn"})

NO_EXTENSION = "no-extension"


def guess_language(name: str) -> str:
    """Heuristic guess of the code fence language for a file name.

    Special file names (Dockerfile, Makefile...) win over the extension map.

    Args:
        name (str): the file name or path to guess the language for.

    Returns:
        str: the fence language, or "text" when unknown.
    """
    pure = PurePosixPath(name.replace("\\", "/"))
    special = NAME2LANG.get(pure.name.lower())
    if special:
        return special
    return EXT2LANG.get(pure.suffix.lower(), "text")


class FileEntry(BaseModel):
    """A successfully processed file, ready to be chunked and rendered.

    Attributes:
        path: Absolute path reported by the file handle.
        rel: POSIX path relative to the project root.
        language: Code fence language.
        content: Final content after masking and transformations.
        line_count: Number of lines of the final content.
        byte_size: Size in bytes reported by the file handle.
        mtime: POSIX modification time (seconds).
        tokens: Estimated token count of `content`.
        secret_count: Number of secret findings in the raw content.
        pii_count: Number of PII findings in the raw content.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Absolute file path")
    rel: str = Field(..., description="File path relative to the project root")
    language: str = Field("text", description="Fenced code block language name")
    content: str = Field("", description="Transformed file content")
    line_count: int = Field(0, ge=0, description="Line count of the content")
    byte_size: int = Field(0, ge=0, description="File size in bytes")
    mtime: float = Field(0.0, description="POSIX modification time (seconds)")
    tokens: int = Field(0, ge=0, description="Estimated token count of the content")
    secret_count: int = Field(0, ge=0, description="Secrets detected in the raw content")
    pii_count: int = Field(0, ge=0, description="PII occurrences detected in the raw content")

    @computed_field
    @property
    def name(self) -> str:
        """Base name of the file."""
        return PurePosixPath(self.rel).name

    @computed_field
    @property
    def extension(self) -> str:
        """Lowercase extension without the dot, or an empty string."""
        return PurePosixPath(self.rel).suffix.lower().lstrip(".")

    @computed_field
    @property
    def directory(self) -> str:
        """Parent directory of `rel`, empty for files at the project root."""
        parent = PurePosixPath(self.rel).parent.as_posix()
        return "" if parent == "." else parent


class Chunk(BaseModel):
    """An ordered, token-budgeted group of file entries rendered as one artifact."""

    model_config = ConfigDict(frozen=True)

    files: tuple[FileEntry, ...] = Field(default_factory=tuple)
    estimated_tokens: int = Field(0, ge=0)
    estimated_bytes: int = Field(0, ge=0)
    index: int = Field(0, ge=0)
    total: int = Field(0, ge=0)


class ExportMetadata(BaseModel):
    """Aggregate information about one export run."""

    model_config = ConfigDict(frozen=True)

    files_processed: int = Field(0, ge=0)
    files_skipped: int = Field(0, ge=0)
    total_bytes: int = Field(0, ge=0)
    estimated_tokens: int = Field(0, ge=0)
    export_time: datetime
    project_name: str | None = None
    git_branch: str | None = None
    git_commit: str | None = None
    chunk_count: int = Field(1, ge=1)
    secrets_detected: int = Field(0, ge=0)
    pii_detected: int = Field(0, ge=0)


class FormattedOutput(BaseModel):
    """Terminal artifact of a run, handed over to the caller's sink."""

    model_config = ConfigDict(frozen=True)

    content: str
    metadata: ExportMetadata
    chunks: tuple[str, ...] = Field(default_factory=tuple)


def make_registry_decorator(
    registry: dict[Any, Callable[..., Any]],
) -> Callable[[Any], Callable[[Callable[..., Any]], Callable[..., Any]]]:
    """Build a decorator factory registering functions under one or more keys.

    This is how chunk strategies and renderers are dispatched: each variant is a
    plain function registered under its enum member.

    Args:
        registry (dict): the mapping that receives the registered functions.

    Returns:
        Callable: a `register(key | [keys])` decorator factory.
    """

    def register(key: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:  # noqa: ANN401
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            @wraps(func)
            def wrapper(*args: Any, **kwargs: Any) -> Any:  # noqa: ANN401
                return func(*args, **kwargs)

            if isinstance(key, list):
                for k in key:
                    registry[k] = wrapper
            else:
                registry[key] = wrapper
            return wrapper

        return decorator

    return register
