from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ContextBundleError(Exception):
    """Base exception for errors in the context_bundle package."""

    def __str__(self) -> str:
        return getattr(self, "message", "") or self.__class__.__name__


@dataclass(frozen=True)
class ExportCancelledError(ContextBundleError):
    """Raised by a progress sink when the caller cancelled the export."""

    message: str = "The export was cancelled."


@dataclass(frozen=True)
class InvalidChunkSizeError(ContextBundleError):
    """Raised when a chunk planner receives a non-positive size or budget."""

    size: int
    parameter: str = "max_tokens"
    message: str = "Chunk size and token budget must be positive."


@dataclass(frozen=True)
class FileReadError(ContextBundleError):
    """Raised when a file handle cannot provide its bytes."""

    path: Path
    reason: str = ""
    message: str = "The file could not be read."


@dataclass(frozen=True)
class GitCommandError(ContextBundleError):
    """Raised when a git command fails."""

    command: str
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True)
class PresetNotFoundError(ContextBundleError):
    """Raised when an unknown preset name is requested."""

    name: str
    message: str = "No preset with this name exists."


@dataclass(frozen=True)
class InvalidPresetError(ContextBundleError):
    """Raised when a preset or options file does not have the expected shape."""

    source: str
    reason: str
    message: str = "The preset definition is invalid."
