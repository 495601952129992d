"""Named option presets and YAML options files.

Options are merged in three layers, later ones winning: a built-in preset, an
options file, then values given explicitly on the command line.

An options file is either a plain mapping of `ExportOptions` fields::

    output_format: json
    include_globs: ["**/*.py"]

or names a preset and refines it::

    preset: code-review
    options:
      include_line_numbers: false
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from context_bundle.config import OutputFormat
from context_bundle.exceptions import InvalidPresetError, PresetNotFoundError
from context_bundle.logging import logger
from context_bundle.settings import ExportOptions

if TYPE_CHECKING:
    from pathlib import Path

_BUILD_OUTPUTS = ["**/build/**", "**/dist/**", "**/node_modules/**", "**/target/**"]

_CODE_GLOBS = [
    "**/*.py",
    "**/*.kt",
    "**/*.java",
    "**/*.js",
    "**/*.ts",
    "**/*.tsx",
    "**/*.jsx",
    "**/*.go",
    "**/*.rs",
]

BUILTIN_PRESETS: dict[str, dict[str, Any]] = {
    "ai-llm": {
        "include_globs": [*_CODE_GLOBS, "**/*.md", "**/README*", "**/pyproject.toml", "**/package.json"],
        "exclude_globs": [*_BUILD_OUTPUTS, "**/.git/**", "**/*.min.js", "**/*.bundle.js", "**/*.lock"],
        "output_format": OutputFormat.CLAUDE_OPTIMIZED,
        "max_file_size_kb": 512,
        "strip_whitespace": True,
        "collapse_blank_lines": True,
        "enable_chunking": True,
    },
    "documentation": {
        "include_globs": ["**/*.md", "**/*.txt", "**/*.rst", "**/*.adoc", "**/README*", "**/CHANGELOG*", "docs/**"],
        "exclude_globs": ["**/node_modules/**", "**/build/**", "**/dist/**"],
        "output_format": OutputFormat.MARKDOWN_WITH_TOC,
        "max_file_size_kb": 4096,
        "extract_documentation": True,
    },
    "code-review": {
        "include_globs": [*_CODE_GLOBS, "**/*.c", "**/*.cpp", "**/*.h", "**/*.cs"],
        "exclude_globs": [
            *_BUILD_OUTPUTS,
            "**/test_*.py",
            "**/*_test.py",
            "**/*Test.java",
            "**/*.test.ts",
            "**/*.spec.ts",
        ],
        "output_format": OutputFormat.MARKDOWN,
        "include_line_numbers": True,
        "extract_todos": True,
        "include_git_info": True,
    },
    "minimal": {
        "output_format": OutputFormat.PLAIN_TEXT,
        "include_metadata": False,
        "include_statistics": False,
        "include_timestamp": False,
        "strip_comments": True,
        "strip_whitespace": True,
        "collapse_blank_lines": True,
    },
}


class OptionsFile(BaseModel):
    """Parsed content of a YAML options file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    preset: str | None = Field(default=None, description="Preset refined by this file.")
    options: dict[str, Any] = Field(default_factory=dict, description="ExportOptions fields.")


def get_preset(name: str) -> dict[str, Any]:
    """Return a copy of a built-in preset.

    Raises:
        PresetNotFoundError: if `name` is not a built-in preset.
    """
    try:
        return dict(BUILTIN_PRESETS[name])
    except KeyError as e:
        raise PresetNotFoundError(name=name, message=f"Unknown preset {name!r}.") from e


def load_options(path: Path) -> OptionsFile:
    """Read a YAML options file.

    Args:
        path (Path): the file to read.

    Raises:
        InvalidPresetError: if the file cannot be read, is not valid YAML, or
            does not contain a mapping.

    Returns:
        OptionsFile: the preset named by the file, if any, and its options.
    """
    source = str(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise InvalidPresetError(source=source, reason=str(e)) from e
    except yaml.YAMLError as e:
        raise InvalidPresetError(source=source, reason=f"invalid YAML: {e}") from e
    if not isinstance(data, Mapping):
        raise InvalidPresetError(source=source, reason="top-level value must be a mapping")
    if "options" in data or "preset" in data:
        options = data.get("options") or {}
        if not isinstance(options, Mapping) or set(data) - {"preset", "options"}:
            raise InvalidPresetError(source=source, reason="expected only 'preset' and an 'options' mapping")
        return OptionsFile(preset=data.get("preset"), options=dict(options))
    return OptionsFile(options=dict(data))


def resolve_options(
    preset: str | None = None,
    config: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ExportOptions:
    """Merge preset, options file and explicit overrides into validated options.

    An explicit `preset` wins over the preset named in the options file.

    Raises:
        PresetNotFoundError: if the selected preset does not exist.
        InvalidPresetError: if the options file is invalid.
        pydantic.ValidationError: if the merged values are not valid options.

    Returns:
        ExportOptions: the validated options.
    """
    from_file = load_options(config) if config is not None else OptionsFile()
    preset_name = preset or from_file.preset
    merged: dict[str, Any] = get_preset(preset_name) if preset_name else {}
    merged.update(from_file.options)
    merged.update(overrides or {})
    logger.debug("options.resolved", preset=preset_name, config=str(config or ""), overrides=sorted(overrides or {}))
    return ExportOptions.model_validate(merged)
