"""Approximate LLM token accounting.

`estimate_tokens` is a cheap heuristic, not a BPE tokenizer: it weighs
characters, words and lines the way code tends to tokenize and is only meant
for budgeting and for choosing chunk boundaries.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

CHARS_PER_TOKEN = 4.0
WORD_WEIGHT = 0.3
LINE_WEIGHT = 0.2

CONTEXT_WINDOWS: tuple[tuple[int, str], ...] = (
    (8_000, "GPT-3.5 (8K)"),
    (16_000, "GPT-3.5-16K"),
    (32_000, "GPT-4 (32K)"),
    (100_000, "Claude 2/3 (100K)"),
    (200_000, "Claude 3 Opus (200K)"),
)
EXCEEDS_ALL_WINDOWS = "Exceeds most context windows"


def estimate_tokens(text: str) -> int:
    """Estimate the token count of `text`.

    `chars / 4 + 0.3 * words + 0.2 * lines`, truncated to an int. Every term
    grows with appended content, so the estimate never decreases as text is added.

    Args:
        text (str): the text to estimate.

    Returns:
        int: the approximate token count.
    """
    if not text:
        return 0
    words = len(text.split())
    lines = len(text.splitlines())
    return int(len(text) / CHARS_PER_TOKEN + words * WORD_WEIGHT + lines * LINE_WEIGHT)


def estimate_tokens_for_files(contents: Mapping[str, str]) -> dict[str, int]:
    """Estimate each content of a `{path: content}` mapping."""
    return {path: estimate_tokens(text) for path, text in contents.items()}


def context_window_fit(tokens: int) -> str:
    """Name of the smallest common context window that holds `tokens`."""
    for limit, label in CONTEXT_WINDOWS:
        if tokens <= limit:
            return label
    return EXCEEDS_ALL_WINDOWS


def format_token_count(tokens: int) -> str:
    if tokens < 1_000:
        return f"{tokens} tokens"
    if tokens < 1_000_000:
        return f"{tokens // 1_000}K tokens"
    return f"{tokens // 1_000_000}M tokens"


def format_byte_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024**2:
        return f"{size // 1024} KB"
    if size < 1024**3:
        return f"{size // 1024**2} MB"
    return f"{size // 1024**3} GB"
