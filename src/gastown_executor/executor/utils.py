"""Utility functions for executor module."""

import os
import re
from pathlib import Path
from typing import Any, Optional, Union

from .logging import get_logger
from .models import TokenUsage


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from text.

    This removes color codes, cursor movement, and other terminal control sequences.

    Args:
        text: Text potentially containing ANSI escape codes.

    Returns:
        Clean text without ANSI codes.
    """
    # Pattern matches:
    # - \x1b (ESC) followed by [ and any parameters ending with a letter
    # - \x1b (ESC) followed by other escape sequences
    ansi_pattern = re.compile(r"\x1b\[[0-9;]*[A-Za-z]|\x1b[^[[]?")
    return ansi_pattern.sub("", text)


def truncate(text: str, limit: int, suffix: str = "") -> str:
    """Cut text to limit characters, appending suffix only when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + suffix


def ensure_dir(dir_path: Union[str, Path]) -> None:
    """Create a directory (and parents) if missing; failures are logged, not raised."""
    try:
        Path(dir_path).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        get_logger().error(f"Failed to create directory {dir_path}: {e}")


def get_valid_cwd(preferred: Optional[Union[str, Path]], fallback: Union[str, Path]) -> str:
    """Return preferred if it is an existing directory, else fallback.

    The fallback itself falls back to the user's home directory when it
    does not exist either.
    """
    if preferred and os.path.isdir(preferred):
        return str(preferred)
    if fallback and os.path.isdir(fallback):
        return str(fallback)
    return str(Path.home())


def _first_int(*values: Any) -> Optional[int]:
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value:
            return int(value)
    return None


def parse_token_usage(record: dict) -> TokenUsage:
    """Parse token usage from a terminal result record.

    Reads the ``usage`` block first, then the first model in ``modelUsage``.
    """
    usage = record.get("usage") or {}
    model_usage = record.get("modelUsage") or {}
    model_data: dict = {}
    if isinstance(model_usage, dict) and model_usage:
        first = next(iter(model_usage.values()))
        if isinstance(first, dict):
            model_data = first
    if not isinstance(usage, dict):
        usage = {}

    return TokenUsage(
        input_tokens=_first_int(usage.get("input_tokens"), model_data.get("inputTokens")) or 0,
        output_tokens=_first_int(usage.get("output_tokens"), model_data.get("outputTokens")) or 0,
        cache_read_input_tokens=_first_int(
            usage.get("cache_read_input_tokens"), model_data.get("cacheReadInputTokens")
        ) or 0,
        cache_creation_input_tokens=_first_int(
            usage.get("cache_creation_input_tokens"), model_data.get("cacheCreationInputTokens")
        ) or 0,
        context_window=_first_int(model_data.get("contextWindow")) or 200000,
        max_output_tokens=_first_int(model_data.get("maxOutputTokens")) or 64000,
    )
