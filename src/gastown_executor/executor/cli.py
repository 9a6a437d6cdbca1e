"""CLI utilities for finding the Claude Code and bundled executables."""

import os
import shutil
import sys
from pathlib import Path
from typing import Optional

# Windows installs Claude Code through npm as a .cmd shim.
CLAUDE_NAMES = ("claude.cmd", "claude") if sys.platform == "win32" else ("claude",)


def find_claude() -> Optional[str]:
    """Find the Claude Code executable on the native target.

    Checks the following locations in order:
    1. PATH via shutil.which (claude.cmd first on Windows)
    2. ~/.local/bin/claude
    3. ~/.claude/local/claude
    4. /usr/local/bin/claude

    Returns:
        Path to claude or None if not found.
    """
    for name in CLAUDE_NAMES:
        path = shutil.which(name)
        if path:
            return path

    # Check common installation locations that might not be in PATH yet
    common_paths = [
        os.path.expanduser("~/.local/bin/claude"),
        os.path.expanduser("~/.claude/local/claude"),
        "/usr/local/bin/claude",
    ]

    for candidate in common_paths:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate

    return None


def check_claude_available() -> tuple[bool, str]:
    """Check if Claude Code is available on the native target.

    Returns:
        Tuple of (is_available, message).
    """
    path = find_claude()
    if path:
        return True, f"claude found at: {path}"
    else:
        return False, (
            "Claude Code CLI not found in PATH. "
            "Install it with: npm install -g @anthropic-ai/claude-code"
        )


def bundled_binary_path(bin_dir: Path, name: str) -> Path:
    """Expected location of a bundled tool (gt, bd) in bin_dir."""
    suffix = ".exe" if sys.platform == "win32" else ""
    return bin_dir / f"{name}{suffix}"
