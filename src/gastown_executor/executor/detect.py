"""Probing which execution targets can run Claude Code."""

import asyncio
from contextlib import suppress
from pathlib import Path
from typing import Optional

from ..config import Settings, get_settings
from .cli import bundled_binary_path, find_claude
from .logging import get_logger
from .models import DebugInfo, ModeStatus, TargetStatus
from .targets import WSL_EXE
from .utils import strip_ansi

VERSION_TIMEOUT = 10.0
WSL_QUERY_TIMEOUT = 5.0


async def _probe(*cmd: str, timeout: float, encoding: str = "utf-8") -> Optional[str]:
    """Run a short command; its stdout on exit code 0, None on any failure."""
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        get_logger().debug(f"Probe {cmd[0]} failed to start: {e}")
        return None

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        get_logger().debug(f"Probe {' '.join(cmd)} timed out")
        return None

    if process.returncode != 0:
        return None
    return stdout.decode(encoding, errors="replace")


def parse_distro_list(output: str) -> list[str]:
    """Distribution names from `wsl.exe -l -q` output.

    wsl.exe writes UTF-16; stray NUL bytes survive when it is decoded otherwise.
    """
    return [line.strip() for line in output.replace("\0", "").splitlines() if line.strip()]


async def detect_native() -> TargetStatus:
    claude_path = find_claude()
    if not claude_path:
        return TargetStatus()

    version = await _probe(claude_path, "--version", timeout=VERSION_TIMEOUT)
    if version is None:
        get_logger().info(f"Claude found at {claude_path} but --version failed")
        return TargetStatus()
    return TargetStatus(available=True, cli_path=claude_path, version=strip_ansi(version).strip())


async def list_wsl_distros() -> list[str]:
    output = await _probe(WSL_EXE, "-l", "-q", timeout=WSL_QUERY_TIMEOUT, encoding="utf-16-le")
    if output is None:
        return []
    return parse_distro_list(output)


async def detect_wsl() -> TargetStatus:
    """First WSL distribution with Claude Code on its PATH."""
    for distro in await list_wsl_distros():
        which = await _probe(WSL_EXE, "-d", distro, "-e", "which", "claude", timeout=WSL_QUERY_TIMEOUT)
        if not which or not which.strip():
            continue
        version = await _probe(WSL_EXE, "-d", distro, "-e", "claude", "--version", timeout=VERSION_TIMEOUT)
        if version is None:
            continue
        return TargetStatus(
            available=True,
            cli_path=which.strip(),
            version=strip_ansi(version).strip(),
            distro=distro,
        )
    return TargetStatus()


async def detect_modes(current: Optional[str] = None) -> ModeStatus:
    """Probe both targets concurrently.

    Args:
        current: Mode to report as current; the configured one when None.
    """
    if current is None:
        current = get_settings().execution_mode
    native, wsl = await asyncio.gather(detect_native(), detect_wsl())
    get_logger().info(f"Mode detection: native={native.available} wsl={wsl.available}")
    return ModeStatus(current=current, native=native, wsl=wsl)


def get_debug_info(settings: Optional[Settings] = None) -> DebugInfo:
    """Expected binary and workspace locations, and whether they exist."""
    settings = settings or get_settings()
    gt_path = bundled_binary_path(settings.bin_dir, "gt")
    bd_path = bundled_binary_path(settings.bin_dir, "bd")
    gastown_path = Path(settings.gastown_path)
    return DebugInfo(
        bin_dir=str(settings.bin_dir),
        gt_path=str(gt_path),
        gt_exists=gt_path.exists(),
        bd_path=str(bd_path),
        bd_exists=bd_path.exists(),
        claude_path=settings.native.claude_path or find_claude() or "",
        gastown_path=str(gastown_path),
        gastown_exists=gastown_path.exists(),
        execution_mode=settings.execution_mode,
    )
