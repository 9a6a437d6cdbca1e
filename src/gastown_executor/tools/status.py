"""Status tools: mode detection, debug info and switching targets."""

from dataclasses import asdict

from ..config import get_settings
from ..executor.detect import detect_modes as detect_modes_impl
from ..executor.detect import get_debug_info as get_debug_info_impl
from ..executor.logging import get_logger
from ..executor.targets import switch_executor

VALID_MODES = ("native", "wsl")


async def detect_modes() -> dict:
    """Check which execution targets can run Claude Code.

    Returns:
        - current: The configured execution mode
        - native: available, cli_path, version
        - wsl: available, cli_path, version, distro
    """
    status = await detect_modes_impl(get_settings().execution_mode)
    return status.to_dict()


def get_debug_info() -> dict:
    """Where the executor expects gt, bd, Claude Code and the workspace to be."""
    return asdict(get_debug_info_impl(get_settings()))


async def switch_mode(mode: str) -> dict:
    """Switch the execution target. Running executions are cancelled.

    Args:
        mode: 'native' or 'wsl'.
    """
    if mode not in VALID_MODES:
        return {
            "success": False,
            "mode": get_settings().execution_mode,
            "error": f"Unknown mode: {mode}. Expected one of: {', '.join(VALID_MODES)}",
        }

    get_logger().info(f"Switching execution mode to {mode}")
    await switch_executor(mode)
    return {"success": True, "mode": mode, "error": None}
