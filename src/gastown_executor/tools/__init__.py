"""Tools package for gastown-executor."""

from .processes import cancel_execution, list_running_executions
from .run import run_bd, run_claude, run_gt
from .status import detect_modes, get_debug_info, switch_mode

__all__ = [
    "run_claude",
    "run_gt",
    "run_bd",
    "cancel_execution",
    "list_running_executions",
    "detect_modes",
    "get_debug_info",
    "switch_mode",
]
