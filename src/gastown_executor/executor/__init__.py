"""Executor package for running Claude Code, gt and bd child processes."""

from .cli import check_claude_available, find_claude
from .events import EventBus, get_event_bus
from .models import ExecutionResult, SessionOptions, StreamEvent
from .registry import cancel_all_executions, cancel_execution, get_running_executions
from .runner import run_bounded, run_streaming

__all__ = [
    "run_streaming",
    "run_bounded",
    "check_claude_available",
    "find_claude",
    "cancel_execution",
    "cancel_all_executions",
    "get_running_executions",
    "EventBus",
    "get_event_bus",
    "SessionOptions",
    "StreamEvent",
    "ExecutionResult",
]
