"""MCP Server for running Gas Town agent CLIs.

This server exposes the executor as tools: Claude Code runs with idle
detection and cancellation, gt/bd commands, and switching between the
native and WSL execution targets.
"""

from typing import Annotated, Optional

from mcp.server.fastmcp import FastMCP

from .executor.events import EventLogger, get_event_bus
from .executor.logging import get_logger
from .executor.registry import cancel_all_executions
from .tools import (
    cancel_execution as cancel_execution_impl,
    detect_modes as detect_modes_impl,
    get_debug_info as get_debug_info_impl,
    list_running_executions as list_running_executions_impl,
    run_bd as run_bd_impl,
    run_claude as run_claude_impl,
    run_gt as run_gt_impl,
    switch_mode as switch_mode_impl,
)

# Initialize the MCP server
mcp = FastMCP("Gas Town Executor")


@mcp.tool()
async def run_claude(
    message: Annotated[
        str,
        "The prompt to send to Claude Code",
    ],
    system_prompt: Annotated[
        Optional[str],
        "System prompt for the run (optional)",
    ] = None,
    project_path: Annotated[
        Optional[str],
        "Directory the agent works in. Windows and WSL paths are both accepted.",
    ] = None,
    image_paths: Annotated[
        Optional[list[str]],
        "Image files to attach to the message (optional)",
    ] = None,
    execution_id: Annotated[
        Optional[str],
        "Id to track the run under, for cancel_execution. Generated when not provided.",
    ] = None,
    resume_session_id: Annotated[
        Optional[str],
        "Full session_id from a previous run_claude result. Copy the exact value; partial ids do not work.",
    ] = None,
    continue_session: Annotated[
        bool,
        "Continue the most recent conversation. Ignored when resume_session_id is given.",
    ] = False,
) -> dict:
    """Run Claude Code non-interactively on the current execution target.

    Progress (tool calls, text, tool results) is logged as it streams. The run
    is killed if Claude Code stays silent longer than the idle timeout.

    Returns:
        A dictionary with:
        - success: Whether the run succeeded
        - response: The agent's final response
        - error: Error message if failed
        - error_kind: cli_not_found, spawn_failure, idle_timeout, cancelled, ...
        - execution_id: Id the run was tracked under
        - session_id: Pass as resume_session_id to continue this conversation
        - cost_usd, num_turns, duration_ms: Run statistics
    """
    return await run_claude_impl(
        message=message,
        system_prompt=system_prompt,
        project_path=project_path,
        image_paths=image_paths,
        execution_id=execution_id,
        resume_session_id=resume_session_id,
        continue_session=continue_session,
    )


@mcp.tool()
async def run_gt(
    args: Annotated[
        list[str],
        "Arguments for the gt CLI, e.g. ['convoy', 'list']",
    ],
) -> dict:
    """Run the Gas Town CLI (gt) in the workspace.

    Fails after 120 seconds. Output on stdout counts as success even with a
    non-zero exit code.
    """
    return await run_gt_impl(args=args)


@mcp.tool()
async def run_bd(
    args: Annotated[
        list[str],
        "Arguments for the Beads CLI, e.g. ['list', '--json']",
    ],
) -> dict:
    """Run the Beads CLI (bd) in the workspace.

    Fails after 120 seconds. Output on stdout counts as success even with a
    non-zero exit code.
    """
    return await run_bd_impl(args=args)


@mcp.tool()
def cancel_execution(
    execution_id: Annotated[
        str,
        "Id of the execution to cancel, as passed to or returned by run_claude",
    ],
) -> dict:
    """Cancel a running Claude Code execution."""
    return cancel_execution_impl(execution_id=execution_id)


@mcp.tool()
def list_running_executions() -> dict:
    """List the ids of executions that are currently running."""
    return list_running_executions_impl()


@mcp.tool()
async def detect_modes() -> dict:
    """Check whether Claude Code is available natively and inside WSL.

    Returns the current mode and, per target, availability, CLI path,
    version and (for WSL) the distribution it was found in.
    """
    return await detect_modes_impl()


@mcp.tool()
def get_debug_info() -> dict:
    """Show where the executor expects gt, bd, Claude Code and the workspace."""
    return get_debug_info_impl()


@mcp.tool()
async def switch_mode(
    mode: Annotated[
        str,
        "Execution target: 'native' or 'wsl'",
    ],
) -> dict:
    """Switch the execution target. Running executions are cancelled first."""
    return await switch_mode_impl(mode=mode)


def main():
    """Entry point for the MCP server."""
    get_event_bus().subscribe(EventLogger())
    try:
        mcp.run()
    finally:
        cancelled = cancel_all_executions()
        if cancelled:
            get_logger().info(f"Cancelled {cancelled} executions on shutdown")


if __name__ == "__main__":
    main()
