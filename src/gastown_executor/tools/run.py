"""Run tools: Claude Code agent runs and gt/bd commands."""

from typing import Annotated, Optional

from ..executor.models import SessionOptions
from ..executor.targets import get_executor


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
        "Directory the agent works in. Falls back to the Gas Town workspace when it does not exist.",
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
        "Full session_id from a previous run_claude result to resume that conversation",
    ] = None,
    continue_session: Annotated[
        bool,
        "Continue the most recent conversation. Ignored when resume_session_id is given.",
    ] = False,
) -> dict:
    """Run Claude Code non-interactively and wait for its result.

    The run is killed when Claude Code produces no output for the configured
    idle timeout (120 seconds by default).

    Returns:
        A dictionary with:
        - success: Whether the run succeeded
        - response: The agent's final response
        - error: Error message if failed
        - error_kind: Machine-readable failure kind
        - execution_id: Id the run was tracked under
        - session_id: Session ID to resume the conversation
        - cost_usd, num_turns, duration_ms: Run statistics
    """
    session_options = None
    if resume_session_id or continue_session:
        session_options = SessionOptions(
            resume_session_id=resume_session_id,
            continue_session=continue_session,
        )

    executor = await get_executor()
    result = await executor.run_claude(
        message,
        system_prompt=system_prompt,
        project_path=project_path,
        image_paths=image_paths,
        execution_id=execution_id,
        session_options=session_options,
    )
    return result.to_dict()


async def run_gt(
    args: Annotated[
        list[str],
        "Arguments for the gt CLI, e.g. ['convoy', 'list']",
    ],
) -> dict:
    """Run the Gas Town CLI (gt) in the workspace."""
    executor = await get_executor()
    result = await executor.run_gt(args)
    return result.to_dict()


async def run_bd(
    args: Annotated[
        list[str],
        "Arguments for the Beads CLI, e.g. ['list', '--json']",
    ],
) -> dict:
    """Run the Beads CLI (bd) in the workspace."""
    executor = await get_executor()
    result = await executor.run_bd(args)
    return result.to_dict()
