"""Tools for inspecting and cancelling running executions."""

from ..executor.registry import get_registry


def cancel_execution(execution_id: str) -> dict:
    """Cancel a running execution.

    The process is sent SIGTERM; the run_claude call waiting on it returns
    a cancelled result.
    """
    cancelled = get_registry().cancel(execution_id)
    return {
        "success": cancelled,
        "execution_id": execution_id,
        "error": None if cancelled else f"No running execution with id {execution_id}",
    }


def list_running_executions() -> dict:
    """Ids of executions that are currently running."""
    running = get_registry().list_running()
    return {"executions": running, "count": len(running)}
