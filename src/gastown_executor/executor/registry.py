"""Registry of running executions, used for cancellation."""

import signal
from typing import Optional

from .logging import execution_logger, get_logger
from .models import ExecutionHandle

# Exit by one of these signals means the process was stopped from outside.
TERMINATION_SIGNALS = frozenset({signal.SIGTERM, getattr(signal, "SIGKILL", signal.SIGTERM)})


class DuplicateExecutionError(ValueError):
    """An execution with this id is already running."""


def killed_by_signal(return_code: Optional[int]) -> bool:
    """True if a return code reports death by SIGTERM or SIGKILL.

    asyncio reports a signal exit as the negated signal number.
    """
    return return_code is not None and return_code < 0 and -return_code in TERMINATION_SIGNALS


class ProcessRegistry:
    """Execution id -> handle of the process running it.

    Only touched from the event loop thread, so no locking.
    """

    def __init__(self) -> None:
        self._handles: dict[str, ExecutionHandle] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def register(self, handle: ExecutionHandle) -> None:
        """Track a handle; raises DuplicateExecutionError if its id is live."""
        if handle.execution_id in self._handles:
            raise DuplicateExecutionError(f"Execution {handle.execution_id} is already running")
        self._handles[handle.execution_id] = handle

    def get(self, execution_id: str) -> Optional[ExecutionHandle]:
        return self._handles.get(execution_id)

    def contains(self, execution_id: str) -> bool:
        return execution_id in self._handles

    def remove(self, execution_id: str) -> Optional[ExecutionHandle]:
        """Stop tracking an execution. Removing an unknown id is a no-op."""
        return self._handles.pop(execution_id, None)

    def release(self, handle: ExecutionHandle) -> bool:
        """Remove handle only if it is still the one registered under its id."""
        if self._handles.get(handle.execution_id) is handle:
            del self._handles[handle.execution_id]
            return True
        return False

    def list_running(self) -> list[str]:
        return list(self._handles)

    def cancel(self, execution_id: str) -> bool:
        """Ask a running execution to stop.

        Sends SIGTERM and forgets the execution without waiting for it to exit.

        Returns:
            True if the execution was found and signalled.
        """
        handle = self._handles.get(execution_id)
        if handle is None:
            return False

        execution_logger(execution_id).info("Cancelling execution")
        handle.cancel_requested = True
        self._handles.pop(execution_id, None)
        if handle.process is not None and handle.process.returncode is None:
            try:
                handle.process.terminate()
            except ProcessLookupError:
                execution_logger(execution_id).debug("Process already exited")
        return True

    def cancel_all(self) -> int:
        """Signal every registered process; used on shutdown.

        A failure to signal one process is logged and does not stop the rest.

        Returns:
            Number of processes signalled.
        """
        logger = get_logger()
        logger.info(f"Cleaning up {len(self._handles)} running processes")
        signalled = 0
        for execution_id, handle in list(self._handles.items()):
            handle.cancel_requested = True
            if handle.process is None:
                continue
            try:
                execution_logger(execution_id).info("Killing process")
                handle.process.terminate()
                signalled += 1
            except (ProcessLookupError, OSError) as e:
                execution_logger(execution_id).error(f"Failed to kill process: {e}")
        self._handles.clear()
        return signalled


# Global registry instance (singleton)
_registry: Optional[ProcessRegistry] = None


def get_registry() -> ProcessRegistry:
    """Get or create the process-wide registry."""
    global _registry
    if _registry is None:
        _registry = ProcessRegistry()
    return _registry


def cancel_execution(execution_id: str) -> bool:
    """Cancel one execution in the process-wide registry."""
    return get_registry().cancel(execution_id)


def get_running_executions() -> list[str]:
    """Ids of executions in the process-wide registry."""
    return get_registry().list_running()


def cancel_all_executions() -> int:
    """Cancel every execution in the process-wide registry."""
    return get_registry().cancel_all()
