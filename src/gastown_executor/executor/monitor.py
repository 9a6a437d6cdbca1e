"""Idle-activity monitor for streaming executions."""

import asyncio
from typing import Callable, Optional

from .logging import execution_logger
from .models import ExecutionHandle

DEFAULT_POLL_INTERVAL = 5.0


class IdleMonitor:
    """Fires once when an execution produces no output for idle_timeout seconds.

    The poll interval is independent of the timeout, so a timeout is noticed
    up to poll_interval seconds late.
    """

    def __init__(
        self,
        handle: ExecutionHandle,
        idle_timeout: float,
        on_timeout: Callable[[float], None],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._handle = handle
        self.idle_timeout = idle_timeout
        self.poll_interval = poll_interval
        self._on_timeout = on_timeout
        self._task: Optional[asyncio.Task] = None
        self.fired = False

    def check(self) -> bool:
        """Compare idle time to the threshold; fire the callback the first time it is reached."""
        if self.fired:
            return True
        idle = self._handle.idle_for()
        if idle < self.idle_timeout:
            return False
        self.fired = True
        execution_logger(self._handle.execution_id).info(f"IDLE TIMEOUT after {idle:.1f}s")
        self._on_timeout(idle)
        return True

    async def _run(self) -> None:
        while not self.fired:
            await asyncio.sleep(self.poll_interval)
            self.check()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
