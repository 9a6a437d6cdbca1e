"""Spawning CLI processes and turning their lifetime into one result.

Two shapes of execution:
- streaming (Claude Code): stdout is parsed incrementally, an idle monitor
  kills the process when it goes quiet, and the process is registered so it
  can be cancelled;
- bounded (gt/bd): output is collected whole under a fixed wall-clock timeout.

A streaming execution can end four ways (natural exit, idle timeout,
cancellation, spawn error). Several of them can fire for the same process,
so every ending goes through a one-shot future and only the first one counts.
"""

import asyncio
import time
from contextlib import suppress
from typing import Optional

from .events import IDLE_TIMEOUT, SPAWN, STDERR_CHUNK, EventBus
from .logging import execution_logger, get_logger
from .models import (
    ErrorKind,
    ExecutionHandle,
    ExecutionResult,
    ExecutionState,
    StreamEvent,
    new_execution_id,
)
from .monitor import DEFAULT_POLL_INTERVAL, IdleMonitor
from .parser import StreamParser
from .registry import DuplicateExecutionError, ProcessRegistry, killed_by_signal
from .utils import truncate

READ_CHUNK_SIZE = 64 * 1024
STDERR_PREVIEW_LIMIT = 200
DEFAULT_IDLE_TIMEOUT = 120.0
DEFAULT_AUX_TIMEOUT = 120.0
REAP_TIMEOUT = 5.0


def _failure(
    error: str,
    kind: ErrorKind,
    state: ExecutionState,
    execution_id: Optional[str] = None,
    duration_ms: int = 0,
    exit_code: Optional[int] = None,
) -> ExecutionResult:
    return ExecutionResult(
        success=False,
        error=error,
        error_kind=kind,
        state=state,
        execution_id=execution_id,
        duration_ms=duration_ms,
        exit_code=exit_code,
    )


class StreamingExecution:
    """One run of a process whose stdout is stream-json."""

    def __init__(
        self,
        cmd: str,
        args: list[str],
        *,
        registry: ProcessRegistry,
        bus: EventBus,
        cwd: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        execution_id: Optional[str] = None,
    ):
        self.cmd = cmd
        self.args = args
        self.cwd = cwd
        self.env = env
        self.idle_timeout = idle_timeout
        self.poll_interval = poll_interval
        self.handle = ExecutionHandle(execution_id=execution_id or new_execution_id())
        self.parser = StreamParser(self.handle.execution_id)
        self._registry = registry
        self._bus = bus
        self._logger = execution_logger(self.handle.execution_id)
        self._done: Optional[asyncio.Future] = None
        self.monitor: Optional[IdleMonitor] = None

    @property
    def execution_id(self) -> str:
        return self.handle.execution_id

    @property
    def resolved(self) -> bool:
        return self._done is not None and self._done.done()

    async def run(self) -> ExecutionResult:
        """Spawn the process and wait for exactly one outcome."""
        handle = self.handle
        self._done = asyncio.get_running_loop().create_future()

        # Registered before spawning so a duplicate id never starts a process.
        try:
            self._registry.register(handle)
        except DuplicateExecutionError as e:
            self._logger.error(str(e))
            return _failure(str(e), ErrorKind.DUPLICATE_EXECUTION, ExecutionState.SPAWN_FAILED, self.execution_id)

        self._logger.info(f"Running {self.cmd} in {self.cwd} (idle timeout {self.idle_timeout:g}s)")
        self._bus.publish(
            SPAWN,
            self.execution_id,
            cmd=self.cmd,
            argsCount=len(self.args),
            cwd=self.cwd,
            idleTimeout=self.idle_timeout,
        )

        try:
            process = await asyncio.create_subprocess_exec(
                self.cmd,
                *self.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=self.env,
            )
        except (OSError, ValueError) as e:
            self._registry.release(handle)
            self._logger.error(f"Spawn error: {e}")
            self._resolve(
                _failure(str(e) or type(e).__name__, ErrorKind.SPAWN_FAILURE, ExecutionState.SPAWN_FAILED),
                ExecutionState.SPAWN_FAILED,
            )
            return self._done.result()

        handle.process = process
        handle.state = ExecutionState.RUNNING
        handle.touch()
        if handle.cancel_requested:
            # Cancelled while the process was being created.
            self._signal(process.terminate)

        assert process.stdout is not None and process.stderr is not None
        stdout_task = asyncio.create_task(self._read_stdout(process.stdout))
        stderr_task = asyncio.create_task(self._read_stderr(process.stderr))
        exit_task = asyncio.create_task(self._watch_exit(process, stdout_task, stderr_task))
        self.monitor = monitor = IdleMonitor(handle, self.idle_timeout, self._on_idle_timeout, self.poll_interval)
        monitor.start()

        try:
            result = await self._done
        except asyncio.CancelledError:
            # The caller gave up; do not leave the child behind.
            if process.returncode is None:
                self._signal(process.kill)
            raise
        finally:
            monitor.stop()
            self._registry.release(handle)
            for task in (stdout_task, stderr_task, exit_task):
                if not task.done():
                    task.cancel()

        if process.returncode is None:
            # Killed on idle timeout; reap it so its pipes get closed.
            await self._reap(process)
        return result

    async def _reap(self, process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), timeout=REAP_TIMEOUT)
        except asyncio.TimeoutError:
            self._logger.warning(f"Process {process.pid} did not exit after kill")

    def _resolve(self, result: ExecutionResult, state: ExecutionState) -> bool:
        """Settle the execution unless another path already did."""
        assert self._done is not None
        if self._done.done():
            self._logger.debug(f"Ignoring {state.value}: already resolved")
            return False
        self.handle.state = state
        result.state = state
        result.execution_id = self.execution_id
        result.duration_ms = self.handle.elapsed_ms()
        self._done.set_result(result)
        return True

    def _signal(self, send) -> None:
        try:
            send()
        except ProcessLookupError:
            self._logger.debug("Process already exited")

    def _emit(self, events: list[StreamEvent]) -> None:
        if self.resolved:
            return
        for event in events:
            self._bus.publish_stream_event(event, self.execution_id)

    async def _read_stdout(self, stream: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                # Any bytes count as activity, parseable or not.
                self.handle.touch()
                self.handle.stdout.extend(chunk)
                self._emit(self.parser.feed(chunk))
            self._emit(self.parser.flush())
        except (BrokenPipeError, ConnectionError, OSError) as e:
            self._logger.debug(f"Stream closed: {type(e).__name__}")

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self.handle.touch()
                self.handle.stderr.extend(chunk)
                if not self.resolved:
                    text = chunk.decode("utf-8", errors="replace")
                    self._bus.publish(STDERR_CHUNK, self.execution_id, chunk=truncate(text, STDERR_PREVIEW_LIMIT))
        except (BrokenPipeError, ConnectionError, OSError) as e:
            self._logger.debug(f"stderr closed: {type(e).__name__}")

    async def _watch_exit(
        self,
        process: asyncio.subprocess.Process,
        stdout_task: asyncio.Task,
        stderr_task: asyncio.Task,
    ) -> None:
        # Drain both pipes before waiting, or the tail of the output is lost.
        outcomes = await asyncio.gather(stdout_task, stderr_task, return_exceptions=True)
        for name, outcome in zip(("stdout", "stderr"), outcomes):
            if isinstance(outcome, Exception):
                self._logger.error(f"{name} reader failed: {outcome!r}")
        return_code = await process.wait()
        self._on_exit(return_code)

    def _on_exit(self, return_code: Optional[int]) -> None:
        handle = self.handle
        self._registry.release(handle)
        self._logger.info(f"Exit code: {return_code} | duration: {handle.elapsed_ms()}ms")

        # Signal-based detection wins over the exit code.
        if handle.cancel_requested or killed_by_signal(return_code):
            self._resolve(
                _failure("Execution cancelled", ErrorKind.CANCELLED, ExecutionState.CANCELLED, exit_code=return_code),
                ExecutionState.CANCELLED,
            )
            return

        terminal = self.parser.terminal
        final_text = terminal.result if terminal else ""
        if return_code == 0 or final_text:
            response = final_text or self.parser.assistant_text or handle.stdout_text.strip()
            self._resolve(
                ExecutionResult(
                    success=True,
                    response=response,
                    exit_code=return_code,
                    cost_usd=terminal.cost_usd if terminal else None,
                    token_usage=terminal.token_usage if terminal else None,
                    num_turns=terminal.num_turns if terminal else None,
                    session_id=(terminal.session_id if terminal else None) or self.parser.session_id,
                ),
                ExecutionState.COMPLETED,
            )
            return

        stderr = handle.stderr_text.strip()
        self._logger.error(f"Failed with code {return_code}: {stderr[:500]}")
        self._resolve(
            _failure(stderr or f"Exit code {return_code}", ErrorKind.NON_ZERO_EXIT, ExecutionState.COMPLETED, exit_code=return_code),
            ExecutionState.COMPLETED,
        )

    def _on_idle_timeout(self, idle_seconds: float) -> None:
        if self.resolved:
            return
        handle = self.handle
        self._bus.publish(
            IDLE_TIMEOUT,
            self.execution_id,
            idleSeconds=round(idle_seconds, 1),
            stdoutLength=len(handle.stdout),
        )
        if handle.process is not None and handle.process.returncode is None:
            self._signal(handle.process.kill)
        self._registry.release(handle)
        self._resolve(
            _failure(
                f"Idle timeout - no activity for {self.idle_timeout:g} seconds",
                ErrorKind.IDLE_TIMEOUT,
                ExecutionState.TIMED_OUT,
            ),
            ExecutionState.TIMED_OUT,
        )


async def run_streaming(
    cmd: str,
    args: list[str],
    *,
    registry: ProcessRegistry,
    bus: EventBus,
    cwd: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    execution_id: Optional[str] = None,
) -> ExecutionResult:
    """Run a stream-json CLI to completion. See StreamingExecution."""
    execution = StreamingExecution(
        cmd,
        args,
        registry=registry,
        bus=bus,
        cwd=cwd,
        env=env,
        idle_timeout=idle_timeout,
        poll_interval=poll_interval,
        execution_id=execution_id,
    )
    return await execution.run()


async def run_bounded(
    cmd: str,
    args: list[str],
    *,
    cwd: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
    timeout: float = DEFAULT_AUX_TIMEOUT,
) -> ExecutionResult:
    """Run a short command and collect its output.

    Succeeds when the exit code is zero or anything was written to stdout;
    these tools report useful output with non-zero exits.
    """
    logger = get_logger()
    start = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - start) * 1000)

    try:
        process = await asyncio.create_subprocess_exec(
            cmd,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
        )
    except (OSError, ValueError) as e:
        logger.error(f"Failed to execute {cmd}: {e}")
        return _failure(str(e) or type(e).__name__, ErrorKind.SPAWN_FAILURE, ExecutionState.SPAWN_FAILED, duration_ms=elapsed_ms())

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        logger.error(f"{cmd} timed out after {timeout:g} seconds")
        return _failure(f"Timeout after {timeout:g} seconds", ErrorKind.TIMEOUT, ExecutionState.TIMED_OUT, duration_ms=elapsed_ms())
    except asyncio.CancelledError:
        if process.returncode is None:
            with suppress(ProcessLookupError):
                process.kill()
        raise

    stdout_str = stdout.decode("utf-8", errors="replace").strip()
    stderr_str = stderr.decode("utf-8", errors="replace").strip()

    if process.returncode == 0 or stdout_str:
        return ExecutionResult(
            success=True,
            response=stdout_str or stderr_str,
            duration_ms=elapsed_ms(),
            exit_code=process.returncode,
        )

    logger.error(f"{cmd} failed with code {process.returncode}: {stderr_str[:500]}")
    return _failure(
        stderr_str or f"Exit code {process.returncode}",
        ErrorKind.NON_ZERO_EXIT,
        ExecutionState.COMPLETED,
        duration_ms=elapsed_ms(),
        exit_code=process.returncode,
    )
