"""Executors for the two execution targets: native and WSL.

Both implement the same four operations. Which one is used is decided by
the execution_mode setting; see get_executor() and switch_executor().
"""

import os
import shlex
import sys
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from ..config import WORKSPACE_ENV_VAR, ExecutionMode, Settings, get_settings, set_execution_mode
from .cli import bundled_binary_path, find_claude
from .events import EventBus, get_event_bus
from .logging import get_logger
from .models import ErrorKind, ExecutionResult, ExecutionState, SessionOptions
from .paths import to_windows_path, to_wsl_path
from .registry import ProcessRegistry, get_registry
from .runner import run_bounded, run_streaming
from .utils import ensure_dir, get_valid_cwd

WSL_EXE = "wsl.exe"

CLAUDE_NOT_FOUND = "Claude Code not found. Please install Claude Code CLI and ensure it is in your PATH."


class Executor(Protocol):
    """What every execution target can do."""

    async def initialize(self) -> None: ...

    async def run_claude(
        self,
        message: str,
        system_prompt: Optional[str] = None,
        project_path: Optional[str] = None,
        image_paths: Optional[list[str]] = None,
        execution_id: Optional[str] = None,
        session_options: Optional[SessionOptions] = None,
    ) -> ExecutionResult: ...

    async def run_gt(self, args: list[str]) -> ExecutionResult: ...

    async def run_bd(self, args: list[str]) -> ExecutionResult: ...


def build_claude_args(
    message: str,
    system_prompt: Optional[str] = None,
    image_paths: Optional[list[str]] = None,
    session_options: Optional[SessionOptions] = None,
    translate_path: Callable[[str], str] = lambda p: p,
) -> list[str]:
    """Build Claude Code's argument vector for a non-interactive run.

    The message goes last, after ``--``, as a positional argument; Claude
    Code does not read the prompt from stdin.
    """
    logger = get_logger()
    args = [
        "--print",
        "--output-format", "stream-json",
        "--verbose",  # Required for stream-json
        "--dangerously-skip-permissions",  # Required for non-interactive use
    ]

    if session_options is not None:
        if session_options.resume_session_id:
            if session_options.continue_session:
                logger.warning("Both resume and continue requested; resuming the given session")
            args.extend(["--resume", session_options.resume_session_id])
            logger.info(f"Resuming session: {session_options.resume_session_id}")
        elif session_options.continue_session:
            args.append("--continue")
            logger.info("Continuing last session")

    if system_prompt:
        args.extend(["--system-prompt", system_prompt])

    for image_path in image_paths or []:
        args.extend(["--add", translate_path(image_path)])

    args.extend(["--", message])
    return args


def _not_found(error: str, kind: ErrorKind) -> ExecutionResult:
    return ExecutionResult(success=False, error=error, error_kind=kind, state=ExecutionState.SPAWN_FAILED)


class NativeExecutor:
    """Runs Claude Code and the bundled gt/bd directly on the host."""

    mode: ExecutionMode = "native"

    def __init__(
        self,
        settings: Settings,
        registry: ProcessRegistry,
        bus: EventBus,
        translate_paths: Optional[bool] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.bus = bus
        # WSL paths only need rewriting when the host is Windows.
        self.translate_paths = sys.platform == "win32" if translate_paths is None else translate_paths
        self.claude_path = ""
        self.gt_path: Optional[Path] = None
        self.bd_path: Optional[Path] = None
        self.gastown_path = str(settings.gastown_path)

    async def initialize(self) -> None:
        logger = get_logger()
        self.claude_path = self.settings.native.claude_path or find_claude() or ""
        self.gt_path = bundled_binary_path(self.settings.bin_dir, "gt")
        self.bd_path = bundled_binary_path(self.settings.bin_dir, "bd")

        logger.info("Initialized NativeExecutor")
        logger.info(f"Claude path: {self.claude_path or 'not found'}")
        logger.info(f"gt path: {self.gt_path} - exists: {self.gt_path.exists()}")
        logger.info(f"bd path: {self.bd_path} - exists: {self.bd_path.exists()}")

        self.gastown_path = str(self.settings.gastown_path)
        ensure_dir(self.gastown_path)
        logger.info(f"Gastown path: {self.gastown_path}")

    def to_host_path(self, path: str) -> str:
        if not self.translate_paths:
            return path
        return to_windows_path(path, self.settings.wsl.unc_distro)

    def _env(self) -> dict[str, str]:
        return {**os.environ, WORKSPACE_ENV_VAR: self.gastown_path}

    async def run_claude(
        self,
        message: str,
        system_prompt: Optional[str] = None,
        project_path: Optional[str] = None,
        image_paths: Optional[list[str]] = None,
        execution_id: Optional[str] = None,
        session_options: Optional[SessionOptions] = None,
    ) -> ExecutionResult:
        if not self.claude_path:
            return _not_found(CLAUDE_NOT_FOUND, ErrorKind.CLI_NOT_FOUND)

        args = build_claude_args(message, system_prompt, image_paths, session_options, self.to_host_path)
        requested = self.to_host_path(project_path) if project_path else None
        cwd = get_valid_cwd(requested, self.gastown_path)
        get_logger().info(f"Native cwd: {cwd} (from: {project_path})")

        return await run_streaming(
            self.claude_path,
            args,
            registry=self.registry,
            bus=self.bus,
            cwd=cwd,
            env=self._env(),
            idle_timeout=self.settings.idle_timeout,
            poll_interval=self.settings.idle_poll_interval,
            execution_id=execution_id,
        )

    async def _run_bundled(self, path: Optional[Path], label: str, name: str, args: list[str]) -> ExecutionResult:
        if path is None or not path.is_file():
            return _not_found(
                f"{label} not found at {path}. The {name} tool may not be bundled correctly.",
                ErrorKind.BINARY_NOT_FOUND,
            )
        return await run_bounded(
            str(path),
            args,
            cwd=get_valid_cwd(self.gastown_path, self.gastown_path),
            env=self._env(),
            timeout=self.settings.aux_timeout,
        )

    async def run_gt(self, args: list[str]) -> ExecutionResult:
        return await self._run_bundled(self.gt_path, "Gas Town CLI", "gt", args)

    async def run_bd(self, args: list[str]) -> ExecutionResult:
        return await self._run_bundled(self.bd_path, "Beads CLI", "bd", args)


class WslExecutor:
    """Runs Claude Code, gt and bd inside a WSL distribution via wsl.exe."""

    mode: ExecutionMode = "wsl"

    def __init__(self, settings: Settings, registry: ProcessRegistry, bus: EventBus):
        self.settings = settings
        self.registry = registry
        self.bus = bus
        self.distro = settings.wsl.distro
        self.claude_path = "claude"
        self.gastown_path = str(settings.gastown_path)
        self.wsl_gastown_path = to_wsl_path(self.gastown_path)

    async def initialize(self) -> None:
        self.distro = self.settings.wsl.distro
        # Resolved by the distribution's own PATH.
        self.claude_path = "claude"
        self.gastown_path = str(self.settings.gastown_path)
        self.wsl_gastown_path = to_wsl_path(self.gastown_path)
        ensure_dir(self.gastown_path)

        logger = get_logger()
        logger.info(f"Initialized WslExecutor (distro: {self.distro or 'default'})")
        logger.info(f"Gastown path: {self.gastown_path} -> {self.wsl_gastown_path}")

    def _env(self) -> dict[str, str]:
        # WSLENV carries GASTOWN_PATH into WSL, translated to a /mnt path.
        wslenv = os.environ.get("WSLENV")
        share = f"{WORKSPACE_ENV_VAR}/p"
        return {
            **os.environ,
            "WSLENV": f"{wslenv}:{share}" if wslenv else share,
            WORKSPACE_ENV_VAR: self.gastown_path,
        }

    def wsl_args(self, cmd: str, args: list[str], wsl_cwd: str) -> list[str]:
        """Arguments for wsl.exe that run cmd in wsl_cwd, or the workspace if it is missing."""
        command = " ".join(shlex.quote(part) for part in [cmd, *args])
        script = (
            f"cd {shlex.quote(wsl_cwd)} 2>/dev/null || cd {shlex.quote(self.wsl_gastown_path)}; "
            f"{command}"
        )
        prefix = ["-d", self.distro] if self.distro else []
        return [*prefix, "bash", "-c", script]

    async def run_claude(
        self,
        message: str,
        system_prompt: Optional[str] = None,
        project_path: Optional[str] = None,
        image_paths: Optional[list[str]] = None,
        execution_id: Optional[str] = None,
        session_options: Optional[SessionOptions] = None,
    ) -> ExecutionResult:
        args = build_claude_args(message, system_prompt, image_paths, session_options, to_wsl_path)
        wsl_cwd = to_wsl_path(project_path) if project_path else self.wsl_gastown_path
        get_logger().info(f"WSL cwd: {wsl_cwd} (from: {project_path})")

        return await run_streaming(
            WSL_EXE,
            self.wsl_args(self.claude_path, args, wsl_cwd),
            registry=self.registry,
            bus=self.bus,
            env=self._env(),
            idle_timeout=self.settings.idle_timeout,
            poll_interval=self.settings.idle_poll_interval,
            execution_id=execution_id,
        )

    async def _run_tool(self, name: str, args: list[str]) -> ExecutionResult:
        return await run_bounded(
            WSL_EXE,
            self.wsl_args(name, args, self.wsl_gastown_path),
            env=self._env(),
            timeout=self.settings.aux_timeout,
        )

    async def run_gt(self, args: list[str]) -> ExecutionResult:
        return await self._run_tool("gt", args)

    async def run_bd(self, args: list[str]) -> ExecutionResult:
        return await self._run_tool("bd", args)


def create_executor(
    mode: ExecutionMode,
    settings: Optional[Settings] = None,
    registry: Optional[ProcessRegistry] = None,
    bus: Optional[EventBus] = None,
) -> Union[NativeExecutor, WslExecutor]:
    """Build the executor for mode (not yet initialized)."""
    settings = settings or get_settings()
    registry = registry or get_registry()
    bus = bus or get_event_bus()
    if mode == "wsl":
        return WslExecutor(settings, registry, bus)
    return NativeExecutor(settings, registry, bus)


# Global executor instance (singleton)
_executor: Optional[Executor] = None


async def get_executor() -> Executor:
    """Get the executor for the configured mode, initializing it on first use."""
    global _executor
    if _executor is None:
        settings = get_settings()
        executor = create_executor(settings.execution_mode, settings)
        await executor.initialize()
        _executor = executor
    return _executor


async def switch_executor(mode: ExecutionMode) -> Executor:
    """Switch execution target. Running executions are cancelled first."""
    global _executor
    registry = get_registry()
    if len(registry) > 0:
        registry.cancel_all()

    settings = set_execution_mode(mode)
    executor = create_executor(mode, settings, registry)
    await executor.initialize()
    _executor = executor
    get_logger().info(f"Switched executor to {mode}")
    return executor
