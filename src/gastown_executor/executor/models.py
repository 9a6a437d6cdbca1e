"""Data models for executor module."""

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional


class ExecutionState(str, Enum):
    """Lifecycle of one execution."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    SPAWN_FAILED = "spawn_failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (ExecutionState.CREATED, ExecutionState.RUNNING)


class ErrorKind(str, Enum):
    """Why an execution failed."""

    CLI_NOT_FOUND = "cli_not_found"
    BINARY_NOT_FOUND = "binary_not_found"
    SPAWN_FAILURE = "spawn_failure"
    DUPLICATE_EXECUTION = "duplicate_execution"
    IDLE_TIMEOUT = "idle_timeout"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NON_ZERO_EXIT = "non_zero_exit"


@dataclass
class TokenUsage:
    """Token counts reported in a terminal result record."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    context_window: int = 200000
    max_output_tokens: int = 64000


@dataclass
class StreamEvent:
    """One classified unit of agent output."""

    kind: ClassVar[str] = "event"

    def to_payload(self) -> dict[str, Any]:
        """Kind-specific fields for the broadcast schema."""
        return {}


@dataclass
class ToolInvocation(StreamEvent):
    """The agent called a tool."""

    kind: ClassVar[str] = "tool-call"

    tool: str
    description: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {"tool": self.tool, "description": self.description}


@dataclass
class ToolResult(StreamEvent):
    """A tool returned output to the agent."""

    kind: ClassVar[str] = "tool-result"

    preview: str
    is_error: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {"preview": self.preview, "isError": self.is_error}


@dataclass
class AssistantText(StreamEvent):
    """Text written by the agent."""

    kind: ClassVar[str] = "text"

    text: str

    def to_payload(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass
class TerminalResult(StreamEvent):
    """The final result record of an agent run."""

    kind: ClassVar[str] = "complete"

    result: str = ""
    cost_usd: Optional[float] = None
    duration_ms: Optional[int] = None
    num_turns: Optional[int] = None
    is_error: bool = False
    session_id: Optional[str] = None
    token_usage: Optional[TokenUsage] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "code": 1 if self.is_error else 0,
            "duration": self.duration_ms,
            "cost": self.cost_usd,
            "numTurns": self.num_turns,
        }


@dataclass
class UnclassifiedLine(StreamEvent):
    """A line that is not a structured record."""

    kind: ClassVar[str] = "unclassified"

    raw: str

    def to_payload(self) -> dict[str, Any]:
        return {"raw": self.raw}


@dataclass
class SessionOptions:
    """Conversation continuity for an agent run.

    resume_session_id wins when both fields are set.
    """

    resume_session_id: Optional[str] = None
    continue_session: bool = False


@dataclass
class ExecutionResult:
    """Result of one execution."""

    success: bool
    response: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    duration_ms: int = 0
    cost_usd: Optional[float] = None
    token_usage: Optional[TokenUsage] = None
    num_turns: Optional[int] = None
    session_id: Optional[str] = None
    execution_id: Optional[str] = None
    exit_code: Optional[int] = None
    state: ExecutionState = ExecutionState.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "response": self.response,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "duration_ms": self.duration_ms,
            "cost_usd": self.cost_usd,
            "token_usage": asdict(self.token_usage) if self.token_usage else None,
            "num_turns": self.num_turns,
            "session_id": self.session_id,
            "execution_id": self.execution_id,
            "exit_code": self.exit_code,
            "state": self.state.value,
        }


def new_execution_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ExecutionHandle:
    """An in-flight child process and what has been seen of it."""

    execution_id: str
    process: Optional[asyncio.subprocess.Process] = None
    started_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)
    cancel_requested: bool = False
    state: ExecutionState = ExecutionState.CREATED

    def touch(self) -> None:
        """Record output activity now."""
        self.last_activity = time.monotonic()

    def idle_for(self) -> float:
        """Seconds since the last output activity."""
        return time.monotonic() - self.last_activity

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class TargetStatus:
    """Availability of the agent CLI on one execution target."""

    available: bool = False
    cli_path: Optional[str] = None
    version: Optional[str] = None
    distro: Optional[str] = None


@dataclass(frozen=True)
class ModeStatus:
    """Snapshot of which execution targets can run the agent CLI."""

    current: str
    native: TargetStatus = TargetStatus()
    wsl: TargetStatus = TargetStatus()

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "native": asdict(self.native),
            "wsl": asdict(self.wsl),
        }


@dataclass(frozen=True)
class DebugInfo:
    """Where the executor expects its binaries and workspace to be."""

    bin_dir: str
    gt_path: str
    gt_exists: bool
    bd_path: str
    bd_exists: bool
    claude_path: str
    gastown_path: str
    gastown_exists: bool
    execution_mode: str
