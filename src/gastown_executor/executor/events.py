"""Broadcast of executor events to observers (UI, logs).

Every event is a dict: {"kind", "executionId", "timestamp", ...kind fields}.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .logging import get_logger
from .models import StreamEvent

EventCallback = Callable[[dict[str, Any]], None]

SPAWN = "spawn"
TOOL_CALL = "tool-call"
TEXT = "text"
TOOL_RESULT = "tool-result"
STDERR_CHUNK = "stderr-chunk"
COMPLETE = "complete"
IDLE_TIMEOUT = "idle-timeout"


def make_event(kind: str, execution_id: Optional[str], **fields: Any) -> dict[str, Any]:
    """Build an event in the broadcast schema."""
    event: dict[str, Any] = {
        "kind": kind,
        "executionId": execution_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    event.update(fields)
    return event


class EventBus:
    """Fan-out of events to subscribers.

    A failing subscriber is logged and skipped; it never affects the
    execution that produced the event.
    """

    def __init__(self) -> None:
        self._subscribers: list[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Add a subscriber. Returns a function that removes it again."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, kind: str, execution_id: Optional[str], **fields: Any) -> dict[str, Any]:
        event = make_event(kind, execution_id, **fields)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                get_logger().warning(f"[{execution_id}] Event callback error: {e}")
        return event

    def publish_stream_event(self, event: StreamEvent, execution_id: Optional[str]) -> Optional[dict[str, Any]]:
        """Publish a parsed stream event. Unclassified lines are not broadcast."""
        if event.kind == "unclassified":
            return None
        return self.publish(event.kind, execution_id, **event.to_payload())


class EventLogger:
    """Renders broadcast events into the executor log."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or get_logger()

    def __call__(self, event: dict[str, Any]) -> None:
        handler = {
            SPAWN: self._log_spawn,
            TOOL_CALL: self._log_tool_call,
            TEXT: self._log_text,
            TOOL_RESULT: self._log_tool_result,
            STDERR_CHUNK: self._log_stderr,
            COMPLETE: self._log_complete,
            IDLE_TIMEOUT: self._log_idle_timeout,
        }.get(event.get("kind"))
        if handler:
            handler(f"[{event.get('executionId')}]", event)

    def _log_spawn(self, prefix: str, event: dict) -> None:
        self._logger.info(f"{prefix} 🚀 Spawned {event.get('cmd')} in {event.get('cwd')}")

    def _log_tool_call(self, prefix: str, event: dict) -> None:
        self._logger.info(f"{prefix} 🔧 {event.get('tool')} {event.get('description', '')}".rstrip())

    def _log_text(self, prefix: str, event: dict) -> None:
        self._logger.debug(f"{prefix} 💬 {event.get('text')}")

    def _log_tool_result(self, prefix: str, event: dict) -> None:
        mark = "✗" if event.get("isError") else "✓"
        self._logger.debug(f"{prefix} {mark} {event.get('preview')}")

    def _log_stderr(self, prefix: str, event: dict) -> None:
        self._logger.debug(f"{prefix} stderr: {event.get('chunk')}")

    def _log_complete(self, prefix: str, event: dict) -> None:
        self._logger.info(
            f"{prefix} ⏱️ Completed in {event.get('duration')}ms | cost: {event.get('cost')} | turns: {event.get('numTurns')}"
        )

    def _log_idle_timeout(self, prefix: str, event: dict) -> None:
        self._logger.warning(f"{prefix} Idle for {event.get('idleSeconds')}s, killing process")


# Global bus instance (singleton)
_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get or create the process-wide event bus."""
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus
