"""Incremental parser for Claude Code's stream-json output.

Output arrives as arbitrary byte chunks. Complete lines are parsed as JSON
records and classified; the trailing partial line waits for the next chunk.
"""

import codecs
import json
from typing import Any, Optional

from .logging import get_logger
from .models import (
    AssistantText,
    StreamEvent,
    TerminalResult,
    ToolInvocation,
    ToolResult,
    UnclassifiedLine,
)
from .utils import parse_token_usage, truncate

TOOL_DESCRIPTION_LIMIT = 100
TEXT_LIMIT = 200
TOOL_RESULT_LIMIT = 100

# Tool input keys worth showing, in order of preference.
_DESCRIPTION_KEYS = ("description", "command", "pattern", "file_path")


def _tool_description(tool_input: Any) -> str:
    if not isinstance(tool_input, dict):
        return ""
    for key in _DESCRIPTION_KEYS:
        value = tool_input.get(key)
        if value:
            return truncate(str(value), TOOL_DESCRIPTION_LIMIT, "...")
    return ""


def _number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def classify_record(record: dict) -> list[StreamEvent]:
    """Turn one parsed stream-json record into events.

    Records of types other than assistant, user tool result and result
    produce no events.
    """
    record_type = record.get("type")
    events: list[StreamEvent] = []

    if record_type == "assistant":
        message = record.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            return events
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "tool_use":
                events.append(ToolInvocation(
                    tool=str(block.get("name", "unknown")),
                    description=_tool_description(block.get("input")),
                ))
            elif block.get("type") == "text" and block.get("text"):
                events.append(AssistantText(text=truncate(str(block["text"]), TEXT_LIMIT)))

    elif record_type == "user" and record.get("tool_use_result"):
        result = record["tool_use_result"]
        if not isinstance(result, dict):
            result = {"stdout": str(result)}
        stdout = result.get("stdout") or ""
        stderr = result.get("stderr") or ""
        preview = truncate(str(stdout or stderr), TOOL_RESULT_LIMIT)
        events.append(ToolResult(
            preview=preview or "(no output)",
            # Any stderr counts as an error, even with is_error false.
            is_error=bool(result.get("is_error")) or bool(stderr),
        ))

    elif record_type == "result":
        duration = _number(record.get("duration_ms"))
        turns = _number(record.get("num_turns"))
        events.append(TerminalResult(
            result=str(record.get("result") or ""),
            cost_usd=_number(record.get("total_cost_usd")),
            duration_ms=int(duration) if duration is not None else None,
            num_turns=int(turns) if turns is not None else None,
            is_error=bool(record.get("is_error")),
            session_id=record.get("session_id"),
            token_usage=parse_token_usage(record),
        ))

    return events


class StreamParser:
    """Line-reassembling parser for one execution's stdout."""

    def __init__(self, execution_id: Optional[str] = None):
        self.execution_id = execution_id
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.session_id: Optional[str] = None
        self.terminal: Optional[TerminalResult] = None
        self._texts: list[str] = []

    @property
    def assistant_text(self) -> str:
        """All assistant text blocks seen so far, untruncated."""
        return "".join(self._texts)

    @property
    def pending(self) -> str:
        """The incomplete line waiting for more input."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume a chunk and return events for every line it completes."""
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events: list[StreamEvent] = []
        for line in lines:
            events.extend(self._parse_line(line))
        return events

    def flush(self) -> list[StreamEvent]:
        """Parse whatever is left once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        return self._parse_line(tail)

    def _parse_line(self, line: str) -> list[StreamEvent]:
        line = line.strip()
        if not line:
            return []

        try:
            record = json.loads(line)
        except (ValueError, RecursionError) as e:
            get_logger().debug(f"[{self.execution_id}] Unparseable line ({type(e).__name__}): {line[:100]}")
            return [UnclassifiedLine(raw=line)]

        if not isinstance(record, dict):
            return [UnclassifiedLine(raw=line)]

        if record.get("session_id"):
            self.session_id = record["session_id"]
        if record.get("type") == "assistant":
            self._collect_text(record)

        events = classify_record(record)
        for event in events:
            if isinstance(event, TerminalResult):
                self.terminal = event
        return events

    def _collect_text(self, record: dict) -> None:
        message = record.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            return
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                self._texts.append(str(block["text"]))
