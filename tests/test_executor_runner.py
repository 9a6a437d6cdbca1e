"""Tests for executor.runner module."""

import asyncio
import json
import sys
from unittest.mock import patch

import pytest

from gastown_executor.executor.models import ErrorKind, ExecutionHandle, ExecutionState
from gastown_executor.executor.runner import StreamingExecution, run_bounded, run_streaming


def _line(record: dict) -> bytes:
    return (json.dumps(record) + "\n").encode("utf-8")


TOOL_CALL = _line({
    "type": "assistant",
    "session_id": "sess-42",
    "message": {"content": [{"type": "tool_use", "name": "Read", "input": {"file_path": "/tmp/a.txt"}}]},
})
RESULT = _line({
    "type": "result",
    "result": "42",
    "total_cost_usd": 0.05,
    "duration_ms": 900,
    "num_turns": 2,
    "session_id": "sess-42",
})


async def _wait_spawned(registry, execution_id: str) -> ExecutionHandle:
    for _ in range(200):
        handle = registry.get(execution_id)
        if handle is not None and handle.process is not None:
            return handle
        await asyncio.sleep(0.01)
    raise AssertionError(f"{execution_id} was never spawned")


class TestRunStreaming:
    """Tests for run_streaming() with a fake child process."""

    @pytest.mark.asyncio
    async def test_success(self, process_registry, event_bus, make_process):
        """Проверка успешного выполнения: ответ, стоимость, session_id."""
        process = make_process()
        process.write_stdout(TOOL_CALL + RESULT)
        process.exit(0)

        with patch("asyncio.create_subprocess_exec", return_value=process) as spawn:
            result = await run_streaming(
                "claude", ["--print", "--", "hi"],
                registry=process_registry, bus=event_bus, cwd="/tmp", execution_id="e1",
            )

        assert result.success is True
        assert result.response == "42"
        assert result.cost_usd == 0.05
        assert result.num_turns == 2
        assert result.session_id == "sess-42"
        assert result.execution_id == "e1"
        assert result.state == ExecutionState.COMPLETED
        assert result.error is None
        assert len(process_registry) == 0

        args, kwargs = spawn.call_args
        assert args == ("claude", "--print", "--", "hi")
        assert kwargs["stdin"] == asyncio.subprocess.DEVNULL
        assert kwargs["cwd"] == "/tmp"

        kinds = [event["kind"] for event in event_bus.published]
        assert kinds == ["spawn", "tool-call", "complete"]
        spawn_event = event_bus.published[0]
        assert spawn_event["executionId"] == "e1"
        assert spawn_event["argsCount"] == 3
        assert spawn_event["idleTimeout"] == 120
        assert "timestamp" in spawn_event

    @pytest.mark.asyncio
    async def test_generated_execution_id(self, process_registry, event_bus, make_process):
        """Проверка генерации execution_id, если он не передан."""
        process = make_process()
        process.exit(0)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming("claude", [], registry=process_registry, bus=event_bus)
        assert result.execution_id
        assert len(result.execution_id) == 32

    @pytest.mark.asyncio
    async def test_response_falls_back_to_stdout(self, process_registry, event_bus, make_process):
        """Проверка ответа без записи result: используется сырой stdout."""
        process = make_process()
        process.write_stdout(b"plain text output\n")
        process.exit(0)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming("claude", [], registry=process_registry, bus=event_bus)
        assert result.success is True
        assert result.response == "plain text output"

    @pytest.mark.asyncio
    async def test_non_zero_exit_with_stderr(self, process_registry, event_bus, make_process):
        """Проверка ненулевого кода возврата: ошибка из stderr."""
        process = make_process()
        process.write_stderr(b"authentication failed\n")
        process.exit(2)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming("claude", [], registry=process_registry, bus=event_bus)

        assert result.success is False
        assert result.error == "authentication failed"
        assert result.error_kind == ErrorKind.NON_ZERO_EXIT
        assert result.exit_code == 2
        stderr_events = [e for e in event_bus.published if e["kind"] == "stderr-chunk"]
        assert stderr_events[0]["chunk"] == "authentication failed\n"

    @pytest.mark.asyncio
    async def test_non_zero_exit_without_stderr(self, process_registry, event_bus, make_process):
        """Проверка ненулевого кода без stderr: 'Exit code n'."""
        process = make_process()
        process.exit(3)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming("claude", [], registry=process_registry, bus=event_bus)
        assert result.success is False
        assert result.error == "Exit code 3"

    @pytest.mark.asyncio
    async def test_non_zero_exit_with_result_text(self, process_registry, event_bus, make_process):
        """Проверка, что текст результата важнее ненулевого кода возврата."""
        process = make_process()
        process.write_stdout(RESULT)
        process.exit(1)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming("claude", [], registry=process_registry, bus=event_bus)
        assert result.success is True
        assert result.response == "42"

    @pytest.mark.asyncio
    async def test_stderr_chunk_truncated(self, process_registry, event_bus, make_process):
        """Проверка обрезки stderr-chunk до 200 символов."""
        process = make_process()
        process.write_stderr(b"e" * 500)
        process.exit(0)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            await run_streaming("claude", [], registry=process_registry, bus=event_bus)
        [event] = [e for e in event_bus.published if e["kind"] == "stderr-chunk"]
        assert event["chunk"] == "e" * 200

    @pytest.mark.asyncio
    async def test_idle_timeout(self, process_registry, event_bus, make_process):
        """Проверка таймаута простоя: процесс убит, результат timed_out."""
        process = make_process()
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming(
                "claude", [],
                registry=process_registry, bus=event_bus,
                idle_timeout=0.05, poll_interval=0.01, execution_id="idle",
            )

        assert result.success is False
        assert result.error == "Idle timeout - no activity for 0.05 seconds"
        assert result.error_kind == ErrorKind.IDLE_TIMEOUT
        assert result.state == ExecutionState.TIMED_OUT
        process.kill.assert_called_once()
        assert not process_registry.contains("idle")
        idle_events = [e for e in event_bus.published if e["kind"] == "idle-timeout"]
        assert len(idle_events) == 1
        assert idle_events[0]["stdoutLength"] == 0

    @pytest.mark.asyncio
    async def test_activity_keeps_execution_alive(self, process_registry, event_bus, make_process):
        """Проверка, что вывод сбрасывает таймер простоя."""
        process = make_process()

        async def trickle():
            for _ in range(5):
                await asyncio.sleep(0.05)
                process.write_stderr(b".")
            process.write_stdout(RESULT)
            process.exit(0)

        with patch("asyncio.create_subprocess_exec", return_value=process):
            feeder = asyncio.create_task(trickle())
            result = await run_streaming(
                "claude", [],
                registry=process_registry, bus=event_bus,
                idle_timeout=0.15, poll_interval=0.01,
            )
            await feeder

        assert result.success is True
        process.kill.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel(self, process_registry, event_bus, make_process):
        """Проверка отмены: SIGTERM и результат cancelled."""
        process = make_process()
        with patch("asyncio.create_subprocess_exec", return_value=process):
            task = asyncio.create_task(run_streaming(
                "claude", [], registry=process_registry, bus=event_bus, execution_id="c1",
            ))
            await _wait_spawned(process_registry, "c1")
            assert process_registry.cancel("c1") is True
            result = await task

        assert result.success is False
        assert result.error == "Execution cancelled"
        assert result.error_kind == ErrorKind.CANCELLED
        assert result.state == ExecutionState.CANCELLED
        process.terminate.assert_called_once()
        assert process_registry.list_running() == []

    @pytest.mark.asyncio
    async def test_killed_by_external_signal(self, process_registry, event_bus, make_process):
        """Проверка, что смерть от SIGKILL классифицируется как отмена."""
        process = make_process()
        process.exit(-9)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming("claude", [], registry=process_registry, bus=event_bus)
        assert result.state == ExecutionState.CANCELLED
        assert result.error == "Execution cancelled"

    @pytest.mark.asyncio
    async def test_spawn_failure(self, process_registry, event_bus):
        """Проверка ошибки запуска процесса."""
        error = FileNotFoundError(2, "No such file or directory")
        with patch("asyncio.create_subprocess_exec", side_effect=error):
            result = await run_streaming(
                "missing-cli", [], registry=process_registry, bus=event_bus, execution_id="s1",
            )

        assert result.success is False
        assert result.error_kind == ErrorKind.SPAWN_FAILURE
        assert result.state == ExecutionState.SPAWN_FAILED
        assert "No such file" in result.error
        assert result.execution_id == "s1"
        assert len(process_registry) == 0

    @pytest.mark.asyncio
    async def test_duplicate_execution_id(self, process_registry, event_bus):
        """Проверка отказа при уже запущенном execution_id без запуска процесса."""
        process_registry.register(ExecutionHandle(execution_id="dup"))
        with patch("asyncio.create_subprocess_exec") as spawn:
            result = await run_streaming(
                "claude", [], registry=process_registry, bus=event_bus, execution_id="dup",
            )

        assert result.success is False
        assert result.error_kind == ErrorKind.DUPLICATE_EXECUTION
        spawn.assert_not_called()
        assert process_registry.contains("dup")

    @pytest.mark.asyncio
    async def test_subscriber_failure_does_not_affect_run(self, process_registry, event_bus, make_process):
        """Проверка, что падающий подписчик не влияет на выполнение."""
        def broken(event):
            raise RuntimeError("subscriber down")

        event_bus.subscribe(broken)
        process = make_process()
        process.write_stdout(RESULT)
        process.exit(0)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming("claude", [], registry=process_registry, bus=event_bus)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_caller_cancellation_kills_child(self, process_registry, event_bus, make_process):
        """Проверка, что отмена ожидающей задачи убивает дочерний процесс."""
        process = make_process()
        with patch("asyncio.create_subprocess_exec", return_value=process):
            task = asyncio.create_task(run_streaming(
                "claude", [], registry=process_registry, bus=event_bus, execution_id="w1",
            ))
            await _wait_spawned(process_registry, "w1")
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        process.kill.assert_called_once()
        assert len(process_registry) == 0

    @pytest.mark.asyncio
    async def test_spawn_rejects_null_byte(self, process_registry, event_bus):
        """Проверка: аргумент с нулевым байтом даёт spawn_failure и освобождает execution_id."""
        for _ in range(2):
            result = await run_streaming(
                sys.executable, ["-c", "pass", "hi\x00there"],
                registry=process_registry, bus=event_bus, execution_id="n1",
            )
            assert result.success is False
            assert result.error_kind == ErrorKind.SPAWN_FAILURE
            assert result.state == ExecutionState.SPAWN_FAILED
            assert len(process_registry) == 0

    @pytest.mark.asyncio
    async def test_reader_failure_still_resolves_on_exit(self, process_registry, event_bus, make_process):
        """Проверка: сбой чтения stdout не мешает завершению по выходу процесса."""
        process = make_process()
        process.write_stdout(RESULT)
        process.exit(0)
        execution = StreamingExecution("claude", [], registry=process_registry, bus=event_bus)
        with patch.object(execution.parser, "feed", side_effect=RuntimeError("parser down")), \
                patch("asyncio.create_subprocess_exec", return_value=process):
            result = await asyncio.wait_for(execution.run(), timeout=5)

        assert result.state == ExecutionState.COMPLETED
        assert result.exit_code == 0
        assert len(process_registry) == 0

    @pytest.mark.asyncio
    async def test_idle_timeout_reaps_killed_process(self, process_registry, event_bus, make_process):
        """Проверка: после таймаута простоя убитый процесс дожидается выхода."""
        process = make_process()
        loop = asyncio.get_running_loop()
        process.kill.side_effect = lambda: loop.call_later(0.05, process.exit, -9)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_streaming(
                "claude", [],
                registry=process_registry, bus=event_bus,
                idle_timeout=0.05, poll_interval=0.01,
            )

        assert result.state == ExecutionState.TIMED_OUT
        assert process.returncode == -9


class TestSingleResolution:
    """Exactly one outcome per execution, whatever fires first."""

    @pytest.mark.asyncio
    async def test_idle_timeout_then_exit(self, process_registry, event_bus):
        """Проверка гонки: таймаут простоя, затем естественный выход."""
        execution = StreamingExecution("claude", [], registry=process_registry, bus=event_bus)
        execution._done = asyncio.get_running_loop().create_future()

        execution._on_idle_timeout(130.0)
        execution._on_exit(0)

        result = execution._done.result()
        assert result.state == ExecutionState.TIMED_OUT
        assert execution.handle.state == ExecutionState.TIMED_OUT

    @pytest.mark.asyncio
    async def test_exit_then_idle_timeout(self, process_registry, event_bus):
        """Проверка гонки: выход, затем запоздалый таймаут простоя."""
        execution = StreamingExecution("claude", [], registry=process_registry, bus=event_bus)
        execution._done = asyncio.get_running_loop().create_future()

        execution._on_exit(0)
        execution._on_idle_timeout(130.0)

        assert execution._done.result().state == ExecutionState.COMPLETED
        assert not [e for e in event_bus.published if e["kind"] == "idle-timeout"]

    @pytest.mark.asyncio
    async def test_cancel_flag_wins_over_clean_exit(self, process_registry, event_bus):
        """Проверка: отмена до выхода с кодом 0 даёт cancelled."""
        execution = StreamingExecution("claude", [], registry=process_registry, bus=event_bus)
        execution._done = asyncio.get_running_loop().create_future()
        execution.handle.cancel_requested = True

        execution._on_exit(0)

        assert execution._done.result().state == ExecutionState.CANCELLED


class TestRunBounded:
    """Tests for run_bounded() function."""

    @pytest.mark.asyncio
    async def test_success(self, make_process):
        """Проверка успешного выполнения: обрезанный stdout."""
        process = make_process()
        process.write_stdout(b"  convoy ready  \n")
        process.exit(0)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_bounded("gt", ["convoy", "list"], timeout=5)
        assert result.success is True
        assert result.response == "convoy ready"
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_stdout_with_non_zero_exit_is_success(self, make_process):
        """Проверка: непустой stdout при ненулевом коде считается успехом."""
        process = make_process()
        process.write_stdout(b"partial listing")
        process.write_stderr(b"warning")
        process.exit(1)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_bounded("bd", ["list"], timeout=5)
        assert result.success is True
        assert result.response == "partial listing"

    @pytest.mark.asyncio
    async def test_stderr_fallback_on_success(self, make_process):
        """Проверка: при коде 0 и пустом stdout ответ берётся из stderr."""
        process = make_process()
        process.write_stderr(b"done\n")
        process.exit(0)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_bounded("bd", ["sync"], timeout=5)
        assert result.success is True
        assert result.response == "done"

    @pytest.mark.asyncio
    async def test_failure(self, make_process):
        """Проверка неуспеха: ошибка из stderr."""
        process = make_process()
        process.write_stderr(b"unknown command\n")
        process.exit(1)
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_bounded("gt", ["nope"], timeout=5)
        assert result.success is False
        assert result.error == "unknown command"
        assert result.error_kind == ErrorKind.NON_ZERO_EXIT

    @pytest.mark.asyncio
    async def test_timeout(self, make_process):
        """Проверка таймаута: процесс убит, 'Timeout after n seconds'."""
        process = make_process()
        with patch("asyncio.create_subprocess_exec", return_value=process):
            result = await run_bounded("gt", ["hang"], timeout=0.05)
        assert result.success is False
        assert result.error == "Timeout after 0.05 seconds"
        assert result.error_kind == ErrorKind.TIMEOUT
        process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_spawn_failure(self):
        """Проверка ошибки запуска."""
        with patch("asyncio.create_subprocess_exec", side_effect=PermissionError(13, "Permission denied")):
            result = await run_bounded("gt", [], timeout=5)
        assert result.success is False
        assert result.error_kind == ErrorKind.SPAWN_FAILURE
        assert "Permission denied" in result.error

    @pytest.mark.asyncio
    async def test_spawn_rejects_null_byte(self):
        """Проверка: аргумент с нулевым байтом даёт spawn_failure."""
        result = await run_bounded(sys.executable, ["-c", "pass", "a\x00b"], timeout=5)
        assert result.success is False
        assert result.error_kind == ErrorKind.SPAWN_FAILURE

    @pytest.mark.asyncio
    async def test_caller_cancellation_kills_child(self, make_process):
        """Проверка, что отмена ожидающей задачи убивает процесс gt/bd."""
        process = make_process()
        with patch("asyncio.create_subprocess_exec", return_value=process):
            task = asyncio.create_task(run_bounded("gt", ["hang"], timeout=30))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        process.kill.assert_called_once()


class TestRealSubprocess:
    """Runs against short-lived real Python processes."""

    @pytest.mark.asyncio
    async def test_streaming_real_process(self, process_registry, event_bus):
        """Регрессионный тест: реальный процесс, пишущий stream-json."""
        script = (
            "import json, sys\n"
            "print(json.dumps({'type': 'assistant', 'message': {'content': [{'type': 'text', 'text': 'hello'}]}}))\n"
            "sys.stdout.flush()\n"
            "print(json.dumps({'type': 'result', 'result': 'done', 'total_cost_usd': 0.01}))\n"
        )
        result = await run_streaming(
            sys.executable, ["-c", script], registry=process_registry, bus=event_bus,
        )
        assert result.success is True
        assert result.response == "done"
        assert result.cost_usd == 0.01
        assert [e["kind"] for e in event_bus.published] == ["spawn", "text", "complete"]

    @pytest.mark.asyncio
    async def test_streaming_real_idle_timeout(self, process_registry, event_bus):
        """Регрессионный тест: реальный зависший процесс убивается по простою."""
        result = await run_streaming(
            sys.executable, ["-c", "import time; time.sleep(30)"],
            registry=process_registry, bus=event_bus,
            idle_timeout=0.3, poll_interval=0.05,
        )
        assert result.state == ExecutionState.TIMED_OUT
        assert len(process_registry) == 0

    @pytest.mark.asyncio
    async def test_bounded_real_timeout(self):
        """Регрессионный тест: реальный процесс превышает таймаут."""
        result = await run_bounded(sys.executable, ["-c", "import time; time.sleep(30)"], timeout=0.3)
        assert result.error == "Timeout after 0.3 seconds"

    @pytest.mark.asyncio
    async def test_bounded_real_output(self):
        """Регрессионный тест: реальный процесс с выводом."""
        result = await run_bounded(sys.executable, ["-c", "print('hi')"], timeout=10)
        assert result.success is True
        assert result.response == "hi"
