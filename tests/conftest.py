"""Pytest fixtures for gastown-executor tests."""

import asyncio
import signal
from unittest.mock import MagicMock

import pytest

from gastown_executor import config
from gastown_executor.config import Settings
from gastown_executor.executor import events, logging, registry, targets
from gastown_executor.executor.events import EventBus
from gastown_executor.executor.registry import ProcessRegistry


@pytest.fixture
def reset_settings_singleton():
    """Фикстура для сброса singleton _settings между тестами.

    Сохраняет текущее значение config._settings (может быть None),
    сбрасывает его в None перед тестом и восстанавливает после теста.
    """
    original_value = config._settings

    # Сброс перед тестом
    config._settings = None

    yield

    # Восстановление после теста
    config._settings = original_value


@pytest.fixture
def reset_logger_singleton():
    """Фикстура для сброса singleton _logger между тестами.

    Сохраняет текущее значение logging._logger (может быть None),
    сбрасывает logging._logger в None перед тестом,
    восстанавливает оригинальное значение после теста.
    """
    original_value = logging._logger

    # Сброс перед тестом
    logging._logger = None

    yield

    # Восстановление после теста
    logging._logger = original_value


@pytest.fixture
def reset_executor_singletons():
    """Фикстура для сброса singleton-ов реестра, шины событий и executor-а."""
    saved = (registry._registry, events._bus, targets._executor, config._settings)
    registry._registry = None
    events._bus = None
    targets._executor = None
    config._settings = None

    yield

    registry._registry, events._bus, targets._executor, config._settings = saved


@pytest.fixture
def process_registry():
    """Свежий реестр процессов для одного теста."""
    return ProcessRegistry()


@pytest.fixture
def event_bus():
    """Шина событий, которая складывает все события в список bus.published."""
    bus = EventBus()
    bus.published = []
    bus.subscribe(bus.published.append)
    return bus


@pytest.fixture
def settings(tmp_path):
    """Настройки с рабочей директорией и bin_dir во временной папке."""
    gastown = tmp_path / "gt"
    gastown.mkdir()
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return Settings(
        gastown_path=gastown,
        bin_dir=bin_dir,
        idle_timeout=120,
        idle_poll_interval=5,
        aux_timeout=120,
    )


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process backed by real StreamReaders.

    Must be created inside a running event loop.
    """

    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.returncode = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._exited = asyncio.Event()
        self.terminate = MagicMock(side_effect=lambda: self.exit(-signal.SIGTERM))
        self.kill = MagicMock(side_effect=lambda: self.exit(-signal.SIGKILL))

    def write_stdout(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def write_stderr(self, data: bytes) -> None:
        self.stderr.feed_data(data)

    def exit(self, code: int) -> None:
        """Close both pipes and record the exit code (first exit wins)."""
        if self.returncode is None:
            self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    async def communicate(self, input=None):
        stdout = await self.stdout.read()
        stderr = await self.stderr.read()
        await self.wait()
        return stdout, stderr


@pytest.fixture
def make_process():
    """Фабрика FakeProcess; вызывать внутри async-теста."""
    return FakeProcess
