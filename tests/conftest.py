"""Shared pytest fixtures: fake log sources, a deterministic clock, and engine builders."""

import itertools
import os
import queue
import time

import pytest

from packlog.config import CaptureConfig
from packlog.engine import EngineBuilder


class FakeLogSource:
    """Queue-backed source. ``feed()`` pushes lines, ``end()`` ends the stream."""

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self.clear_calls = 0
        self.close_calls = 0
        self.opened_pid = None
        self.cleared_pid = None
        self.clear_error: Exception | None = None
        self.open_error: Exception | None = None

    def feed(self, *lines):
        for line in lines:
            self._queue.put(line)

    def end(self):
        self._queue.put(None)

    def clear(self, pid):
        self.clear_calls += 1
        self.cleared_pid = pid
        if self.clear_error is not None:
            raise self.clear_error

    def open(self, pid):
        if self.open_error is not None:
            raise self.open_error
        self.opened_pid = pid
        return self._lines()

    def _lines(self):
        while True:
            item = self._queue.get()
            if item is None:
                return
            yield item

    def close(self):
        self.close_calls += 1
        self._queue.put(None)


class ScriptedSource(FakeLogSource):
    """Yields a fixed list of lines, calling ``after_each`` once each line has been handled."""

    def __init__(self, lines, after_each=None):
        super().__init__()
        self._script = list(lines)
        self._after_each = after_each

    def _lines(self):
        for line in self._script:
            yield line
            if self._after_each:
                self._after_each()


class FakeSourceFactory:
    def __init__(self):
        self.sources: list[FakeLogSource] = []

    def __call__(self) -> FakeLogSource:
        source = FakeLogSource()
        self.sources.append(source)
        return source

    @property
    def latest(self) -> FakeLogSource:
        return self.sources[-1]


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def read_lines(path) -> list[str]:
    with open(path, "r", encoding="utf-8") as f:
        return f.read().splitlines()


def rotation_names(directory) -> list[str]:
    return sorted(n for n in os.listdir(directory) if n.startswith("logcat_"))


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("PACKLOG_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock():
    """Whole-second ticks, so every call yields a distinct, exact millisecond name."""
    counter = itertools.count(1_700_000_000)
    return lambda: next(counter)


@pytest.fixture
def small_config(tmp_path) -> CaptureConfig:
    return CaptureConfig(
        max_file_size=100,
        max_folder_size=250,
        root_dir=str(tmp_path / "root"),
        stop_timeout=2.0,
    )


@pytest.fixture
def source_factory() -> FakeSourceFactory:
    return FakeSourceFactory()


@pytest.fixture
def engine(tmp_path, source_factory, clock):
    eng = (
        EngineBuilder()
        .set_root_dir(str(tmp_path / "root"))
        .set_max_file_size(1024)
        .set_max_folder_size(64 * 1024)
        .set_stop_timeout(2.0)
        .set_source(source_factory)
        .set_pid(4242)
        .set_time_func(clock)
        .build()
    )
    yield eng
    eng.stop(wait=True)
