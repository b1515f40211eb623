"""LogEngine: lifecycle of the capture loop and on-demand export."""

import logging
import os
import threading
from typing import Callable

from packlog.config import MAX_FILE_SIZE, MAX_FOLDER_SIZE, CaptureConfig
from packlog.dumper import CaptureLoop
from packlog.merge import list_rotation_files, merge_logs
from packlog.models import EngineState, ExportFailure, ExportResult, ExportSuccess, RotationFile
from packlog.source import CommandLogSource, LogSource

logger = logging.getLogger(__name__)

SourceFactory = Callable[[], LogSource]


class LogEngine:
    """Owns at most one running CaptureLoop and turns rotation files into an export.

    State transitions are serialized by a lock, so concurrent ``start()``
    calls end up with a single worker. ``stop()`` only signals the worker
    unless ``wait=True``; ``export()`` always waits (bounded by
    ``config.stop_timeout``) before merging.
    """

    def __init__(self, config: CaptureConfig, source_factory: SourceFactory,
                 pid: int | None = None, time_func=None):
        self._config = config
        self._source_factory = source_factory
        self._pid = pid if pid is not None else os.getpid()
        self._time_func = time_func
        self._lock = threading.Lock()
        self._export_lock = threading.Lock()
        self._state = EngineState.STOPPED
        self._worker: CaptureLoop | None = None
        os.makedirs(config.rotation_dir, exist_ok=True)
        os.makedirs(config.output_dir, exist_ok=True)

    @property
    def config(self) -> CaptureConfig:
        return self._config

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def rotation_dir(self) -> str:
        return self._config.rotation_dir

    @property
    def output_path(self) -> str:
        return self._config.output_path

    @property
    def worker(self) -> CaptureLoop | None:
        with self._lock:
            return self._worker

    @property
    def state(self) -> EngineState:
        with self._lock:
            if self._state is EngineState.RUNNING and self._worker_alive():
                return EngineState.RUNNING
            return EngineState.STOPPED

    @property
    def is_running(self) -> bool:
        return self.state is EngineState.RUNNING

    def _worker_alive(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self):
        with self._lock:
            if self._state is EngineState.RUNNING and self._worker_alive():
                logger.debug("Capture already running for pid %d", self._pid)
                return
            worker = CaptureLoop(self._pid, self._source_factory(), self._config, self._time_func)
            worker.start()
            self._worker = worker
            self._state = EngineState.RUNNING
        logger.info("Capture started for pid %d in %s", self._pid, self._config.rotation_dir)

    def stop(self, wait: bool = False):
        """Signal the capture loop to finish.

        With ``wait=False`` this returns immediately and the worker may still
        be mid-write. With ``wait=True`` the source is interrupted and the
        worker joined for up to ``config.stop_timeout`` seconds.
        """
        with self._lock:
            worker = self._worker
            self._worker = None
            self._state = EngineState.STOPPED
        if worker is None:
            return

        if not wait:
            worker.stop_logs()
            logger.info("Capture stop requested for pid %d", self._pid)
            return

        worker.interrupt()
        worker.join(timeout=self._config.stop_timeout)
        if worker.is_alive():
            logger.warning(
                "Capture worker %s still alive after %.1fs, continuing anyway",
                worker.name, self._config.stop_timeout,
            )
        else:
            logger.info("Capture stopped for pid %d", self._pid)

    def export(self) -> ExportResult:
        """Stop capture, merge all rotation files into the export file, restart capture."""
        with self._export_lock:
            try:
                self.stop(wait=True)
                os.makedirs(self._config.output_dir, exist_ok=True)
                if os.path.exists(self.output_path):
                    os.remove(self.output_path)
                lines = merge_logs(self.rotation_dir, self.output_path)
                return ExportSuccess(path=self.output_path, lines=lines)
            except Exception as e:
                logger.exception("Export to %s failed", self.output_path)
                return ExportFailure(error=e)
            finally:
                self.start()

    def list_rotation_files(self) -> list[RotationFile]:
        return list_rotation_files(self.rotation_dir)


class EngineBuilder:
    """Fluent construction of a LogEngine; limits are validated in ``build()``."""

    def __init__(self):
        self._max_file_size = MAX_FILE_SIZE
        self._max_folder_size = MAX_FOLDER_SIZE
        self._root_dir = CaptureConfig.root_dir
        self._stop_timeout = CaptureConfig.stop_timeout
        self._evict_until_under_budget = CaptureConfig.evict_until_under_budget
        self._source_factory: SourceFactory = CommandLogSource.logcat
        self._pid: int | None = None
        self._time_func = None

    @classmethod
    def from_config(cls, config: CaptureConfig) -> "EngineBuilder":
        return (
            cls()
            .set_max_file_size(config.max_file_size)
            .set_max_folder_size(config.max_folder_size)
            .set_root_dir(config.root_dir)
            .set_stop_timeout(config.stop_timeout)
            .set_evict_until_under_budget(config.evict_until_under_budget)
        )

    def set_max_file_size(self, size: int) -> "EngineBuilder":
        self._max_file_size = size
        return self

    def set_max_folder_size(self, size: int) -> "EngineBuilder":
        self._max_folder_size = size
        return self

    def set_root_dir(self, path: str) -> "EngineBuilder":
        self._root_dir = path
        return self

    def set_stop_timeout(self, seconds: float) -> "EngineBuilder":
        self._stop_timeout = seconds
        return self

    def set_evict_until_under_budget(self, enabled: bool) -> "EngineBuilder":
        self._evict_until_under_budget = enabled
        return self

    def set_source(self, factory: SourceFactory) -> "EngineBuilder":
        """Each capture loop gets a fresh source from ``factory()``."""
        self._source_factory = factory
        return self

    def set_pid(self, pid: int) -> "EngineBuilder":
        self._pid = pid
        return self

    def set_time_func(self, time_func) -> "EngineBuilder":
        self._time_func = time_func
        return self

    def build(self) -> LogEngine:
        config = CaptureConfig(
            max_file_size=self._max_file_size,
            max_folder_size=self._max_folder_size,
            root_dir=self._root_dir,
            stop_timeout=self._stop_timeout,
            evict_until_under_budget=self._evict_until_under_budget,
        )
        return LogEngine(config, self._source_factory, pid=self._pid, time_func=self._time_func)
