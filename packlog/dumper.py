"""CaptureLoop: background thread that writes a log source's lines into rotation files."""

import logging
import os
from threading import Event, Lock, Thread

from packlog.config import CaptureConfig
from packlog.policy import RotationNamer, evict_oldest, folder_size, should_evict, should_rotate
from packlog.source import LogSource

logger = logging.getLogger(__name__)


class CaptureLoop(Thread):
    """Reads one log source and persists its lines with rotation and eviction.

    Per incoming line, in this order: rotation check, eviction check, write.
    The loop ends on stop request, read error or end of stream, and is never
    restarted; the engine creates a fresh one on every start.
    """

    def __init__(self, pid: int, source: LogSource, config: CaptureConfig, time_func=None):
        super().__init__(daemon=True, name=f"packlog-capture-{pid}")
        self._pid = pid
        self._source = source
        self._config = config
        self._rotation_dir = config.rotation_dir
        self._namer = RotationNamer(self._rotation_dir, time_func)
        self._stop_requested = Event()
        self._release_lock = Lock()
        self._source_released = False
        self._stream = None
        self._file = None
        self._file_path: str | None = None
        self._lines_written = 0
        self._rotations = 0
        self._evictions = 0

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def current_path(self) -> str | None:
        return self._file_path

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    @property
    def lines_written(self) -> int:
        return self._lines_written

    @property
    def rotations(self) -> int:
        return self._rotations

    @property
    def evictions(self) -> int:
        return self._evictions

    def stop_logs(self):
        """Ask the loop to finish before its next write. Does not wait."""
        self._stop_requested.set()

    def interrupt(self):
        """Stop and release the source so a blocked read returns."""
        self._stop_requested.set()
        self._release_source()

    def run(self):
        try:
            self._clear_source()
            self._stream = self._source.open(self._pid)
            try:
                self._open_next_file()
            except OSError:
                logger.exception("Could not create rotation file in %s", self._rotation_dir)
                return
            for raw in self._stream:
                if self._stop_requested.is_set():
                    break
                line = raw.rstrip("\r\n")
                if not line:
                    continue
                self._write_line(line)
        except (OSError, ValueError) as e:
            if self._stop_requested.is_set():
                logger.debug("Capture read ended during stop: %s", e)
            else:
                logger.warning("Capture for pid %d stopped on I/O error: %s", self._pid, e)
        except Exception:
            logger.exception("Capture for pid %d stopped on unexpected error", self._pid)
        finally:
            self._close_stream()
            self._release_source()
            self._close_file()
            logger.info(
                "Capture for pid %d finished: %d lines, %d rotations, %d evictions",
                self._pid, self._lines_written, self._rotations, self._evictions,
            )

    def _clear_source(self):
        try:
            self._source.clear(self._pid)
        except Exception as e:
            logger.warning("Could not clear log source: %s", e)

    def _write_line(self, line: str):
        if should_rotate(self._file.tell(), self._config.max_file_size):
            self._rotate()

        total = folder_size(self._rotation_dir)
        if should_evict(total, self._config.max_folder_size):
            self._evict(total)

        self._file.write((line + "\n").encode("utf-8", errors="replace"))
        self._file.flush()
        self._lines_written += 1

    def _rotate(self):
        old = self._file_path
        self._close_file()
        self._open_next_file()
        self._rotations += 1
        logger.info("Rotated %s -> %s", os.path.basename(old), os.path.basename(self._file_path))

    def _evict(self, total: int):
        victim = evict_oldest(self._rotation_dir, exclude=self._file_path)
        if victim is None:
            logger.warning("Rotation directory at %d bytes, nothing evicted", total)
            return
        self._evictions += 1

        if not self._config.evict_until_under_budget:
            return
        while should_evict(folder_size(self._rotation_dir), self._config.max_folder_size):
            if evict_oldest(self._rotation_dir, exclude=self._file_path) is None:
                break
            self._evictions += 1

    def _open_next_file(self):
        os.makedirs(self._rotation_dir, exist_ok=True)
        path = self._namer.next_path()
        self._file = open(path, "wb")
        self._file_path = path
        logger.debug("Opened rotation file %s", path)

    def _close_file(self):
        if self._file and not self._file.closed:
            self._file.close()
        self._file = None

    def _close_stream(self):
        close = getattr(self._stream, "close", None)
        self._stream = None
        if close is None:
            return
        try:
            close()
        except Exception as e:
            logger.debug("Error closing log stream: %s", e)

    def _release_source(self):
        with self._release_lock:
            if self._source_released:
                return
            self._source_released = True
        try:
            self._source.close()
        except Exception as e:
            logger.warning("Error releasing log source: %s", e)
