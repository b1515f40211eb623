"""Log sources: where the capture loop reads its lines from.

A source is used by exactly one capture loop. ``close()`` may be called from
another thread while the loop is blocked reading, and must make the stream
returned by ``open()`` end.
"""

import logging
import os
import shlex
import subprocess
import threading
from typing import Iterator, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class LogSource(Protocol):
    def clear(self, pid: int) -> None: ...

    def open(self, pid: int) -> Iterator[str]: ...

    def close(self) -> None: ...


def _render(command, pid: int) -> list[str]:
    """Split a command (string or argv list) and substitute ``{pid}``."""
    argv = shlex.split(command) if isinstance(command, str) else list(command)
    return [arg.replace("{pid}", str(pid)) for arg in argv]


class CommandLogSource:
    """Reads lines from the stdout of an external command (e.g. ``logcat``).

    If ``match`` is given, only lines containing it are yielded; ``{pid}`` in
    the command or the match string is replaced with the captured process id.
    """

    def __init__(self, command, clear_command=None, match: str | None = None,
                 grace_period: float = 2.0):
        self._command = command
        self._clear_command = clear_command
        self._match = match
        self._grace_period = grace_period
        self._proc: subprocess.Popen | None = None
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def logcat(cls) -> "CommandLogSource":
        return cls(["logcat"], clear_command=["logcat", "-c"], match="({pid})")

    def clear(self, pid: int) -> None:
        if not self._clear_command:
            return
        argv = _render(self._clear_command, pid)
        logger.debug("Clearing log buffer: %s", argv)
        subprocess.run(
            argv,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
            timeout=10,
        )

    def open(self, pid: int) -> Iterator[str]:
        argv = _render(self._command, pid)
        needle = self._match.replace("{pid}", str(pid)) if self._match else None
        with self._lock:
            if self._closed:
                return iter(())
            self._proc = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
            proc = self._proc
        logger.info("Reading log command %s (pid=%d)", argv, proc.pid)
        return self._lines(proc, needle)

    @staticmethod
    def _lines(proc: subprocess.Popen, needle: str | None) -> Iterator[str]:
        for line in proc.stdout:
            if needle is not None and needle not in line:
                continue
            yield line

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            proc = self._proc
            self._proc = None
        if proc is None:
            return

        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=self._grace_period)
            except subprocess.TimeoutExpired:
                logger.warning("Log command %d did not exit, killing", proc.pid)
                proc.kill()
                proc.wait()
        if proc.stdout:
            proc.stdout.close()


class FileLogSource:
    """Tails a text file the observed process writes its log to.

    Handles:
    - File not yet existing (waits for creation)
    - Log rotation (inode change detection)
    - File truncation (seek back to start)

    ``clear(pid)`` skips whatever the file already holds, so capture starts at
    the current end of file.
    """

    def __init__(self, path: str, poll_interval: float = 0.5):
        self._path = path
        self._poll_interval = poll_interval
        self._shutdown = threading.Event()
        self._skip_existing = False
        self._file = None
        self._inode = None
        self._partial = ""

    def clear(self, pid: int) -> None:
        self._skip_existing = True

    def open(self, pid: int) -> Iterator[str]:
        logger.info("Tailing %s for pid %d", self._path, pid)
        return self._tail()

    def close(self) -> None:
        self._shutdown.set()

    def _tail(self) -> Iterator[str]:
        if not self._wait_for_file():
            return
        self._open_file(seek_end=self._skip_existing)
        try:
            while not self._shutdown.is_set():
                if self._rotated():
                    # Drain what is left of the old file before switching
                    yield from self._complete_lines(self._file.read())
                    self._close_file()
                    self._open_file(seek_end=False)
                    continue

                self._check_truncation()

                chunk = self._file.readline()
                if chunk:
                    yield from self._complete_lines(chunk)
                else:
                    self._shutdown.wait(self._poll_interval)
        finally:
            self._close_file()

    def _complete_lines(self, data: str) -> Iterator[str]:
        data = self._partial + data
        self._partial = ""
        lines = data.split("\n")
        # Last element is a partial line (or "" when data ended with \n)
        self._partial = lines.pop()
        for line in lines:
            yield line + "\n"

    def _wait_for_file(self) -> bool:
        while not self._shutdown.is_set():
            if os.path.exists(self._path):
                return True
            logger.debug("Waiting for file %s to appear...", self._path)
            self._shutdown.wait(self._poll_interval)
        return False

    def _open_file(self, seek_end: bool = False):
        self._file = open(self._path, "r", encoding="utf-8", errors="replace")
        self._inode = os.fstat(self._file.fileno()).st_ino
        if seek_end:
            self._file.seek(0, os.SEEK_END)
        logger.debug("Opened %s (inode=%d)", self._path, self._inode)

    def _close_file(self):
        if self._file:
            self._file.close()
            self._file = None

    def _rotated(self) -> bool:
        try:
            current_inode = os.stat(self._path).st_ino
        except FileNotFoundError:
            return False
        if current_inode != self._inode:
            logger.info("File rotation detected for %s", self._path)
            return True
        return False

    def _check_truncation(self):
        try:
            file_size = os.path.getsize(self._path)
        except FileNotFoundError:
            return
        if self._file.tell() > file_size:
            logger.info("File truncation detected for %s", self._path)
            self._file.seek(0)
            self._partial = ""


def source_factory_from_dict(d: dict | None):
    """Build a zero-argument source factory from a YAML ``source`` section.

    Supported types: ``logcat`` (default), ``command`` and ``file``.
    """
    d = d or {}
    kind = d.get("type", "logcat")
    if kind == "logcat":
        return CommandLogSource.logcat
    if kind == "command":
        if not d.get("command"):
            raise ValueError("source type 'command' requires 'command'")
        return lambda: CommandLogSource(
            d["command"],
            clear_command=d.get("clear_command"),
            match=d.get("match"),
            grace_period=float(d.get("grace_period", 2.0)),
        )
    if kind == "file":
        if not d.get("path"):
            raise ValueError("source type 'file' requires 'path'")
        return lambda: FileLogSource(d["path"], poll_interval=float(d.get("poll_interval", 0.5)))
    raise ValueError(f"Unknown source type: {kind!r}")
