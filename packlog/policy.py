"""Rotation and eviction policies plus the directory helpers they rely on."""

import logging
import os
import time

from packlog.models import RotationFile

logger = logging.getLogger(__name__)

FILE_PREFIX = "logcat_"
FILE_SUFFIX = ".txt"


def should_rotate(current_size: int, max_file_size: int) -> bool:
    return current_size >= max_file_size


def should_evict(total_size: int, max_folder_size: int) -> bool:
    return total_size >= max_folder_size


def folder_size(path: str) -> int:
    """Total bytes of all files under path, recursing into subdirectories."""
    if not os.path.isdir(path):
        try:
            return os.path.getsize(path)
        except OSError:
            return 0
    total = 0
    with os.scandir(path) as it:
        for entry in it:
            try:
                if entry.is_dir(follow_symlinks=False):
                    total += folder_size(entry.path)
                else:
                    total += entry.stat(follow_symlinks=False).st_size
            except FileNotFoundError:
                # Removed between listing and stat
                continue
    return total


def walk_files(path: str) -> list[RotationFile]:
    """All files directly or transitively under path."""
    files = []
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                files.append(RotationFile.from_path(os.path.join(dirpath, name)))
            except FileNotFoundError:
                continue
    return files


def oldest_file(path: str, exclude: str | None = None) -> RotationFile | None:
    """Return the file with the smallest modification time, or None."""
    excluded = os.path.abspath(exclude) if exclude else None
    candidates = [
        f for f in walk_files(path)
        if excluded is None or os.path.abspath(f.path) != excluded
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda f: f.sort_key)


def evict_oldest(path: str, exclude: str | None = None) -> RotationFile | None:
    """Delete the oldest file under path (never ``exclude``). Returns what was deleted.

    Returns None when there is no candidate, or when the candidate was
    removed by someone else before we got to it.
    """
    victim = oldest_file(path, exclude=exclude)
    if victim is None:
        return None
    try:
        os.remove(victim.path)
    except FileNotFoundError:
        logger.info("Eviction candidate %s already removed", victim.name)
        return None
    logger.info("Evicted %s (%d bytes)", victim.name, victim.size)
    return victim


class RotationNamer:
    """Hands out rotation file paths named from the creation instant in milliseconds.

    Several rotations inside the same millisecond get a counter suffix
    (``logcat_<ms>_1.txt``, ``logcat_<ms>_2.txt``) so names stay unique and
    sort in creation order.
    """

    def __init__(self, directory: str, time_func=None):
        self._directory = directory
        self._time_func = time_func or time.time
        self._last_millis = -1
        self._seq = 0

    def next_path(self) -> str:
        millis = int(self._time_func() * 1000)
        if millis == self._last_millis:
            self._seq += 1
        else:
            self._last_millis = millis
            self._seq = 0

        while True:
            path = os.path.join(self._directory, self._format(millis, self._seq))
            if not os.path.exists(path):
                return path
            self._seq += 1

    @staticmethod
    def _format(millis: int, seq: int) -> str:
        if seq:
            return f"{FILE_PREFIX}{millis}_{seq}{FILE_SUFFIX}"
        return f"{FILE_PREFIX}{millis}{FILE_SUFFIX}"
