"""Merge rotation files into one chronologically ordered export file."""

import logging
import os

from packlog.models import RotationFile

logger = logging.getLogger(__name__)


def list_rotation_files(source_dir: str) -> list[RotationFile]:
    """Regular files directly in source_dir, oldest modification time first."""
    files = []
    with os.scandir(source_dir) as it:
        for entry in it:
            if not entry.is_file(follow_symlinks=False):
                continue
            try:
                files.append(RotationFile.from_path(entry.path))
            except FileNotFoundError:
                continue
    files.sort(key=lambda f: f.sort_key)
    return files


def merge_logs(source_dir: str, output_path: str) -> int:
    """Concatenate every rotation file's lines into output_path. Returns lines written.

    Files are taken in ascending modification time; lines keep their order
    within each file and are all terminated with ``\\n``. The output file is
    truncated first, so an empty source directory yields an empty file.
    """
    files = list_rotation_files(source_dir)
    count = 0
    with open(output_path, "w", encoding="utf-8", newline="\n") as out:
        for rf in files:
            with open(rf.path, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    out.write(line.rstrip("\n") + "\n")
                    count += 1
            logger.debug("Merged %s (%d bytes)", rf.name, rf.size)
    logger.info("Merged %d file(s), %d lines into %s", len(files), count, output_path)
    return count
