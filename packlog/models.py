"""Shared types: engine state, rotation files, and export results."""

import os
import re
from dataclasses import dataclass
from enum import Enum

_ROTATION_NAME_RE = re.compile(r"^logcat_(\d+)(?:_(\d+))?\.txt$")


class EngineState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def parse_rotation_name(name: str) -> tuple[int, int] | None:
    """Extract (creation_millis, sequence) from a rotation file name."""
    m = _ROTATION_NAME_RE.match(name)
    if m is None:
        return None
    return int(m.group(1)), int(m.group(2) or 0)


@dataclass(frozen=True)
class RotationFile:
    path: str
    name: str
    size: int
    mtime_ns: int

    @classmethod
    def from_path(cls, path: str) -> "RotationFile":
        st = os.stat(path)
        return cls(
            path=path,
            name=os.path.basename(path),
            size=st.st_size,
            mtime_ns=st.st_mtime_ns,
        )

    @property
    def sort_key(self) -> tuple:
        """Oldest first. Equal mtimes fall back to creation order encoded in the name."""
        parsed = parse_rotation_name(self.name)
        if parsed is None:
            return (self.mtime_ns, 1, 0, 0, self.name)
        return (self.mtime_ns, 0, parsed[0], parsed[1], self.name)


@dataclass(frozen=True)
class ExportSuccess:
    path: str
    lines: int = 0

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ExportFailure:
    error: Exception

    @property
    def ok(self) -> bool:
        return False


ExportResult = ExportSuccess | ExportFailure
