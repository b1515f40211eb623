"""CLI tests: in-process for export/list, subprocess for a full capture run."""

import os
import shlex
import signal
import subprocess
import sys

import pytest

from main import _format_size, _source_factory, build_cli_parser, main
from packlog.source import CommandLogSource, FileLogSource

from conftest import read_lines, wait_for

MAIN_PY = os.path.join(os.path.dirname(__file__), "..", "main.py")


def _seed(root, name, text, mtime):
    logs = os.path.join(root, "logs")
    os.makedirs(logs, exist_ok=True)
    path = os.path.join(logs, name)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    os.utime(path, (mtime, mtime))


class TestFormatSize:
    def test_bytes(self):
        assert _format_size(512) == "512 B"

    def test_kilobytes(self):
        assert _format_size(2048) == "2.0 KB"

    def test_megabytes(self):
        assert _format_size(3 * 1024 * 1024) == "3.0 MB"


class TestSourceSelection:
    def _args(self, *argv):
        return build_cli_parser().parse_args(["capture", *argv])

    def test_run_command(self):
        code = "print('[5] ours'); print('[6] theirs')"
        command = f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"
        args = self._args("--run", command, "--match", "[{pid}]")
        source = _source_factory(args, {})()
        assert isinstance(source, CommandLogSource)
        assert list(source.open(5)) == ["[5] ours\n"]
        source.close()

    def test_file(self, tmp_path):
        args = self._args("--file", str(tmp_path / "app.log"))
        assert isinstance(_source_factory(args, {})(), FileLogSource)

    def test_logcat_flag(self):
        assert _source_factory(self._args("--logcat"), {}) == CommandLogSource.logcat

    def test_falls_back_to_yaml(self):
        yaml_data = {"source": {"type": "file", "path": "/tmp/app.log"}}
        assert isinstance(_source_factory(self._args(), yaml_data)(), FileLogSource)

    def test_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            self._args("--logcat", "--file", "x.log")


class TestExportCommand:
    def test_merges_existing_files(self, tmp_path, capsys):
        root = str(tmp_path)
        _seed(root, "logcat_1600000000002.txt", "second\n", mtime=2_000)
        _seed(root, "logcat_1600000000001.txt", "first\n", mtime=1_000)

        assert main(["--root-dir", root, "export"]) == 0

        out = capsys.readouterr().out
        assert "Exported 2 lines" in out
        assert read_lines(os.path.join(root, "output", "logs.txt")) == ["first", "second"]

    def test_missing_rotation_dir(self, tmp_path, capsys):
        assert main(["--root-dir", str(tmp_path / "nothing"), "export"]) == 1
        assert "Error" in capsys.readouterr().err

    def test_invalid_limits(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("PACKLOG_MAX_FILE_SIZE", "500")
        monkeypatch.setenv("PACKLOG_MAX_FOLDER_SIZE", "100")
        assert main(["--root-dir", str(tmp_path), "export"]) == 2
        assert "must be less than" in capsys.readouterr().err


class TestListCommand:
    def test_lists_files_with_total(self, tmp_path, capsys):
        root = str(tmp_path)
        _seed(root, "logcat_1600000000001.txt", "a" * 100, mtime=1_000)
        _seed(root, "logcat_1600000000002.txt", "b" * 2048, mtime=2_000)

        assert main(["--root-dir", root, "list"]) == 0

        out = capsys.readouterr().out.splitlines()
        assert out[0].strip() == "logcat_1600000000001.txt  (100 B)"
        assert out[1].strip() == "logcat_1600000000002.txt  (2.0 KB)"
        assert out[2] == "2 file(s), 2.1 KB total"

    def test_empty(self, tmp_path, capsys):
        assert main(["--root-dir", str(tmp_path), "list"]) == 0
        assert "No rotation files found." in capsys.readouterr().out


class TestCaptureProcess:
    def test_capture_then_export_on_exit(self, tmp_path):
        root = tmp_path / "root"
        code = "import time; print('alpha', flush=True); print('beta', flush=True); time.sleep(60)"
        command = f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"
        proc = subprocess.Popen(
            [
                sys.executable, MAIN_PY, "--root-dir", str(root), "capture",
                "--run", command, "--export-on-exit",
                "--max-file-size", "1000", "--max-folder-size", "10000",
            ],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
        )

        def captured():
            logs = root / "logs"
            if not logs.is_dir():
                return []
            lines = []
            for name in sorted(os.listdir(logs)):
                lines.extend(read_lines(logs / name))
            return lines

        try:
            assert wait_for(lambda: captured() == ["alpha", "beta"], timeout=15)
            proc.send_signal(signal.SIGTERM)
            _, stderr = proc.communicate(timeout=15)
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

        assert proc.returncode == 0, stderr
        assert read_lines(root / "output" / "logs.txt") == ["alpha", "beta"]
        assert "Shut down cleanly." in stderr
