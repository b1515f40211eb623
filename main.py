#!/usr/bin/env python3
"""packlog: capture a process's log stream into rotating files and export a merged copy."""

import argparse
import logging
import os
import signal
import sys
import threading

from packlog.config import load_config, load_yaml_config
from packlog.engine import EngineBuilder
from packlog.merge import list_rotation_files, merge_logs
from packlog.source import CommandLogSource, FileLogSource, source_factory_from_dict

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [packlog] %(levelname)s %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rotating log capture with merged export")
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("--root-dir", default=None,
                        help="Storage root holding logs/ and output/")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    capture = sub.add_parser("capture", help="Capture a log stream until interrupted")
    capture.add_argument("--max-file-size", type=int, default=None,
                         help="Rotate once the current file reaches this many bytes")
    capture.add_argument("--max-folder-size", type=int, default=None,
                         help="Evict the oldest file once the rotation directory reaches this many bytes")
    capture.add_argument("--pid", type=int, default=None,
                         help="Process id to capture (default: this process)")
    source = capture.add_mutually_exclusive_group()
    source.add_argument("--logcat", action="store_true", help="Read from Android logcat")
    source.add_argument("--run", metavar="COMMAND", default=None,
                        help="Read stdout of COMMAND ({pid} is substituted)")
    source.add_argument("--file", metavar="PATH", default=None, help="Tail a log file")
    capture.add_argument("--clear-command", default=None,
                         help="Command run once before capture to clear old output")
    capture.add_argument("--match", default=None,
                         help="Keep only lines containing this text ({pid} is substituted)")
    capture.add_argument("--export-on-exit", action="store_true",
                         help="Write the merged export before shutting down")

    sub.add_parser("export", help="Merge existing rotation files without capturing")
    sub.add_parser("list", help="List rotation files")
    return parser


def _source_factory(args, yaml_data: dict):
    if args.logcat:
        return CommandLogSource.logcat
    if args.run:
        return lambda: CommandLogSource(args.run, clear_command=args.clear_command, match=args.match)
    if args.file:
        return lambda: FileLogSource(args.file)
    return source_factory_from_dict(yaml_data.get("source"))


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def run_capture(args, yaml_data: dict) -> int:
    config = load_config(
        yaml_data,
        root_dir=args.root_dir,
        max_file_size=args.max_file_size,
        max_folder_size=args.max_folder_size,
    )
    builder = EngineBuilder.from_config(config).set_source(_source_factory(args, yaml_data))
    if args.pid is not None:
        builder.set_pid(args.pid)
    engine = builder.build()

    shutdown = threading.Event()
    export_requested = threading.Event()

    def _signal_handler(sig, _frame):
        logger.info("Shutdown signal received (signal %d), stopping...", sig)
        shutdown.set()

    def _export_handler(_sig, _frame):
        export_requested.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, _export_handler)

    logger.info(
        "Config: root_dir=%s, max_file_size=%d bytes, max_folder_size=%d bytes, pid=%d",
        config.root_dir, config.max_file_size, config.max_folder_size, engine.pid,
    )
    engine.start()

    try:
        while not shutdown.is_set():
            if export_requested.is_set():
                export_requested.clear()
                _report(engine.export())
            shutdown.wait(0.5)
    except KeyboardInterrupt:
        pass

    if args.export_on_exit:
        _report(engine.export())
    engine.stop(wait=True)
    logger.info("Shut down cleanly.")
    return 0


def _report(result) -> None:
    if result.ok:
        logger.info("Export written to %s (%d lines)", result.path, result.lines)
    else:
        logger.error("Export failed: %s", result.error)


def run_export(args, yaml_data: dict) -> int:
    config = load_config(yaml_data, root_dir=args.root_dir)
    os.makedirs(config.output_dir, exist_ok=True)
    if os.path.exists(config.output_path):
        os.remove(config.output_path)
    try:
        lines = merge_logs(config.rotation_dir, config.output_path)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Exported {lines} lines to {config.output_path}")
    return 0


def run_list(args, yaml_data: dict) -> int:
    config = load_config(yaml_data, root_dir=args.root_dir)
    if not os.path.isdir(config.rotation_dir):
        print("No rotation files found.")
        return 0
    files = list_rotation_files(config.rotation_dir)
    if not files:
        print("No rotation files found.")
        return 0
    for rf in files:
        print(f"  {rf.name}  ({_format_size(rf.size)})")
    total = sum(rf.size for rf in files)
    print(f"{len(files)} file(s), {_format_size(total)} total")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_cli_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    yaml_data = load_yaml_config(args.config)
    try:
        if args.command == "capture":
            return run_capture(args, yaml_data)
        if args.command == "export":
            return run_export(args, yaml_data)
        return run_list(args, yaml_data)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
