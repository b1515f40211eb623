"""Configuration module: frozen dataclass loaded from YAML and environment variables."""

import logging
import os
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 2 * 1024 * 1024  # 2 MB
MAX_FOLDER_SIZE = 10 * 1024 * 1024  # 10 MB

LOGS_DIRNAME = "logs"
OUTPUT_DIRNAME = "output"
OUTPUT_FILENAME = "logs.txt"


class ConfigError(ValueError):
    """Raised when capture limits are inconsistent."""


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class CaptureConfig:
    max_file_size: int = MAX_FILE_SIZE
    max_folder_size: int = MAX_FOLDER_SIZE
    root_dir: str = "./packlog-data"
    stop_timeout: float = 2.0
    evict_until_under_budget: bool = False

    def __post_init__(self):
        if self.max_file_size <= 0 or self.max_folder_size <= 0:
            raise ConfigError(
                f"sizes must be positive (max_file_size={self.max_file_size}, "
                f"max_folder_size={self.max_folder_size})"
            )
        if self.max_file_size >= self.max_folder_size:
            raise ConfigError(
                f"max_file_size ({self.max_file_size}) must be less than "
                f"max_folder_size ({self.max_folder_size})"
            )
        if self.stop_timeout < 0:
            raise ConfigError(f"stop_timeout must be >= 0, got {self.stop_timeout}")

    @property
    def rotation_dir(self) -> str:
        return os.path.join(self.root_dir, LOGS_DIRNAME)

    @property
    def output_dir(self) -> str:
        return os.path.join(self.root_dir, OUTPUT_DIRNAME)

    @property
    def output_path(self) -> str:
        return os.path.join(self.output_dir, OUTPUT_FILENAME)


def load_yaml_config(path: str | None) -> dict:
    """Load a YAML config file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
        return data
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}


def load_config(yaml_data: dict | None = None, **overrides) -> CaptureConfig:
    """Build CaptureConfig from defaults <- YAML ``capture`` section <- env vars <- overrides.

    ``overrides`` with a value of None are ignored, so CLI flags that were
    not given fall through to the lower layers.
    """
    section = (yaml_data or {}).get("capture", {}) or {}

    kwargs = {
        "max_file_size": int(os.environ.get(
            "PACKLOG_MAX_FILE_SIZE", section.get("max_file_size", CaptureConfig.max_file_size)
        )),
        "max_folder_size": int(os.environ.get(
            "PACKLOG_MAX_FOLDER_SIZE", section.get("max_folder_size", CaptureConfig.max_folder_size)
        )),
        "root_dir": os.environ.get(
            "PACKLOG_ROOT_DIR", section.get("root_dir", CaptureConfig.root_dir)
        ),
        "stop_timeout": float(os.environ.get(
            "PACKLOG_STOP_TIMEOUT", section.get("stop_timeout", CaptureConfig.stop_timeout)
        )),
        "evict_until_under_budget": _parse_bool(str(os.environ.get(
            "PACKLOG_EVICT_UNTIL_UNDER_BUDGET",
            section.get("evict_until_under_budget", CaptureConfig.evict_until_under_budget),
        ))),
    }
    kwargs.update({k: v for k, v in overrides.items() if v is not None})

    return CaptureConfig(**kwargs)
