"""Locate, read and cache the YAML configuration file."""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

CONFIG_PATH_ENV = "LLMBRIDGE_CONFIG"
CONFIG_CACHE_TTL = 5  # seconds between mtime checks
CONFIG_SEARCH_DIRS = (Path(), Path("/etc/secrets"))


class ConfigFileNotFoundError(FileNotFoundError):
    """No candidate directory holds the configuration file."""

    def __init__(self, filename: str) -> None:
        self.filename = filename
        super().__init__(filename)

    def __str__(self) -> str:
        searched = ", ".join(str(directory) for directory in CONFIG_SEARCH_DIRS)
        return f"Config file '{self.filename}' not found in: {searched}"


class ConfigFileEmptyError(ValueError):
    """The configuration file parsed to something other than a mapping."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(path)

    def __str__(self) -> str:
        return f"Config file is empty or not a mapping: {self.path}"


@dataclass(slots=True)
class _CachedConfig:
    data: dict[str, Any]
    mtime: float
    check_time: float


_CONFIG_CACHE: dict[str, _CachedConfig] = {}


def _resolve_config_path(filename: str) -> Path:
    for directory in CONFIG_SEARCH_DIRS:
        candidate = directory / filename
        if candidate.exists():
            return candidate
    raise ConfigFileNotFoundError(filename)


def _load_yaml(filepath: Path) -> dict[str, Any]:
    with filepath.open(encoding="utf-8") as file:
        loaded_config = yaml.safe_load(file)
    # Empty YAML loads as None
    if not isinstance(loaded_config, dict):
        raise ConfigFileEmptyError(filepath)
    return loaded_config


def get_config(filename: str | None = None) -> dict[str, Any]:
    """Load configuration from a YAML file with caching.

    The file name defaults to ``$LLMBRIDGE_CONFIG`` and then ``config.yaml``.
    A cached copy is returned until the file's mtime changes; the mtime is
    only checked every `CONFIG_CACHE_TTL` seconds.
    """
    name = filename or os.environ.get(CONFIG_PATH_ENV) or "config.yaml"
    current_time = time.time()
    cached = _CONFIG_CACHE.get(name)

    if cached is not None and current_time - cached.check_time <= CONFIG_CACHE_TTL:
        return cached.data

    filepath = _resolve_config_path(name)
    file_mtime = filepath.stat().st_mtime

    if cached is not None and cached.mtime == file_mtime:
        cached.check_time = current_time
        return cached.data

    data = _load_yaml(filepath)
    _CONFIG_CACHE[name] = _CachedConfig(
        data=data,
        mtime=file_mtime,
        check_time=current_time,
    )
    return data


def clear_config_cache() -> None:
    """Clear the config cache to force a reload on next `get_config()` call."""
    _CONFIG_CACHE.clear()
