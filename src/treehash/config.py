"""Configuration management for the treehash CLI.

Handles loading, saving, and validating TOML configuration stored in:
- macOS: ~/.config/treehash/config.toml
- Linux: ~/.config/treehash/config.toml (XDG_CONFIG_HOME)
- Windows: %APPDATA%\\treehash\\config.toml
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomllib
import tomli_w

from treehash.services.filter import FILTER_SYNTAXES
from treehash.services.hasher import DEFAULT_CHUNK_SIZE
from treehash.services.orchestrator import (
    DEFAULT_OUTPUT_PATH,
    DEFAULT_RESULT_CAPACITY,
    default_walker_count,
    default_worker_count,
)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# dispatch_capacity value meaning "workers * 4"
DERIVED_CAPACITY = -1

# Maps dotted config keys to dataclass attributes
KEY_ALIASES = {
    "output.path": "output_path",
    "output.errors_path": "errors_path",
    "filter.pattern": "filter_pattern",
    "filter.syntax": "filter_syntax",
    "pipeline.workers": "workers",
    "pipeline.walkers": "walkers",
    "pipeline.dispatch_capacity": "dispatch_capacity",
    "pipeline.result_capacity": "result_capacity",
    "pipeline.chunk_size": "chunk_size",
    "logging.dir": "log_dir",
    "logging.level": "log_level",
}


@dataclass
class TreehashConfig:
    """Configuration for the treehash CLI.

    Attributes:
        output_path: Output log path
        errors_path: Error log path (empty derives ``<output_path>.errors``)
        filter_pattern: Pattern excluding matching entry names
        filter_syntax: "regex" or "glob"
        workers: Number of hash worker threads
        walkers: Number of directory walker threads
        dispatch_capacity: Dispatch channel capacity (-1 derives workers * 4; 0 is a synchronous handoff)
        result_capacity: Result channel capacity
        chunk_size: Per-worker read buffer size in bytes
        log_dir: Directory holding treehash.log
        log_level: Log level name
    """

    # Output
    output_path: str = DEFAULT_OUTPUT_PATH
    errors_path: str = ""

    # Filter
    filter_pattern: str = ""
    filter_syntax: str = "regex"

    # Pipeline sizing
    workers: int = field(default_factory=default_worker_count)
    walkers: int = field(default_factory=default_walker_count)
    dispatch_capacity: int = DERIVED_CAPACITY
    result_capacity: int = DEFAULT_RESULT_CAPACITY
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Logging
    log_dir: Path = field(default_factory=lambda: get_default_log_dir())
    log_level: str = "INFO"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "TreehashConfig":
        """Load configuration from TOML file.

        Args:
            path: Path to config file (defaults to standard location)

        Returns:
            TreehashConfig instance with loaded values

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If a value in the file is invalid
        """
        if path is None:
            path = get_config_path()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        config = cls()

        for key, attr in KEY_ALIASES.items():
            table, name = key.split(".")
            if table in data and name in data[table]:
                config.set(attr, str(data[table][name]))

        config.apply_env_overrides()
        return config

    def apply_env_overrides(self) -> None:
        """Override values from TREEHASH_* environment variables (take precedence)."""
        env_workers = os.environ.get("TREEHASH_WORKERS")
        if env_workers:
            self.set("workers", env_workers)

        env_walkers = os.environ.get("TREEHASH_WALKERS")
        if env_walkers:
            self.set("walkers", env_walkers)

        env_output = os.environ.get("TREEHASH_OUTPUT")
        if env_output:
            self.output_path = env_output

        env_level = os.environ.get("TREEHASH_LOG_LEVEL")
        if env_level:
            self.set("log_level", env_level)

    def save(self, path: Optional[Path] = None) -> None:
        """Save configuration to TOML file.

        Args:
            path: Path to save config (defaults to standard location)
        """
        if path is None:
            path = get_config_path()

        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "output": {"path": self.output_path, "errors_path": self.errors_path},
            "filter": {"pattern": self.filter_pattern, "syntax": self.filter_syntax},
            "pipeline": {
                "workers": self.workers,
                "walkers": self.walkers,
                "dispatch_capacity": self.dispatch_capacity,
                "result_capacity": self.result_capacity,
                "chunk_size": self.chunk_size,
            },
            "logging": {"dir": str(self.log_dir), "level": self.log_level},
        }

        with open(path, "wb") as f:
            tomli_w.dump(data, f)

    def get(self, key: str, default: Optional[str] = None) -> Any:
        """Get a configuration value by key.

        Accepts either the attribute name ("workers") or the dotted TOML
        key ("pipeline.workers").

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        attr = KEY_ALIASES.get(key, key)
        if attr.startswith("_") or not hasattr(self, attr):
            return default

        value = getattr(self, attr)
        if isinstance(value, Path):
            return str(value)
        return value

    def set(self, key: str, value: str) -> None:
        """Set a configuration value by key, preserving its type.

        Args:
            key: Attribute name or dotted TOML key
            value: Configuration value as a string

        Raises:
            ValueError: If the key is unknown or the value is invalid
        """
        attr = KEY_ALIASES.get(key, key)
        if attr.startswith("_") or not hasattr(self, attr):
            raise ValueError(f"Invalid config key: {key}")

        current = getattr(self, attr)
        if isinstance(current, int):
            try:
                new_value: Any = int(value)
            except ValueError:
                raise ValueError(f"{key} must be an integer, got {value!r}")
            minimum = {"dispatch_capacity": DERIVED_CAPACITY, "result_capacity": 0}.get(attr, 1)
            if new_value < minimum:
                raise ValueError(f"{key} must be >= {minimum}, got {new_value}")
        elif isinstance(current, Path):
            new_value = Path(value).expanduser()
        else:
            new_value = value

        if attr == "filter_syntax" and new_value not in FILTER_SYNTAXES:
            raise ValueError(f"filter.syntax must be one of {FILTER_SYNTAXES}, got {value!r}")
        if attr == "log_level":
            new_value = new_value.upper()
            if new_value not in LOG_LEVELS:
                raise ValueError(f"logging.level must be one of {LOG_LEVELS}, got {value!r}")

        setattr(self, attr, new_value)


def get_config_dir() -> Path:
    """Get the platform-specific config directory.

    Returns:
        Path to the config directory for treehash.
    """
    if sys.platform == "darwin" or sys.platform == "linux":
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            return Path(xdg_config) / "treehash"
        return Path.home() / ".config" / "treehash"
    elif sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "treehash"
        return Path.home() / "AppData" / "Roaming" / "treehash"
    else:
        return Path.home() / ".config" / "treehash"


def get_config_path() -> Path:
    """Get the path to the config.toml file."""
    return get_config_dir() / "config.toml"


def get_default_log_dir() -> Path:
    """Get the default log directory."""
    return get_config_dir() / "logs"


def ensure_config_exists() -> TreehashConfig:
    """Ensure config file exists, creating default if needed.

    Returns:
        TreehashConfig instance
    """
    config_path = get_config_path()

    if config_path.exists():
        try:
            return TreehashConfig.load(config_path)
        except (tomllib.TOMLDecodeError, ValueError):
            # Corrupted config is replaced with defaults
            pass

    config = TreehashConfig()
    config.save(config_path)
    return config
