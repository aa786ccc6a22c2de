"""Configuration loading for the time-tracking journal.

Settings come from ``config.toml`` or ``config.json`` in the config
directory (``~/.tt`` by default). Every setting has a default, so a missing
file is not an error.
"""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def default_config_dir() -> Path:
    return Path.home() / ".tt"


@dataclass
class JournalConfig:
    """Configuration for a journal."""

    # Root of the <YYYY>/<MM>/<YYYY-MM-DD>.jsonl tree
    journal_root: Path = field(default_factory=lambda: default_config_dir() / "journal")

    # IANA zone used to map event timestamps to day files; None = system local
    timezone: Optional[str] = None

    # Read paths abort on the first bad record instead of skipping it
    strict: bool = False

    # Advisory lock around read-anchor/append/write-anchor
    lock_writes: bool = True
    lock_timeout: float = 10.0

    # Days scanned for due auto-stops
    auto_stop_scan_days: int = 3

    def get_timezone(self) -> tzinfo:
        """Resolve the configured zone, falling back to the system zone."""
        if self.timezone:
            try:
                return ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                pass
        return datetime.now().astimezone().tzinfo


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def dict_to_config(data: dict[str, Any], base_dir: Path) -> JournalConfig:
    """Convert dictionary to JournalConfig.

    Relative journal roots are resolved against ``base_dir``.
    """
    config = JournalConfig(journal_root=base_dir / "journal")

    if "journal" in data:
        journal = data["journal"]
        if "root" in journal:
            root = Path(journal["root"]).expanduser()
            config.journal_root = root if root.is_absolute() else base_dir / root
        if "timezone" in journal:
            config.timezone = journal["timezone"] or None
        if "strict" in journal:
            config.strict = bool(journal["strict"])

    if "locking" in data:
        locking = data["locking"]
        if "enabled" in locking:
            config.lock_writes = bool(locking["enabled"])
        if "timeout" in locking:
            config.lock_timeout = float(locking["timeout"])

    if "sweep" in data:
        sweep = data["sweep"]
        if "scan_days" in sweep:
            config.auto_stop_scan_days = int(sweep["scan_days"])

    return config


def find_config_file(config_dir: Path) -> Optional[Path]:
    """Find configuration file in the config directory.

    Search order:
    1. config.toml
    2. config.json
    """
    for name in ("config.toml", "config.json"):
        path = config_dir / name
        if path.exists():
            return path
    return None


def load_config(config_dir: Optional[Path] = None, config_path: Optional[Path] = None) -> JournalConfig:
    """Load journal configuration.

    Args:
        config_dir: Directory searched for a config file (default ``~/.tt``)
        config_path: Optional explicit path to config file

    Returns:
        JournalConfig instance
    """
    if config_dir is None:
        config_dir = config_path.parent if config_path is not None else default_config_dir()

    if config_path is None:
        config_path = find_config_file(config_dir)

    if config_path is None:
        return JournalConfig(journal_root=config_dir / "journal")

    suffix = config_path.suffix.lower()

    if suffix == ".toml":
        return dict_to_config(load_toml_config(config_path), config_path.parent)

    elif suffix == ".json":
        return dict_to_config(load_json_config(config_path), config_path.parent)

    else:
        raise ValueError(f"Unsupported config file type: {suffix}")
