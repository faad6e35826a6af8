"""Organizer settings, stored as a JSON document.

Every section has defaults, so a configuration file only needs the keys it
changes. Unknown keys are ignored.
"""

import json
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional, get_type_hints

from ..exceptions import ConfigurationError

CONFLICT_STRATEGIES = ("rename", "skip", "overwrite")


@dataclass
class MatchingConfig:
    cache_ttl_seconds: float = 30.0
    # Minimum filename/folder keyword similarity for a heuristic suggestion
    similarity_threshold: float = 0.7


@dataclass
class FileOperationsConfig:
    conflict_strategy: str = "rename"
    max_rename_attempts: int = 100
    base_root: Path = field(default_factory=lambda: Path.home() / "JohnnyDecimal")
    max_workers: int = 4


@dataclass
class WatcherConfig:
    debounce_seconds: float = 2.0
    restart_delay_seconds: float = 5.0


@dataclass
class OrganizerConfig:
    """Top-level settings; ``database_path`` of None means the per-user default."""
    database_path: Optional[Path] = None
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    file_operations: FileOperationsConfig = field(default_factory=FileOperationsConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)

    @classmethod
    def default(cls) -> "OrganizerConfig":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return _section_to_dict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrganizerConfig":
        config = _section_from_dict(cls, data, "configuration")
        strategy = config.file_operations.conflict_strategy
        if strategy not in CONFLICT_STRATEGIES:
            raise ConfigurationError(
                f"file_operations.conflict_strategy must be one of "
                f"{', '.join(CONFLICT_STRATEGIES)}, got {strategy!r}")
        return config


def _section_to_dict(section) -> Dict[str, Any]:
    out = {}
    for f in fields(section):
        value = getattr(section, f.name)
        if is_dataclass(value):
            value = _section_to_dict(value)
        elif isinstance(value, Path):
            value = str(value)
        out[f.name] = value
    return out


def _section_from_dict(section_type, data, label: str):
    if not isinstance(data, dict):
        raise ConfigurationError(f"{label} must be an object, got {type(data).__name__}")

    hints = get_type_hints(section_type)
    kwargs = {}
    for f in fields(section_type):
        if f.name not in data:
            continue
        value = data[f.name]
        hint = hints[f.name]
        if is_dataclass(hint):
            value = _section_from_dict(hint, value, f.name)
        elif hint in (Path, Optional[Path]) and value is not None:
            value = Path(value).expanduser()
        kwargs[f.name] = value
    return section_type(**kwargs)


def load_config(config_path: Path) -> OrganizerConfig:
    """Read settings from a JSON file.

    Raises:
        ConfigurationError: If the file is unreadable, is not JSON, or has a
            section of the wrong shape.
    """
    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {e}") from e
    return OrganizerConfig.from_dict(data)


def save_config(config: OrganizerConfig, config_path: Path) -> None:
    try:
        with open(config_path, 'w') as f:
            json.dump(config.to_dict(), f, indent=2)
    except OSError as e:
        raise ConfigurationError(f"Cannot write configuration {config_path}: {e}") from e
