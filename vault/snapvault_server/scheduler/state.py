"""
Persisted scheduler overrides.

Changes made through `snapvault-backup schedule --enable/--disable/--configure`
are stored in <BACKUP_ROOT>/scheduler.json and layered over the
environment configuration on every start.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ..backup.files import read_json_file, write_json_file
from ..config import SchedulerConfig
from ..errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

STATE_FILENAME = "scheduler.json"

_OVERRIDABLE = ("enabled", "schedule", "collections", "retention", "delete_remote", "timezone")


def state_path(backup_root: str | Path) -> Path:
    return Path(backup_root) / STATE_FILENAME


def load_overrides(path: Path) -> dict[str, Any]:
    """Read stored overrides; a missing file means no overrides."""
    try:
        data = read_json_file(path)
    except FileNotFoundError:
        return {}
    except ValidationError as e:
        raise ConfigurationError(f"Corrupt scheduler state: {e}", setting=str(path)) from e

    if not isinstance(data, dict):
        raise ConfigurationError("Scheduler state must be a JSON object", setting=str(path))
    return {key: data[key] for key in _OVERRIDABLE if key in data}


def apply_overrides(config: SchedulerConfig, overrides: dict[str, Any]) -> SchedulerConfig:
    if not overrides:
        return config
    try:
        return config.merged(**overrides)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid scheduler state: {e}") from e


def save_config(path: Path, config: SchedulerConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    write_json_file(path, config.to_dict())
    logger.info("Scheduler configuration saved", extra={"path": str(path)})
