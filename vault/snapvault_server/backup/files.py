"""
JSON file helpers for backup directories.

All writes go to a temporary sibling first and are renamed into place, so a
crash never leaves a half-written collection or metadata file behind.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

from ..errors import ValidationError

_COLLECTION_NAME = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


def check_collection_name(name: str) -> str:
    """Reject names that cannot be used as a file name inside a backup directory."""
    if not isinstance(name, str) or not _COLLECTION_NAME.match(name) or name == "metadata":
        raise ValidationError(f"Invalid collection name: {name!r}")
    return name


def write_json_file(path: Path, data: Any) -> int:
    """Write data as pretty-printed JSON and return the file size in bytes."""
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)
    os.replace(tmp_path, path)
    return path.stat().st_size


def read_json_file(path: Path) -> Any:
    """Read and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValidationError: If the content is not valid JSON
    """
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {path.name}: {e}") from e
