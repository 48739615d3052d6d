"""
Atomic JSON file helpers used by the local storage backend.

Writes go to a temporary file in the target's directory and are moved into place
with ``os.replace``, so readers only ever see a complete previous or complete new
version of a blob. Concurrent writers to distinct paths never share temp files.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)

TEMP_PREFIX = ".atomic_"


def atomic_write_json(target_path: Path, data: Any) -> None:
    """
    Atomically write ``data`` as JSON to ``target_path``.

    Raises:
        ValueError: If data cannot be serialized to JSON
        OSError: If the write or the final rename fails
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)

    # Serialize first so a bad payload never leaves a temp file behind
    try:
        content = json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error("Failed to serialize data to JSON", target=str(target_path), error=str(e))
        raise ValueError(f"Cannot serialize data to JSON: {e}") from e

    temp_path: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=target_path.parent,
            prefix=f"{TEMP_PREFIX}{target_path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as temp_file:
            temp_path = Path(temp_file.name)
            temp_file.write(content)
            temp_file.flush()
            os.fsync(temp_file.fileno())

        os.replace(temp_path, target_path)
        temp_path = None
        logger.debug("Atomic write completed", target=str(target_path), size=len(content))
    finally:
        if temp_path is not None and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError as cleanup_error:
                logger.warning("Failed to clean up temporary file", temp_file=str(temp_path), error=str(cleanup_error))


def read_json_file(path: Path) -> Optional[Any]:
    """Read a JSON file, returning ``None`` when it does not exist."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None


def remove_stale_temp_files(directory: Path, max_age: float = 3600.0) -> int:
    """Remove temp files left behind by interrupted writes. Returns the number removed."""
    removed = 0
    now = time.time()
    for temp_file in Path(directory).rglob(f"{TEMP_PREFIX}*.tmp"):
        try:
            if now - temp_file.stat().st_mtime > max_age:
                temp_file.unlink()
                removed += 1
        except OSError as e:
            logger.debug("Could not remove stale temp file", path=str(temp_file), error=str(e))
    return removed
