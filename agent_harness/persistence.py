"""
File persistence primitives for harness state.

State files (session pointer, session history, checkpoint metadata, error log)
are written with write-to-temp-then-rename so a crash mid-write never leaves a
half-written file behind. Append-only logs take an exclusive advisory lock so
concurrent hook processes do not interleave partial lines.

There is no locking around the read-modify-write of state files: two processes
sharing one agent directory still follow last-writer-wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import portalocker

logger = logging.getLogger(__name__)

# Seconds to wait for the append lock before giving up
APPEND_LOCK_TIMEOUT = 5.0


class PersistenceError(Exception):
    """Raised when an atomic write could not be completed."""


def atomic_write_text(path: Path | str, content: str) -> None:
    """
    Write text atomically using temp file + rename.

    Either the full write succeeds or the original file remains unchanged.

    Args:
        path: Target file path
        content: Text content to write

    Raises:
        PersistenceError: On write or rename failure
    """
    path = Path(path)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Temp file in the same directory keeps the rename on one filesystem
        fd, temp_path = tempfile.mkstemp(
            suffix=".tmp",
            prefix=f"{path.stem}_",
            dir=path.parent,
        )
    except OSError as e:
        raise PersistenceError(f"Atomic write failed for {path}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as e:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise PersistenceError(f"Atomic write failed for {path}: {e}") from e


def atomic_write_json(path: Path | str, data: Any) -> None:
    """Serialize ``data`` as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2))


def read_json(path: Path | str, default: Any = None) -> Any:
    """
    Read a JSON file, treating missing or corrupt files as absent.

    Args:
        path: File to read
        default: Value returned when the file is missing or unparsable

    Returns:
        Parsed JSON data or ``default``
    """
    path = Path(path)
    if not path.exists():
        return default

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        logger.debug("Ignoring unreadable file %s", path)
        return default

    # Empty files show up after an interrupted non-atomic write
    if not content.strip():
        return default

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        logger.debug("Ignoring corrupt JSON file %s", path)
        return default


def append_line(path: Path | str, line: str) -> None:
    """
    Append one line to a log file under an exclusive lock.

    A trailing newline is added when missing.

    Raises:
        OSError: When the file cannot be opened or locked. Callers that must
            never fail (audit sinks) catch this themselves.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if not line.endswith("\n"):
        line += "\n"

    try:
        with portalocker.Lock(
            str(path),
            mode="a",
            flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
            timeout=APPEND_LOCK_TIMEOUT,
            encoding="utf-8",
        ) as f:
            f.write(line)
            f.flush()
    except portalocker.exceptions.LockException as e:
        raise OSError(f"Could not lock {path} for append: {e}") from e


__all__ = [
    "APPEND_LOCK_TIMEOUT",
    "PersistenceError",
    "append_line",
    "atomic_write_json",
    "atomic_write_text",
    "read_json",
]
