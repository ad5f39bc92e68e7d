"""JSON read/write for the task data files.

Writes go through a sibling temp file and ``os.replace`` so a reader never
sees a half-written document. ``save_json`` optionally takes a rotated
backup of the current file first, all under an advisory file lock.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from taskstate.errors import (
    InvalidJsonError,
    LockTimeoutError,
    SourceNotFound,
    StateNotFoundError,
    ValidationFailedError,
)
from taskstate.store.backup import create_backup

logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKUPS = 5
DEFAULT_LOCK_TIMEOUT = 10.0  # seconds


def read_json(path: str | os.PathLike[str]) -> Any | None:
    """Parse a JSON file. Returns None if the file does not exist."""
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise InvalidJsonError(f"Invalid JSON in: {path}") from e


def read_json_required(path: str | os.PathLike[str]) -> Any:
    """Like ``read_json`` but a missing file is an error."""
    data = read_json(path)
    if data is None:
        raise StateNotFoundError(f"Required file not found: {path}")
    return data


def compute_checksum(data: Any) -> str:
    """Truncated SHA-256 (16 hex chars) of the compact JSON encoding."""
    encoded = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


def atomic_write_json(path: str | os.PathLike[str], data: Any, indent: int = 2) -> None:
    """Write ``data`` as JSON via temp file + rename."""
    path = Path(path)
    # Serialize before touching the filesystem
    text = json.dumps(data, indent=indent, ensure_ascii=False) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp.{os.getpid()}")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def save_json(
    path: str | os.PathLike[str],
    data: Any,
    backup_dir: str | os.PathLike[str] | None = None,
    max_backups: int | None = DEFAULT_MAX_BACKUPS,
    indent: int = 2,
    validate: Callable[[Any], None] | None = None,
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> None:
    """Validate, back up the current file, then write ``data`` atomically.

    The whole sequence runs under an advisory ``<file>.lock`` so two
    processes saving the same file take turns instead of interleaving their
    backup rotation and write.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(lock_path_for(path)), timeout=lock_timeout)
    try:
        with lock:
            if validate is not None:
                try:
                    validate(data)
                except Exception as e:
                    raise ValidationFailedError(f"Validation failed before write: {path}: {e}") from e

            if backup_dir is not None:
                try:
                    create_backup(path, backup_dir, max_backups)
                except SourceNotFound:
                    # First write: nothing to back up yet
                    logger.debug("No existing %s to back up", path)

            atomic_write_json(path, data, indent=indent)
    except Timeout as e:
        logger.warning("Timeout acquiring lock for %s", path)
        raise LockTimeoutError(
            f"Could not lock {path} within {lock_timeout}s",
            fix=f"Check for another process writing {path.name}",
        ) from e


def lock_path_for(path: str | os.PathLike[str]) -> Path:
    """Advisory lock file guarding ``path``."""
    path = Path(path)
    return path.with_name(path.name + ".lock")


def append_jsonl(path: str | os.PathLike[str], entry: Any) -> None:
    """Append one compact JSON line to a JSONL file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(entry, separators=(",", ":"), ensure_ascii=False) + "\n"
    if path.exists() and path.stat().st_size > 0 and not path.read_bytes().endswith(b"\n"):
        line = "\n" + line
    with path.open("a", encoding="utf-8") as f:
        f.write(line)


def _jsonl_entries(text: str) -> list:
    entries = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable log line: %.80s", line)
    return entries


def read_log_entries(path: str | os.PathLike[str]) -> list:
    """Read a log file that may be JSON, JSONL, or a JSON object followed by JSONL.

    Handles:
      1. ``{"entries": [...]}`` or a bare list (legacy single-document log)
      2. one JSON object per line
      3. a legacy document followed by appended JSONL lines (mid-migration)
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return []
    if not text:
        return []

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        pass
    else:
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict) and isinstance(parsed.get("entries"), list):
            return parsed["entries"]
        return [parsed]

    if not text.startswith("{"):
        return _jsonl_entries(text)

    try:
        head, end = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError:
        logger.warning("Corrupt leading document in %s, reading JSONL lines only", path)
        return _jsonl_entries(text)

    entries = []
    if isinstance(head, dict) and isinstance(head.get("entries"), list):
        entries.extend(head["entries"])
    else:
        entries.append(head)
    entries.extend(_jsonl_entries(text[end:]))
    return entries
