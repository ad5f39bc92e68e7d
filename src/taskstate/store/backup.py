"""Numbered backup rotation for mutable state files.

Layout inside a backup directory:

    todo.json.1    # newest
    todo.json.2
    todo.json.3    # oldest retained

Every ``create_backup`` shifts the existing copies up by one (discarding
whatever would land past ``max_backups``) and then copies the source into
``.1``. The shift is planned in memory first as a list of ``RotationStep``
and only then applied, so the plan can be tested without touching disk.

No locking here: two processes rotating the same directory at once can lose
a copy or leave a gap in the numbering. ``json_store.save_json`` takes a
file lock around its backup and write.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from taskstate.errors import NoBackupsAvailable, SourceNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RotationStep:
    """Move ``source`` to ``target``; a ``None`` target means discard."""

    source: Path
    target: Path | None

    @property
    def discards(self) -> bool:
        return self.target is None


class FileSystem(Protocol):
    """File operations the backup manager needs."""

    def is_file(self, path: Path) -> bool: ...

    def is_dir(self, path: Path) -> bool: ...

    def listdir(self, path: Path) -> list[str]: ...

    def makedirs(self, path: Path) -> None: ...

    def copy(self, src: Path, dst: Path) -> None: ...

    def move(self, src: Path, dst: Path) -> None: ...

    def remove(self, path: Path) -> None: ...


class LocalFileSystem:
    """``FileSystem`` backed by the real disk."""

    def is_file(self, path: Path) -> bool:
        return path.is_file()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def listdir(self, path: Path) -> list[str]:
        return os.listdir(path)

    def makedirs(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def copy(self, src: Path, dst: Path) -> None:
        shutil.copy2(src, dst)

    def move(self, src: Path, dst: Path) -> None:
        os.replace(src, dst)

    def remove(self, path: Path) -> None:
        path.unlink(missing_ok=True)


def _backup_pattern(base_name: str) -> re.Pattern[str]:
    # Positive integers only, no leading zeros ("todo.json.01" is not a backup)
    return re.compile(rf"^{re.escape(base_name)}\.([1-9][0-9]*)$")


def plan_rotation(
    backups: list[tuple[int, Path]],
    max_backups: int | None = None,
) -> list[RotationStep]:
    """Plan the shift of existing backups ahead of a new ``.1``.

    Steps run from the highest number downward so no file is overwritten
    before it has been moved. A backup whose new number would exceed
    ``max_backups`` is discarded instead of shifted.
    """
    steps: list[RotationStep] = []
    for number, path in sorted(backups, key=lambda b: b[0], reverse=True):
        new_number = number + 1
        if max_backups is not None and new_number > max_backups:
            steps.append(RotationStep(source=path, target=None))
            continue
        base_name = path.name[: -(len(str(number)) + 1)]
        steps.append(RotationStep(source=path, target=path.with_name(f"{base_name}.{new_number}")))
    return steps


class BackupManager:
    """Create, list and restore numbered backups of a single file."""

    def __init__(self, fs: FileSystem | None = None) -> None:
        self.fs: FileSystem = fs or LocalFileSystem()

    def _numbered(self, base_name: str, backup_dir: Path) -> list[tuple[int, Path]]:
        """All ``(N, path)`` backups for ``base_name``, ascending by N."""
        if not self.fs.is_dir(backup_dir):
            return []
        pattern = _backup_pattern(base_name)
        found = []
        for entry in self.fs.listdir(backup_dir):
            match = pattern.match(entry)
            if match:
                found.append((int(match.group(1)), backup_dir / entry))
        found.sort(key=lambda b: b[0])
        return found

    def create_backup(
        self,
        source_path: str | os.PathLike[str],
        backup_dir: str | os.PathLike[str],
        max_backups: int | None = None,
    ) -> Path:
        """Copy ``source_path`` into ``backup_dir`` as ``<name>.1``, rotating older copies."""
        source = Path(source_path).absolute()
        target_dir = Path(backup_dir).absolute()
        if max_backups is not None and (isinstance(max_backups, bool) or max_backups < 1):
            raise ValueError(f"max_backups must be a positive integer, got {max_backups!r}")
        if not self.fs.is_file(source):
            raise SourceNotFound(f"Source file not found: {source}")

        self.fs.makedirs(target_dir)

        existing = self._numbered(source.name, target_dir)
        for step in plan_rotation(existing, max_backups):
            if step.target is None:
                logger.debug("Discarding backup beyond retention: %s", step.source)
                self.fs.remove(step.source)
            else:
                self.fs.move(step.source, step.target)

        newest = target_dir / f"{source.name}.1"
        self.fs.copy(source, newest)
        logger.info("Backed up %s -> %s", source, newest)
        return newest

    def list_backups(
        self,
        source_base_name: str,
        backup_dir: str | os.PathLike[str],
    ) -> list[Path]:
        """Absolute paths of the backups for ``source_base_name``, newest first."""
        return [path for _, path in self._numbered(source_base_name, Path(backup_dir).absolute())]

    def restore_from_backup(
        self,
        source_base_name: str,
        backup_dir: str | os.PathLike[str],
        target_path: str | os.PathLike[str],
    ) -> Path:
        """Copy the newest backup over ``target_path`` and return the backup used."""
        backups = self.list_backups(source_base_name, backup_dir)
        if not backups:
            raise NoBackupsAvailable(
                f"No backups available for {source_base_name} in {backup_dir}",
                fix="taskstate backup",
            )
        newest = backups[0]
        target = Path(target_path).absolute()
        self.fs.makedirs(target.parent)
        self.fs.copy(newest, target)
        logger.info("Restored %s from %s", target, newest)
        return newest


_default_manager = BackupManager()


def create_backup(
    source_path: str | os.PathLike[str],
    backup_dir: str | os.PathLike[str],
    max_backups: int | None = None,
) -> Path:
    return _default_manager.create_backup(source_path, backup_dir, max_backups)


def list_backups(source_base_name: str, backup_dir: str | os.PathLike[str]) -> list[Path]:
    return _default_manager.list_backups(source_base_name, backup_dir)


def restore_from_backup(
    source_base_name: str,
    backup_dir: str | os.PathLike[str],
    target_path: str | os.PathLike[str],
) -> Path:
    return _default_manager.restore_from_backup(source_base_name, backup_dir, target_path)
