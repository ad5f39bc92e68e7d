"""Configuration loading from environment variables and taskstate.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_CONFIG_FILENAME = "taskstate.toml"
_DATA_DIRNAME = ".taskstate"


def _default_home() -> Path:
    return Path.home() / ".taskstate"


@dataclass
class BackupConfig:
    """Backup rotation settings."""

    dir: Path = Path(_DATA_DIRNAME) / "backups"
    max_backups: int = 10


@dataclass
class ManifestConfig:
    """Skills manifest cache settings."""

    cache_dir: Path = field(default_factory=lambda: _default_home() / "cache")
    ttl_seconds: int = 300
    skill_paths: list[Path] = field(default_factory=lambda: [_default_home() / "skills"])


@dataclass
class TaskStateConfig:
    """Top-level configuration."""

    home: Path = field(default_factory=_default_home)
    data_dir: Path = Path(_DATA_DIRNAME)
    backup: BackupConfig = field(default_factory=BackupConfig)
    manifest: ManifestConfig = field(default_factory=ManifestConfig)
    log_level: str = "WARNING"

    @property
    def todo_path(self) -> Path:
        return self.data_dir / "todo.json"

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def archive_path(self) -> Path:
        return self.data_dir / "todo-archive.json"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "todo-log.jsonl"

    def data_files(self) -> dict[str, Path]:
        """Data file name -> path, in backup order."""
        return {
            p.name: p
            for p in (self.todo_path, self.config_path, self.archive_path, self.log_path)
        }


def load_config(config_path: Path | None = None, cwd: Path | None = None) -> TaskStateConfig:
    """Load configuration from environment variables and optional taskstate.toml.

    Priority: environment variables > taskstate.toml > defaults.
    """
    cwd = cwd or Path.cwd()
    home = Path(os.getenv("TASKSTATE_HOME", str(_default_home())))

    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and the taskstate home
        for candidate in [cwd / _CONFIG_FILENAME, home / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    backup_data = file_data.get("backup", {})
    manifest_data = file_data.get("manifest", {})

    data_dir = Path(os.getenv("TASKSTATE_DATA_DIR", file_data.get("data_dir", str(cwd / _DATA_DIRNAME))))

    skill_paths = [Path(p).expanduser() for p in manifest_data.get("skill_paths", [])]
    if not skill_paths:
        skill_paths = [home / "skills"]

    config = TaskStateConfig(
        home=home,
        data_dir=data_dir,
        backup=BackupConfig(
            dir=Path(os.getenv("TASKSTATE_BACKUP_DIR", backup_data.get("dir", str(data_dir / "backups")))),
            max_backups=int(os.getenv("TASKSTATE_MAX_BACKUPS", backup_data.get("max_backups", 10))),
        ),
        manifest=ManifestConfig(
            cache_dir=Path(
                os.getenv("TASKSTATE_MANIFEST_CACHE_DIR", manifest_data.get("cache_dir", str(home / "cache")))
            ),
            ttl_seconds=int(os.getenv("TASKSTATE_MANIFEST_TTL", manifest_data.get("ttl_seconds", 300))),
            skill_paths=skill_paths,
        ),
        log_level=os.getenv("TASKSTATE_LOG_LEVEL", file_data.get("log_level", "WARNING")),
    )
    return config
