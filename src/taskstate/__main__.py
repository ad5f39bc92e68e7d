"""Entry point: python -m taskstate <command>

- "backup [list]":   Back up the data files, or list existing backups
- "restore":         Restore a data file from its newest backup
- "manifest":        Resolve / refresh / invalidate the skills manifest cache

Every command prints one JSON envelope on stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from taskstate.config import TaskStateConfig, load_config
from taskstate.errors import InvalidInputError, NoBackupsAvailable, StateError, StateNotFoundError

logger = logging.getLogger("taskstate")

RESTORABLE_FILES = ("todo.json", "config.json", "todo-archive.json")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _success(result: dict) -> None:
    _emit({"success": True, "result": result})


# ── Commands ─────────────────────────────────────────────────


def _cmd_backup(config: TaskStateConfig, args: argparse.Namespace) -> None:
    from taskstate.store.backup import create_backup

    backup_dir = Path(args.destination) if args.destination else config.backup.dir
    backed: list[str] = []
    skipped: list[str] = []
    for path in config.data_files().values():
        if path.is_file():
            backed.append(str(create_backup(path, backup_dir, config.backup.max_backups)))
        else:
            skipped.append(str(path))

    if not backed:
        raise StateNotFoundError(f"No data files to back up in {config.data_dir}")
    _success(
        {
            "created": True,
            "backupDir": str(backup_dir),
            "backedUp": len(backed),
            "skipped": len(skipped),
            "files": backed,
        }
    )


def _cmd_backup_list(config: TaskStateConfig, args: argparse.Namespace) -> None:
    from taskstate.store.backup import list_backups

    backup_dir = Path(args.destination) if args.destination else config.backup.dir
    files = []
    for name in config.data_files():
        backups = list_backups(name, backup_dir)
        if backups:
            files.append({"file": name, "backups": [str(p) for p in backups]})
    _success(
        {
            "backupDir": str(backup_dir),
            "files": files,
            "totalBackups": sum(len(f["backups"]) for f in files),
        }
    )


def _cmd_restore(config: TaskStateConfig, args: argparse.Namespace) -> None:
    from taskstate.store.backup import list_backups, restore_from_backup

    name = args.file
    if name not in RESTORABLE_FILES:
        raise InvalidInputError(f"Unknown file: {name}. Valid: {', '.join(RESTORABLE_FILES)}")
    target = config.data_files()[name]

    backups = list_backups(name, config.backup.dir)
    if not backups:
        raise NoBackupsAvailable(f"No backups found for {name}", fix="taskstate backup")

    if args.dry_run:
        _success(
            {
                "dryRun": True,
                "file": name,
                "wouldRestore": str(backups[0]),
                "availableBackups": len(backups),
            }
        )
        return

    used = restore_from_backup(name, config.backup.dir, target)
    _success({"restored": True, "file": name, "restoredFrom": str(used), "targetPath": str(target)})


def _cmd_manifest(config: TaskStateConfig, args: argparse.Namespace) -> None:
    from taskstate.skills.discovery import SkillScanner, SkillSource
    from taskstate.skills.resolver import ManifestResolver

    scanner = SkillScanner(
        [
            SkillSource("global" if i == 0 else f"global-{i}", p)
            for i, p in enumerate(config.manifest.skill_paths)
        ],
        ttl_seconds=config.manifest.ttl_seconds,
    )
    resolver = ManifestResolver(
        config.manifest.cache_dir, scanner, default_ttl=config.manifest.ttl_seconds
    )
    context = args.cwd or str(Path.cwd())

    if args.invalidate:
        resolver.invalidate_cache()
        _success({"invalidated": True, "cachePath": str(resolver.cache_path)})
    elif args.status:
        _success({"cachePath": str(resolver.cache_path), "fresh": resolver.is_cache_fresh()})
    elif args.refresh:
        manifest = resolver.regenerate_cache(context)
        _success({"source": "generated", "manifest": manifest})
    else:
        resolution = resolver.resolve(context)
        result = {"source": resolution.source.value, "manifest": resolution.manifest}
        if resolution.refresh_error:
            result["refreshError"] = resolution.refresh_error
        _success(result)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskstate", description="Task state backups and skills manifest")
    parser.add_argument("--config", type=Path, help="Path to taskstate.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Back up data files (or 'backup list')")
    backup.add_argument("action", nargs="?", choices=["create", "list"], default="create")
    backup.add_argument("--destination", help="Backup directory")

    restore = sub.add_parser("restore", help="Restore a data file from its newest backup")
    restore.add_argument("--file", default="todo.json", help="Data file to restore")
    restore.add_argument("--dry-run", action="store_true", help="Show what would be restored")

    manifest = sub.add_parser("manifest", help="Resolve the skills manifest")
    mode = manifest.add_mutually_exclusive_group()
    mode.add_argument("--refresh", action="store_true", help="Regenerate the cache now")
    mode.add_argument("--invalidate", action="store_true", help="Clear the cache")
    mode.add_argument("--status", action="store_true", help="Report cache freshness")
    manifest.add_argument("--cwd", help="Project directory for project-local skills")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    _setup_logging(config.log_level)

    if args.command == "backup":
        handler = _cmd_backup_list if args.action == "list" else _cmd_backup
    elif args.command == "restore":
        handler = _cmd_restore
    else:
        handler = _cmd_manifest

    try:
        handler(config, args)
    except StateError as e:
        logger.debug("Command %s failed: %s", args.command, e)
        _emit({"success": False, "error": e.to_dict()})
        return int(e.exit_code)
    return 0


if __name__ == "__main__":
    sys.exit(main())
