"""Skill discovery: scan search paths and assemble the skills manifest.

A skill is a directory holding a ``SKILL.md`` whose YAML frontmatter names
and describes it:

    ---
    name: ct-research
    description: Gather sources before planning
    version: 1.2.0
    tags: [research]
    ---

Scanning is the expensive step the manifest resolver caches. The scanner
itself never writes anything.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import frontmatter

logger = logging.getLogger(__name__)

SKILL_FILENAME = "SKILL.md"
MANIFEST_VERSION = "1.0.0"
PROJECT_SKILLS_DIR = Path(".taskstate") / "skills"


@dataclass(frozen=True)
class SkillSource:
    """A labelled directory whose subdirectories are skills."""

    label: str
    path: Path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_skill(skill_dir: Path, source_label: str) -> dict | None:
    """Build a manifest entry from ``skill_dir/SKILL.md``, or None if unusable."""
    skill_md = skill_dir / SKILL_FILENAME
    try:
        post = frontmatter.load(str(skill_md))
    except Exception as e:
        logger.warning("Skipping skill %s: cannot parse %s (%s)", skill_dir.name, skill_md, e)
        return None

    meta = dict(post.metadata)
    tags = meta.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]
    return {
        "name": str(meta.get("name") or skill_dir.name),
        "description": str(meta.get("description") or ""),
        "version": str(meta["version"]) if meta.get("version") is not None else None,
        "path": str(skill_dir),
        "source": source_label,
        "tags": [str(t) for t in tags],
    }


class SkillScanner:
    """Manifest generator over an ordered list of skill sources.

    Earlier sources win on name clashes. Calling the scanner with a working
    directory puts that project's ``.taskstate/skills`` ahead of the rest.
    """

    def __init__(
        self,
        sources: list[SkillSource],
        ttl_seconds: int = 300,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.sources = list(sources)
        self.ttl_seconds = ttl_seconds
        self._clock = clock or _utcnow

    def _sources_for(self, context: str | None) -> list[SkillSource]:
        if not context:
            return self.sources
        project = SkillSource("project", Path(context) / PROJECT_SKILLS_DIR)
        return [project, *self.sources]

    def scan(self, context: str | None = None) -> list[dict]:
        """Return skill entries from all sources, sorted by name."""
        seen: dict[str, dict] = {}
        for source in self._sources_for(context):
            if not source.path.is_dir():
                logger.debug("Skill source %s missing: %s", source.label, source.path)
                continue
            for skill_dir in sorted(source.path.iterdir()):
                if not (skill_dir / SKILL_FILENAME).is_file():
                    continue
                entry = parse_skill(skill_dir, source.label)
                if entry is None:
                    continue
                if entry["name"] in seen:
                    logger.debug(
                        "Skill %s from %s shadowed by %s",
                        entry["name"],
                        source.label,
                        seen[entry["name"]]["source"],
                    )
                    continue
                seen[entry["name"]] = entry
        return sorted(seen.values(), key=lambda e: e["name"])

    def __call__(self, context: str | None = None) -> dict:
        skills = self.scan(context)
        logger.info("Generated skills manifest: %d skills", len(skills))
        return {
            "_meta": {
                "generatedAt": self._clock().isoformat(timespec="seconds"),
                "ttlSeconds": self.ttl_seconds,
                "version": MANIFEST_VERSION,
                "sources": [
                    {"label": s.label, "path": str(s.path)} for s in self._sources_for(context)
                ],
            },
            "skills": skills,
        }
