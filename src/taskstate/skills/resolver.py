"""Cached skills-manifest resolution with a TTL and graceful degradation.

Lookup order on every ``resolve`` call:

1. Fresh cache (within TTL)       -> returned as-is
2. Stale cache with >= 1 skill    -> cache regenerated inline, stale value returned
3. Missing / corrupt / empty      -> generator called, result cached and returned

Cache problems never fail a resolution: read, parse and write errors are
logged and treated as "no cache". Only the generator itself can raise out of
``resolve`` (and only on tier 3).
"""

from __future__ import annotations

import copy
import enum
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CACHE_FILENAME = "skills-manifest.json"
DEFAULT_CACHE_TTL = 300  # seconds

ManifestGenerator = Callable[[str | None], dict]


class ResolutionSource(enum.Enum):
    FRESH_CACHE = "fresh_cache"
    STALE_CACHE = "stale_cache"
    GENERATED = "generated"


@dataclass
class Resolution:
    """Outcome of ``ManifestResolver.resolve``."""

    manifest: dict
    source: ResolutionSource
    cache_written: bool = False
    refresh_error: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Read ``generatedAt``: ISO-8601 string or epoch milliseconds. Naive means UTC."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class ManifestResolver:
    """Resolve the skills manifest through a TTL cache file in ``cache_dir``."""

    def __init__(
        self,
        cache_dir: Path,
        generator: ManifestGenerator,
        default_ttl: int = DEFAULT_CACHE_TTL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.generator = generator
        self.default_ttl = default_ttl
        self._clock = clock or _utcnow

    @property
    def cache_path(self) -> Path:
        return self.cache_dir / CACHE_FILENAME

    # ── Cache file access ────────────────────────────────────

    def _read_cache(self, path: Path | None = None) -> dict | None:
        """Parsed cache document, or None if missing/blank/corrupt/not an object."""
        path = path or self.cache_path
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read manifest cache %s: %s", path, e)
            return None
        if not content.strip():
            return None
        try:
            data = json.loads(content)
        except (ValueError, RecursionError) as e:
            logger.warning("Corrupt manifest cache %s: %s", path, e)
            return None
        return data if isinstance(data, dict) else None

    def _write_cache(self, text: str) -> bool:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(text, encoding="utf-8")
        except OSError as e:
            logger.warning("Manifest cache write failed (%s): %s", self.cache_path, e)
            return False
        return True

    def _ttl_of(self, manifest: dict) -> float:
        meta = manifest.get("_meta")
        ttl = meta.get("ttlSeconds") if isinstance(meta, dict) else None
        if isinstance(ttl, (int, float)) and not isinstance(ttl, bool):
            return ttl
        return self.default_ttl

    def _is_fresh(self, manifest: dict) -> bool:
        meta = manifest.get("_meta")
        if not isinstance(meta, dict):
            return False
        generated_at = parse_timestamp(meta.get("generatedAt"))
        if generated_at is None:
            return False
        age_seconds = (self._clock() - generated_at).total_seconds()
        return age_seconds < self._ttl_of(manifest)

    # ── Public API ───────────────────────────────────────────

    def is_cache_fresh(self, path: Path | None = None) -> bool:
        """True only if the cache parses and its age is below its TTL. Never raises."""
        manifest = self._read_cache(Path(path) if path is not None else None)
        if manifest is None:
            return False
        return self._is_fresh(manifest)

    def invalidate_cache(self) -> None:
        """Truncate the cache file so the next resolution regenerates."""
        if not self.cache_path.exists():
            return
        try:
            self.cache_path.write_text("", encoding="utf-8")
            logger.info("Invalidated manifest cache %s", self.cache_path)
        except OSError as e:
            logger.warning("Cannot invalidate manifest cache %s: %s", self.cache_path, e)

    def _generate_and_store(self, context: str | None) -> tuple[dict, bool]:
        manifest = copy.deepcopy(self.generator(context))
        meta = manifest.get("_meta")
        if not isinstance(meta, dict):
            meta = manifest["_meta"] = {}
        meta.setdefault("generatedAt", self._clock().isoformat(timespec="seconds"))
        meta.setdefault("ttlSeconds", self.default_ttl)
        try:
            text = json.dumps(manifest, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.warning("Manifest not JSON-serializable, cache not written: %s", e)
            return manifest, False
        written = self._write_cache(text)
        # Hand back what a later cache hit would return
        return json.loads(text), written

    def regenerate_cache(self, context: str | None = None) -> dict:
        """Call the generator unconditionally and overwrite the cache."""
        manifest, _ = self._generate_and_store(context)
        return manifest

    def resolve(self, context: str | None = None) -> Resolution:
        """Walk the fresh -> stale -> generate ladder."""
        cached = self._read_cache()

        if cached is not None and self._is_fresh(cached):
            logger.debug("Manifest cache hit: %s", self.cache_path)
            return Resolution(manifest=cached, source=ResolutionSource.FRESH_CACHE)

        skills = cached.get("skills") if cached is not None else None
        if isinstance(skills, list) and skills:
            logger.info("Manifest cache stale, serving it and refreshing %s", self.cache_path)
            resolution = Resolution(manifest=cached, source=ResolutionSource.STALE_CACHE)
            try:
                _, resolution.cache_written = self._generate_and_store(context)
            except Exception as e:
                logger.warning("Manifest refresh failed, keeping stale cache: %s", e)
                resolution.refresh_error = str(e)
            return resolution

        manifest, written = self._generate_and_store(context)
        return Resolution(manifest=manifest, source=ResolutionSource.GENERATED, cache_written=written)

    def resolve_manifest(self, context: str | None = None) -> dict:
        return self.resolve(context).manifest
