"""Tests for the cached manifest resolver."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from pathlib import Path

from taskstate.skills.resolver import (
    CACHE_FILENAME,
    ManifestResolver,
    ResolutionSource,
    parse_timestamp,
)

T0 = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class CountingGenerator:
    """Stub generator that stamps the fake clock and counts calls."""

    def __init__(self, clock: FakeClock, skills: list[dict] | None = None, ttl: int = 300) -> None:
        self.clock = clock
        self.skills = skills if skills is not None else [{"name": "ct-research"}]
        self.ttl = ttl
        self.calls: list[str | None] = []

    def __call__(self, context: str | None = None) -> dict:
        self.calls.append(context)
        return {
            "_meta": {"generatedAt": self.clock().isoformat(), "ttlSeconds": self.ttl},
            "skills": list(self.skills),
        }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def generator(clock: FakeClock) -> CountingGenerator:
    return CountingGenerator(clock)


@pytest.fixture
def resolver(tmp_path: Path, generator: CountingGenerator, clock: FakeClock) -> ManifestResolver:
    return ManifestResolver(tmp_path / "cache", generator, clock=clock)


def _write_cache(resolver: ManifestResolver, data) -> None:
    resolver.cache_dir.mkdir(parents=True, exist_ok=True)
    text = data if isinstance(data, str) else json.dumps(data)
    resolver.cache_path.write_text(text, encoding="utf-8")


class TestParseTimestamp:
    def test_iso_with_offset(self):
        assert parse_timestamp("2026-10-17T12:00:00+00:00") == T0

    def test_iso_zulu(self):
        assert parse_timestamp("2026-10-17T12:00:00Z") == T0

    def test_naive_is_utc(self):
        assert parse_timestamp("2026-10-17T12:00:00") == T0

    def test_epoch_milliseconds(self):
        assert parse_timestamp(T0.timestamp() * 1000) == T0

    @pytest.mark.parametrize("value", [None, "", "yesterday", True, [], {}])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None


class TestIsCacheFresh:
    def test_missing_file(self, resolver: ManifestResolver):
        assert resolver.is_cache_fresh() is False

    def test_empty_file(self, resolver: ManifestResolver):
        _write_cache(resolver, "")
        assert resolver.is_cache_fresh() is False

    def test_invalid_json(self, resolver: ManifestResolver):
        _write_cache(resolver, "{broken")
        assert resolver.is_cache_fresh() is False

    def test_not_an_object(self, resolver: ManifestResolver):
        _write_cache(resolver, [1, 2, 3])
        assert resolver.is_cache_fresh() is False

    def test_missing_generated_at(self, resolver: ManifestResolver):
        _write_cache(resolver, {"_meta": {"ttlSeconds": 300}, "skills": []})
        assert resolver.is_cache_fresh() is False

    def test_within_ttl(self, resolver: ManifestResolver, clock: FakeClock):
        generated = clock() - timedelta(seconds=100)
        _write_cache(resolver, {"_meta": {"generatedAt": generated.isoformat(), "ttlSeconds": 300}})
        assert resolver.is_cache_fresh() is True

    def test_expired(self, resolver: ManifestResolver, clock: FakeClock):
        generated = clock() - timedelta(seconds=400)
        _write_cache(resolver, {"_meta": {"generatedAt": generated.isoformat(), "ttlSeconds": 300}})
        assert resolver.is_cache_fresh() is False

    def test_age_equal_to_ttl_is_stale(self, resolver: ManifestResolver, clock: FakeClock):
        generated = clock() - timedelta(seconds=300)
        _write_cache(resolver, {"_meta": {"generatedAt": generated.isoformat(), "ttlSeconds": 300}})
        assert resolver.is_cache_fresh() is False

    def test_default_ttl_when_absent(self, resolver: ManifestResolver, clock: FakeClock):
        _write_cache(
            resolver, {"_meta": {"generatedAt": (clock() - timedelta(seconds=299)).isoformat()}}
        )
        assert resolver.is_cache_fresh() is True
        clock.advance(2)
        assert resolver.is_cache_fresh() is False

    def test_explicit_path(self, resolver: ManifestResolver, clock: FakeClock, tmp_path: Path):
        other = tmp_path / "other.json"
        other.write_text(json.dumps({"_meta": {"generatedAt": clock().isoformat()}}), encoding="utf-8")
        assert resolver.is_cache_fresh(other) is True

    def test_deeply_nested_json_is_not_fresh(self, resolver: ManifestResolver):
        _write_cache(resolver, "[" * 100000 + "]" * 100000)
        assert resolver.is_cache_fresh() is False

    def test_epoch_millisecond_generated_at(self, resolver: ManifestResolver, clock: FakeClock):
        generated_ms = clock().timestamp() * 1000 - 10_000
        _write_cache(resolver, {"_meta": {"generatedAt": generated_ms, "ttlSeconds": 300}})
        assert resolver.is_cache_fresh() is True
        clock.advance(300)
        assert resolver.is_cache_fresh() is False

    def test_unreadable_path_is_not_fresh(self, resolver: ManifestResolver, tmp_path: Path):
        # A directory where the file should be
        assert resolver.is_cache_fresh(tmp_path) is False


class TestResolveManifest:
    def test_generates_when_missing(self, resolver: ManifestResolver, generator: CountingGenerator):
        resolution = resolver.resolve("/proj")
        assert resolution.source is ResolutionSource.GENERATED
        assert resolution.cache_written is True
        assert generator.calls == ["/proj"]
        assert json.loads(resolver.cache_path.read_text(encoding="utf-8")) == resolution.manifest

    def test_second_call_within_ttl_uses_cache(
        self, resolver: ManifestResolver, generator: CountingGenerator, clock: FakeClock
    ):
        first = resolver.resolve_manifest()
        clock.advance(60)
        second = resolver.resolve(None)
        assert second.source is ResolutionSource.FRESH_CACHE
        assert second.manifest == first
        assert len(generator.calls) == 1

    def test_stale_cache_served_then_refreshed(
        self, resolver: ManifestResolver, generator: CountingGenerator, clock: FakeClock
    ):
        stale = {
            "_meta": {"generatedAt": (clock() - timedelta(seconds=400)).isoformat(), "ttlSeconds": 300},
            "skills": [{"name": "old-skill"}],
        }
        _write_cache(resolver, stale)

        resolution = resolver.resolve()
        assert resolution.source is ResolutionSource.STALE_CACHE
        assert resolution.manifest == stale
        assert resolution.cache_written is True
        assert len(generator.calls) == 1

        refreshed = resolver.resolve()
        assert refreshed.source is ResolutionSource.FRESH_CACHE
        assert refreshed.manifest["skills"] == [{"name": "ct-research"}]
        assert refreshed.manifest["_meta"]["generatedAt"] == clock().isoformat()
        assert len(generator.calls) == 1

    def test_stale_empty_skills_regenerates(
        self, resolver: ManifestResolver, generator: CountingGenerator, clock: FakeClock
    ):
        _write_cache(
            resolver,
            {"_meta": {"generatedAt": (clock() - timedelta(hours=1)).isoformat()}, "skills": []},
        )
        resolution = resolver.resolve()
        assert resolution.source is ResolutionSource.GENERATED
        assert resolution.manifest["skills"] == [{"name": "ct-research"}]

    @pytest.mark.parametrize("content", ["", "   \n", "{oops", "[]", '"text"'])
    def test_corrupt_cache_regenerates(
        self, resolver: ManifestResolver, generator: CountingGenerator, content: str
    ):
        _write_cache(resolver, content)
        resolution = resolver.resolve()
        assert resolution.source is ResolutionSource.GENERATED
        assert len(generator.calls) == 1

    def test_deeply_nested_cache_regenerates(
        self, resolver: ManifestResolver, generator: CountingGenerator
    ):
        _write_cache(resolver, "[" * 100000 + "]" * 100000)
        resolution = resolver.resolve()
        assert resolution.source is ResolutionSource.GENERATED
        assert resolution.cache_written is True
        assert len(generator.calls) == 1

    def test_unserializable_manifest_still_resolves(self, tmp_path: Path, clock: FakeClock):
        def with_datetime(context):
            return {"_meta": {"generatedAt": clock()}, "skills": [{"name": "x"}]}

        resolver = ManifestResolver(tmp_path / "cache", with_datetime, clock=clock)
        resolution = resolver.resolve()
        assert resolution.source is ResolutionSource.GENERATED
        assert resolution.cache_written is False
        assert resolution.manifest["_meta"]["generatedAt"] == clock()
        assert resolution.manifest["skills"] == [{"name": "x"}]
        assert not resolver.cache_path.exists()

    def test_invalidate_then_resolve_generates(
        self, resolver: ManifestResolver, generator: CountingGenerator
    ):
        resolver.resolve()
        resolver.invalidate_cache()
        assert resolver.cache_path.read_text(encoding="utf-8") == ""
        resolution = resolver.resolve()
        assert resolution.source is ResolutionSource.GENERATED
        assert len(generator.calls) == 2

    def test_write_failure_is_not_fatal(self, tmp_path: Path, generator: CountingGenerator, clock: FakeClock):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way", encoding="utf-8")
        resolver = ManifestResolver(blocker / "cache", generator, clock=clock)
        resolution = resolver.resolve()
        assert resolution.source is ResolutionSource.GENERATED
        assert resolution.cache_written is False
        assert resolution.manifest["skills"] == [{"name": "ct-research"}]

    def test_stale_refresh_failure_keeps_stale(self, tmp_path: Path, clock: FakeClock):
        def failing(context):
            raise RuntimeError("scan exploded")

        resolver = ManifestResolver(tmp_path / "cache", failing, clock=clock)
        stale = {
            "_meta": {"generatedAt": (clock() - timedelta(hours=2)).isoformat()},
            "skills": [{"name": "kept"}],
        }
        _write_cache(resolver, stale)
        resolution = resolver.resolve()
        assert resolution.source is ResolutionSource.STALE_CACHE
        assert resolution.manifest == stale
        assert resolution.refresh_error == "scan exploded"
        assert json.loads(resolver.cache_path.read_text(encoding="utf-8")) == stale

    def test_generator_failure_without_cache_propagates(self, tmp_path: Path, clock: FakeClock):
        def failing(context):
            raise RuntimeError("scan exploded")

        resolver = ManifestResolver(tmp_path / "cache", failing, clock=clock)
        with pytest.raises(RuntimeError, match="scan exploded"):
            resolver.resolve()

    def test_creates_cache_dir(self, tmp_path: Path, generator: CountingGenerator, clock: FakeClock):
        resolver = ManifestResolver(tmp_path / "a" / "b" / "cache", generator, clock=clock)
        resolver.resolve()
        assert (tmp_path / "a" / "b" / "cache" / CACHE_FILENAME).is_file()


class TestRegenerateCache:
    def test_overwrites_fresh_cache(
        self, resolver: ManifestResolver, generator: CountingGenerator, clock: FakeClock
    ):
        resolver.resolve()
        generator.skills = [{"name": "new-skill"}]
        clock.advance(5)
        manifest = resolver.regenerate_cache()
        assert manifest["skills"] == [{"name": "new-skill"}]
        assert len(generator.calls) == 2
        assert resolver.resolve_manifest() == manifest

    def test_stamps_missing_meta(self, tmp_path: Path, clock: FakeClock):
        resolver = ManifestResolver(
            tmp_path / "cache", lambda context: {"skills": [{"name": "x"}]}, default_ttl=60, clock=clock
        )
        manifest = resolver.regenerate_cache()
        assert manifest["_meta"] == {"generatedAt": clock().isoformat(timespec="seconds"), "ttlSeconds": 60}
        assert resolver.is_cache_fresh() is True

    @pytest.mark.parametrize("meta", [None, "v1", [1, 2]])
    def test_replaces_non_object_meta(self, tmp_path: Path, clock: FakeClock, meta):
        resolver = ManifestResolver(
            tmp_path / "cache", lambda context: {"_meta": meta, "skills": []}, clock=clock
        )
        manifest = resolver.regenerate_cache()
        assert manifest["_meta"] == {"generatedAt": clock().isoformat(timespec="seconds"), "ttlSeconds": 300}

    def test_does_not_mutate_generator_output(self, tmp_path: Path, clock: FakeClock):
        original = {"skills": [{"name": "x"}]}
        resolver = ManifestResolver(tmp_path / "cache", lambda context: original, clock=clock)
        resolver.regenerate_cache()
        assert original == {"skills": [{"name": "x"}]}


class TestInvalidateCache:
    def test_missing_file_is_noop(self, resolver: ManifestResolver):
        resolver.invalidate_cache()
        assert not resolver.cache_path.exists()

    def test_unwritable_is_suppressed(self, resolver: ManifestResolver):
        # A directory at the cache path cannot be truncated
        resolver.cache_path.mkdir(parents=True)
        resolver.invalidate_cache()
        assert resolver.cache_path.is_dir()
