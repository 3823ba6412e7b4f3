"""Tests for the content cache."""

import pytest

from skillpin.cache import (
    COMMIT_MARKER,
    ContentCache,
    SourceFetcher,
    copy_skill_files,
)
from skillpin.errors import ConsistencyError, FetchError
from skillpin.reference import parse_reference


REPO = "https://github.com/org/monorepo"


class FakeFetcher:
    """Fetcher that writes a small monorepo and counts fetches."""

    def __init__(self, commit="abc1234"):
        self.commit = commit
        self.calls = []

    def fetch(self, repo_url, ref, resolved_ref, dest):
        self.calls.append((repo_url, resolved_ref))
        for name in ("pdf", "docx"):
            skill = dest / "skills" / name
            skill.mkdir(parents=True)
            (skill / "SKILL.md").write_text(f"---\nname: {name}\ndescription: {name} tools\n---\n")
        (dest / ".git").mkdir()
        (dest / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        (dest / "README.md").write_text("# monorepo\n")
        return self.commit


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def cache(tmp_path, fetcher):
    return ContentCache(tmp_path / "cache", fetcher=fetcher)


class TestCachePaths:
    """Tests for cache layout."""

    def test_path_includes_sub_path_and_ref(self, cache, tmp_path):
        ref = parse_reference("org/monorepo/skills/pdf@v1.0.0")
        path = cache.get_cache_path(ref, "v1.0.0")

        assert path == tmp_path / "cache" / "github" / "org" / "monorepo" / "skills" / "pdf" / "v1.0.0"

    def test_different_sub_paths_do_not_collide(self, cache):
        pdf = parse_reference("org/monorepo/skills/pdf@v1.0.0")
        docx = parse_reference("org/monorepo/skills/docx@v1.0.0")

        assert cache.get_cache_path(pdf, "v1.0.0") != cache.get_cache_path(docx, "v1.0.0")

    def test_branch_with_slash(self, cache):
        ref = parse_reference("org/monorepo@branch:feature/x")
        assert cache.get_cache_path(ref, "feature/x").name == "feature-x"


class TestCache:
    """Tests for fetching into the cache."""

    def test_miss_fetches_and_records_commit(self, cache, fetcher):
        ref = parse_reference("org/monorepo@v1.0.0")
        entry = cache.cache(REPO, ref, "v1.0.0")

        assert fetcher.calls == [(REPO, "v1.0.0")]
        assert entry.commit == "abc1234"
        assert (entry.path / COMMIT_MARKER).read_text() == "abc1234"
        assert (entry.path / "skills" / "pdf" / "SKILL.md").exists()
        assert not (entry.path / ".git").exists()

    def test_hit_does_not_fetch(self, cache, fetcher):
        ref = parse_reference("org/monorepo@v1.0.0")
        first = cache.cache(REPO, ref, "v1.0.0")
        second = cache.cache(REPO, ref, "v1.0.0")

        assert len(fetcher.calls) == 1
        assert second.path == first.path
        assert second.commit == "abc1234"

    def test_refresh_fetches_again(self, cache, fetcher):
        ref = parse_reference("org/monorepo@main")
        cache.cache(REPO, ref, "main")
        fetcher.commit = "def5678"
        entry = cache.cache(REPO, ref, "main", refresh=True)

        assert len(fetcher.calls) == 2
        assert entry.commit == "def5678"
        assert cache.get(ref, "main").commit == "def5678"

    def test_sub_path_caches_only_the_skill(self, cache):
        ref = parse_reference("org/monorepo/skills/pdf@v1.0.0")
        entry = cache.cache(REPO, ref, "v1.0.0")

        assert (entry.path / "SKILL.md").exists()
        assert not (entry.path / "skills").exists()

    def test_missing_sub_path(self, cache):
        ref = parse_reference("org/monorepo/skills/missing@v1.0.0")

        with pytest.raises(ConsistencyError):
            cache.cache(REPO, ref, "v1.0.0")

        assert cache.get(ref, "v1.0.0") is None

    def test_failed_fetch_leaves_no_entry(self, tmp_path):
        class FailingFetcher:
            def fetch(self, repo_url, ref, resolved_ref, dest):
                dest.mkdir(parents=True)
                raise FetchError("network down")

        cache = ContentCache(tmp_path / "cache", fetcher=FailingFetcher())
        ref = parse_reference("org/monorepo@v1.0.0")

        with pytest.raises(FetchError):
            cache.cache(REPO, ref, "v1.0.0")

        assert cache.get(ref, "v1.0.0") is None
        assert list(cache.get_cache_path(ref, "v1.0.0").parent.iterdir()) == []


class TestCopyAndClear:
    """Tests for copying out of and clearing the cache."""

    def test_copy_to_excludes_internal_files(self, cache, tmp_path):
        ref = parse_reference("org/monorepo@v1.0.0")
        cache.cache(REPO, ref, "v1.0.0")
        dest = cache.copy_to(ref, "v1.0.0", tmp_path / "out")

        assert (dest / "skills" / "docx" / "SKILL.md").exists()
        assert not (dest / COMMIT_MARKER).exists()
        assert not (dest / "README.md").exists()

    def test_copy_to_requires_entry(self, cache, tmp_path):
        ref = parse_reference("org/monorepo@v1.0.0")
        with pytest.raises(ConsistencyError):
            cache.copy_to(ref, "v1.0.0", tmp_path / "out")

    def test_copy_skill_files_skips_underscore_entries(self, tmp_path):
        source = tmp_path / "src"
        (source / "_internal").mkdir(parents=True)
        (source / "nested").mkdir()
        (source / "nested" / "metadata.json").write_text("{}")
        (source / "SKILL.md").write_text("x")

        copy_skill_files(source, tmp_path / "dest")

        assert (tmp_path / "dest" / "SKILL.md").exists()
        assert not (tmp_path / "dest" / "_internal").exists()
        assert not (tmp_path / "dest" / "nested" / "metadata.json").exists()

    def test_clear_skill_and_stats(self, cache):
        v1 = parse_reference("org/monorepo@v1.0.0")
        cache.cache(REPO, v1, "v1.0.0")
        cache.cache(REPO, v1, "v2.0.0")

        stats = cache.get_stats()
        assert stats.total_skills == 2
        assert stats.registries == ["github"]

        assert cache.clear_skill(v1, "v1.0.0")
        assert cache.get_stats().total_skills == 1
        assert cache.clear_skill(v1)
        assert not cache.clear_skill(v1)

    def test_clear_all(self, cache):
        cache.cache(REPO, parse_reference("org/monorepo@v1.0.0"), "v1.0.0")
        cache.clear_all()

        assert cache.get_stats().total_skills == 0


class TestSourceFetcher:
    """Tests for fetcher dispatch."""

    def test_registry_without_client(self, tmp_path):
        ref = parse_reference("@acme/pdf@1.0.0")
        with pytest.raises(FetchError, match="No registry"):
            SourceFetcher().fetch("https://registry.example", ref, "1.0.0", tmp_path / "dest")
