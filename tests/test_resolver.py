"""Tests for version resolution against a remote."""

import pytest

from skillpin.errors import ResolutionError
from skillpin.git import RemoteTag
from skillpin.resolver import ResolvedRef, VersionResolver, pick_latest_tag
from skillpin.versioning import VersionSpec


REPO = "https://github.com/org/repo"


class FakeRemote:
    """In-memory GitRemote that records the queries made."""

    def __init__(self, tags=None, default_branch="main"):
        self.tags = [t if isinstance(t, RemoteTag) else RemoteTag(t, f"sha-{t}") for t in tags or []]
        self.branch = default_branch
        self.calls = []

    def list_tags(self, repo_url):
        self.calls.append(("list_tags", repo_url))
        return list(self.tags)

    def default_branch(self, repo_url):
        self.calls.append(("default_branch", repo_url))
        return self.branch


class TestOfflineSpecs:
    """Specs that resolve without querying the remote."""

    def test_exact_tag(self):
        remote = FakeRemote(["v1.0.0"])
        resolved = VersionResolver(remote).resolve_version(REPO, VersionSpec.exact("v1.0.0"))

        assert resolved == ResolvedRef("v1.0.0")
        assert remote.calls == []

    def test_branch(self):
        remote = FakeRemote()
        resolved = VersionResolver(remote).resolve_version(REPO, "branch:develop")

        assert resolved.ref == "develop"
        assert remote.calls == []

    def test_commit(self):
        remote = FakeRemote()
        resolved = VersionResolver(remote).resolve_version(REPO, "commit:abc1234")

        assert resolved.ref == "abc1234"
        assert resolved.commit == "abc1234"
        assert remote.calls == []

    def test_missing_version_is_main(self):
        assert VersionResolver(FakeRemote()).resolve_version(REPO, None).ref == "main"


class TestLatest:
    """Tests for the "latest" spec."""

    def test_highest_semver_tag(self):
        remote = FakeRemote(["v1.0.0", "v2.1.0", "v1.10.0", "nightly"])
        resolved = VersionResolver(remote).resolve_version(REPO, "latest")

        assert resolved.ref == "v2.1.0"
        assert resolved.commit == "sha-v2.1.0"

    def test_no_semver_tags_uses_last_listed(self):
        remote = FakeRemote(["alpha", "beta"])
        assert VersionResolver(remote).resolve_version(REPO, "latest").ref == "beta"

    def test_no_tags_uses_default_branch(self):
        remote = FakeRemote([], default_branch="trunk")
        resolved = VersionResolver(remote).resolve_version(REPO, VersionSpec.latest())

        assert resolved.ref == "trunk"
        assert ("default_branch", REPO) in remote.calls

    def test_pick_latest_tag_prefers_release(self):
        tags = [RemoteTag("v2.0.0-rc.1"), RemoteTag("v1.9.0"), RemoteTag("v2.0.0")]
        assert pick_latest_tag(tags).name == "v2.0.0"


class TestRanges:
    """Tests for range specs."""

    def test_caret_picks_highest_match(self):
        remote = FakeRemote(["v1.0.0", "v1.2.0", "v1.9.9", "v2.0.0"])
        resolved = VersionResolver(remote).resolve_version(REPO, "^1.0.0")

        assert resolved.ref == "v1.9.9"
        assert resolved.commit == "sha-v1.9.9"

    def test_tilde(self):
        remote = FakeRemote(["1.2.0", "1.2.7", "1.3.0"])
        assert VersionResolver(remote).resolve_version(REPO, "~1.2.0").ref == "1.2.7"

    def test_ignores_non_semver_tags(self):
        remote = FakeRemote(["latest-build", "v1.1.0"])
        assert VersionResolver(remote).resolve_version(REPO, ">=1.0.0").ref == "v1.1.0"

    def test_no_match(self):
        remote = FakeRemote(["v1.0.0", "v2.0.0"])

        with pytest.raises(ResolutionError) as exc_info:
            VersionResolver(remote).resolve_version(REPO, "^3.0.0")

        assert exc_info.value.spec == "^3.0.0"
        assert exc_info.value.repo_url == REPO
        assert "^3.0.0" in str(exc_info.value)
