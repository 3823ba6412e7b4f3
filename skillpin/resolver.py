"""Resolve version specs against a remote repository."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from skillpin import git
from skillpin.errors import ResolutionError
from skillpin.versioning import (
    VersionKind,
    VersionSpec,
    parse_version_spec,
    satisfies,
    try_parse_semver,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedRef:
    """A concrete, fetchable ref.

    Attributes:
        ref: Tag, branch name or commit hash
        commit: Commit hash, when resolution happened to learn it
    """

    ref: str
    commit: Optional[str] = None


class GitRemote(Protocol):
    """The remote queries the resolver needs."""

    def list_tags(self, repo_url: str) -> list[git.RemoteTag]: ...

    def default_branch(self, repo_url: str) -> str: ...


class SubprocessRemote:
    """GitRemote backed by the git executable."""

    def list_tags(self, repo_url: str) -> list[git.RemoteTag]:
        return git.list_remote_tags(repo_url)

    def default_branch(self, repo_url: str) -> str:
        return git.get_default_branch(repo_url)


def pick_latest_tag(tags: list[git.RemoteTag]) -> git.RemoteTag:
    """Pick the "latest" tag.

    The highest semantic version wins among tags that parse as one;
    if none do, the last tag in the listing is used.
    """
    versioned = [(parsed, tag) for tag in tags if (parsed := try_parse_semver(tag.name))]
    if versioned:
        return max(versioned, key=lambda item: item[0])[1]
    return tags[-1]


class VersionResolver:
    """Turns a VersionSpec plus a repository URL into a ResolvedRef."""

    def __init__(self, remote: Optional[GitRemote] = None):
        self.remote = remote or SubprocessRemote()

    def resolve_version(self, repo_url: str, spec: VersionSpec | str | None) -> ResolvedRef:
        """Resolve a version spec.

        Exact tags, branches and commits are returned without touching
        the network. "latest" and ranges list the remote's tags.

        Args:
            repo_url: Repository to query
            spec: Parsed spec, or the raw version string

        Returns:
            ResolvedRef instance

        Raises:
            ResolutionError: If no tag satisfies a range
        """
        if not isinstance(spec, VersionSpec):
            spec = parse_version_spec(spec)

        if spec.kind is VersionKind.EXACT:
            return ResolvedRef(ref=spec.value)

        if spec.kind is VersionKind.BRANCH:
            return ResolvedRef(ref=spec.value)

        if spec.kind is VersionKind.COMMIT:
            return ResolvedRef(ref=spec.value, commit=spec.value)

        tags = self.remote.list_tags(repo_url)

        if spec.kind is VersionKind.LATEST:
            if not tags:
                branch = self.remote.default_branch(repo_url)
                logger.debug("No tags on %s, using default branch %s", repo_url, branch)
                return ResolvedRef(ref=branch)
            tag = pick_latest_tag(tags)
            return ResolvedRef(ref=tag.name, commit=tag.commit)

        matching = [
            (parsed, tag)
            for tag in tags
            if (parsed := try_parse_semver(tag.name)) is not None
            and satisfies(parsed, spec.value)
        ]
        if not matching:
            raise ResolutionError(
                f"No version matching {spec.value} found in {repo_url}",
                spec=spec.value,
                repo_url=repo_url,
            )

        matching.sort(key=lambda item: item[0], reverse=True)
        best = matching[0][1]
        logger.debug("Resolved %s to %s in %s", spec.value, best.name, repo_url)
        return ResolvedRef(ref=best.name, commit=best.commit)
