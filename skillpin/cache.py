"""Content cache for fetched skills.

Entries live at:

    <cache_dir>/<registry>/<owner>/<repo>[/<sub_path>]/<resolved_ref>/

Each entry is a copy of the skill's directory (only the sub path for
monorepo skills) plus a marker file holding the source commit. Entries
are keyed by the resolved ref, so "latest" and the tag it resolved to
share one entry.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from skillpin import git
from skillpin.config import get_cache_directory
from skillpin.errors import ConsistencyError, FetchError
from skillpin.reference import SkillReference, SourceKind
from skillpin.registry import RegistryClient, download_archive, extract_archive


logger = logging.getLogger(__name__)

COMMIT_MARKER = ".skillpin-commit"

# Never copied out of the cache into an install
EXCLUDED_FILES = {COMMIT_MARKER, "README.md", "metadata.json", ".git"}
INTERNAL_PREFIX = "_"


def is_excluded(name: str) -> bool:
    return name in EXCLUDED_FILES or name.startswith(INTERNAL_PREFIX)


def copy_skill_files(source: Path, destination: Path) -> None:
    """Recursively copy a skill, leaving out internal files.

    Exclusions apply at every level of the tree.
    """

    def ignore(_directory: str, names: list[str]) -> set[str]:
        return {name for name in names if is_excluded(name)}

    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(source, destination, ignore=ignore, symlinks=True, dirs_exist_ok=True)


@dataclass
class CacheEntry:
    """A present cache entry.

    Attributes:
        path: Directory holding the skill content
        commit: Source commit recorded when the entry was fetched
    """

    path: Path
    commit: Optional[str] = None


@dataclass
class CacheStats:
    """Summary of the cache contents."""

    cache_dir: Path
    total_skills: int = 0
    registries: list[str] = field(default_factory=list)


class Fetcher(Protocol):
    """Fetches a source's full tree into an empty directory."""

    def fetch(self, repo_url: str, ref: SkillReference, resolved_ref: str, dest: Path) -> Optional[str]:
        """Fetch content and return the commit it came from, if known."""
        ...


class SourceFetcher:
    """Fetcher dispatching on the reference's source kind."""

    def __init__(self, registry_client: Optional[RegistryClient] = None):
        self.registry_client = registry_client

    def fetch(self, repo_url: str, ref: SkillReference, resolved_ref: str, dest: Path) -> Optional[str]:
        if ref.kind.is_git:
            git.clone(repo_url, dest, ref=resolved_ref)
            return git.get_current_commit(dest)

        if ref.kind is SourceKind.HTTP_ARCHIVE:
            extract_archive(download_archive(repo_url), dest, ref.archive_format)
            return None

        if ref.kind is SourceKind.REGISTRY:
            if self.registry_client is None:
                raise FetchError(f"No registry configured for {ref.raw}")
            name = f"{ref.owner}/{ref.repo_name}"
            package = self.registry_client.resolve(name, resolved_ref)
            extract_archive(package.content, dest, "tar.gz")
            return None

        raise FetchError(f"Unsupported source: {ref.raw}")


class ContentCache:
    """On-disk store of fetched skill content."""

    def __init__(self, cache_dir: Optional[Path] = None, fetcher: Optional[Fetcher] = None):
        self.cache_dir = Path(cache_dir) if cache_dir else get_cache_directory()
        self.fetcher = fetcher or SourceFetcher()

    def get_cache_path(self, ref: SkillReference, resolved_ref: str) -> Path:
        """Deterministic path of an entry, including the sub path."""
        return self.cache_dir.joinpath(*ref.cache_key_parts, resolved_ref.replace("/", "-"))

    def get(self, ref: SkillReference, resolved_ref: str) -> Optional[CacheEntry]:
        """Look up an entry without fetching."""
        cache_path = self.get_cache_path(ref, resolved_ref)
        if not cache_path.is_dir():
            return None
        marker = cache_path / COMMIT_MARKER
        commit = marker.read_text().strip() if marker.exists() else ""
        return CacheEntry(path=cache_path, commit=commit or None)

    def cache(
        self,
        repo_url: str,
        ref: SkillReference,
        resolved_ref: str,
        refresh: bool = False,
    ) -> CacheEntry:
        """Return the entry for a resolved ref, fetching it on a miss.

        Args:
            repo_url: URL to fetch from
            ref: Parsed reference
            resolved_ref: Concrete tag, branch or commit
            refresh: Fetch again even if the entry is present

        Returns:
            CacheEntry instance

        Raises:
            FetchError: If the source cannot be fetched
            ConsistencyError: If the sub path does not exist in the source
        """
        if not refresh:
            entry = self.get(ref, resolved_ref)
            if entry is not None:
                logger.debug("Cache hit: %s", entry.path)
                return entry

        cache_path = self.get_cache_path(ref, resolved_ref)
        logger.debug("Cache miss: %s", cache_path)
        cache_path.parent.mkdir(parents=True, exist_ok=True)

        staging = Path(tempfile.mkdtemp(prefix=f".{cache_path.name}.", suffix=".tmp", dir=cache_path.parent))
        try:
            checkout = staging / "checkout"
            content = staging / "content"
            commit = self.fetcher.fetch(repo_url, ref, resolved_ref, checkout)

            source = checkout / ref.sub_path if ref.sub_path else checkout
            if not source.is_dir():
                raise ConsistencyError(
                    f"Path '{ref.sub_path}' not found in {repo_url}@{resolved_ref}"
                )

            shutil.copytree(source, content, ignore=shutil.ignore_patterns(".git"), symlinks=True)
            (content / COMMIT_MARKER).write_text(commit or "")
            self._publish(content, cache_path)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        return CacheEntry(path=cache_path, commit=commit or None)

    def _publish(self, content: Path, cache_path: Path) -> None:
        """Move a complete entry into place. The last writer wins."""
        for _ in range(3):
            old = None
            if cache_path.exists():
                old = cache_path.with_name(f".{cache_path.name}.{uuid.uuid4().hex}.old")
                try:
                    os.rename(cache_path, old)
                except FileNotFoundError:
                    old = None
            try:
                os.rename(content, cache_path)
                return
            except OSError:
                # Another writer published between our move-aside and rename
                if not cache_path.exists():
                    raise
            finally:
                if old is not None:
                    shutil.rmtree(old, ignore_errors=True)
        raise ConsistencyError(f"Could not publish cache entry {cache_path}")

    def copy_to(self, ref: SkillReference, resolved_ref: str, destination: Path) -> Path:
        """Copy an entry to a destination, without internal files.

        Raises:
            ConsistencyError: If the entry is not cached
        """
        entry = self.get(ref, resolved_ref)
        if entry is None:
            raise ConsistencyError(f"{ref.source}@{resolved_ref} is not in the cache")
        copy_skill_files(entry.path, Path(destination))
        return Path(destination)

    def get_remote_commit(self, repo_url: str, ref: str) -> str:
        """Query the commit a remote ref points at, without fetching."""
        return git.get_remote_commit(repo_url, ref)

    def clear_skill(self, ref: SkillReference, resolved_ref: Optional[str] = None) -> bool:
        """Remove one entry, or every cached version of a skill.

        Returns:
            True if anything was removed
        """
        if resolved_ref:
            target = self.get_cache_path(ref, resolved_ref)
        else:
            target = self.cache_dir.joinpath(*ref.cache_key_parts)
        if not target.exists():
            return False
        shutil.rmtree(target)
        return True

    def clear_all(self) -> None:
        """Remove every cache entry."""
        if self.cache_dir.exists():
            shutil.rmtree(self.cache_dir)

    def get_stats(self) -> CacheStats:
        """Count cached entries."""
        stats = CacheStats(cache_dir=self.cache_dir)
        if not self.cache_dir.exists():
            return stats

        stats.registries = sorted(
            d.name for d in self.cache_dir.iterdir() if d.is_dir() and not d.name.startswith(".")
        )
        stats.total_skills = sum(1 for _ in self.cache_dir.rglob(COMMIT_MARKER))
        return stats
