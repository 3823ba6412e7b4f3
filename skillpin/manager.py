"""Skill manager: install, update, uninstall and list skills.

The manager composes the reference parser, version resolver, content
cache, installer, lock store and project configuration. One manager
works on one ManagerContext (a project, or the user's home in global
mode); lock and config writes happen in project mode only.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from skillpin.agents import detect_installed_agents, get_all_agent_types, is_valid_agent_type
from skillpin.cache import CacheEntry, ContentCache, SourceFetcher, copy_skill_files
from skillpin.config import (
    InstallMode,
    ProjectConfig,
    ProjectDefaults,
    SkillpinConfig,
    get_cache_directory,
    get_config,
)
from skillpin.errors import ConsistencyError, InstallError, SkillpinError
from skillpin.installer import InstallResult, Installer, create_symlink, remove_path, sanitize_name
from skillpin.lockfile import LockedSkill, LockStore
from skillpin.manifest import (
    DiscoveredSkill,
    discover_skills,
    filter_skills_by_name,
    read_manifest,
)
from skillpin.models import LOCAL_VERSION, InstalledSkill, ManagerContext
from skillpin.reference import (
    REGISTRY_SOURCE,
    SkillReference,
    SourceKind,
    build_repo_url,
    parse_reference,
)
from skillpin.registry import RegistryClient
from skillpin.resolver import ResolvedRef, VersionResolver
from skillpin.versioning import VersionSpec


logger = logging.getLogger(__name__)

MAX_WORKERS = 8
UNKNOWN = "unknown"


def _is_unversioned_archive(ref: SkillReference) -> bool:
    return ref.kind is SourceKind.HTTP_ARCHIVE and not ref.version_spec


# =============================================================================
# Results
# =============================================================================


@dataclass
class Resolution:
    """A parsed reference together with where and what to fetch."""

    ref: SkillReference
    repo_url: str
    resolved: ResolvedRef


@dataclass
class InstallOutcome:
    """Result of installing one skill.

    Attributes:
        skill: The installed skill
        results: Per-agent install results
        skipped: True if the locked version was already installed
    """

    skill: InstalledSkill
    results: dict[str, InstallResult] = field(default_factory=dict)
    skipped: bool = False

    @property
    def failed_targets(self) -> list[str]:
        return [target for target, result in self.results.items() if not result.success]


@dataclass
class BatchResult:
    """Outcome of installing several references.

    Attributes:
        succeeded: Outcomes of the installs that completed
        failed: (reference, error message) for each install that raised
    """

    succeeded: list[InstallOutcome] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class RepoSkills:
    """Skills discovered in a multi-skill repository."""

    discovered: list[DiscoveredSkill]
    installed: list[InstallOutcome] = field(default_factory=list)


@dataclass
class OutdatedInfo:
    """Version status of a declared skill."""

    name: str
    current: str
    latest: str
    update_available: bool


@dataclass
class SkillInfo:
    """Everything known about one skill."""

    name: str
    installed: Optional[InstalledSkill]
    locked: Optional[LockedSkill]
    config_ref: Optional[str]


# =============================================================================
# Manager
# =============================================================================


class SkillManager:
    """Runs skill operations for one project or for the user's home."""

    def __init__(
        self,
        project_root: Optional[Path] = None,
        is_global: bool = False,
        cache: Optional[ContentCache] = None,
        resolver: Optional[VersionResolver] = None,
        registry_client: Optional[RegistryClient] = None,
        home: Optional[Path] = None,
        settings: Optional[SkillpinConfig] = None,
    ):
        self.context = ManagerContext(
            project_root=Path(project_root or Path.cwd()).resolve(),
            is_global=is_global,
            home=Path(home or Path.home()),
        )
        self.settings = settings or get_config()
        self.project = ProjectConfig(self.context.project_root)
        self.lock = LockStore(self.context.project_root)
        self.registry_client = registry_client or RegistryClient(
            self.settings.registry_url, token=self.settings.registry_token
        )
        self.cache = cache or ContentCache(
            get_cache_directory(), fetcher=SourceFetcher(self.registry_client)
        )
        self.resolver = resolver or VersionResolver()
        self.installer = Installer(self.context)

    @property
    def is_global(self) -> bool:
        return self.context.is_global

    # -------------------------------------------------------------------------
    # Locations
    # -------------------------------------------------------------------------

    def _defaults(self) -> ProjectDefaults:
        if self.is_global:
            return ProjectDefaults()
        return self.project.get_defaults()

    def get_canonical_dir(self) -> Path:
        """The shared store every agent links to."""
        return self.context.canonical_dir

    def get_legacy_dir(self) -> Path:
        """The older install location, still read for compatibility.

        Project mode uses the configured install directory (".skills" by
        default); global mode uses ~/.claude/skills.
        """
        if self.is_global:
            return self.context.home / ".claude" / "skills"
        return self.project.get_install_dir()

    def get_install_dir(self) -> Path:
        """Where a skill that is not installed yet will be placed.

        This is the canonical store unless skills.yaml names a
        non-default install directory.
        """
        if not self.is_global and self._defaults().install_dir != ProjectDefaults().install_dir:
            return self.get_legacy_dir()
        return self.get_canonical_dir()

    def get_skill_path(self, name: str) -> Path:
        """Locate a skill: canonical store, then legacy, then the install dir."""
        name = sanitize_name(name)
        for directory in (self.get_canonical_dir(), self.get_legacy_dir()):
            path = directory / name
            if path.is_symlink() or path.exists():
                return path
        return self.get_install_dir() / name

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _default_registry(self) -> str:
        return self._defaults().registry or self.settings.default_registry

    def _registries(self) -> dict[str, str]:
        registries = {} if self.is_global else self.project.get_registries()
        registries[REGISTRY_SOURCE] = self.registry_client.base_url
        return registries

    def resolve(self, raw: str) -> Resolution:
        """Parse a reference and resolve its version.

        Raises:
            ParseError: If the reference is malformed
            ResolutionError: If no version matches
            FetchError: If the remote cannot be queried
        """
        ref = parse_reference(raw, default_registry=self._default_registry())
        repo_url = build_repo_url(ref, self._registries())

        if ref.kind is SourceKind.HTTP_ARCHIVE:
            resolved = ResolvedRef(ref=ref.version_spec or "latest")
        elif ref.kind is SourceKind.REGISTRY:
            version = self.registry_client.resolve_version(
                f"{ref.owner}/{ref.repo_name}", ref.version_spec
            )
            resolved = ResolvedRef(ref=version)
        else:
            resolved = self.resolver.resolve_version(repo_url, ref.version)

        logger.debug("Resolved %s to %s@%s", raw, repo_url, resolved.ref)
        return Resolution(ref=ref, repo_url=repo_url, resolved=resolved)

    def _resolve_targets(self, targets: Optional[list[str]]) -> list[str]:
        if targets is not None:
            invalid = [t for t in targets if not is_valid_agent_type(t)]
            if invalid:
                raise InstallError(
                    f"Unknown agent(s): {', '.join(invalid)}. "
                    f"Supported: {', '.join(get_all_agent_types())}"
                )
            return list(targets)

        configured = self._defaults().target_agents
        if configured:
            return [t for t in configured if is_valid_agent_type(t)]
        return detect_installed_agents(cwd=self.context.project_root, home=self.context.home)

    def _resolve_mode(self, mode: Optional[InstallMode]) -> InstallMode:
        return mode or self._defaults().install_mode

    # -------------------------------------------------------------------------
    # Install
    # -------------------------------------------------------------------------

    def install(
        self,
        raw: str,
        targets: Optional[list[str]] = None,
        mode: Optional[InstallMode] = None,
        force: bool = False,
        save: bool = True,
        refresh: bool = False,
    ) -> InstallOutcome:
        """Install a skill from a reference.

        Args:
            raw: Skill reference
            targets: Agents to install into (default: configured, else detected)
            mode: Symlink or copy (default: configured, else symlink)
            force: Reinstall even if the locked ref is already installed
            save: Record the reference in skills.yaml (project mode, if it exists)
            refresh: Fetch again even if the content is cached

        Returns:
            InstallOutcome instance

        Raises:
            SkillpinError: If the skill cannot be parsed, resolved or fetched
        """
        resolution = self.resolve(raw)
        ref = resolution.ref
        name = sanitize_name(ref.skill_name_hint)

        skill_path = self.get_skill_path(name)
        if not force and (skill_path.is_symlink() or skill_path.exists()):
            locked = None if self.is_global else self.lock.get(name)
            if locked and locked.ref == resolution.resolved.ref:
                logger.info("%s@%s is already installed", name, locked.ref)
                return InstallOutcome(skill=self._describe(skill_path), skipped=True)

        # An unversioned archive URL can change behind the same "latest" key
        refresh = refresh or _is_unversioned_archive(ref)
        entry = self.cache.cache(resolution.repo_url, ref, resolution.resolved.ref, refresh=refresh)
        source_dir = entry.path
        if ref.skill_name and not ref.sub_path:
            source_dir = self._find_in_repo(entry, ref.skill_name).path

        return self._install_from(
            resolution, entry, source_dir, name, raw, targets, mode, save
        )

    def _find_in_repo(self, entry: CacheEntry, skill_name: str) -> DiscoveredSkill:
        discovered = discover_skills(entry.path)
        if not discovered:
            raise ConsistencyError(f"No valid skills found in {entry.path}")
        matches = filter_skills_by_name(discovered, [skill_name])
        if not matches:
            raise ConsistencyError(
                f"Skill '{skill_name}' not found in {entry.path}",
                available=[s.name for s in discovered],
            )
        return matches[0]

    def _install_from(
        self,
        resolution: Resolution,
        entry: CacheEntry,
        source_dir: Path,
        name: str,
        config_ref: str,
        targets: Optional[list[str]],
        mode: Optional[InstallMode],
        save: bool,
    ) -> InstallOutcome:
        ref = resolution.ref
        targets = self._resolve_targets(targets)
        mode = self._resolve_mode(mode)

        results = self.installer.install_to_agents(source_dir, name, targets, mode)
        if mode is InstallMode.COPY:
            # The canonical store is the record list() and update() read from
            self.installer.install_canonical(source_dir, name)

        install_dir = self.get_install_dir()
        if install_dir != self.get_canonical_dir():
            legacy_path = install_dir / name
            if legacy_path.is_symlink() or legacy_path.exists():
                remove_path(legacy_path)
            copy_skill_files(source_dir, legacy_path)

        manifest = read_manifest(source_dir)
        version = (manifest.version if manifest and manifest.version else None) or resolution.resolved.ref

        if not self.is_global:
            self.lock.lock_skill(
                name,
                source=ref.source,
                version=version,
                ref=resolution.resolved.ref,
                resolved=resolution.repo_url,
                commit=entry.commit or resolution.resolved.commit,
                registry=self.registry_client.base_url if ref.kind is SourceKind.REGISTRY else None,
            )
            if save and self.project.exists():
                self.project.add_skill(name, config_ref)

        failed = [t for t, r in results.items() if not r.success]
        if failed:
            logger.warning("Installed %s@%s, but failed for: %s", name, resolution.resolved.ref, ", ".join(failed))
        else:
            logger.info("Installed %s@%s", name, resolution.resolved.ref)

        return InstallOutcome(skill=self._describe(self.get_skill_path(name)), results=results)

    def install_many(
        self,
        refs: list[str],
        targets: Optional[list[str]] = None,
        mode: Optional[InstallMode] = None,
        force: bool = False,
        save: bool = True,
    ) -> BatchResult:
        """Install several references concurrently.

        Every install runs to completion; one failure never stops the
        others.
        """
        batch = BatchResult()
        if not refs:
            return batch

        def run(raw: str) -> InstallOutcome:
            return self.install(raw, targets=targets, mode=mode, force=force, save=save)

        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(refs))) as pool:
            futures = [(raw, pool.submit(run, raw)) for raw in refs]
            for raw, future in futures:
                try:
                    batch.succeeded.append(future.result())
                except Exception as e:
                    logger.error("Failed to install %s: %s", raw, e)
                    batch.failed.append((raw, str(e)))
        return batch

    def install_all(
        self,
        targets: Optional[list[str]] = None,
        mode: Optional[InstallMode] = None,
        force: bool = False,
    ) -> BatchResult:
        """Install every skill declared in skills.yaml."""
        refs = list(self.project.get_skills().values())
        return self.install_many(refs, targets=targets, mode=mode, force=force, save=False)

    def install_skills_from_repo(
        self,
        raw: str,
        names: list[str],
        targets: Optional[list[str]] = None,
        mode: Optional[InstallMode] = None,
        list_only: bool = False,
        save: bool = True,
    ) -> RepoSkills:
        """Install selected skills from a multi-skill repository.

        Each installed skill is recorded in skills.yaml as the repository
        reference plus "#<name>".

        Args:
            raw: Repository reference
            names: Skill names to install (case-insensitive)
            targets: Agents to install into
            mode: Symlink or copy
            list_only: Only discover, install nothing

        Raises:
            ConsistencyError: If the repository has no skills, or none match names
        """
        resolution = self.resolve(raw.split("#", 1)[0])
        entry = self.cache.cache(resolution.repo_url, resolution.ref, resolution.resolved.ref)

        discovered = discover_skills(entry.path)
        if not discovered:
            raise ConsistencyError(f"No valid skills found in {raw}")
        if list_only:
            return RepoSkills(discovered=discovered)

        selected = filter_skills_by_name(discovered, names)
        if not selected:
            available = [s.name for s in discovered]
            raise ConsistencyError(
                f"No skills matching {', '.join(names)} in {raw}",
                available=available,
            )

        base_ref = raw.split("#", 1)[0]
        outcome = RepoSkills(discovered=discovered)
        for skill in selected:
            name = sanitize_name(skill.name)
            outcome.installed.append(
                self._install_from(
                    resolution, entry, skill.path, name, f"{base_ref}#{skill.name}", targets, mode, save
                )
            )
        return outcome

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    def check_needs_update(self, name: str, remote_commit: str) -> bool:
        """Decide whether a skill must be refetched.

        True if the skill is not locked, its lock entry has no commit, or
        the locked commit differs from remote_commit.
        """
        locked = self.lock.get(name)
        if locked is None or not locked.commit:
            return True
        return locked.commit != remote_commit

    def _needs_update(self, name: str, resolution: Resolution) -> bool:
        if resolution.ref.kind.is_git:
            remote_commit = resolution.resolved.commit or self.cache.get_remote_commit(
                resolution.repo_url, resolution.resolved.ref
            )
            return self.check_needs_update(name, remote_commit)
        if _is_unversioned_archive(resolution.ref):
            return True
        locked = self.lock.get(name)
        return locked is None or locked.ref != resolution.resolved.ref

    def update(self, name: Optional[str] = None) -> list[InstalledSkill]:
        """Update one declared skill, or all of them.

        Skills whose upstream commit matches the lock file are skipped.

        Returns:
            The skills that were reinstalled

        Raises:
            ConsistencyError: If name is not declared in skills.yaml
        """
        skills = self.project.get_skills()
        if name is not None:
            if name not in skills:
                raise ConsistencyError(f"Skill {name} not found in skills.yaml")
            return self._update_one(name, skills[name], raise_errors=True)

        updated = []
        for skill_name, ref in skills.items():
            updated.extend(self._update_one(skill_name, ref, raise_errors=False))
        return updated

    def _update_one(self, name: str, raw: str, raise_errors: bool) -> list[InstalledSkill]:
        try:
            resolution = self.resolve(raw)
            if not self._needs_update(name, resolution):
                logger.info("%s is up to date", name)
                return []
            outcome = self.install(raw, force=True, save=False, refresh=True)
            return [outcome.skill]
        except SkillpinError as e:
            if raise_errors:
                raise
            logger.error("Failed to update %s: %s", name, e)
            return []

    def check_outdated(self) -> list[OutdatedInfo]:
        """Compare each declared skill's locked ref with the latest available."""
        results = []
        for name, raw in self.project.get_skills().items():
            locked = self.lock.get(name)
            current = locked.ref if locked else UNKNOWN
            try:
                ref = parse_reference(raw, default_registry=self._default_registry())
                if ref.kind.is_git:
                    repo_url = build_repo_url(ref, self._registries())
                    latest = self.resolver.resolve_version(repo_url, VersionSpec.latest()).ref
                else:
                    latest = self.resolve(raw).resolved.ref
            except SkillpinError as e:
                logger.debug("Failed to check %s: %s", name, e)
                results.append(OutdatedInfo(name, current, UNKNOWN, False))
                continue
            results.append(OutdatedInfo(name, current, latest, current not in (UNKNOWN, latest)))
        return results

    # -------------------------------------------------------------------------
    # Uninstall
    # -------------------------------------------------------------------------

    def uninstall(self, name: str, targets: Optional[list[str]] = None) -> bool:
        """Remove a skill from agents, both stores, the lock file and skills.yaml.

        With targets, only those agents are cleaned up. The skill stays
        recorded while any other agent still has it.

        Returns:
            False if the skill was not installed anywhere
        """
        name = sanitize_name(name)
        canonical = self.get_canonical_dir() / name
        legacy = self.get_legacy_dir() / name

        found = canonical.is_symlink() or canonical.exists()
        results = self.installer.uninstall_from_agents(name, targets or get_all_agent_types())
        found = found or any(results.values())

        remaining = self.installer.installed_agents(name) if targets else []
        if remaining:
            logger.info("Uninstalled %s from %s", name, ", ".join(t for t, removed in results.items() if removed))
            return any(results.values())

        if legacy.is_symlink() or legacy.exists():
            remove_path(legacy)
            found = True

        if not self.is_global:
            found = self.lock.remove(name) or found
            self.project.remove_skill(name)

        if found:
            logger.info("Uninstalled %s", name)
        else:
            logger.warning("Skill %s is not installed", name)
        return found

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def _describe(self, path: Path) -> InstalledSkill:
        is_linked = path.is_symlink()
        locked = None if self.is_global else self.lock.get(path.name)
        manifest = read_manifest(path) if path.exists() else None

        if is_linked:
            version = LOCAL_VERSION
            source = str(path.resolve())
        else:
            version = locked.version if locked else (manifest.version if manifest and manifest.version else UNKNOWN)
            source = locked.source if locked else ""

        return InstalledSkill(
            name=path.name,
            path=path,
            version=version,
            source=source,
            is_linked=is_linked,
            metadata=manifest.to_dict() if manifest else None,
        )

    def list(self) -> list[InstalledSkill]:
        """List installed skills.

        The canonical store is scanned first. Legacy entries are skipped
        when their name was already seen or when they are links into the
        canonical store.
        """
        canonical = self.get_canonical_dir()
        legacy = self.get_legacy_dir()
        canonical_real = canonical.resolve()

        skills = []
        seen: set[str] = set()

        if canonical.is_dir():
            for entry in sorted(canonical.iterdir()):
                if entry.name.startswith(".") or not entry.is_dir():
                    continue
                seen.add(entry.name)
                skills.append(self._describe(entry))

        if legacy.is_dir() and legacy.resolve() != canonical_real:
            for entry in sorted(legacy.iterdir()):
                if entry.name.startswith(".") or entry.name in seen or not entry.is_dir():
                    continue
                if entry.is_symlink():
                    real = entry.resolve()
                    if real == canonical_real or canonical_real in real.parents:
                        continue
                seen.add(entry.name)
                skills.append(self._describe(entry))

        return skills

    def get_installed_skill(self, name: str) -> Optional[InstalledSkill]:
        """Describe an installed skill, or None if it is not installed."""
        path = self.get_skill_path(name)
        if not (path.is_symlink() or path.exists()):
            return None
        return self._describe(path)

    def get_info(self, name: str) -> SkillInfo:
        """Collect install, lock and config state for a skill."""
        return SkillInfo(
            name=name,
            installed=self.get_installed_skill(name),
            locked=None if self.is_global else self.lock.get(name),
            config_ref=None if self.is_global else self.project.get_skill_ref(name),
        )

    # -------------------------------------------------------------------------
    # Local development
    # -------------------------------------------------------------------------

    def link(self, local_path: Path, name: Optional[str] = None) -> InstalledSkill:
        """Link a local skill directory in place of an installed skill.

        Raises:
            InstallError: If the path does not exist or cannot be linked
        """
        source = Path(local_path).resolve()
        if not source.is_dir():
            raise InstallError(f"Path {local_path} does not exist")

        manifest = read_manifest(source)
        skill_name = sanitize_name(name or (manifest.name if manifest else source.name))

        link_path = self.get_skill_path(skill_name)
        if link_path.is_symlink() or link_path.exists():
            remove_path(link_path)
        if not create_symlink(source, link_path):
            raise InstallError(f"Could not link {link_path} -> {source}")

        logger.info("Linked %s -> %s", skill_name, source)
        return InstalledSkill(
            name=skill_name,
            path=link_path,
            version=LOCAL_VERSION,
            source=str(source),
            is_linked=True,
            metadata=manifest.to_dict() if manifest else None,
        )

    def unlink(self, name: str) -> bool:
        """Remove a linked skill.

        Returns:
            False if the skill is missing or is not a link
        """
        path = self.get_skill_path(name)
        if not path.is_symlink():
            logger.warning("Skill %s is not a linked skill", name)
            return False
        path.unlink()
        logger.info("Unlinked %s", name)
        return True
