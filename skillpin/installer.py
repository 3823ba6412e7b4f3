"""Install skills into agent directories.

Two modes are supported:
- symlink: one copy in the canonical store (.agents/skills/<name>),
  linked into each agent's skills directory
- copy: an independent copy in every agent's skills directory

Targets are handled independently. A target whose symlink cannot be
created falls back to a copy; a target that fails outright is reported
as failed without stopping the others.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from skillpin.agents import get_agent_config, get_agent_skills_dir, get_all_agent_types
from skillpin.cache import copy_skill_files
from skillpin.config import InstallMode
from skillpin.errors import InstallError, SkillpinError
from skillpin.models import ManagerContext


logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
DEFAULT_SKILL_NAME = "unnamed-skill"


@dataclass
class InstallResult:
    """Outcome of installing one skill into one target."""

    success: bool
    path: Path
    mode: InstallMode
    canonical_path: Optional[Path] = None
    symlink_failed: bool = False
    error: Optional[str] = None


def sanitize_name(name: str) -> str:
    """Make a skill name safe to use as a directory name."""
    sanitized = re.sub(r"[/\\:\x00]", "", name)
    sanitized = re.sub(r"^[.\s]+|[.\s]+$", "", sanitized)
    if not sanitized:
        sanitized = DEFAULT_SKILL_NAME
    return sanitized[:MAX_NAME_LENGTH]


def is_path_safe(base: Path, target: Path) -> bool:
    """Check that target stays inside base."""
    base = Path(os.path.normpath(os.path.abspath(base)))
    target = Path(os.path.normpath(os.path.abspath(target)))
    return target == base or base in target.parents


def remove_path(path: Path) -> None:
    """Remove a symlink, file or directory tree."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def create_symlink(target: Path, link_path: Path) -> bool:
    """Link link_path to target with a relative link.

    Returns:
        False if the platform refused to create the link
    """
    if os.path.abspath(target) == os.path.abspath(link_path):
        return True

    link_path.parent.mkdir(parents=True, exist_ok=True)
    if link_path.is_symlink() or link_path.exists():
        remove_path(link_path)

    relative = os.path.relpath(target, link_path.parent)
    try:
        os.symlink(relative, link_path, target_is_directory=True)
    except OSError as e:
        logger.warning("Could not link %s -> %s: %s", link_path, target, e)
        return False
    return True


class Installer:
    """Fans skills out to agent directories."""

    def __init__(self, context: ManagerContext):
        self.context = context

    def get_canonical_path(self, skill_name: str) -> Path:
        return self.context.canonical_dir / sanitize_name(skill_name)

    def get_agent_skill_path(self, skill_name: str, agent: str) -> Path:
        """Path a skill occupies in an agent's skills directory."""
        return self._agent_dir(agent) / sanitize_name(skill_name)

    def _agent_dir(self, agent: str) -> Path:
        if get_agent_config(agent) is None:
            raise InstallError(f"Unknown agent: {agent}")
        return get_agent_skills_dir(
            agent,
            is_global=self.context.is_global,
            cwd=self.context.project_root,
            home=self.context.home,
        )

    def install_to_agents(
        self,
        source_path: Path,
        skill_name: str,
        targets: list[str],
        mode: InstallMode = InstallMode.SYMLINK,
    ) -> dict[str, InstallResult]:
        """Install a skill into every target agent.

        Args:
            source_path: Directory holding the skill content
            skill_name: Name to install under (sanitized)
            targets: Agent names
            mode: Symlink or copy

        Returns:
            Result per target; every target is attempted
        """
        source_path = Path(source_path)
        name = sanitize_name(skill_name)
        canonical = self.context.canonical_dir / name

        if mode is InstallMode.SYMLINK:
            try:
                self._populate_canonical(source_path, canonical)
            except (OSError, SkillpinError) as e:
                return {
                    target: InstallResult(False, canonical, mode, canonical, error=str(e))
                    for target in targets
                }

        results = {}
        for target in targets:
            results[target] = self._install_one(source_path, name, target, mode, canonical)
        return results

    def install_canonical(self, source_path: Path, skill_name: str) -> Path:
        """Place a skill in the canonical store only."""
        canonical = self.get_canonical_path(skill_name)
        self._populate_canonical(Path(source_path), canonical)
        return canonical

    def _populate_canonical(self, source_path: Path, canonical: Path) -> None:
        if not is_path_safe(self.context.canonical_dir, canonical):
            raise InstallError(f"Unsafe skill path: {canonical}")
        if canonical.exists() and source_path.resolve() == canonical.resolve():
            return
        if canonical.is_symlink() or canonical.exists():
            remove_path(canonical)
        copy_skill_files(source_path, canonical)

    def _install_one(
        self,
        source_path: Path,
        name: str,
        target: str,
        mode: InstallMode,
        canonical: Path,
    ) -> InstallResult:
        agent_path = Path(name)
        try:
            agent_dir = self._agent_dir(target)
            agent_path = agent_dir / name
            if not is_path_safe(agent_dir, agent_path):
                raise InstallError(f"Unsafe skill path: {agent_path}")

            if mode is InstallMode.COPY:
                if agent_path.is_symlink() or agent_path.exists():
                    remove_path(agent_path)
                copy_skill_files(source_path, agent_path)
                return InstallResult(True, agent_path, mode)

            if create_symlink(canonical, agent_path):
                return InstallResult(True, agent_path, mode, canonical_path=canonical)

            if agent_path.is_symlink() or agent_path.exists():
                remove_path(agent_path)
            copy_skill_files(canonical, agent_path)
            return InstallResult(True, agent_path, mode, canonical_path=canonical, symlink_failed=True)
        except (OSError, SkillpinError) as e:
            logger.warning("Install of %s into %s failed: %s", name, target, e)
            return InstallResult(False, agent_path, mode, error=str(e))

    def uninstall_from_agents(self, skill_name: str, targets: list[str]) -> dict[str, bool]:
        """Remove a skill from each target.

        The canonical copy is removed too, unless an agent outside
        targets still has the skill installed.

        Returns:
            True per target where something was removed
        """
        name = sanitize_name(skill_name)
        canonical = self.context.canonical_dir / name
        results = {}
        shares_canonical = []
        for target in targets:
            try:
                path = self._agent_dir(target) / name
            except InstallError:
                results[target] = False
                continue
            if path == canonical:
                # Agent reads the canonical store directly
                shares_canonical.append(target)
            elif path.is_symlink() or path.exists():
                remove_path(path)
                results[target] = True
            else:
                results[target] = False

        remaining = self.installed_agents(name)
        removed = False
        if remaining:
            logger.info("Keeping canonical copy of %s for: %s", name, ", ".join(remaining))
        elif canonical.is_symlink() or canonical.exists():
            remove_path(canonical)
            removed = True
        for target in shares_canonical:
            results[target] = removed
        return results

    def installed_agents(self, skill_name: str) -> list[str]:
        """Agents with the skill in their own directory.

        Agents that read the canonical store directly are not counted.
        """
        name = sanitize_name(skill_name)
        canonical = self.context.canonical_dir / name
        agents = []
        for agent in get_all_agent_types():
            try:
                path = self._agent_dir(agent) / name
            except InstallError:
                continue
            if path != canonical and (path.is_symlink() or path.exists()):
                agents.append(agent)
        return agents

    def is_installed(self, skill_name: str, agent: str) -> bool:
        """Check whether a skill is present in an agent's directory."""
        path = self.get_agent_skill_path(skill_name, agent)
        return path.is_symlink() or path.exists()

    def list_agent_skills(self, agent: str) -> list[str]:
        """Names of the skills in an agent's directory."""
        agent_dir = self._agent_dir(agent)
        if not agent_dir.is_dir():
            return []
        return sorted(
            item.name
            for item in agent_dir.iterdir()
            if item.is_dir() and not item.name.startswith(".")
        )
