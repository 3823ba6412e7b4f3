"""Lock file management for reproducible skill installations."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml

from skillpin.config import write_file_atomic
from skillpin.errors import SkillpinError


class LockFileError(SkillpinError):
    """Raised when lock file operations fail."""
    pass


# Default lock file name
LOCK_FILE_NAME = "skills.lock"
LOCKFILE_VERSION = 1


@dataclass
class LockedSkill:
    """A locked skill entry.

    Attributes:
        name: Skill name
        source: Reference source (e.g. "github:org/repo/skills/pdf")
        version: Version declared by the skill's manifest
        ref: Git ref actually fetched (tag, branch or commit)
        resolved: Repository URL the content came from
        commit: Commit hash of the fetched content
        installed_at: When the skill was installed (ISO format)
        registry: Registry base URL, for registry-sourced skills
    """
    name: str
    source: str
    version: str
    ref: str
    resolved: str
    commit: Optional[str] = None
    installed_at: str = ""
    registry: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data = {
            "source": self.source,
            "version": self.version,
            "ref": self.ref,
            "resolved": self.resolved,
            "commit": self.commit,
            "installed_at": self.installed_at,
        }
        if self.registry:
            data["registry"] = self.registry
        return data

    @classmethod
    def from_dict(cls, name: str, data: dict) -> LockedSkill:
        """Create from dictionary."""
        try:
            return cls(
                name=name,
                source=data["source"],
                version=str(data.get("version", "")),
                ref=str(data.get("ref", "")),
                resolved=data.get("resolved", ""),
                commit=data.get("commit") or None,
                installed_at=data.get("installed_at", ""),
                registry=data.get("registry"),
            )
        except (KeyError, TypeError) as e:
            raise LockFileError(f"Invalid lock entry for {name}: {e}")


@dataclass
class SkillLockFile:
    """Lock file contents.

    Format (skills.lock):
        lockfile_version: 1
        skills:
          pdf:
            source: "github:org/monorepo/skills/pdf"
            version: "1.0.0"
            ref: "v1.0.0"
            resolved: "https://github.com/org/monorepo"
            commit: "abc123..."
            installed_at: "2026-01-20T09:00:00+00:00"
    """
    lockfile_version: int = LOCKFILE_VERSION
    skills: dict[str, LockedSkill] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "lockfile_version": self.lockfile_version,
            "skills": {
                name: locked.to_dict()
                for name, locked in sorted(self.skills.items())
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> SkillLockFile:
        """Create from dictionary."""
        raw_skills = data.get("skills") or {}
        if not isinstance(raw_skills, dict):
            raise LockFileError("Invalid lock file format: 'skills' must be a mapping")

        skills = {}
        for name, skill_data in raw_skills.items():
            if not isinstance(skill_data, dict):
                raise LockFileError(f"Invalid lock entry for {name}")
            skills[name] = LockedSkill.from_dict(name, skill_data)

        return cls(
            lockfile_version=int(data.get("lockfile_version", LOCKFILE_VERSION)),
            skills=skills,
        )

    def save(self, path: Path) -> None:
        """Save lock file to disk."""
        content = yaml.dump(
            self.to_dict(),
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )
        write_file_atomic(path, content)

    @classmethod
    def load(cls, path: Path) -> SkillLockFile:
        """Load lock file from disk.

        Raises:
            LockFileError: If lock file doesn't exist or is invalid
        """
        if not path.exists():
            raise LockFileError(f"Lock file not found: {path}")

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise LockFileError(f"Invalid YAML in lock file: {e}")

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise LockFileError(f"Invalid lock file format: {path}")
        return cls.from_dict(data)


# One lock for every store in the process; writes are short
_write_lock = threading.RLock()


class LockStore:
    """Keyed access to a project's skills.lock.

    Reads always go to disk. Each write loads the file, replaces one
    entry and saves, holding a process-wide lock, so concurrent
    installs of different skills keep each other's entries.
    """

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)
        self.path = self.project_root / LOCK_FILE_NAME

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> SkillLockFile:
        """Load the lock file, or an empty one if none exists yet."""
        if not self.path.exists():
            return SkillLockFile()
        return SkillLockFile.load(self.path)

    def get(self, name: str) -> Optional[LockedSkill]:
        """Get a skill's lock entry."""
        return self.load().skills.get(name)

    def has(self, name: str) -> bool:
        """Check if a skill is locked."""
        return self.get(name) is not None

    def get_all(self) -> dict[str, LockedSkill]:
        """Get every lock entry."""
        return self.load().skills

    def set(self, entry: LockedSkill) -> None:
        """Replace a skill's full lock entry."""
        with _write_lock:
            lock = self.load()
            lock.skills[entry.name] = entry
            lock.save(self.path)

    def lock_skill(
        self,
        name: str,
        source: str,
        version: str,
        ref: str,
        resolved: str,
        commit: Optional[str] = None,
        registry: Optional[str] = None,
    ) -> LockedSkill:
        """Record an installed skill, stamping the install time.

        Returns:
            The locked entry
        """
        entry = LockedSkill(
            name=name,
            source=source,
            version=version,
            ref=ref,
            resolved=resolved,
            commit=commit,
            installed_at=datetime.now(timezone.utc).isoformat(),
            registry=registry,
        )
        self.set(entry)
        return entry

    def remove(self, name: str) -> bool:
        """Remove a skill's lock entry.

        Returns:
            True if the skill was locked
        """
        with _write_lock:
            lock = self.load()
            if name not in lock.skills:
                return False
            del lock.skills[name]
            lock.save(self.path)
            return True

    def clear(self) -> None:
        """Remove every lock entry."""
        with _write_lock:
            SkillLockFile().save(self.path)
