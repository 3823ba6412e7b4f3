"""Data models shared across skillpin components."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


AGENTS_DIR = ".agents"
SKILLS_SUBDIR = "skills"
LOCAL_VERSION = "local"


@dataclass(frozen=True)
class ManagerContext:
    """Where a manager operates: one project, or the user's home.

    Attributes:
        project_root: Project directory (holds skills.yaml and skills.lock)
        is_global: Install into user-level directories instead of the project
        home: Home directory used for global installs
    """

    project_root: Path
    is_global: bool = False
    home: Path = field(default_factory=Path.home)

    @property
    def root(self) -> Path:
        """Base directory the canonical store lives under."""
        return self.home if self.is_global else self.project_root

    @property
    def canonical_dir(self) -> Path:
        return self.root / AGENTS_DIR / SKILLS_SUBDIR


@dataclass
class InstalledSkill:
    """An installed skill, computed by scanning the install directories.

    Attributes:
        name: Directory name of the skill
        path: Install path
        version: Locked version, manifest version, or "local" for linked skills
        source: Lock file source, if any
        is_linked: True if the path is a symbolic link
        metadata: Manifest fields, if a manifest was found
    """

    name: str
    path: Path
    version: str
    source: str = ""
    is_linked: bool = False
    metadata: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "name": self.name,
            "path": str(self.path),
            "version": self.version,
            "source": self.source,
            "is_linked": self.is_linked,
            "metadata": self.metadata,
        }
