"""Skill manifest reading and skill discovery.

A skill directory holds a SKILL.md whose YAML frontmatter names and
describes it. An optional skill.json may supply fields the frontmatter
leaves out (typically `version`).
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


logger = logging.getLogger(__name__)

SKILL_FILE = "SKILL.md"
SKILL_JSON = "skill.json"

FRONTMATTER_PATTERN = re.compile(r"^---\r?\n(.*?)\r?\n---(?:\r?\n(.*))?$", re.DOTALL)

SKIP_DIRS = {"node_modules", ".git", "dist", "build", "__pycache__"}
PRIORITY_SKILL_DIRS = [
    "skills",
    ".agents/skills",
    ".cursor/skills",
    ".claude/skills",
    ".windsurf/skills",
    ".github/skills",
]
MAX_DISCOVER_DEPTH = 5


@dataclass
class SkillManifest:
    """Metadata a skill declares about itself."""

    name: str
    description: str = ""
    version: Optional[str] = None
    license: Optional[str] = None
    allowed_tools: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "description": self.description}
        if self.version:
            data["version"] = self.version
        if self.license:
            data["license"] = self.license
        if self.allowed_tools:
            data["allowed-tools"] = self.allowed_tools
        return data


@dataclass
class DiscoveredSkill:
    """A skill found while scanning a repository."""

    manifest: SkillManifest
    path: Path

    @property
    def name(self) -> str:
        return self.manifest.name


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split SKILL.md content into frontmatter data and body.

    Returns:
        ({}, content) when there is no valid frontmatter
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}, content
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.debug("Invalid frontmatter: %s", e)
        return {}, content
    if not isinstance(data, dict):
        return {}, content
    return data, match.group(2) or ""


def _load_skill_json(skill_dir: Path) -> dict[str, Any]:
    path = skill_dir / SKILL_JSON
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
        logger.debug("Ignoring unreadable %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _read_frontmatter(skill_md: Path) -> dict[str, Any]:
    if not skill_md.is_file():
        return {}
    try:
        text = skill_md.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as e:
        logger.debug("Ignoring unreadable %s: %s", skill_md, e)
        return {}
    return parse_frontmatter(text)[0]


def _tools(value: Any) -> list[str]:
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


def read_manifest(skill_dir: Path) -> Optional[SkillManifest]:
    """Read a skill's manifest.

    Args:
        skill_dir: Skill directory

    Returns:
        SkillManifest, or None if the directory declares no name
    """
    skill_dir = Path(skill_dir)
    data = _read_frontmatter(skill_dir / SKILL_FILE)

    for key, value in _load_skill_json(skill_dir).items():
        data.setdefault(key, value)

    name = data.get("name")
    if not name:
        return None

    version = data.get("version")
    known = {"name", "description", "version", "license", "allowed-tools"}
    return SkillManifest(
        name=str(name),
        description=str(data.get("description") or ""),
        version=str(version) if version is not None else None,
        license=data.get("license"),
        allowed_tools=_tools(data.get("allowed-tools")),
        extra={k: v for k, v in data.items() if k not in known},
    )


def has_valid_skill_md(skill_dir: Path) -> bool:
    """Check for a SKILL.md with a name and description."""
    data = _read_frontmatter(Path(skill_dir) / SKILL_FILE)
    return bool(data.get("name") and data.get("description"))


def _find_skill_dirs(directory: Path, depth: int, visited: set[Path]) -> list[Path]:
    if depth > MAX_DISCOVER_DEPTH:
        return []

    resolved = directory.resolve()
    if resolved in visited or not directory.is_dir():
        return []
    visited.add(resolved)

    found = []
    for entry in sorted(directory.iterdir()):
        if entry.name in SKIP_DIRS or not entry.is_dir():
            continue
        if entry.resolve() in visited:
            continue
        if has_valid_skill_md(entry):
            found.append(entry)
        found.extend(_find_skill_dirs(entry, depth + 1, visited))
    return found


def discover_skills(base: Path) -> list[DiscoveredSkill]:
    """Find every skill in a directory tree.

    Search order: the base itself, then well-known skill directories
    (skills/, .agents/skills/, ...), then a recursive scan. The first
    skill found with a given name wins.
    """
    base = Path(base).resolve()
    results: list[DiscoveredSkill] = []
    seen: set[str] = set()

    def add(skill_dir: Path) -> None:
        manifest = read_manifest(skill_dir)
        if manifest and manifest.name not in seen:
            seen.add(manifest.name)
            results.append(DiscoveredSkill(manifest=manifest, path=skill_dir.resolve()))

    if has_valid_skill_md(base):
        add(base)

    visited: set[Path] = set()
    for sub in PRIORITY_SKILL_DIRS:
        directory = base / sub
        if not directory.is_dir():
            continue
        visited.add(directory.resolve())
        for entry in sorted(directory.iterdir()):
            if entry.is_dir() and has_valid_skill_md(entry):
                add(entry)
                visited.add(entry.resolve())

    for skill_dir in _find_skill_dirs(base, 0, visited):
        add(skill_dir)

    return results


def filter_skills_by_name(skills: list[DiscoveredSkill], names: list[str]) -> list[DiscoveredSkill]:
    """Keep skills whose name matches one of names, ignoring case.

    An empty names list matches nothing.
    """
    wanted = {name.lower() for name in names}
    return [skill for skill in skills if skill.name.lower() in wanted]
