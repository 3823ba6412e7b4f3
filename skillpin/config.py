"""Configuration for skillpin.

Two layers live here:
- Tool configuration (cache location, log level, registry endpoint),
  read from ~/.config/skillpin/config.yml and SKILLPIN_* environment
  variables
- Project configuration, the skills.yaml file declaring which skills a
  project depends on and where they are installed
"""

from __future__ import annotations

import os
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import yaml

from skillpin.errors import SkillpinError
from skillpin.reference import (
    DEFAULT_REGISTRY,
    DEFAULT_SKILL_REGISTRY_URL,
    WELL_KNOWN_REGISTRIES,
    SourceKind,
    parse_reference,
)


# =============================================================================
# Configuration Paths
# =============================================================================

USER_CONFIG_DIR = Path.home() / ".config" / "skillpin"
USER_CONFIG_FILE = USER_CONFIG_DIR / "config.yml"
DEFAULT_CACHE_DIR = Path.home() / ".skillpin-cache"

PROJECT_CONFIG_NAME = "skills.yaml"

# Environment variable prefix
ENV_PREFIX = "SKILLPIN_"


class ConfigError(SkillpinError):
    """Raised when configuration is invalid."""

    pass


class LogLevel(Enum):
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class InstallMode(Enum):
    """How installed skills reach each agent directory."""

    SYMLINK = "symlink"
    COPY = "copy"


# =============================================================================
# Tool Configuration
# =============================================================================


@dataclass
class SkillpinConfig:
    """Tool-wide settings.

    Attributes:
        cache_dir: Content cache directory
        log_level: Logging level
        default_registry: Registry used for shorthand references
        registry_url: Base URL of the skill registry for @scope/name references
        registry_token: Bearer token for the skill registry
    """

    cache_dir: Optional[str] = None
    log_level: LogLevel = LogLevel.WARNING
    default_registry: str = DEFAULT_REGISTRY
    registry_url: str = DEFAULT_SKILL_REGISTRY_URL
    registry_token: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary (excluding secrets)."""
        return {
            "cache_dir": self.cache_dir,
            "log_level": self.log_level.value,
            "default_registry": self.default_registry,
            "registry_url": self.registry_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SkillpinConfig:
        """Create from dictionary."""
        log_level = data.get("log_level") or "warning"
        try:
            level = LogLevel(str(log_level).lower())
        except ValueError:
            raise ConfigError(f"Invalid log level: {log_level}")
        return cls(
            cache_dir=data.get("cache_dir"),
            log_level=level,
            default_registry=data.get("default_registry") or DEFAULT_REGISTRY,
            registry_url=data.get("registry_url") or DEFAULT_SKILL_REGISTRY_URL,
            registry_token=data.get("registry_token"),
        )


def get_user_config_path() -> Path:
    """Get the path to user config file."""
    return USER_CONFIG_FILE


def load_config_file(path: Path) -> dict:
    """Load configuration from a YAML file.

    Args:
        path: Path to configuration file

    Returns:
        Configuration dictionary (empty if the file does not exist)

    Raises:
        ConfigError: If file cannot be loaded
    """
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config in {path}: expected a mapping")
    return data


def save_config_file(path: Path, config: dict) -> None:
    """Save configuration to a YAML file.

    Args:
        path: Path to configuration file
        config: Configuration dictionary
    """
    write_file_atomic(
        path,
        yaml.dump(
            config,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        ),
    )


def write_file_atomic(path: Path, content: str) -> None:
    """Replace a file's content in one step.

    The content goes to a temporary file next to path, which is then
    renamed over it. Readers see either the old file or the new one,
    never a truncated one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        # mkstemp creates 0600 files; keep the mode a plain write would give
        os.chmod(tmp, path.stat().st_mode & 0o777 if path.exists() else 0o644)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def load_env_overrides() -> dict:
    """Load configuration overrides from environment variables.

    SKILLPIN_CACHE_DIR becomes cache_dir, SKILLPIN_LOG_LEVEL becomes
    log_level, and so on.

    Returns:
        Dictionary of environment overrides
    """
    overrides = {}

    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX) and value:
            config_key = key[len(ENV_PREFIX):].lower()
            overrides[config_key] = value

    return overrides


def merge_configs(*configs: dict) -> dict:
    """Merge multiple configuration dictionaries.

    Later configs override earlier ones. Nested dicts are merged recursively.

    Args:
        *configs: Configuration dictionaries to merge

    Returns:
        Merged configuration
    """
    result: dict = {}

    for config in configs:
        for key, value in config.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = merge_configs(result[key], value)
            else:
                result[key] = value

    return result


_config: Optional[SkillpinConfig] = None
_config_lock = threading.Lock()


def get_config(reload: bool = False) -> SkillpinConfig:
    """Get the tool configuration.

    Loads configuration from (in order of precedence):
    1. Environment variables (highest)
    2. User config (~/.config/skillpin/config.yml)
    3. Default values (lowest)

    Args:
        reload: Force reload of configuration

    Returns:
        SkillpinConfig instance
    """
    global _config

    with _config_lock:
        if _config is not None and not reload:
            return _config

        user_config = load_config_file(get_user_config_path())
        env_overrides = load_env_overrides()
        _config = SkillpinConfig.from_dict(merge_configs(user_config, env_overrides))
        return _config


def reset_config() -> None:
    """Reset the tool configuration (forces reload on next get)."""
    global _config
    with _config_lock:
        _config = None


def get_cache_directory() -> Path:
    """Get the configured cache directory."""
    config = get_config()
    if config.cache_dir:
        return Path(config.cache_dir).expanduser()
    return DEFAULT_CACHE_DIR


# =============================================================================
# Project Configuration (skills.yaml)
# =============================================================================


@dataclass
class ProjectDefaults:
    """Install defaults declared by a project.

    Attributes:
        install_dir: Directory for skills not in the canonical store
        target_agents: Agents to install into when none are given
        install_mode: "symlink" or "copy"
        registry: Registry for shorthand references (tool default if unset)
    """

    install_dir: str = ".skills"
    target_agents: list[str] = field(default_factory=list)
    install_mode: InstallMode = InstallMode.SYMLINK
    registry: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = {
            "install_dir": self.install_dir,
            "target_agents": list(self.target_agents),
            "install_mode": self.install_mode.value,
        }
        if self.registry:
            data["registry"] = self.registry
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ProjectDefaults:
        """Create from dictionary."""
        mode = data.get("install_mode") or InstallMode.SYMLINK.value
        try:
            install_mode = InstallMode(mode)
        except ValueError:
            raise ConfigError(f"Invalid install_mode: {mode} (expected symlink or copy)")
        return cls(
            install_dir=data.get("install_dir") or ".skills",
            target_agents=list(data.get("target_agents") or []),
            install_mode=install_mode,
            registry=data.get("registry") or None,
        )


@dataclass
class ProjectConfigData:
    """Contents of skills.yaml.

    Format:
        skills:
          pdf: github:org/monorepo/skills/pdf@v1.0.0
        registries:
          github: https://github.com
        defaults:
          install_dir: .skills
          target_agents: [claude-code]
          install_mode: symlink
    """

    skills: dict[str, str] = field(default_factory=dict)
    registries: dict[str, str] = field(default_factory=dict)
    defaults: ProjectDefaults = field(default_factory=ProjectDefaults)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "skills": dict(self.skills),
            "registries": dict(self.registries),
            "defaults": self.defaults.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProjectConfigData:
        """Create from dictionary."""
        skills = data.get("skills") or {}
        registries = data.get("registries") or {}
        if not isinstance(skills, dict) or not isinstance(registries, dict):
            raise ConfigError("'skills' and 'registries' must be mappings")
        return cls(
            skills={str(k): str(v) for k, v in skills.items()},
            registries={str(k): str(v) for k, v in registries.items()},
            defaults=ProjectDefaults.from_dict(data.get("defaults") or {}),
        )


# Serializes read-modify-write cycles on project files within one process
_project_lock = threading.RLock()


class ProjectConfig:
    """Read and write a project's skills.yaml.

    Every mutation reloads the file, changes one key and writes it back,
    so concurrent installs of different skills never drop each other's
    entries.
    """

    def __init__(self, project_root: Optional[Path] = None):
        self.project_root = Path(project_root or Path.cwd())
        self.config_path = self.project_root / PROJECT_CONFIG_NAME

    def exists(self) -> bool:
        """Check if skills.yaml exists."""
        return self.config_path.exists()

    def load(self) -> ProjectConfigData:
        """Load skills.yaml.

        Raises:
            ConfigError: If the file is missing or invalid
        """
        if not self.exists():
            raise ConfigError(f"{PROJECT_CONFIG_NAME} not found in {self.project_root}")
        return ProjectConfigData.from_dict(load_config_file(self.config_path))

    def save(self, data: ProjectConfigData) -> None:
        """Write skills.yaml."""
        save_config_file(self.config_path, data.to_dict())

    def create(self, defaults: Optional[ProjectDefaults] = None) -> ProjectConfigData:
        """Create a fresh skills.yaml.

        Args:
            defaults: Install defaults to record

        Returns:
            The written configuration
        """
        data = ProjectConfigData(
            registries={DEFAULT_REGISTRY: WELL_KNOWN_REGISTRIES[DEFAULT_REGISTRY]},
            defaults=defaults or ProjectDefaults(),
        )
        with _project_lock:
            self.save(data)
        return data

    def ensure_exists(self) -> bool:
        """Create skills.yaml if missing.

        Returns:
            True if the file was created
        """
        with _project_lock:
            if self.exists():
                return False
            self.create()
            return True

    def get_defaults(self) -> ProjectDefaults:
        """Get install defaults, or built-in defaults without a skills.yaml."""
        if not self.exists():
            return ProjectDefaults()
        return self.load().defaults

    def get_install_dir(self) -> Path:
        """Get the configured install directory (absolute)."""
        return self.project_root / self.get_defaults().install_dir

    def get_registries(self) -> dict[str, str]:
        """Get registry base URLs, well-known ones first."""
        registries = dict(WELL_KNOWN_REGISTRIES)
        if self.exists():
            registries.update(self.load().registries)
        return registries

    def get_registry_url(self, name: str) -> str:
        """Resolve a registry name to its base URL."""
        registries = self.get_registries()
        if name in registries:
            return registries[name].rstrip("/")
        return f"https://{name}"

    def get_skills(self) -> dict[str, str]:
        """Get declared skills (name -> reference)."""
        if not self.exists():
            return {}
        return self.load().skills

    def get_skill_ref(self, name: str) -> Optional[str]:
        """Get the reference declared for a skill."""
        return self.get_skills().get(name)

    def add_skill(self, name: str, ref: str) -> None:
        """Declare a skill.

        URLs on a configured registry are stored in registry:owner/repo
        form, and well-known registries used by the reference are
        recorded under `registries`.
        """
        with _project_lock:
            data = self.load()
            normalized = self._normalize(ref, data)
            data.skills[name] = normalized

            registry = _registry_name(normalized)
            if registry in WELL_KNOWN_REGISTRIES and registry not in data.registries:
                data.registries[registry] = WELL_KNOWN_REGISTRIES[registry]

            self.save(data)

    def remove_skill(self, name: str) -> bool:
        """Remove a declared skill.

        Returns:
            True if the skill was declared
        """
        with _project_lock:
            if not self.exists():
                return False
            data = self.load()
            if name not in data.skills:
                return False
            del data.skills[name]
            self.save(data)
            return True

    def update_defaults(self, **changes: Any) -> ProjectDefaults:
        """Update install defaults.

        Args:
            **changes: ProjectDefaults fields to replace

        Returns:
            The updated defaults
        """
        with _project_lock:
            data = self.load()
            merged = merge_configs(data.defaults.to_dict(), _plain(changes))
            data.defaults = ProjectDefaults.from_dict(merged)
            self.save(data)
            return data.defaults

    def normalize_skill_ref(self, ref: str) -> str:
        """Rewrite a clone URL on a configured registry as name:owner/repo.

        "https://github.com/o/r.git@v1.0.0" becomes "github:o/r@v1.0.0".
        References on unknown hosts are returned unchanged.
        """
        data = self.load() if self.exists() else ProjectConfigData()
        return self._normalize(ref, data)

    def _normalize(self, ref: str, data: ProjectConfigData) -> str:
        try:
            parsed = parse_reference(ref)
        except SkillpinError:
            return ref
        if parsed.kind is not SourceKind.GIT or not parsed.explicit_url:
            return ref

        registries = dict(WELL_KNOWN_REGISTRIES)
        registries.update(data.registries)
        for name, base_url in registries.items():
            if urlparse(base_url).hostname == parsed.registry_source:
                normalized = f"{name}:{parsed.owner}/{parsed.repo_name}"
                if parsed.sub_path:
                    normalized += f"/{parsed.sub_path}"
                if parsed.version_spec:
                    normalized += f"@{parsed.version_spec}"
                if parsed.skill_name:
                    normalized += f"#{parsed.skill_name}"
                return normalized
        return ref


def _registry_name(ref: str) -> Optional[str]:
    try:
        return parse_reference(ref).registry_source
    except SkillpinError:
        return None


def _plain(changes: dict) -> dict:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in changes.items()}
