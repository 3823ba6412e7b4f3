"""skillpin - A declarative package manager for agent skills."""

__version__ = "0.1.0"

from skillpin.errors import (
    SkillpinError,
    ParseError,
    ResolutionError,
    FetchError,
    InstallError,
    ConsistencyError,
)
from skillpin.versioning import (
    VersionKind,
    VersionSpec,
    SemVer,
    parse_version_spec,
)
from skillpin.reference import (
    SkillReference,
    SourceKind,
    parse_reference,
    build_repo_url,
)
from skillpin.resolver import (
    ResolvedRef,
    VersionResolver,
)
from skillpin.cache import (
    CacheEntry,
    ContentCache,
)
from skillpin.installer import (
    InstallMode,
    InstallResult,
    Installer,
)
from skillpin.lockfile import (
    LockedSkill,
    LockStore,
)
from skillpin.models import (
    InstalledSkill,
    ManagerContext,
)
from skillpin.manager import (
    BatchResult,
    InstallOutcome,
    SkillManager,
)

__all__ = [
    "__version__",
    # Errors
    "SkillpinError",
    "ParseError",
    "ResolutionError",
    "FetchError",
    "InstallError",
    "ConsistencyError",
    # Versions
    "VersionKind",
    "VersionSpec",
    "SemVer",
    "parse_version_spec",
    # References
    "SkillReference",
    "SourceKind",
    "parse_reference",
    "build_repo_url",
    # Resolution
    "ResolvedRef",
    "VersionResolver",
    # Cache
    "CacheEntry",
    "ContentCache",
    # Installer
    "InstallMode",
    "InstallResult",
    "Installer",
    # Lock file
    "LockedSkill",
    "LockStore",
    # Manager
    "InstalledSkill",
    "ManagerContext",
    "BatchResult",
    "InstallOutcome",
    "SkillManager",
]
