"""Skill reference parsing.

A reference is the string a user types to name a skill and its version:

    owner/repo[/sub/path][@version]
    registry:owner/repo[/sub/path][@version]
    git@host:owner/repo.git[/sub/path][@version]
    https://host/owner/repo.git[/sub/path][@version]
    https://host/owner/repo/tree/<branch>/<sub/path>
    https://host/path/skill-v1.0.0.tar.gz[@version]
    @scope/name[@version]

Any form may end in "#name" to pick one skill out of a multi-skill
repository. Parsing is pure: nothing here touches the network or disk.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from skillpin.errors import ParseError
from skillpin.versioning import VersionSpec, parse_version_spec


# Well-known registries; anything else is treated as a domain name
WELL_KNOWN_REGISTRIES = {
    "github": "https://github.com",
    "gitlab": "https://gitlab.com",
}

DEFAULT_REGISTRY = "github"
DEFAULT_SKILL_REGISTRY_URL = "https://registry.skillpin.dev"

# Sentinel registry sources for non-Git references
HTTP_SOURCE = "http"
REGISTRY_SOURCE = "registry"
LOCAL_SOURCE = "local"

SHORTHAND_GRAMMAR = "[registry:]owner/repo[/path][@version]"
GIT_URL_GRAMMAR = "git@host:owner/repo.git or https://host/owner/repo.git"

SCP_URL_PATTERN = re.compile(r"^[\w.-]+@[\w.-]+:")
SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
REGISTRY_PREFIX_PATTERN = re.compile(r"^([a-zA-Z0-9.-]+):(.+)$")
WEB_URL_PATTERN = re.compile(
    r"^(https?://[^/]+)/([^/]+)/([^/]+)/(tree|blob|raw)/([^/]+)(?:/(.+?))?/?$"
)
GIT_SUFFIX_PATTERN = re.compile(r"\.git(?=$|[/@#])")
ARCHIVE_PATTERN = re.compile(r"\.(tar\.gz|tgz|zip|tar)$", re.IGNORECASE)
FILENAME_VERSION_PATTERN = re.compile(r"[-_](v?\d+\.\d+\.\d+(?:-[\w.]+)?)$", re.IGNORECASE)


class SourceKind(Enum):
    """Where a reference's content comes from."""

    GIT = "git"
    WEB = "web"
    HTTP_ARCHIVE = "http_archive"
    REGISTRY = "registry"

    @property
    def is_git(self) -> bool:
        return self in (SourceKind.GIT, SourceKind.WEB)


@dataclass(frozen=True)
class SkillReference:
    """A structured skill reference.

    Attributes:
        kind: Source classification, decided once at parse time
        registry_source: Registry name, host, or a sentinel ("http", "registry")
        owner: Repository owner (may contain "/" for nested groups)
        repo_name: Repository name, or skill name for archives/registry
        sub_path: Directory of the skill inside a monorepo
        version_spec: Raw version string, if any
        explicit_url: Full clone or download URL, when one was given
        skill_name: Skill selected with a "#name" fragment
        archive_format: Archive extension for HTTP archive references
        raw: The original input string
    """

    kind: SourceKind
    registry_source: str
    owner: str
    repo_name: str
    raw: str
    sub_path: Optional[str] = None
    version_spec: Optional[str] = None
    explicit_url: Optional[str] = None
    skill_name: Optional[str] = None
    archive_format: Optional[str] = None

    @property
    def version(self) -> VersionSpec:
        """The parsed version spec."""
        return parse_version_spec(self.version_spec)

    @property
    def skill_name_hint(self) -> str:
        """Name to install under when no manifest says otherwise."""
        if self.skill_name:
            return self.skill_name
        if self.sub_path:
            return posixpath.basename(self.sub_path.rstrip("/"))
        return self.repo_name

    @property
    def source(self) -> str:
        """Source string recorded in the lock file."""
        source = f"{self.registry_source}:{self.owner}/{self.repo_name}"
        if self.sub_path:
            source += f"/{self.sub_path}"
        return source

    @property
    def cache_key_parts(self) -> tuple[str, ...]:
        """Path segments identifying this skill in the content cache."""
        parts = [self.registry_source, *self.owner.split("/"), self.repo_name]
        if self.sub_path:
            parts.extend(part for part in self.sub_path.split("/") if part)
        return tuple(parts)


def _split_fragment(raw: str) -> tuple[str, Optional[str]]:
    if "#" not in raw:
        return raw, None
    body, fragment = raw.rsplit("#", 1)
    return body, fragment or None


def is_http_archive(ref: str) -> bool:
    """Check whether a reference points at a downloadable archive."""
    url = ref.split("@")[0]
    if url.startswith(("oss://", "s3://")):
        return True
    if not url.startswith(("http://", "https://")):
        return False
    if url.endswith(".git") or re.search(r"/(tree|blob|raw)/", url):
        return False
    return bool(ARCHIVE_PATTERN.search(url))


def is_git_url(ref: str) -> bool:
    """Check whether a reference is a Git URL rather than shorthand."""
    if SCP_URL_PATTERN.match(ref) or SCHEME_PATTERN.match(ref):
        return True
    return bool(GIT_SUFFIX_PATTERN.search(ref))


def classify_reference(raw: str) -> SourceKind:
    """Decide once which grammar a reference string follows."""
    body, _ = _split_fragment(raw.strip())
    if is_http_archive(body):
        return SourceKind.HTTP_ARCHIVE
    if WEB_URL_PATTERN.match(body):
        return SourceKind.WEB
    if is_git_url(body):
        return SourceKind.GIT
    if body.startswith("@"):
        return SourceKind.REGISTRY
    return SourceKind.GIT


def parse_reference(raw: str, default_registry: str = DEFAULT_REGISTRY) -> SkillReference:
    """Parse a skill reference string.

    Args:
        raw: Reference as typed by the user
        default_registry: Registry used when the shorthand names none

    Returns:
        SkillReference instance

    Raises:
        ParseError: If the string matches none of the supported grammars
    """
    if not raw or not raw.strip():
        raise ParseError(f"Empty skill reference. Expected format: {SHORTHAND_GRAMMAR}")

    text = raw.strip()
    body, fragment = _split_fragment(text)
    kind = classify_reference(text)

    if kind is SourceKind.HTTP_ARCHIVE:
        return _parse_archive(body, raw, fragment)
    if kind is SourceKind.WEB:
        return _parse_web_url(body, raw, fragment)
    if kind is SourceKind.GIT and is_git_url(body):
        return _parse_git_url(body, raw, fragment)
    return _parse_shorthand(body, raw, fragment, kind, default_registry)


def _parse_shorthand(
    body: str,
    raw: str,
    fragment: Optional[str],
    kind: SourceKind,
    default_registry: str,
) -> SkillReference:
    remaining = body
    registry = REGISTRY_SOURCE if kind is SourceKind.REGISTRY else default_registry

    prefix = REGISTRY_PREFIX_PATTERN.match(remaining)
    if prefix and kind is not SourceKind.REGISTRY:
        registry, remaining = prefix.group(1), prefix.group(2)

    version = None
    at_index = remaining.rfind("@")
    if at_index > 0:
        version = remaining[at_index + 1:] or None
        remaining = remaining[:at_index]

    parts = [part for part in remaining.strip("/").split("/")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ParseError(
            f"Invalid skill reference: {raw}. Expected format: {SHORTHAND_GRAMMAR}"
        )

    sub_path = "/".join(parts[2:]) or None
    return SkillReference(
        kind=kind,
        registry_source=registry,
        owner=parts[0],
        repo_name=parts[1],
        sub_path=sub_path,
        version_spec=version,
        skill_name=fragment,
        raw=raw,
    )


def _parse_web_url(body: str, raw: str, fragment: Optional[str]) -> SkillReference:
    match = WEB_URL_PATTERN.match(body)
    base_url, owner, repo, _, branch, path = match.groups()
    return SkillReference(
        kind=SourceKind.WEB,
        registry_source=urlparse(base_url).hostname or base_url,
        owner=owner,
        repo_name=repo,
        sub_path=path or None,
        version_spec=VersionSpec.branch(branch).raw,
        explicit_url=f"{base_url}/{owner}/{repo}.git",
        skill_name=fragment,
        raw=raw,
    )


def _path_start(url: str) -> int:
    """Index where the repository path begins, past any user@host part."""
    scheme = SCHEME_PATTERN.match(url)
    if scheme:
        slash = url.find("/", scheme.end())
        return slash if slash != -1 else len(url)
    return url.find(":")


def _parse_git_url(body: str, raw: str, fragment: Optional[str]) -> SkillReference:
    git_url = body
    version = None
    sub_path = None

    suffix = GIT_SUFFIX_PATTERN.search(body)
    if suffix:
        git_url = body[:suffix.end()]
        after = body[suffix.end():]
        at_index = after.rfind("@")
        if at_index != -1:
            version = after[at_index + 1:] or None
            after = after[:at_index]
        if after.startswith("/"):
            sub_path = after[1:].strip("/") or None
    else:
        at_index = body.rfind("@")
        if at_index > _path_start(body):
            version = body[at_index + 1:] or None
            git_url = body[:at_index]

    parsed = parse_git_url(git_url)
    if parsed is None:
        raise ParseError(f"Invalid Git URL: {raw}. Expected format: {GIT_URL_GRAMMAR}")
    host, owner, repo = parsed

    return SkillReference(
        kind=SourceKind.GIT,
        registry_source=host,
        owner=owner,
        repo_name=repo,
        sub_path=sub_path,
        version_spec=version,
        explicit_url=git_url,
        skill_name=fragment,
        raw=raw,
    )


def parse_git_url(url: str) -> Optional[tuple[str, str, str]]:
    """Split a clone URL into (host, owner, repo).

    Nested groups keep their slashes in the owner: "a/b/c.git" gives
    owner "a/b" and repo "c". file:// URLs use "local" as the host.

    Returns:
        Tuple of host, owner and repo, or None if the URL is not recognised
    """
    clean = re.sub(r"\.git/?$", "", url.rstrip("/"))

    if clean.startswith("file://"):
        parts = [part for part in clean[len("file://"):].split("/") if part]
        if not parts:
            return None
        owner = parts[-2] if len(parts) > 1 else LOCAL_SOURCE
        return LOCAL_SOURCE, owner, parts[-1]

    if SCHEME_PATTERN.match(clean):
        parsed = urlparse(clean)
        host = parsed.hostname
        path = parsed.path.strip("/")
    else:
        scp = re.match(r"^(?:[\w.-]+@)?([^:/]+):(.+)$", clean)
        if not scp:
            return None
        host, path = scp.group(1), scp.group(2).strip("/")

    parts = path.split("/") if path else []
    if not host or len(parts) < 2:
        return None
    return host, "/".join(parts[:-1]), parts[-1]


def _normalize_archive_url(url: str) -> str:
    if url.startswith("oss://"):
        bucket, _, rest = url[len("oss://"):].partition("/")
        return f"https://{bucket}.oss.aliyuncs.com/{rest}"
    if url.startswith("s3://"):
        bucket, _, rest = url[len("s3://"):].partition("/")
        return f"https://{bucket}.s3.amazonaws.com/{rest}"
    return url


def parse_archive_filename(filename: str) -> tuple[str, Optional[str], Optional[str]]:
    """Extract (skill name, version, archive format) from an archive filename.

    "my-skill-v1.0.0.tar.gz" gives ("my-skill", "v1.0.0", "tar.gz").
    """
    fmt_match = ARCHIVE_PATTERN.search(filename)
    archive_format = fmt_match.group(1).lower() if fmt_match else None
    base = filename[: fmt_match.start()] if fmt_match else filename

    version_match = FILENAME_VERSION_PATTERN.search(base)
    if version_match:
        return base[: version_match.start()], version_match.group(1), archive_format
    return base, None, archive_format


def _parse_archive(body: str, raw: str, fragment: Optional[str]) -> SkillReference:
    url = body
    version = None
    at_index = body.rfind("@")
    if at_index > 0 and "/" not in body[at_index:]:
        version = body[at_index + 1:] or None
        url = body[:at_index]

    url = _normalize_archive_url(url)
    parsed = urlparse(url)
    filename = posixpath.basename(parsed.path)
    name, filename_version, archive_format = parse_archive_filename(filename)

    if not parsed.netloc or not name:
        raise ParseError(f"Invalid archive URL: {raw}")

    return SkillReference(
        kind=SourceKind.HTTP_ARCHIVE,
        registry_source=HTTP_SOURCE,
        owner=parsed.netloc,
        repo_name=name,
        version_spec=version or filename_version,
        explicit_url=url,
        skill_name=fragment,
        archive_format=archive_format,
        raw=raw,
    )


def get_registry_url(registry_name: str, registries: Optional[dict[str, str]] = None) -> str:
    """Resolve a registry name to a base URL.

    Order: configured registries, well-known registries, then the name
    itself treated as a domain.
    """
    if registries and registries.get(registry_name):
        return registries[registry_name].rstrip("/")
    if registry_name in WELL_KNOWN_REGISTRIES:
        return WELL_KNOWN_REGISTRIES[registry_name]
    if registry_name == REGISTRY_SOURCE:
        return DEFAULT_SKILL_REGISTRY_URL
    return f"https://{registry_name}"


def build_repo_url(ref: SkillReference, registries: Optional[dict[str, str]] = None) -> str:
    """Build the URL content is fetched from.

    An explicit URL always wins and is returned verbatim; otherwise the
    registry base URL is joined with owner/repo.
    """
    if ref.explicit_url:
        return ref.explicit_url
    base_url = get_registry_url(ref.registry_source, registries)
    return f"{base_url}/{ref.owner}/{ref.repo_name}"
