"""Version specs and semantic version ranges for skill references."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from skillpin.errors import ParseError


# MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD], optional leading "v"
SEMVER_PATTERN = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

# Partial version inside a range: "1", "1.2", "1.x", "1.2.*", "1.2.3-beta.1"
PARTIAL_PATTERN = re.compile(
    r"^v?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)

COMPARATOR_PATTERN = re.compile(r"^(?P<operator>\^|~>?|>=|<=|>|<|=)?\s*(?P<version>.*)$")

RANGE_PREFIXES = ("^", "~", ">", "<")

DEFAULT_BRANCH = "main"


class VersionKind(Enum):
    """How a version string should be turned into a fetchable ref."""

    EXACT = "exact"
    LATEST = "latest"
    RANGE = "range"
    BRANCH = "branch"
    COMMIT = "commit"


@dataclass(frozen=True)
class VersionSpec:
    """A parsed version specifier.

    Attributes:
        kind: Which resolution rule applies
        value: Tag, range, branch or commit (prefix stripped)
        raw: The string the spec was parsed from ("" when absent)
    """

    kind: VersionKind
    value: str
    raw: str = ""

    @classmethod
    def exact(cls, tag: str) -> VersionSpec:
        return cls(VersionKind.EXACT, tag, tag)

    @classmethod
    def latest(cls) -> VersionSpec:
        return cls(VersionKind.LATEST, "latest", "latest")

    @classmethod
    def branch(cls, name: str) -> VersionSpec:
        return cls(VersionKind.BRANCH, name, f"branch:{name}")

    @classmethod
    def commit(cls, sha: str) -> VersionSpec:
        return cls(VersionKind.COMMIT, sha, f"commit:{sha}")


def parse_version_spec(raw: Optional[str]) -> VersionSpec:
    """Parse the part of a reference after "@".

    Priority: "latest", "branch:" prefix, "commit:" prefix, a leading
    range operator, and finally an exact tag. No version means the
    default branch.

    Args:
        raw: Version string, or None

    Returns:
        VersionSpec instance
    """
    if not raw:
        return VersionSpec(VersionKind.BRANCH, DEFAULT_BRANCH, "")

    if raw == "latest":
        return VersionSpec(VersionKind.LATEST, "latest", raw)

    if raw.startswith("branch:"):
        return VersionSpec(VersionKind.BRANCH, raw[len("branch:"):], raw)

    if raw.startswith("commit:"):
        return VersionSpec(VersionKind.COMMIT, raw[len("commit:"):], raw)

    if raw.startswith(RANGE_PREFIXES):
        return VersionSpec(VersionKind.RANGE, raw, raw)

    return VersionSpec(VersionKind.EXACT, raw, raw)


@dataclass(frozen=True)
class SemVer:
    """Semantic version (https://semver.org/) with build metadata dropped."""

    major: int
    minor: int
    patch: int
    prerelease: Optional[str] = None

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        return version

    @property
    def release(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def _key(self) -> tuple:
        # A release sorts after all of its prereleases
        if self.prerelease is None:
            return (self.release, 1, ())
        parts = []
        for part in self.prerelease.split("."):
            if part.isdigit():
                parts.append((0, int(part), ""))
            else:
                parts.append((1, 0, part))
        return (self.release, 0, tuple(parts))

    def __lt__(self, other: SemVer) -> bool:
        return self._key() < other._key()

    def __le__(self, other: SemVer) -> bool:
        return self._key() <= other._key()

    def __gt__(self, other: SemVer) -> bool:
        return self._key() > other._key()

    def __ge__(self, other: SemVer) -> bool:
        return self._key() >= other._key()

    @classmethod
    def parse(cls, version_str: str) -> SemVer:
        """Parse a version string such as "1.2.3" or "v2.0.0-rc.1".

        Raises:
            ParseError: If the string is not a semantic version
        """
        match = SEMVER_PATTERN.match(version_str.strip())
        if not match:
            raise ParseError(f"Invalid semantic version: {version_str}")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            prerelease=match.group("prerelease"),
        )


def try_parse_semver(version_str: str) -> Optional[SemVer]:
    """Parse a version string, returning None instead of raising."""
    try:
        return SemVer.parse(version_str)
    except ParseError:
        return None


# =============================================================================
# Ranges
# =============================================================================


Bound = tuple[str, SemVer]


def _is_wild(part: Optional[str]) -> bool:
    return part is None or part in ("x", "X", "*")


def _expand_comparator(token: str) -> list[Bound]:
    """Expand one comparator ("^1.2", ">=1.0.0", "1.x") into primitive bounds."""
    match = COMPARATOR_PATTERN.match(token)
    operator = match.group("operator") or "="
    version = match.group("version").strip()

    partial = PARTIAL_PATTERN.match(version or "*")
    if not partial:
        raise ParseError(f"Invalid version range comparator: {token}")

    major_s, minor_s, patch_s = partial.group("major"), partial.group("minor"), partial.group("patch")
    prerelease = partial.group("prerelease")

    if _is_wild(major_s):
        return [(">=", SemVer(0, 0, 0))]

    major = int(major_s)
    minor = None if _is_wild(minor_s) else int(minor_s)
    patch = None if minor is None or _is_wild(patch_s) else int(patch_s)
    low = SemVer(major, minor or 0, patch or 0, prerelease if patch is not None else None)

    if operator == "^":
        if major > 0 or minor is None:
            high = SemVer(major + 1, 0, 0)
        elif minor > 0 or patch is None:
            high = SemVer(0, minor + 1, 0)
        else:
            high = SemVer(0, 0, patch + 1)
        return [(">=", low), ("<", high)]

    if operator in ("~", "~>"):
        if minor is None:
            return [(">=", low), ("<", SemVer(major + 1, 0, 0))]
        return [(">=", low), ("<", SemVer(major, minor + 1, 0))]

    if patch is None:
        # Partial versions describe a whole block of releases
        next_block = SemVer(major + 1, 0, 0) if minor is None else SemVer(major, minor + 1, 0)
        if operator == "=":
            return [(">=", low), ("<", next_block)]
        if operator == ">":
            return [(">=", next_block)]
        if operator == "<=":
            return [("<", next_block)]
        return [(operator, low)]

    return [(operator, low)]


def _split_comparators(alternative: str) -> list[str]:
    alternative = alternative.strip()
    if " - " in alternative:
        low, high = (part.strip() for part in alternative.split(" - ", 1))
        return [f">={low}", f"<={high}"]

    # Glue operators to their version: ">= 1.0.0" -> ">=1.0.0"
    alternative = re.sub(r"(\^|~>?|>=|<=|>|<|=)\s+", r"\1", alternative)
    return [token for token in re.split(r"[\s,]+", alternative) if token]


def parse_range(range_str: str) -> list[list[Bound]]:
    """Parse a range into alternatives of AND-ed primitive bounds.

    Supports ^, ~, >=, <=, >, <, =, bare and partial versions, x/* wildcards,
    comma or space separated conjunctions, hyphen ranges and "||".

    Raises:
        ParseError: If any comparator is malformed
    """
    alternatives = []
    for alternative in range_str.split("||"):
        bounds: list[Bound] = []
        tokens = _split_comparators(alternative) or ["*"]
        for token in tokens:
            bounds.extend(_expand_comparator(token))
        alternatives.append(bounds)
    return alternatives


def _check(version: SemVer, operator: str, bound: SemVer) -> bool:
    if operator == ">=":
        return version >= bound
    if operator == "<=":
        return version <= bound
    if operator == ">":
        return version > bound
    if operator == "<":
        return version < bound
    return version == bound


def satisfies(version: Union[str, SemVer], range_str: str) -> bool:
    """Check whether a version satisfies a range.

    A prerelease only matches a range whose comparators name a prerelease
    of the same major.minor.patch.

    Args:
        version: Version string or SemVer
        range_str: Range such as "^1.0.0" or ">=1.2.0 <2.0.0"

    Returns:
        True if the version satisfies the range
    """
    if isinstance(version, str):
        parsed = try_parse_semver(version)
        if parsed is None:
            return False
        version = parsed

    for bounds in parse_range(range_str):
        if not all(_check(version, op, bound) for op, bound in bounds):
            continue
        if version.prerelease is None:
            return True
        if any(b.prerelease is not None and b.release == version.release for _, b in bounds):
            return True
    return False


def max_satisfying(versions: list[str], range_str: str) -> Optional[str]:
    """Return the highest version string satisfying a range.

    Args:
        versions: Candidate version strings (a leading "v" is allowed)
        range_str: Range to satisfy

    Returns:
        The original string of the best match, or None
    """
    matching = [
        (parsed, raw)
        for raw in versions
        if (parsed := try_parse_semver(raw)) is not None and satisfies(parsed, range_str)
    ]
    if not matching:
        return None
    return max(matching, key=lambda item: item[0])[1]


def compare_versions(v1: str, v2: str) -> int:
    """Compare two version strings.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2
    """
    ver1 = SemVer.parse(v1)
    ver2 = SemVer.parse(v2)

    if ver1 < ver2:
        return -1
    elif ver1 > ver2:
        return 1
    return 0
