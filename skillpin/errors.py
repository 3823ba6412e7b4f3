"""Exception hierarchy shared by the skillpin core."""

from typing import Optional


class SkillpinError(Exception):
    """Base class for every error raised by skillpin."""

    pass


class ParseError(SkillpinError):
    """Raised when a skill reference or version string is malformed."""

    pass


class ResolutionError(SkillpinError):
    """Raised when a version spec cannot be matched against a remote."""

    def __init__(self, message: str, spec: str = "", repo_url: str = ""):
        super().__init__(message)
        self.spec = spec
        self.repo_url = repo_url


class FetchError(SkillpinError):
    """Raised when content cannot be fetched from its source."""

    pass


class InstallError(SkillpinError):
    """Raised when a skill cannot be installed."""

    pass


class ConsistencyError(SkillpinError):
    """Raised when on-disk or discovered state contradicts the request.

    Attributes:
        available: Names that were found, for actionable error output
    """

    def __init__(self, message: str, available: Optional[list[str]] = None):
        super().__init__(message)
        self.available = available or []
