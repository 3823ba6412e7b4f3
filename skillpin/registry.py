"""Skill registry client and archive handling.

This module provides:
- RegistryClient, resolving @scope/name references to package content
- Archive download over HTTP
- Safe extraction of .tar.gz, .tgz, .tar and .zip archives
"""

import io
import logging
import shutil
import tarfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx

from skillpin.errors import FetchError, ResolutionError
from skillpin.versioning import VersionKind, max_satisfying, parse_version_spec


logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 60.0


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class RegistryPackage:
    """A resolved registry package.

    Attributes:
        name: Full package name (e.g. "@scope/name")
        version: Concrete version
        content: Gzipped tarball bytes
    """

    name: str
    version: str
    content: bytes


# =============================================================================
# Registry Client
# =============================================================================


class RegistryClient:
    """Read-only client for a skill registry.

    Endpoints:
        GET {base}/api/skills/{name}                      package metadata
        GET {base}/api/skills/{name}/{version}/download   tarball
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, path: str) -> httpx.Response:
        url = f"{self.base_url}{path}"
        client = self._client or httpx.Client(follow_redirects=True, timeout=DOWNLOAD_TIMEOUT)
        try:
            response = client.get(url, headers=self._headers())
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                raise FetchError(f"Not found in registry: {url}")
            raise FetchError(f"Registry request failed ({status}): {url}")
        except httpx.HTTPError as e:
            raise FetchError(f"Registry request failed: {url}: {e}")
        finally:
            if self._client is None:
                client.close()

    def get_metadata(self, name: str) -> dict[str, Any]:
        """Fetch package metadata."""
        response = self._get(f"/api/skills/{name}")
        try:
            data = response.json()
        except ValueError:
            raise FetchError(f"Invalid metadata for {name} from {self.base_url}")
        if not isinstance(data, dict):
            raise FetchError(f"Invalid metadata for {name} from {self.base_url}")
        return data

    def resolve_version(self, name: str, version: Optional[str] = None) -> str:
        """Resolve a requested version to a published one.

        "latest" (or no version) uses the registry's latest dist-tag. A
        range picks the highest published version that satisfies it.
        Anything else is taken as an exact version.

        Raises:
            ResolutionError: If no published version satisfies a range
        """
        if version and version != "latest":
            if parse_version_spec(version).kind is not VersionKind.RANGE:
                return version
            return self._resolve_range(name, version)
        metadata = self.get_metadata(name)
        latest = (metadata.get("dist-tags") or {}).get("latest") or metadata.get("version")
        if not latest:
            raise FetchError(f"Registry has no published version of {name}")
        return str(latest)

    def _resolve_range(self, name: str, range_str: str) -> str:
        versions = self.get_metadata(name).get("versions") or {}
        if isinstance(versions, dict):
            versions = list(versions)
        candidates = [str(v.get("version")) if isinstance(v, dict) else str(v) for v in versions]
        best = max_satisfying(candidates, range_str)
        if best is None:
            raise ResolutionError(
                f"No version matching {range_str} found for {name} in {self.base_url}",
                spec=range_str,
                repo_url=f"{self.base_url}/api/skills/{name}",
            )
        return best

    def download(self, name: str, version: str) -> bytes:
        """Download a package tarball."""
        return self._get(f"/api/skills/{name}/{version}/download").content

    def resolve(self, name: str, version: Optional[str] = None) -> RegistryPackage:
        """Resolve a package to its content and concrete version.

        Args:
            name: Package name
            version: Version, "latest" or None

        Returns:
            RegistryPackage instance

        Raises:
            FetchError: If the registry cannot be reached or has no such package
        """
        resolved = self.resolve_version(name, version)
        logger.debug("Resolved %s@%s to %s", name, version or "latest", resolved)
        return RegistryPackage(name=name, version=resolved, content=self.download(name, resolved))


# =============================================================================
# Archives
# =============================================================================


def download_archive(url: str, client: Optional[httpx.Client] = None) -> bytes:
    """Download an archive.

    Raises:
        FetchError: If the download fails
    """
    try:
        if client is not None:
            response = client.get(url, follow_redirects=True)
            response.raise_for_status()
            return response.content
        buffer = io.BytesIO()
        with httpx.stream("GET", url, follow_redirects=True, timeout=DOWNLOAD_TIMEOUT) as response:
            response.raise_for_status()
            for chunk in response.iter_bytes():
                buffer.write(chunk)
        return buffer.getvalue()
    except httpx.HTTPError as e:
        raise FetchError(f"Download failed: {url}: {e}")


def _check_member(name: str) -> None:
    if name.startswith("/") or ".." in Path(name).parts:
        raise FetchError(f"Unsafe path in archive: {name}")


def extract_tarball(content: bytes, dest: Path, compressed: bool = True) -> Path:
    """Extract tarball bytes into a directory.

    Raises:
        FetchError: If the archive is invalid or a member escapes dest
    """
    dest.mkdir(parents=True, exist_ok=True)
    mode = "r:gz" if compressed else "r:"
    try:
        with tarfile.open(fileobj=io.BytesIO(content), mode=mode) as tar:
            for member in tar.getmembers():
                _check_member(member.name)
                if member.issym() or member.islnk():
                    raise FetchError(f"Links are not allowed in archives: {member.name}")
            tar.extractall(dest)
    except tarfile.TarError as e:
        raise FetchError(f"Invalid archive: {e}")
    return dest


def extract_zip(content: bytes, dest: Path) -> Path:
    """Extract zip bytes into a directory."""
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            for name in archive.namelist():
                _check_member(name)
            archive.extractall(dest)
    except zipfile.BadZipFile as e:
        raise FetchError(f"Invalid archive: {e}")
    return dest


def extract_archive(content: bytes, dest: Path, archive_format: Optional[str]) -> Path:
    """Extract an archive and flatten a single top-level directory.

    Args:
        content: Archive bytes
        dest: Destination directory
        archive_format: "tar.gz", "tgz", "tar" or "zip"

    Returns:
        dest
    """
    if archive_format == "zip":
        extract_zip(content, dest)
    else:
        extract_tarball(content, dest, compressed=archive_format != "tar")

    entries = list(dest.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        inner = entries[0].rename(dest / ".skillpin-extract-root")
        for child in inner.iterdir():
            shutil.move(str(child), str(dest / child.name))
        inner.rmdir()
    return dest
