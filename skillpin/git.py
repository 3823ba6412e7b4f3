"""Thin wrapper around the git executable.

Every command runs non-interactively: no credential prompts, and SSH
runs in batch mode so a missing key fails fast instead of hanging.
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from skillpin.errors import FetchError


logger = logging.getLogger(__name__)

GIT_TIMEOUT = 300
COMMIT_PATTERN = re.compile(r"^[0-9a-f]{7,40}$")

AUTH_ERROR_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"permission denied",
        r"could not read from remote",
        r"authentication failed",
        r"repository not found",
        r"host key verification failed",
        r"access denied",
        r"unauthorized",
        r"\b403\b",
        r"\b401\b",
    )
]


class GitError(FetchError):
    """Raised when a git command fails."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class GitCloneError(GitError):
    """Raised when cloning a repository fails.

    The message carries credential tips when the failure looks like an
    authentication problem.
    """

    def __init__(self, repo_url: str, output: str = ""):
        self.repo_url = repo_url
        self.is_auth_error = is_auth_error(output)
        message = f"Failed to clone {repo_url}"
        if output.strip():
            message += f": {output.strip()}"
        if self.is_auth_error:
            message += "\n\n" + auth_tips(repo_url)
        super().__init__(message, output)


@dataclass(frozen=True)
class RemoteTag:
    """A tag as listed by the remote."""

    name: str
    commit: Optional[str] = None


def is_auth_error(output: str) -> bool:
    """Check whether git output looks like an authentication failure."""
    return any(pattern.search(output) for pattern in AUTH_ERROR_PATTERNS)


def auth_tips(repo_url: str) -> str:
    """Credential tips for an SSH or HTTPS clone URL."""
    if repo_url.startswith("git@") or repo_url.startswith("ssh://"):
        return (
            "Tips for SSH access:\n"
            "  - Check that your SSH key is added: ssh-add -l\n"
            "  - Test the connection: ssh -T git@<host>\n"
            "  - Or use an HTTPS URL with a credential helper"
        )
    return (
        "Tips for HTTPS access:\n"
        "  - Configure a credential helper: git config --global credential.helper store\n"
        "  - Use a personal access token for private repositories\n"
        "  - Or use an SSH URL (git@host:owner/repo.git)"
    )


def is_commit_hash(ref: str) -> bool:
    return bool(COMMIT_PATTERN.match(ref))


def git_env() -> dict[str, str]:
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault(
        "GIT_SSH_COMMAND",
        "ssh -o StrictHostKeyChecking=accept-new -o BatchMode=yes",
    )
    return env


def run_git(*args: str, cwd: Optional[Path] = None) -> str:
    """Run a git command and return its stdout.

    Raises:
        GitError: If git is missing, times out or exits non-zero
    """
    cmd = ["git", *args]
    logger.debug("Running %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
            env=git_env(),
        )
    except subprocess.TimeoutExpired:
        raise GitError(f"git {args[0]} timed out after {GIT_TIMEOUT}s")
    except OSError as e:
        raise GitError(f"Could not run git: {e}")

    if result.returncode != 0:
        output = (result.stderr or result.stdout).strip()
        raise GitError(f"git {args[0]} failed: {output}", output)
    return result.stdout


def parse_ls_remote_tags(output: str) -> list[RemoteTag]:
    """Parse `git ls-remote --tags` output into tags, in listing order.

    Annotated tags are reported with the commit they point to (the
    peeled "^{}" line) rather than the tag object.
    """
    commits: dict[str, str] = {}
    for line in output.splitlines():
        if "\t" not in line:
            continue
        sha, ref = line.split("\t", 1)
        ref = ref.strip()
        if not ref.startswith("refs/tags/"):
            continue
        name = ref[len("refs/tags/"):]
        if name.endswith("^{}"):
            commits[name[:-3]] = sha.strip()
        else:
            commits.setdefault(name, sha.strip())
    return [RemoteTag(name=name, commit=commit) for name, commit in commits.items()]


def list_remote_tags(repo_url: str) -> list[RemoteTag]:
    """List the tags of a remote repository."""
    return parse_ls_remote_tags(run_git("ls-remote", "--tags", repo_url))


def get_default_branch(repo_url: str) -> str:
    """Get a remote's default branch, falling back to "main"."""
    try:
        output = run_git("ls-remote", "--symref", repo_url, "HEAD")
    except GitError:
        logger.debug("Could not query default branch of %s", repo_url)
        return "main"
    match = re.search(r"ref: refs/heads/(\S+)", output)
    return match.group(1) if match else "main"


def get_remote_commit(repo_url: str, ref: str) -> str:
    """Get the commit a remote ref points at, without fetching.

    Raises:
        GitError: If the ref does not exist on the remote
    """
    if is_commit_hash(ref):
        return ref
    output = run_git("ls-remote", repo_url, ref, f"{ref}^{{}}")
    found = None
    for line in output.splitlines():
        if "\t" not in line:
            continue
        sha, name = line.split("\t", 1)
        if name.strip().endswith("^{}"):
            return sha.strip()
        found = found or sha.strip()
    if found is None:
        raise GitError(f"Ref {ref} not found in {repo_url}")
    return found


def clone(repo_url: str, dest: Path, ref: Optional[str] = None, depth: int = 1) -> None:
    """Clone a repository at a ref.

    Tags and branches are cloned shallow. Commit hashes cannot be passed
    to --branch, so those are cloned in full and checked out.

    Raises:
        GitCloneError: If the clone or checkout fails
    """
    dest = Path(dest)
    try:
        if ref and is_commit_hash(ref):
            run_git("clone", "--quiet", repo_url, str(dest))
            run_git("checkout", "--quiet", ref, cwd=dest)
            return

        args = ["clone", "--quiet"]
        if depth:
            args += ["--depth", str(depth)]
        if ref:
            args += ["--branch", ref]
        run_git(*args, repo_url, str(dest))
    except GitError as e:
        raise GitCloneError(repo_url, e.output or str(e)) from e


def get_current_commit(path: Path) -> str:
    """Get the HEAD commit of a local checkout."""
    return run_git("rev-parse", "HEAD", cwd=Path(path)).strip()
