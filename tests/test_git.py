"""Tests for the git command wrapper."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from skillpin import git
from skillpin.errors import FetchError
from skillpin.git import (
    GitCloneError,
    GitError,
    RemoteTag,
    clone,
    get_default_branch,
    get_remote_commit,
    is_auth_error,
    is_commit_hash,
    parse_ls_remote_tags,
    run_git,
)


SHA_A = "a" * 40
SHA_B = "b" * 40
SHA_C = "c" * 40


def completed(stdout="", stderr="", returncode=0):
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestRunGit:
    """Tests for run_git."""

    def test_returns_stdout(self):
        with patch("subprocess.run", return_value=completed("ok\n")) as mock_run:
            assert run_git("status") == "ok\n"

        args, kwargs = mock_run.call_args
        assert args[0] == ["git", "status"]
        assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"

    def test_non_zero_exit(self):
        with patch("subprocess.run", return_value=completed(stderr="fatal: nope", returncode=128)):
            with pytest.raises(GitError) as exc_info:
                run_git("fetch")

        assert exc_info.value.output == "fatal: nope"
        assert isinstance(exc_info.value, FetchError)

    def test_timeout(self):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("git", 1)):
            with pytest.raises(GitError, match="timed out"):
                run_git("clone")

    def test_missing_git(self):
        with patch("subprocess.run", side_effect=FileNotFoundError("git")):
            with pytest.raises(GitError, match="Could not run git"):
                run_git("status")


class TestLsRemote:
    """Tests for parsing ls-remote output."""

    def test_lightweight_and_annotated_tags(self):
        output = (
            f"{SHA_A}\trefs/tags/v1.0.0\n"
            f"{SHA_B}\trefs/tags/v2.0.0\n"
            f"{SHA_C}\trefs/tags/v2.0.0^{{}}\n"
        )
        tags = parse_ls_remote_tags(output)

        assert tags == [RemoteTag("v1.0.0", SHA_A), RemoteTag("v2.0.0", SHA_C)]

    def test_ignores_other_refs(self):
        output = f"{SHA_A}\trefs/heads/main\n\n{SHA_B}\trefs/tags/v1\n"
        assert parse_ls_remote_tags(output) == [RemoteTag("v1", SHA_B)]

    def test_default_branch(self):
        output = f"ref: refs/heads/develop\tHEAD\n{SHA_A}\tHEAD\n"
        with patch.object(git, "run_git", return_value=output):
            assert get_default_branch("https://example.com/repo") == "develop"

    def test_default_branch_falls_back_to_main(self):
        with patch.object(git, "run_git", side_effect=GitError("offline")):
            assert get_default_branch("https://example.com/repo") == "main"


class TestRemoteCommit:
    """Tests for get_remote_commit."""

    def test_commit_hash_is_returned_as_is(self):
        with patch.object(git, "run_git") as mock_run:
            assert get_remote_commit("url", "abc1234") == "abc1234"
        mock_run.assert_not_called()

    def test_prefers_peeled_commit(self):
        output = f"{SHA_B}\trefs/tags/v1.0.0\n{SHA_C}\trefs/tags/v1.0.0^{{}}\n"
        with patch.object(git, "run_git", return_value=output):
            assert get_remote_commit("url", "v1.0.0") == SHA_C

    def test_branch(self):
        with patch.object(git, "run_git", return_value=f"{SHA_A}\trefs/heads/main\n"):
            assert get_remote_commit("url", "main") == SHA_A

    def test_missing_ref(self):
        with patch.object(git, "run_git", return_value=""):
            with pytest.raises(GitError, match="not found"):
                get_remote_commit("url", "v9.9.9")


class TestClone:
    """Tests for clone."""

    def test_shallow_clone_of_tag(self, tmp_path):
        with patch.object(git, "run_git") as mock_run:
            clone("https://example.com/repo.git", tmp_path / "dest", ref="v1.0.0")

        args = mock_run.call_args[0]
        assert args[:4] == ("clone", "--quiet", "--depth", "1")
        assert "--branch" in args
        assert "v1.0.0" in args

    def test_commit_is_checked_out_after_full_clone(self, tmp_path):
        dest = tmp_path / "dest"
        mock_run = MagicMock(return_value="")
        with patch.object(git, "run_git", mock_run):
            clone("https://example.com/repo.git", dest, ref="abc1234")

        first, second = mock_run.call_args_list
        assert "--depth" not in first[0]
        assert second[0] == ("checkout", "--quiet", "abc1234")
        assert second[1] == {"cwd": dest}

    def test_auth_failure_has_tips(self, tmp_path):
        error = GitError("clone failed", "git@github.com: Permission denied (publickey).")
        with patch.object(git, "run_git", side_effect=error):
            with pytest.raises(GitCloneError) as exc_info:
                clone("git@github.com:org/private.git", tmp_path / "dest")

        assert exc_info.value.is_auth_error
        assert "ssh-add" in str(exc_info.value)


class TestHelpers:
    """Tests for small helpers."""

    def test_is_commit_hash(self):
        assert is_commit_hash("abc1234")
        assert is_commit_hash(SHA_A)
        assert not is_commit_hash("v1.0.0")
        assert not is_commit_hash("main")

    def test_is_auth_error(self):
        assert is_auth_error("remote: Repository not found.")
        assert is_auth_error("The requested URL returned error: 403")
        assert not is_auth_error("fatal: Remote branch v9 not found in upstream origin")
