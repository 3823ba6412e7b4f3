"""Tests for installing skills into agent directories."""

import os
from unittest.mock import patch

import pytest

from skillpin.errors import InstallError
from skillpin.installer import (
    InstallMode,
    Installer,
    create_symlink,
    is_path_safe,
    sanitize_name,
)
from skillpin.models import ManagerContext


@pytest.fixture
def skill_source(tmp_path):
    source = tmp_path / "source" / "pdf"
    (source / "scripts").mkdir(parents=True)
    (source / "SKILL.md").write_text("---\nname: pdf\ndescription: PDF tools\n---\n")
    (source / "scripts" / "extract.py").write_text("print('hi')\n")
    (source / ".skillpin-commit").write_text("abc1234")
    return source


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def installer(project, tmp_path):
    return Installer(ManagerContext(project_root=project, home=tmp_path / "home"))


class TestSanitizeName:
    """Tests for sanitize_name."""

    def test_plain_name(self):
        assert sanitize_name("pdf-tools") == "pdf-tools"

    def test_strips_separators_and_dots(self):
        assert sanitize_name("../evil/name") == "evilname"
        assert sanitize_name("  .hidden. ") == "hidden"

    def test_empty_name(self):
        assert sanitize_name("...") == "unnamed-skill"

    def test_is_path_safe(self, tmp_path):
        assert is_path_safe(tmp_path, tmp_path / "a" / "b")
        assert not is_path_safe(tmp_path / "a", tmp_path / "a" / ".." / "b")


class TestSymlinkMode:
    """Tests for the symlink install mode."""

    def test_links_every_target_to_canonical(self, installer, skill_source, project):
        results = installer.install_to_agents(skill_source, "pdf", ["claude-code", "cursor"])

        canonical = project / ".agents" / "skills" / "pdf"
        assert (canonical / "SKILL.md").exists()
        assert not (canonical / ".skillpin-commit").exists()

        for target, agent_dir in (("claude-code", ".claude"), ("cursor", ".cursor")):
            result = results[target]
            link = project / agent_dir / "skills" / "pdf"
            assert result.success
            assert result.path == link
            assert result.canonical_path == canonical
            assert link.is_symlink()
            assert link.resolve() == canonical.resolve()
            assert not os.path.isabs(os.readlink(link))

    def test_symlink_failure_falls_back_to_copy_for_that_target(self, installer, skill_source, project):
        real_symlink = os.symlink

        def flaky_symlink(src, dst, target_is_directory=False):
            if ".cursor" in str(dst):
                raise OSError("symlinks not permitted")
            return real_symlink(src, dst, target_is_directory=target_is_directory)

        with patch("os.symlink", side_effect=flaky_symlink):
            results = installer.install_to_agents(skill_source, "pdf", ["claude-code", "cursor"])

        assert results["claude-code"].success
        assert not results["claude-code"].symlink_failed
        assert (project / ".claude" / "skills" / "pdf").is_symlink()

        cursor = results["cursor"]
        assert cursor.success
        assert cursor.symlink_failed
        assert not cursor.path.is_symlink()
        assert (cursor.path / "scripts" / "extract.py").exists()

    def test_reinstall_replaces_link(self, installer, skill_source, project):
        installer.install_to_agents(skill_source, "pdf", ["claude-code"])
        (skill_source / "NEW.md").write_text("new")
        installer.install_to_agents(skill_source, "pdf", ["claude-code"])

        assert (project / ".claude" / "skills" / "pdf" / "NEW.md").exists()

    def test_agent_dir_equal_to_canonical(self, installer, skill_source, project):
        results = installer.install_to_agents(skill_source, "pdf", ["amp"])

        canonical = project / ".agents" / "skills" / "pdf"
        assert results["amp"].success
        assert results["amp"].path == canonical
        assert not canonical.is_symlink()
        assert (canonical / "SKILL.md").exists()


class TestCopyMode:
    """Tests for the copy install mode."""

    def test_independent_copies(self, installer, skill_source, project):
        results = installer.install_to_agents(skill_source, "pdf", ["claude-code", "cursor"], InstallMode.COPY)

        for result in results.values():
            assert result.success
            assert result.mode == InstallMode.COPY
            assert not result.path.is_symlink()
            assert (result.path / "SKILL.md").exists()
        assert not (project / ".agents" / "skills" / "pdf").exists()

    def test_install_canonical(self, installer, skill_source, project):
        path = installer.install_canonical(skill_source, "pdf")

        assert path == project / ".agents" / "skills" / "pdf"
        assert (path / "scripts" / "extract.py").exists()


class TestPartialFailure:
    """Tests for per-target failure isolation."""

    def test_unknown_target_fails_alone(self, installer, skill_source):
        results = installer.install_to_agents(skill_source, "pdf", ["notepad", "cursor"])

        assert not results["notepad"].success
        assert "Unknown agent" in results["notepad"].error
        assert results["cursor"].success

    def test_unknown_agent_dir(self, installer):
        with pytest.raises(InstallError):
            installer.get_agent_skill_path("pdf", "notepad")


class TestUninstallAndList:
    """Tests for uninstall, is_installed and list_agent_skills."""

    def test_uninstall(self, installer, skill_source, project):
        installer.install_to_agents(skill_source, "pdf", ["claude-code", "cursor"])

        results = installer.uninstall_from_agents("pdf", ["claude-code", "cursor", "codex"])

        assert results == {"claude-code": True, "cursor": True, "codex": False}
        assert not (project / ".agents" / "skills" / "pdf").exists()
        assert not installer.is_installed("pdf", "cursor")

    def test_partial_uninstall_keeps_canonical_for_other_agents(self, installer, skill_source, project):
        installer.install_to_agents(skill_source, "pdf", ["claude-code", "cursor"])

        results = installer.uninstall_from_agents("pdf", ["cursor"])

        assert results == {"cursor": True}
        assert (project / ".agents" / "skills" / "pdf").is_dir()
        assert (project / ".claude" / "skills" / "pdf" / "SKILL.md").exists()
        assert installer.installed_agents("pdf") == ["claude-code"]

    def test_agent_reading_canonical_is_not_counted(self, installer, skill_source, project):
        installer.install_to_agents(skill_source, "pdf", ["amp", "cursor"])

        assert installer.installed_agents("pdf") == ["cursor"]
        assert installer.uninstall_from_agents("pdf", ["amp"]) == {"amp": False}
        assert (project / ".cursor" / "skills" / "pdf" / "SKILL.md").exists()

        assert installer.uninstall_from_agents("pdf", ["cursor", "amp"]) == {"cursor": True, "amp": True}
        assert not (project / ".agents" / "skills" / "pdf").exists()

    def test_list_agent_skills(self, installer, skill_source):
        installer.install_to_agents(skill_source, "pdf", ["cursor"])
        installer.install_to_agents(skill_source, "docx", ["cursor"])

        assert installer.list_agent_skills("cursor") == ["docx", "pdf"]
        assert installer.list_agent_skills("codex") == []

    def test_global_context_uses_home(self, skill_source, tmp_path):
        home = tmp_path / "home"
        installer = Installer(ManagerContext(project_root=tmp_path / "project", is_global=True, home=home))

        results = installer.install_to_agents(skill_source, "pdf", ["claude-code"])

        assert results["claude-code"].path == home / ".claude" / "skills" / "pdf"
        assert (home / ".agents" / "skills" / "pdf" / "SKILL.md").exists()


class TestCreateSymlink:
    """Tests for create_symlink."""

    def test_same_path_is_a_no_op(self, tmp_path):
        target = tmp_path / "skill"
        target.mkdir()
        assert create_symlink(target, target)
        assert not target.is_symlink()

    def test_replaces_existing_directory(self, tmp_path):
        target = tmp_path / "canonical"
        target.mkdir()
        link = tmp_path / "agent" / "skill"
        link.mkdir(parents=True)

        assert create_symlink(target, link)
        assert link.is_symlink()
