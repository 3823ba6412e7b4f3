"""Tests for skill lock file management."""

import threading

import pytest

from skillpin.lockfile import (
    LOCK_FILE_NAME,
    LockedSkill,
    LockFileError,
    LockStore,
    SkillLockFile,
)


def make_locked(name="pdf", **overrides):
    data = dict(
        name=name,
        source=f"github:org/monorepo/skills/{name}",
        version="1.0.0",
        ref="v1.0.0",
        resolved="https://github.com/org/monorepo",
        commit="abc1234",
        installed_at="2026-01-20T09:00:00+00:00",
    )
    data.update(overrides)
    return LockedSkill(**data)


class TestLockedSkill:
    """Tests for LockedSkill."""

    def test_to_dict(self):
        data = make_locked().to_dict()

        assert data["source"] == "github:org/monorepo/skills/pdf"
        assert data["ref"] == "v1.0.0"
        assert data["commit"] == "abc1234"
        assert "registry" not in data
        assert "name" not in data

    def test_registry_is_kept(self):
        locked = make_locked(registry="https://registry.example")
        assert LockedSkill.from_dict("pdf", locked.to_dict()).registry == "https://registry.example"

    def test_from_dict_requires_source(self):
        with pytest.raises(LockFileError):
            LockedSkill.from_dict("pdf", {"version": "1.0.0"})

    def test_numeric_version_becomes_string(self):
        locked = LockedSkill.from_dict("pdf", {"source": "github:o/r", "version": 1.0, "ref": "v1"})
        assert locked.version == "1.0"
        assert locked.commit is None


class TestSkillLockFile:
    """Tests for SkillLockFile."""

    def test_save_and_load(self, tmp_path):
        path = tmp_path / LOCK_FILE_NAME
        lock = SkillLockFile(skills={"pdf": make_locked(), "docx": make_locked("docx")})
        lock.save(path)

        loaded = SkillLockFile.load(path)

        assert loaded.lockfile_version == 1
        assert set(loaded.skills) == {"pdf", "docx"}
        assert loaded.skills["pdf"] == make_locked()

    def test_entries_are_sorted(self, tmp_path):
        path = tmp_path / LOCK_FILE_NAME
        SkillLockFile(skills={"zeta": make_locked("zeta"), "alpha": make_locked("alpha")}).save(path)

        content = path.read_text()
        assert content.index("alpha:") < content.index("zeta:")
        assert content.startswith("lockfile_version: 1")

    def test_load_missing(self, tmp_path):
        with pytest.raises(LockFileError):
            SkillLockFile.load(tmp_path / LOCK_FILE_NAME)

    def test_load_invalid_yaml(self, tmp_path):
        path = tmp_path / LOCK_FILE_NAME
        path.write_text("skills: [unclosed\n")

        with pytest.raises(LockFileError, match="Invalid YAML"):
            SkillLockFile.load(path)

    def test_load_wrong_shape(self, tmp_path):
        path = tmp_path / LOCK_FILE_NAME
        path.write_text("skills:\n  - pdf\n")

        with pytest.raises(LockFileError):
            SkillLockFile.load(path)

    def test_load_empty_file(self, tmp_path):
        path = tmp_path / LOCK_FILE_NAME
        path.write_text("")

        assert SkillLockFile.load(path).skills == {}


class TestLockStore:
    """Tests for LockStore."""

    def test_empty_store(self, tmp_path):
        store = LockStore(tmp_path)

        assert not store.exists()
        assert store.get("pdf") is None
        assert store.get_all() == {}

    def test_lock_skill_stamps_time(self, tmp_path):
        store = LockStore(tmp_path)
        entry = store.lock_skill(
            "pdf",
            source="github:org/monorepo/skills/pdf",
            version="1.0.0",
            ref="v1.0.0",
            resolved="https://github.com/org/monorepo",
            commit="abc1234",
        )

        assert entry.installed_at
        assert store.exists()
        assert store.get("pdf") == entry
        assert store.has("pdf")

    def test_set_replaces_entry(self, tmp_path):
        store = LockStore(tmp_path)
        store.set(make_locked())
        store.set(make_locked(ref="v1.1.0", commit="def5678"))

        assert store.get("pdf").ref == "v1.1.0"
        assert len(store.get_all()) == 1

    def test_remove(self, tmp_path):
        store = LockStore(tmp_path)
        store.set(make_locked())

        assert store.remove("pdf")
        assert not store.remove("pdf")
        assert store.get("pdf") is None

    def test_clear(self, tmp_path):
        store = LockStore(tmp_path)
        store.set(make_locked())
        store.clear()

        assert store.exists()
        assert store.get_all() == {}

    def test_concurrent_writes_keep_every_entry(self, tmp_path):
        store = LockStore(tmp_path)
        names = [f"skill-{i}" for i in range(20)]

        threads = [threading.Thread(target=store.set, args=(make_locked(name),)) for name in names]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert set(store.get_all()) == set(names)

    def test_reads_during_writes_see_whole_file(self, tmp_path):
        store = LockStore(tmp_path)
        store.set(make_locked("pdf"))
        stop = threading.Event()

        def writer():
            i = 0
            while not stop.is_set():
                store.set(make_locked(f"skill-{i % 50}"))
                i += 1

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            seen = [store.get("pdf") for _ in range(500)]
        finally:
            stop.set()
            thread.join()

        assert all(locked is not None and locked.ref == "v1.0.0" for locked in seen)
