"""
Unit tests for checkpoint_manager module.

Each test builds a small project tree under tmp_path and checkpoints it into
the project's .agent directory.
"""

import json
import logging
import os
import shutil
import time
from pathlib import Path

import pytest

from agent_harness.checkpoint_manager import (
    CHECKPOINT_METADATA_NAME,
    CHECKPOINTS_DIR_NAME,
    ORPHAN_GRACE_SECONDS,
    CheckpointManager,
    file_hash,
)
from agent_harness.config import CheckpointConfig, FeatureFlags, HarnessConfig
from agent_harness.persistence import PersistenceError


@pytest.fixture
def project(project_root, make_file):
    make_file(project_root / "src" / "index.ts", "export const a = 1;\n")
    make_file(project_root / "src" / "lib" / "util.ts", "export function u() {}\n")
    make_file(project_root / "src" / "app.py", "print('hi')\n")
    make_file(project_root / "package.json", '{"name": "demo"}\n')
    return project_root


@pytest.fixture
def manager(project, agent_dir) -> CheckpointManager:
    return CheckpointManager(agent_dir, project)


class TestDiscovery:
    """Tests for which files are tracked."""

    def test_tracks_sources_and_config_files(self, manager):
        assert sorted(manager.discover_files()) == [
            "package.json",
            "src/app.py",
            "src/index.ts",
            "src/lib/util.ts",
        ]

    def test_skips_excluded_and_hidden_dirs(self, manager, project, make_file):
        make_file(project / "src" / "node_modules" / "dep" / "index.js")
        make_file(project / "src" / ".cache" / "x.ts")
        make_file(project / "src" / "__pycache__" / "app.py")
        make_file(project / "src" / "dist" / "bundle.js")
        make_file(project / "src" / "notes.md")
        make_file(project / "README.md")

        files = manager.discover_files()

        assert not any("node_modules" in f for f in files)
        assert not any(".cache" in f for f in files)
        assert not any("__pycache__" in f for f in files)
        assert not any("dist" in f for f in files)
        assert "src/notes.md" not in files
        assert "README.md" not in files

    def test_custom_config(self, project, agent_dir, make_file):
        make_file(project / "lib" / "main.go", "package main\n")
        config = CheckpointConfig(source_dir="lib", source_extensions=[".go"], config_files=["go.mod"])

        manager = CheckpointManager(agent_dir, project, config)

        assert manager.discover_files() == ["lib/main.go"]

    def test_missing_source_dir(self, project_root, agent_dir):
        manager = CheckpointManager(agent_dir, project_root)

        assert manager.discover_files() == []


class TestCreate:
    """Tests for CheckpointManager.create."""

    def test_create_records_snapshot(self, manager, project):
        checkpoint = manager.create("initial", feature_id="F-1")

        assert checkpoint.id.startswith("ckpt-")
        assert checkpoint.description == "initial"
        assert checkpoint.feature_id == "F-1"
        assert checkpoint.can_restore is True

        by_path = {f.path: f for f in checkpoint.files_snapshot}
        index = (project / "src" / "index.ts").read_bytes()
        assert by_path["src/index.ts"].hash == file_hash(index)
        assert len(by_path["src/index.ts"].hash) == 16
        assert by_path["src/index.ts"].size == len(index)
        assert all(f.backed_up for f in checkpoint.files_snapshot)

    def test_create_copies_files(self, manager, agent_dir, project):
        checkpoint = manager.create("initial")

        checkpoint_dir = agent_dir / "checkpoints" / checkpoint.id
        assert (checkpoint_dir / CHECKPOINT_METADATA_NAME).exists()
        assert (checkpoint_dir / "src" / "lib" / "util.ts").read_bytes() == (
            project / "src" / "lib" / "util.ts"
        ).read_bytes()

    def test_metadata_matches_return_value(self, manager, agent_dir):
        checkpoint = manager.create("initial")

        assert manager.get(checkpoint.id) == checkpoint

    def test_ids_unique_and_timestamps_increasing(self, manager):
        checkpoints = [manager.create(f"cp {i}") for i in range(5)]

        assert len({c.id for c in checkpoints}) == 5
        for earlier, later in zip(checkpoints, checkpoints[1:]):
            assert later.created_at > earlier.created_at

    def test_failed_copy_marked_not_backed_up(self, manager, monkeypatch):
        def fail_write(self, data):
            raise OSError("read-only")

        monkeypatch.setattr(Path, "write_bytes", fail_write)

        checkpoint = manager.create("no space")

        assert checkpoint.files_snapshot
        assert not any(f.backed_up for f in checkpoint.files_snapshot)
        assert checkpoint.backed_up_files == []

    def test_vanished_file_is_omitted(self, manager, project, monkeypatch):
        original = manager.discover_files

        def discover_then_delete():
            files = original()
            (project / "src" / "app.py").unlink()
            return files

        monkeypatch.setattr(manager, "discover_files", discover_then_delete)

        checkpoint = manager.create("racy")

        assert "src/app.py" not in [f.path for f in checkpoint.files_snapshot]

    def test_unreadable_partial_backup_marked_not_backed_up(self, manager, monkeypatch):
        real_read_bytes = Path.read_bytes

        def fail_copystat(src, dst, **kwargs):
            raise OSError("permission denied")

        def read_sources_only(self):
            if CHECKPOINTS_DIR_NAME in self.parts:
                raise OSError("I/O error")
            return real_read_bytes(self)

        monkeypatch.setattr(shutil, "copystat", fail_copystat)
        monkeypatch.setattr(Path, "read_bytes", read_sources_only)

        checkpoint = manager.create("flaky disk")

        assert checkpoint.files_snapshot
        assert checkpoint.backed_up_files == []

    def test_failed_metadata_write_removes_directory(self, manager, agent_dir, monkeypatch):
        def fail_write(path, content):
            raise PersistenceError(f"Atomic write failed for {path}: disk full")

        monkeypatch.setattr("agent_harness.checkpoint_manager.atomic_write_text", fail_write)

        with pytest.raises(PersistenceError):
            manager.create("doomed")

        assert list((agent_dir / "checkpoints").iterdir()) == []
        assert manager.cleanup(keep_count=0) == []


class TestRestore:
    """Tests for CheckpointManager.restore."""

    def test_round_trip_restores_bytes(self, manager, project):
        checkpoint = manager.create("before edits")
        original_index = (project / "src" / "index.ts").read_bytes()
        original_util = (project / "src" / "lib" / "util.ts").read_bytes()

        (project / "src" / "index.ts").write_text("broken")
        (project / "src" / "lib" / "util.ts").unlink()
        (project / "src" / "lib").rmdir()

        assert manager.restore(checkpoint.id) is True
        assert (project / "src" / "index.ts").read_bytes() == original_index
        assert (project / "src" / "lib" / "util.ts").read_bytes() == original_util

    def test_second_restore_is_noop(self, manager, project):
        checkpoint = manager.create("cp")
        (project / "src" / "index.ts").write_text("changed")

        assert manager.restore(checkpoint.id)
        first = {p: (project / p).read_bytes() for p in manager.discover_files()}

        assert manager.restore(checkpoint.id)
        second = {p: (project / p).read_bytes() for p in manager.discover_files()}

        assert first == second

    def test_restore_leaves_untracked_new_files(self, manager, project, make_file):
        checkpoint = manager.create("cp")
        make_file(project / "src" / "new.ts", "new")

        manager.restore(checkpoint.id)

        assert (project / "src" / "new.ts").exists()

    def test_missing_checkpoint(self, manager, caplog):
        with caplog.at_level(logging.ERROR):
            assert manager.restore("ckpt-missing") is False

        assert "ckpt-missing" in caplog.text
        assert "not found" in caplog.text

    def test_invalid_id_rejected(self, manager):
        assert manager.restore("../..") is False
        assert manager.restore("") is False

    def test_refuses_non_restorable(self, manager, agent_dir, project, caplog):
        checkpoint = manager.create("cp")
        metadata = agent_dir / "checkpoints" / checkpoint.id / CHECKPOINT_METADATA_NAME
        data = json.loads(metadata.read_text())
        data["can_restore"] = False
        metadata.write_text(json.dumps(data))
        (project / "src" / "index.ts").write_text("edited")

        with caplog.at_level(logging.ERROR):
            assert manager.restore(checkpoint.id) is False

        assert checkpoint.id in caplog.text
        assert (project / "src" / "index.ts").read_text() == "edited"

    def test_corrupt_metadata(self, manager, agent_dir):
        checkpoint = manager.create("cp")
        (agent_dir / "checkpoints" / checkpoint.id / CHECKPOINT_METADATA_NAME).write_text("{")

        assert manager.restore(checkpoint.id) is False

    def test_undecodable_metadata(self, manager, agent_dir, caplog):
        checkpoint = manager.create("cp")
        metadata = agent_dir / "checkpoints" / checkpoint.id / CHECKPOINT_METADATA_NAME
        metadata.write_bytes(b"\xff\xfe")

        with caplog.at_level(logging.ERROR):
            assert manager.restore(checkpoint.id) is False

        assert "cannot be read" in caplog.text
        assert manager.get(checkpoint.id) is None

    def test_skips_entries_outside_project(self, manager, agent_dir, project):
        checkpoint = manager.create("cp")
        checkpoint_dir = agent_dir / "checkpoints" / checkpoint.id
        data = json.loads((checkpoint_dir / CHECKPOINT_METADATA_NAME).read_text())
        data["files_snapshot"].append(
            {"path": "../escape.txt", "hash": "0" * 16, "size": 4, "backed_up": True}
        )
        (checkpoint_dir / CHECKPOINT_METADATA_NAME).write_text(json.dumps(data))
        (checkpoint_dir.parent / "escape.txt").write_text("evil")

        assert manager.restore(checkpoint.id) is True
        assert not (project.parent / "escape.txt").exists()

    def test_not_backed_up_files_are_skipped(self, manager, agent_dir, project):
        checkpoint = manager.create("cp")
        checkpoint_dir = agent_dir / "checkpoints" / checkpoint.id
        data = json.loads((checkpoint_dir / CHECKPOINT_METADATA_NAME).read_text())
        for entry in data["files_snapshot"]:
            if entry["path"] == "package.json":
                entry["backed_up"] = False
        (checkpoint_dir / CHECKPOINT_METADATA_NAME).write_text(json.dumps(data))
        (project / "package.json").write_text("{}")

        assert manager.restore(checkpoint.id)
        assert (project / "package.json").read_text() == "{}"


class TestListAndCleanup:
    """Tests for listing, retention and queries."""

    def test_list_newest_first(self, manager):
        ids = [manager.create(f"cp {i}").id for i in range(3)]

        assert [c.id for c in manager.list()] == list(reversed(ids))
        assert manager.latest().id == ids[-1]

    def test_list_empty(self, manager):
        assert manager.list() == []
        assert manager.latest() is None

    def test_list_skips_corrupt(self, manager, agent_dir):
        good = manager.create("good")
        (agent_dir / "checkpoints" / "ckpt-broken").mkdir()
        (agent_dir / "checkpoints" / "ckpt-broken" / CHECKPOINT_METADATA_NAME).write_text("nope")
        (agent_dir / "checkpoints" / "ckpt-empty").mkdir()

        assert [c.id for c in manager.list()] == [good.id]

    def test_list_skips_undecodable(self, manager, agent_dir):
        good = manager.create("good")
        (agent_dir / "checkpoints" / "ckpt-binary").mkdir()
        (agent_dir / "checkpoints" / "ckpt-binary" / CHECKPOINT_METADATA_NAME).write_bytes(b"\xff\xfe")

        assert [c.id for c in manager.list()] == [good.id]
        assert manager.latest().id == good.id

    def test_cleanup_keeps_newest(self, manager, agent_dir):
        ids = [manager.create(f"cp {i}").id for i in range(5)]

        deleted = manager.cleanup(keep_count=2)

        assert deleted == ids[:3]
        assert [c.id for c in manager.list()] == [ids[4], ids[3]]
        for checkpoint_id in deleted:
            assert not (agent_dir / "checkpoints" / checkpoint_id).exists()

    def test_cleanup_defaults_to_config(self, project, agent_dir):
        manager = CheckpointManager(agent_dir, project, CheckpointConfig(max_checkpoints=1))
        for i in range(3):
            manager.create(f"cp {i}")

        manager.cleanup()

        assert len(manager.list()) == 1

    def test_cleanup_noop_under_limit(self, manager):
        manager.create("only")

        assert manager.cleanup(keep_count=5) == []
        assert len(manager.list()) == 1

    def test_cleanup_rejects_negative(self, manager):
        with pytest.raises(ValueError):
            manager.cleanup(keep_count=-1)

    def test_cleanup_removes_leftover_directories(self, manager, agent_dir):
        good = manager.create("good")
        checkpoints_dir = agent_dir / "checkpoints"

        stale = checkpoints_dir / "ckpt-stale"
        (stale / "src").mkdir(parents=True)
        (stale / "src" / "index.ts").write_text("partial")
        old = time.time() - ORPHAN_GRACE_SECONDS - 60
        os.utime(stale, (old, old))

        corrupt = checkpoints_dir / "ckpt-corrupt"
        corrupt.mkdir()
        (corrupt / CHECKPOINT_METADATA_NAME).write_bytes(b"\xff\xfe")

        in_progress = checkpoints_dir / "ckpt-in-progress"
        in_progress.mkdir()

        assert manager.cleanup() == []

        assert not stale.exists()
        assert not corrupt.exists()
        assert in_progress.exists()
        assert [c.id for c in manager.list()] == [good.id]

    def test_changed_files(self, manager, project):
        checkpoint = manager.create("cp")

        assert manager.changed_files(checkpoint.id) == []

        (project / "src" / "index.ts").write_text("edited")
        (project / "src" / "app.py").unlink()

        assert sorted(manager.changed_files(checkpoint.id)) == ["src/app.py", "src/index.ts"]

    def test_changed_files_unknown_checkpoint(self, manager):
        assert manager.changed_files("ckpt-nope") is None


@pytest.mark.parametrize(
    "completed,expected",
    [(0, False), (1, False), (3, True), (4, False), (6, True)],
)
def test_should_checkpoint(project_root, agent_dir, completed, expected):
    manager = CheckpointManager(agent_dir, project_root)

    assert manager.should_checkpoint(completed) is expected


def test_should_checkpoint_disabled(project_root, agent_dir):
    manager = CheckpointManager(agent_dir, project_root, CheckpointConfig(auto_save=False))

    assert manager.should_checkpoint(3) is False


def test_from_config_respects_feature_flag(project_root):
    config = HarnessConfig(features=FeatureFlags(enable_file_checkpointing=False))

    manager = CheckpointManager.from_config(config, project_root)

    assert manager.agent_dir == project_root.resolve() / ".agent"
    assert manager.should_checkpoint(3) is False
