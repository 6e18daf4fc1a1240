"""Unit tests for persistence primitives."""

import json
from unittest.mock import patch

import pytest

from agent_harness.persistence import (
    PersistenceError,
    append_line,
    atomic_write_json,
    atomic_write_text,
    read_json,
)


class TestAtomicWrite:
    def test_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "a" / "b" / "state.json"

        atomic_write_json(path, {"x": 1})

        assert json.loads(path.read_text()) == {"x": 1}

    def test_replaces_existing_content(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("old")

        atomic_write_text(path, "new")

        assert path.read_text() == "new"

    def test_failed_rename_keeps_original(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("original")

        with patch("agent_harness.persistence.os.replace", side_effect=OSError("boom")):
            with pytest.raises(PersistenceError):
                atomic_write_text(path, "replacement")

        assert path.read_text() == "original"
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


class TestReadJson:
    def test_missing_file(self, tmp_path):
        assert read_json(tmp_path / "nope.json", default=[]) == []

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("  \n")

        assert read_json(path, default={}) == {}

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"a": ')

        assert read_json(path) is None

    def test_undecodable_file(self, tmp_path):
        path = tmp_path / "binary.json"
        path.write_bytes(b"\xff\xfe")

        assert read_json(path, default=[]) == []

    def test_valid_file(self, tmp_path):
        path = tmp_path / "ok.json"
        path.write_text('[1, 2]')

        assert read_json(path) == [1, 2]


class TestAppendLine:
    def test_appends_with_newline(self, tmp_path):
        path = tmp_path / "logs" / "events.jsonl"

        append_line(path, '{"n": 1}')
        append_line(path, '{"n": 2}\n')

        assert path.read_text().splitlines() == ['{"n": 1}', '{"n": 2}']

    def test_many_appends_stay_line_aligned(self, tmp_path):
        path = tmp_path / "events.jsonl"

        for i in range(50):
            append_line(path, json.dumps({"n": i, "pad": "x" * 200}))

        lines = path.read_text().splitlines()
        assert [json.loads(line)["n"] for line in lines] == list(range(50))

    def test_unwritable_target_raises_oserror(self, tmp_path):
        target = tmp_path / "events.jsonl"
        target.mkdir()

        with pytest.raises(OSError):
            append_line(target, "x")
