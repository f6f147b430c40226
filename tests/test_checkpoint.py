"""Tests for checkpoint stores."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import make_rules
from wrc.errors import CheckpointError
from wrc.scan.checkpoint import (
    CHECKPOINT_FILENAME,
    JsonFileCheckpointStore,
    MemoryCheckpointStore,
    load_checkpoint,
    save_checkpoint,
)
from wrc.scan.scheduler import make_batches
from wrc.schemas.scan import ScanResult

URL = "https://example.com"


def _results() -> list[ScanResult]:
    return [ScanResult(rule_id="r1", rule_title="Rule 1", passed=True, reason="ok")]


class TestMemoryStore:
    def test_empty(self) -> None:
        assert load_checkpoint(MemoryCheckpointStore()) is None

    def test_values_are_copied(self) -> None:
        store = MemoryCheckpointStore()
        values = {"scanUrl": URL, "scanBatches": [], "scanResults": []}
        store.write(values)
        values["scanUrl"] = "changed"
        assert store.read()["scanUrl"] == URL


class TestJsonFileStore:
    def test_round_trip(self, tmp_path: Path) -> None:
        store = JsonFileCheckpointStore(tmp_path / "ckpt")
        batches = make_batches(URL, make_rules(4), 2, timestamp=5)
        save_checkpoint(store, URL, batches[1:], _results())

        raw = json.loads((tmp_path / "ckpt" / CHECKPOINT_FILENAME).read_text())
        assert set(raw) == {"scanUrl", "scanBatches", "scanResults"}
        assert raw["scanBatches"][0]["batchIndex"] == 1
        assert raw["scanResults"][0]["ruleId"] == "r1"

        state = load_checkpoint(JsonFileCheckpointStore(tmp_path / "ckpt"))
        assert state.url == URL
        assert state.pending
        assert state.batches == batches[1:]
        assert state.results == _results()

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        store = JsonFileCheckpointStore(tmp_path)
        save_checkpoint(store, URL, [], _results())
        save_checkpoint(store, URL, [], _results())
        assert [p.name for p in tmp_path.iterdir()] == [CHECKPOINT_FILENAME]

    def test_clear(self, tmp_path: Path) -> None:
        store = JsonFileCheckpointStore(tmp_path)
        save_checkpoint(store, URL, [], [])
        store.clear()
        store.clear()
        assert load_checkpoint(store) is None

    def test_corrupt_file(self, tmp_path: Path) -> None:
        (tmp_path / CHECKPOINT_FILENAME).write_text("{not json")
        with pytest.raises(CheckpointError):
            load_checkpoint(JsonFileCheckpointStore(tmp_path))

    def test_invalid_shape(self, tmp_path: Path) -> None:
        (tmp_path / CHECKPOINT_FILENAME).write_text(json.dumps({"scanBatches": [{"nope": 1}]}))
        with pytest.raises(CheckpointError, match="corrupt"):
            load_checkpoint(JsonFileCheckpointStore(tmp_path))
