"""Checkpoint persistence for resumable scans.

A checkpoint is the triple ``(scanUrl, scanBatches, scanResults)``: the
batches still to run and everything produced so far.  Stores replace the
whole mapping in one write, so a reader never sees results from one batch
boundary next to the queue from another.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wrc.errors import CheckpointError
from wrc.schemas.scan import Batch, ScanResult

logger = logging.getLogger(__name__)

SCAN_URL_KEY = "scanUrl"
SCAN_BATCHES_KEY = "scanBatches"
SCAN_RESULTS_KEY = "scanResults"

CHECKPOINT_FILENAME = "checkpoint.json"


class CheckpointState(BaseModel):
    """A resumable snapshot of a scan."""

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(default="", alias=SCAN_URL_KEY)
    batches: list[Batch] = Field(default_factory=list, alias=SCAN_BATCHES_KEY)
    results: list[ScanResult] = Field(default_factory=list, alias=SCAN_RESULTS_KEY)

    @property
    def pending(self) -> bool:
        return bool(self.batches)

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CheckpointStore(Protocol):
    """Key-value store holding one checkpoint mapping."""

    def read(self) -> dict[str, Any]: ...

    def write(self, values: dict[str, Any]) -> None: ...

    def clear(self) -> None: ...


class MemoryCheckpointStore:
    """In-process store.  Values are JSON round-tripped so callers can't alias them."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = json.loads(json.dumps(initial or {}))
        self.writes = 0

    def read(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._data))

    def write(self, values: dict[str, Any]) -> None:
        self._data = json.loads(json.dumps(values))
        self.writes += 1

    def clear(self) -> None:
        self._data = {}


class JsonFileCheckpointStore:
    """Stores the checkpoint as one JSON file, replaced atomically on write."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.path = self.directory / CHECKPOINT_FILENAME

    def read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise CheckpointError(f"Could not read checkpoint {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise CheckpointError(f"Checkpoint {self.path} is not a JSON object")
        return data

    def write(self, values: dict[str, Any]) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".checkpoint-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as fh:
                    json.dump(values, fh, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CheckpointError(f"Could not write checkpoint {self.path}: {exc}") from exc

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise CheckpointError(f"Could not clear checkpoint {self.path}: {exc}") from exc


def load_checkpoint(store: CheckpointStore) -> CheckpointState | None:
    """Return the stored checkpoint, or None if nothing is stored."""
    data = store.read()
    if not data:
        return None
    try:
        return CheckpointState.model_validate(data)
    except ValidationError as exc:
        raise CheckpointError(f"Checkpoint is corrupt: {exc}") from exc


def save_checkpoint(
    store: CheckpointStore,
    url: str,
    batches: list[Batch],
    results: list[ScanResult],
) -> None:
    state = CheckpointState(url=url, batches=batches, results=results)
    store.write(state.to_store())
    logger.debug(
        "Checkpoint saved: %d batches remaining, %d results", len(batches), len(results),
    )
