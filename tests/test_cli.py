"""Tests for the Typer CLI commands that don't need a browser."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from conftest import make_rules
from wrc.cli import app
from wrc.scan.checkpoint import JsonFileCheckpointStore, save_checkpoint
from wrc.scan.scheduler import make_batches

runner = CliRunner()


def _rules_file(tmp_path: Path, rules: list[dict]) -> Path:
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(rules))
    return path


class TestValidate:
    def test_valid(self, tmp_path: Path, tmp_config: Path) -> None:
        rules = _rules_file(tmp_path, [r.model_dump() for r in make_rules(2)])
        result = runner.invoke(app, ["validate", "--rules", str(rules), "--config", str(tmp_config)])
        assert result.exit_code == 0
        assert "Inputs are valid" in result.output
        assert "https://example.com" in result.output

    def test_invalid_rule(self, tmp_path: Path) -> None:
        rules = _rules_file(tmp_path, [{"id": "a", "title": "", "description": "d"}])
        result = runner.invoke(app, ["validate", "--rules", str(rules)])
        assert result.exit_code == 1
        assert "Validation failed" in result.output

    def test_bad_url(self, tmp_path: Path) -> None:
        rules = _rules_file(tmp_path, [r.model_dump() for r in make_rules(1)])
        result = runner.invoke(app, ["validate", "--rules", str(rules), "--url", "ftp://example.com"])
        assert result.exit_code == 1

    def test_missing_rules(self) -> None:
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 1


class TestStatus:
    def test_no_pending(self, tmp_config: Path) -> None:
        result = runner.invoke(app, ["status", "--config", str(tmp_config)])
        assert result.exit_code == 0
        assert "No pending scan" in result.output

    def test_pending(self, tmp_path: Path, tmp_config: Path) -> None:
        batches = make_batches("https://example.com", make_rules(6), 3, timestamp=1)
        save_checkpoint(JsonFileCheckpointStore(tmp_path / "ckpt"), "https://example.com", batches[1:], [])

        result = runner.invoke(app, ["status", "--config", str(tmp_config)])
        assert result.exit_code == 0
        assert "Pending scan" in result.output
        assert "2/2" in result.output


class TestScan:
    def test_requires_api_key(self, tmp_path: Path, tmp_config: Path, monkeypatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        rules = _rules_file(tmp_path, [r.model_dump() for r in make_rules(1)])
        result = runner.invoke(app, ["scan", "--rules", str(rules), "--config", str(tmp_config)])
        assert result.exit_code == 1
        assert "No API key" in result.output
