"""Tests for the Rich scan progress display."""

from __future__ import annotations

from wrc.shared.progress import ScanProgress


def _description(progress: ScanProgress) -> str:
    return progress._progress.tasks[0].description


class TestScanProgress:
    def test_status_then_finish(self) -> None:
        with ScanProgress("Resume") as progress:
            progress.status("Batch 1/2: judging 3 rules")
            assert "Batch 1/2: judging 3 rules" in _description(progress)
            progress.event("Batch 1/2 done", style="green")
            progress.finish("3/3 passed")
            assert _description(progress) == "[green]✓ Resume: 3/3 passed[/]"

    def test_fail(self) -> None:
        with ScanProgress() as progress:
            progress.fail("nothing to resume")
            assert _description(progress) == "[red]✗ Scan: nothing to resume[/]"

    def test_status_before_enter_is_ignored(self) -> None:
        progress = ScanProgress()
        progress.status("ignored")
        progress.finish("ignored")
