"""Rich progress display for scans."""

from __future__ import annotations

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

console = Console()


class ScanProgress:
    """Tracks a scan's batches using Rich.

    The scheduler reports through plain string callbacks; ``status`` and
    ``event`` are shaped to be passed straight in as ``on_progress`` and
    ``on_event``.
    """

    def __init__(self, label: str = "Scan") -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
        )
        self._label = label
        self._task_id: int | None = None

    def __enter__(self) -> "ScanProgress":
        self._progress.__enter__()
        self._task_id = self._progress.add_task(f"[cyan]{self._label}[/]", total=None)
        return self

    def __exit__(self, *args: object) -> None:
        self._progress.__exit__(*args)

    def status(self, message: str) -> None:
        """Replace the spinner text."""
        if self._task_id is not None:
            self._progress.update(
                self._task_id,
                description=f"[cyan]{self._label}[/] — {message}",
            )

    def finish(self, summary: str) -> None:
        if self._task_id is not None:
            self._progress.update(
                self._task_id,
                description=f"[green]✓ {self._label}: {summary}[/]",
                completed=True,
            )

    def fail(self, error: str) -> None:
        if self._task_id is not None:
            self._progress.update(
                self._task_id,
                description=f"[red]✗ {self._label}: {error}[/]",
                completed=True,
            )

    def event(self, message: str, style: str = "dim") -> None:
        """Print a persistent log line above the spinner (not overwritten)."""
        self._progress.console.print(f"  [{style}]{self._label}:[/] {message}")
