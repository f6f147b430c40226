"""Typer CLI — ``wrc scan``, ``wrc resume``, ``wrc status`` and ``wrc validate``."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from wrc.config import load_config, load_rules
from wrc.errors import ScanError
from wrc.schemas.config import ScanConfig
from wrc.schemas.scan import AggregatedResults

# Load .env file from project root (if it exists)
load_dotenv()

app = typer.Typer(
    name="wrc",
    help="Website Rule Checker — render a page and judge it against natural-language rules.",
    no_args_is_help=True,
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every HTTP request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_config_or_exit(config: Path | None) -> ScanConfig:
    try:
        return load_config(config)
    except Exception as exc:
        console.print(f"[red]Config validation failed:[/] {exc}")
        raise typer.Exit(code=1)


def _make_client(cfg: ScanConfig, *, dry_run: bool):
    if dry_run:
        from wrc.shared.llm_client import DryRunClient
        return DryRunClient()

    if not (os.environ.get("OPENROUTER_API_KEY") or os.environ.get("OPENAI_API_KEY")):
        console.print(
            "[red]No API key found.[/] Set OPENROUTER_API_KEY or OPENAI_API_KEY "
            "(a .env file in the working directory is loaded automatically)."
        )
        raise typer.Exit(code=1)

    from wrc.shared.llm_client import LLMClient
    return LLMClient(model=cfg.model, openrouter_model=cfg.openrouter_model, seed=cfg.seed)


@app.command()
def validate(
    rules: Path = typer.Option(None, "--rules", "-r", help="Path to a JSON or YAML rules file."),
    config: Path = typer.Option(None, "--config", "-c", help="Path to scan-config.yml"),
    url: str = typer.Option(None, "--url", "-u", help="URL to validate alongside the rules."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Validate a config file, a rules file and a URL without scanning."""
    from wrc.scan.service import validate_request

    _setup_logging(verbose)
    cfg = _load_config_or_exit(config)

    rules_path = rules or (Path(cfg.rules_file) if cfg.rules_file else None)
    if rules_path is None:
        console.print("[red]No rules file given.[/] Pass --rules or set rules_file in the config.")
        raise typer.Exit(code=1)

    try:
        loaded = load_rules(rules_path)
        target = url or cfg.target_url
        if target:
            request = validate_request(target, [r.model_dump() for r in loaded])
            target = request.url
    except Exception as exc:
        console.print(f"[red]Validation failed:[/] {exc}")
        raise typer.Exit(code=1)

    console.print("[green]Inputs are valid![/]\n")
    console.print(f"  Target URL:  {target or '(none)'}")
    console.print(f"  Rules:       {len(loaded)}")
    for r in loaded:
        console.print(f"    - {r.id}: {r.title}")
    console.print(f"  Model:       {cfg.model} (OpenRouter: {cfg.openrouter_model})")
    console.print(f"  Batch size:  {cfg.batch_size}")
    console.print(f"  Interval:    {cfg.min_request_interval}s between judging calls")
    console.print(f"  Checkpoint:  {cfg.checkpoint_dir}")
    console.print(f"  Output dir:  {cfg.output_directory}")


@app.command()
def scan(
    url: str = typer.Option(None, "--url", "-u", help="Page to check (defaults to target_url in the config)."),
    rules: Path = typer.Option(None, "--rules", "-r", help="Path to a JSON or YAML rules file."),
    config: Path = typer.Option(None, "--config", "-c", help="Path to scan-config.yml"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Render the page but make no API calls."),
    fresh: bool = typer.Option(False, "--fresh", help="Discard a pending checkpoint and start over."),
) -> None:
    """Scan a page against a rules file."""
    _setup_logging(verbose)
    cfg = _load_config_or_exit(config)

    target = url or cfg.target_url
    rules_path = rules or (Path(cfg.rules_file) if cfg.rules_file else None)
    if not target or rules_path is None:
        console.print("[red]Both a URL and a rules file are required[/] (--url/--rules or the config).")
        raise typer.Exit(code=1)

    try:
        loaded = load_rules(rules_path)
    except Exception as exc:
        console.print(f"[red]Could not load rules:[/] {exc}")
        raise typer.Exit(code=1)

    client = _make_client(cfg, dry_run=dry_run)
    if dry_run:
        console.print("[yellow]DRY-RUN mode — no API calls will be made.[/]\n")

    console.print(f"[bold]Scanning:[/] {target} ({len(loaded)} rules)\n")
    asyncio.run(_run_scan(cfg, client, target, loaded, fresh=fresh))


@app.command()
def resume(
    config: Path = typer.Option(None, "--config", "-c", help="Path to scan-config.yml"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Make no API calls."),
) -> None:
    """Continue a scan that was interrupted, from its next unprocessed batch."""
    _setup_logging(verbose)
    cfg = _load_config_or_exit(config)
    client = _make_client(cfg, dry_run=dry_run)
    asyncio.run(_run_resume(cfg, client))


@app.command()
def status(
    config: Path = typer.Option(None, "--config", "-c", help="Path to scan-config.yml"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Show the pending checkpoint, if any."""
    from wrc.scan.checkpoint import JsonFileCheckpointStore, load_checkpoint

    _setup_logging(verbose)
    cfg = _load_config_or_exit(config)

    try:
        state = load_checkpoint(JsonFileCheckpointStore(cfg.checkpoint_dir))
    except ScanError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1)

    if state is None or not state.pending:
        console.print("No pending scan.")
        return

    first = state.batches[0]
    console.print(f"[bold]Pending scan:[/] {state.url}")
    console.print(f"  Next batch:      {first.batch_index + 1}/{first.total_batches}")
    console.print(f"  Batches left:    {len(state.batches)}")
    console.print(f"  Rules left:      {sum(len(b.rules) for b in state.batches)}")
    console.print(f"  Results so far:  {len(state.results)}")
    console.print("\nRun [bold]wrc resume[/] to continue or [bold]wrc scan --fresh[/] to start over.")


async def _run_scan(cfg: ScanConfig, client, url: str, rules: list, *, fresh: bool) -> None:
    from wrc.scan.service import ScanService
    from wrc.shared.progress import ScanProgress

    with ScanProgress() as progress:
        service = ScanService(
            cfg, client, on_progress=progress.status, on_event=progress.event,
        )
        try:
            pending = service.pending()
        except ScanError as exc:
            progress.fail(str(exc))
            raise typer.Exit(code=1)
        if pending is not None:
            if not fresh:
                progress.fail("a previous scan is still pending")
                console.print(
                    f"[yellow]A scan of {pending.url} has {len(pending.batches)} batch(es) left.[/] "
                    "Run [bold]wrc resume[/] or pass [bold]--fresh[/] to discard it."
                )
                raise typer.Exit(code=1)
            service.store.clear()

        try:
            aggregated = await service.scan(url, rules)
        except ScanError as exc:
            progress.fail(str(exc))
            console.print(f"[red]Scan failed:[/] {exc}")
            raise typer.Exit(code=1)
        progress.finish(f"{aggregated.passed}/{aggregated.total} passed")

    _write_outputs(cfg, url, aggregated)


async def _run_resume(cfg: ScanConfig, client) -> None:
    from wrc.scan.service import ScanService
    from wrc.shared.progress import ScanProgress

    with ScanProgress("Resume") as progress:
        service = ScanService(
            cfg, client, on_progress=progress.status, on_event=progress.event,
        )
        try:
            pending = service.pending()
            if pending is None:
                progress.fail("nothing to resume")
                raise typer.Exit(code=1)
            url = pending.url
            aggregated = await service.resume()
        except ScanError as exc:
            progress.fail(str(exc))
            console.print(f"[red]Resume failed:[/] {exc}")
            raise typer.Exit(code=1)
        progress.finish(f"{aggregated.passed}/{aggregated.total} passed")

    _write_outputs(cfg, url, aggregated)


def _write_outputs(cfg: ScanConfig, url: str, aggregated: AggregatedResults) -> None:
    from wrc.output.markdown import render_markdown_report

    out_dir = Path(cfg.output_directory)
    out_dir.mkdir(parents=True, exist_ok=True)

    json_path = out_dir / "results.json"
    json_path.write_text(aggregated.model_dump_json(by_alias=True, indent=2))
    console.print(f"\n[green]Results written to:[/] {json_path}")

    md_path = out_dir / "scan-report.md"
    md_path.write_text(render_markdown_report(url, aggregated))
    console.print(f"[green]Markdown report written to:[/] {md_path}")

    table = Table(title=f"Results for {url}")
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Result", justify="center")
    table.add_column("Reason", overflow="fold")
    for r in aggregated.results:
        verdict = "[green]PASS[/]" if r.passed else "[red]FAIL[/]"
        table.add_row(r.rule_id, r.rule_title, verdict, r.reason)
    console.print(table)
    console.print(
        f"\n[bold]Total:[/] {aggregated.total}  "
        f"[green]Passed:[/] {aggregated.passed}  [red]Failed:[/] {aggregated.failed}"
    )
