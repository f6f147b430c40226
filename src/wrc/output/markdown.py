"""Markdown report builder — renders AggregatedResults to a Markdown document."""

from __future__ import annotations

from datetime import datetime, timezone

from wrc.schemas.scan import AggregatedResults


def render_markdown_report(
    url: str,
    aggregated: AggregatedResults,
    *,
    generated_at: str | None = None,
) -> str:
    """Render scan results for ``url`` into a Markdown string."""
    generated_at = generated_at or datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    sections: list[str] = []

    sections.append(f"# Website Rule Check: {url}\n")
    sections.append(f"*Generated: {generated_at}*\n")

    # Summary
    sections.append("## Summary\n")
    sections.append(f"- **Rules checked:** {aggregated.total}")
    sections.append(f"- **Passed:** {aggregated.passed}")
    sections.append(f"- **Failed:** {aggregated.failed}")
    if aggregated.total:
        rate = round(100 * aggregated.passed / aggregated.total)
        sections.append(f"- **Pass rate:** {rate}%")
    sections.append("")

    if not aggregated.results:
        sections.append("*No rules were checked.*\n")
        return "\n".join(sections)

    # Results table
    sections.append("## Results\n")
    sections.append("| Rule | Title | Result | Reason |")
    sections.append("|------|-------|--------|--------|")
    for r in aggregated.results:
        status = "PASS" if r.passed else "FAIL"
        sections.append(
            f"| {_cell(r.rule_id)} | {_cell(r.rule_title)} | {status} | {_cell(r.reason)} |"
        )
    sections.append("")

    # Failed rule details
    failures = [r for r in aggregated.results if not r.passed]
    if failures:
        sections.append("## Failed Rules\n")
        for r in failures:
            sections.append(f"### {r.rule_title} (`{r.rule_id}`)\n")
            sections.append(f"{r.reason}\n")

    return "\n".join(sections)


def _cell(text: str) -> str:
    """Escape pipes and flatten newlines so text fits in a table cell."""
    return text.replace("|", "\\|").replace("\n", " ").strip()
