"""Reduce a PageContext to a bounded text context for the judge.

All truncation is from the tail; nothing is reordered.
"""

from __future__ import annotations

from wrc.schemas.scan import PageContext

VISIBLE_TEXT_LIMIT = 4_000
CONTEXT_LIMIT = 6_000
JUDGE_CONTEXT_LIMIT = 3_000

TEXT_MARKER = "..."
CONTEXT_MARKER = "... [truncated]"
SIGNALS_HEADER = "\n\n--- KEY ELEMENTS ---\n"


def summarize(
    context: PageContext,
    *,
    visible_text_limit: int = VISIBLE_TEXT_LIMIT,
    context_limit: int = CONTEXT_LIMIT,
) -> str:
    """Visible text (capped) followed by the key-elements block, capped overall."""
    text = context.visible_text
    if len(text) > visible_text_limit:
        text = text[:visible_text_limit] + TEXT_MARKER

    summary = text + SIGNALS_HEADER + context.structured_signals
    if len(summary) > context_limit:
        summary = summary[:context_limit] + CONTEXT_MARKER
    return summary


def slice_for_judging(summary: str, limit: int = JUDGE_CONTEXT_LIMIT) -> str:
    """The slice of the summary sent with each judging call."""
    return summary[:limit]
