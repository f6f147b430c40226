"""Tests for page context summarization."""

from __future__ import annotations

from wrc.scan.summarizer import (
    CONTEXT_MARKER,
    SIGNALS_HEADER,
    TEXT_MARKER,
    slice_for_judging,
    summarize,
)
from wrc.schemas.scan import PageContext


def _ctx(text: str, signals: str = "Buttons/Links: Buy") -> PageContext:
    return PageContext(url="https://example.com", visible_text=text, structured_signals=signals)


def test_short_text_untouched() -> None:
    summary = summarize(_ctx("Hello world"))
    assert summary == "Hello world" + SIGNALS_HEADER + "Buttons/Links: Buy"


def test_visible_text_truncated_from_tail() -> None:
    summary = summarize(_ctx("a" * 4001 + "TAIL"))
    text_part = summary.split(SIGNALS_HEADER)[0]
    assert text_part == "a" * 4000 + TEXT_MARKER


def test_text_at_limit_not_marked() -> None:
    summary = summarize(_ctx("a" * 4000))
    assert summary.startswith("a" * 4000 + SIGNALS_HEADER)


def test_whole_context_capped() -> None:
    summary = summarize(_ctx("t" * 3000, signals="s" * 5000))
    assert len(summary) == 6000 + len(CONTEXT_MARKER)
    assert summary.endswith(CONTEXT_MARKER)
    assert summary.startswith("t" * 3000 + SIGNALS_HEADER)


def test_custom_limits() -> None:
    summary = summarize(_ctx("abcdef", signals=""), visible_text_limit=3, context_limit=100)
    assert summary == "abc" + TEXT_MARKER + SIGNALS_HEADER


def test_slice_for_judging() -> None:
    assert slice_for_judging("x" * 5000) == "x" * 3000
    assert slice_for_judging("short", 3000) == "short"
