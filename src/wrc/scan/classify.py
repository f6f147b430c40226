"""Rule category classification.

These are approximate keyword classifiers, not parsers.  Each category has
its own strategy function so a heuristic can be swapped or extended without
touching the judge; the judge only uses the resulting tags to point the
model at the relevant part of the key-elements block.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Callable, Iterable

from wrc.schemas.scan import Rule


class RuleCategory(str, Enum):
    COLOR = "color"
    LAZY_LOADING = "lazy_loading"
    BREADCRUMB = "breadcrumb"
    CALL_TO_ACTION = "call_to_action"
    HEADING = "heading"
    GENERAL = "general"


RuleClassifier = Callable[[str], bool]
"""Signature: ("title description" text) -> matches?"""


def _keywords(*patterns: str) -> RuleClassifier:
    regex = re.compile("|".join(patterns), re.IGNORECASE)
    return lambda text: bool(regex.search(text))


is_color_rule = _keywords(
    r"\bcolou?rs?\b", r"\bblack\b", r"#[0-9a-f]{3,6}\b", r"\bcontrast", r"\bpalette", r"\bhex\b",
)
is_lazy_loading_rule = _keywords(r"\blazy", r"\bbelow[- ]the[- ]fold", r"\bloading=")
is_breadcrumb_rule = _keywords(r"\bbreadcrumb")
is_call_to_action_rule = _keywords(
    r"\bcta\b", r"\bcall[- ]to[- ]action", r"\bbuttons?\b",
    r"\badd to (?:cart|bag|basket)", r"\bbuy now",
)
is_heading_rule = _keywords(r"\bheadings?\b", r"\bh[1-3]\b", r"\btitle tag")


DEFAULT_CLASSIFIERS: dict[RuleCategory, RuleClassifier] = {
    RuleCategory.COLOR: is_color_rule,
    RuleCategory.LAZY_LOADING: is_lazy_loading_rule,
    RuleCategory.BREADCRUMB: is_breadcrumb_rule,
    RuleCategory.CALL_TO_ACTION: is_call_to_action_rule,
    RuleCategory.HEADING: is_heading_rule,
}


def classify_rule(
    rule: Rule,
    classifiers: dict[RuleCategory, RuleClassifier] | None = None,
) -> frozenset[RuleCategory]:
    """Return the categories a rule falls into; ``{GENERAL}`` if none match."""
    text = f"{rule.title} {rule.description}"
    active = DEFAULT_CLASSIFIERS if classifiers is None else classifiers
    tags = frozenset(cat for cat, matches in active.items() if matches(text))
    return tags or frozenset({RuleCategory.GENERAL})


# Which line of the key-elements block answers each category
FOCUS_HINTS: dict[RuleCategory, str] = {
    RuleCategory.COLOR: (
        'Use the "Colors found" and "Pure black (#000000) detected" lines; '
        "they come from computed styles."
    ),
    RuleCategory.LAZY_LOADING: (
        'Use the "Images/Videos (below-fold)" and "Lazy loading status" lines. '
        "Above-the-fold media are expected to load eagerly."
    ),
    RuleCategory.BREADCRUMB: 'Use the "Breadcrumbs" line; "Not found" means none was detected.',
    RuleCategory.CALL_TO_ACTION: 'Use the "Buttons/Links" line to find calls to action.',
    RuleCategory.HEADING: 'Use the "Headings" line (h1-h3 text).',
}


def focus_hints(categories: Iterable[RuleCategory]) -> list[str]:
    """Hints in a stable order for the given categories."""
    chosen = set(categories)
    return [hint for cat, hint in FOCUS_HINTS.items() if cat in chosen]
