"""Page signal extraction — in-page probes plus the Python reducers that shape them.

The JavaScript probes return raw, unsorted data.  Everything that decides
what ends up in front of the judge (dedup, sorting, caps, breadcrumb
heuristics, palette reduction, lazy-load accounting) lives here in Python so
it is deterministic and testable without a browser.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Iterable

from wrc.schemas.scan import ColorSample, LazyLoadReport, PageSignals

MAX_INTERACTIVE = 30
MAX_HEADINGS = 15
MAX_PALETTE = 15
MAX_LAZY_EXAMPLES = 5
MAX_EXAMPLE_SRC = 50
BREADCRUMB_MAX_LEN = 100
BREADCRUMB_SCAN_CHARS = 2000


# ----------------------------------------------------------------------
# In-page probes
# ----------------------------------------------------------------------

VISIBLE_TEXT_JS = "() => document.body ? (document.body.innerText || document.body.textContent || '') : ''"

INTERACTIVE_JS = r"""() => {
    return [...document.querySelectorAll('button, a[href], [role="button"]')].map(el =>
        (el.textContent || '').trim()
        || el.getAttribute('aria-label')
        || el.getAttribute('title')
        || el.getAttribute('href')
        || ''
    );
}"""

HEADINGS_JS = r"""() => {
    return [...document.querySelectorAll('h1, h2, h3')].map(h => (h.textContent || '').trim());
}"""

BREADCRUMB_SELECTORS = [
    '[class*="breadcrumb"]',
    'nav[aria-label*="breadcrumb" i]',
    '.breadcrumb',
    '[itemtype*="BreadcrumbList"]',
    '[role="navigation"][aria-label*="breadcrumb" i]',
    'ol[class*="breadcrumb"]',
    'ul[class*="breadcrumb"]',
]

BREADCRUMB_CANDIDATES_JS = r"""(selectors) => {
    const out = [];
    for (const selector of selectors) {
        let nodes = [];
        try { nodes = [...document.querySelectorAll(selector)]; } catch (e) { continue; }
        for (const node of nodes) {
            const text = (node.textContent || '').replace(/\s+/g, ' ').trim();
            if (text) out.push(text);
        }
    }
    return out;
}"""

COLOR_SAMPLE_JS = r"""() => {
    const els = [
        ...[...document.querySelectorAll('body, h1, h2, h3, p, a, button, [class*="text"], [class*="color"]')].slice(0, 20),
        ...[...document.querySelectorAll('[style*="color"], [style*="background"]')].slice(0, 10),
    ];
    const out = [];
    for (const el of els) {
        try {
            const cs = window.getComputedStyle(el);
            out.push([cs.color || '', cs.backgroundColor || '']);
        } catch (e) {}
    }
    return out;
}"""

MEDIA_JS = r"""() => {
    const fold = window.innerHeight;
    const describe = (el, kind, index) => {
        const src = el.getAttribute('src')
            || el.getAttribute('data-src')
            || (el.querySelector && el.querySelector('source') ? el.querySelector('source').getAttribute('src') : null)
            || `${kind}-${index + 1}`;
        return {
            kind,
            src,
            above_fold: el.getBoundingClientRect().top < fold,
            lazy: el.getAttribute('loading') === 'lazy'
                || el.hasAttribute('data-lazy')
                || el.classList.contains('lazy'),
        };
    };
    return [
        ...[...document.querySelectorAll('img')].map((el, i) => describe(el, 'image', i)),
        ...[...document.querySelectorAll('video')].map((el, i) => describe(el, 'video', i)),
    ];
}"""

IMAGES_SETTLED_JS = r"""async (sample) => {
    const imgs = [...document.querySelectorAll('img')].slice(0, sample);
    await Promise.all(imgs.map(img => img.complete ? null : new Promise(resolve => {
        img.addEventListener('load', resolve, {once: true});
        img.addEventListener('error', resolve, {once: true});
        setTimeout(resolve, 2000);
    })));
    return imgs.length;
}"""

EAGER_LOAD_JS = r"""() => {
    let touched = 0;
    document.querySelectorAll('img[data-src], img[data-lazy], img[lazy], video[data-src]').forEach(el => {
        if (el.dataset.src) el.src = el.dataset.src;
        if (el.dataset.lazy) el.src = el.dataset.lazy;
        el.loading = 'eager';
        touched++;
    });
    return touched;
}"""


# ----------------------------------------------------------------------
# Labels and headings
# ----------------------------------------------------------------------

def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def reduce_labels(raw: Iterable[Any], cap: int) -> list[str]:
    """Deduplicate, sort and cap a list of element labels."""
    seen = {_clean(item) for item in raw if isinstance(item, str)}
    seen.discard("")
    return sorted(seen)[:cap]


# ----------------------------------------------------------------------
# Breadcrumbs
# ----------------------------------------------------------------------

BreadcrumbStrategy = Callable[[list[str], str], str]
"""Signature: (semantic candidates, visible text) -> breadcrumb trail or ""."""

# "\d{1,2}\.\s+" rather than "\d+\.\s*" so prices like 19.99 don't match
_NUMBERED_MULTILINE = re.compile(
    r"(\d{1,2}\.\s+[^\n]+\s*\n\s*\d{1,2}\.\s+[^\n]+(?:\s*\n\s*\d{1,2}\.\s+[^\n]+)*)"
)
_NUMBERED_SINGLE = re.compile(r"(\d{1,2}\.\s+[^\n/]*?\s*/\s*[^\n]+)")
_HOME_TRAIL_PATTERNS = [
    re.compile(r"(\d+\.\s*Home\s*[/>]?\s*[^\n]+)", re.IGNORECASE),
    re.compile(r"(Home\s*[/>›»]\s*[^\n]+)", re.IGNORECASE),
]


def breadcrumb_from_selectors(candidates: list[str], visible_text: str) -> str:
    """Pick the last semantic-selector candidate that looks like a trail."""
    found = ""
    for text in candidates:
        text = _clean(text)
        if "Home" in text or "/" in text or re.search(r"\d+\.", text):
            found = text
    return found


def breadcrumb_from_numbered_text(candidates: list[str], visible_text: str) -> str:
    """Find numbered trails like ``1. Home\\n2. / mens\\n3. / New Arrivals``."""
    match = _NUMBERED_MULTILINE.search(visible_text)
    if match:
        return _clean(match.group(1))
    match = _NUMBERED_SINGLE.search(visible_text)
    if match:
        return _clean(match.group(1))
    return ""


def breadcrumb_from_home_trail(candidates: list[str], visible_text: str) -> str:
    """Find a short ``Home / X / Y`` shaped line near the top of the page."""
    top = visible_text[:BREADCRUMB_SCAN_CHARS]
    for pattern in _HOME_TRAIL_PATTERNS:
        match = pattern.search(top)
        if match and len(match.group(1)) < BREADCRUMB_MAX_LEN:
            return match.group(1).strip()
    return ""


DEFAULT_BREADCRUMB_STRATEGIES: list[BreadcrumbStrategy] = [
    breadcrumb_from_selectors,
    breadcrumb_from_numbered_text,
    breadcrumb_from_home_trail,
]


def detect_breadcrumbs(
    candidates: list[str],
    visible_text: str,
    strategies: Iterable[BreadcrumbStrategy] = DEFAULT_BREADCRUMB_STRATEGIES,
) -> str:
    """Run breadcrumb strategies in order; first non-empty trail wins."""
    for strategy in strategies:
        trail = strategy(candidates, visible_text)
        if trail:
            return trail
    return ""


# ----------------------------------------------------------------------
# Colors
# ----------------------------------------------------------------------

_RGB_RE = re.compile(r"rgba?\(\s*(\d+)[,\s]+(\d+)[,\s]+(\d+)(?:\s*[,/]\s*([\d.]+%?))?\s*\)")
_HEX_RE = re.compile(r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def css_color_to_hex(value: str) -> str | None:
    """Convert a computed CSS color to ``#rrggbb``; None for transparent/unknown."""
    if not value:
        return None
    value = value.strip()
    if value == "transparent":
        return None

    hex_match = _HEX_RE.match(value)
    if hex_match:
        digits = hex_match.group(1).lower()
        if len(digits) == 3:
            digits = "".join(c * 2 for c in digits)
        return f"#{digits}"

    match = _RGB_RE.match(value)
    if not match:
        return None
    alpha = match.group(4)
    if alpha is not None:
        alpha_value = float(alpha.rstrip("%")) / (100 if alpha.endswith("%") else 1)
        if alpha_value == 0:
            return None
    r, g, b = (min(int(match.group(i)), 255) for i in (1, 2, 3))
    return f"#{r:02x}{g:02x}{b:02x}"


def reduce_colors(pairs: Iterable[Any]) -> ColorSample:
    """Reduce (text color, background color) pairs to a palette."""
    palette: list[str] = []
    seen: set[str] = set()
    for pair in pairs:
        if not isinstance(pair, (list, tuple)) or len(pair) < 2:
            continue
        for prefix, raw in (("text", pair[0]), ("bg", pair[1])):
            hex_value = css_color_to_hex(raw) if isinstance(raw, str) else None
            if hex_value is None:
                continue
            entry = f"{prefix}:{hex_value}"
            if entry not in seen:
                seen.add(entry)
                palette.append(entry)

    return ColorSample(
        palette=palette[:MAX_PALETTE],
        has_pure_black=any(entry.endswith("#000000") for entry in palette),
    )


# ----------------------------------------------------------------------
# Lazy loading
# ----------------------------------------------------------------------

def _short_src(src: str) -> str:
    return src[:MAX_EXAMPLE_SRC] + "..." if len(src) > MAX_EXAMPLE_SRC else src


def build_lazy_load_report(media: Iterable[Any]) -> LazyLoadReport:
    """Count below-the-fold media with/without lazy loading.

    Above-the-fold media are skipped: they should load eagerly.
    """
    report = LazyLoadReport()
    for item in media:
        if not isinstance(item, dict) or item.get("above_fold"):
            continue
        kind = item.get("kind")
        lazy = bool(item.get("lazy"))
        src = _short_src(str(item.get("src") or kind or "media"))
        if kind == "image":
            if lazy:
                report.images_with_lazy += 1
            else:
                report.images_without_lazy += 1
                if len(report.image_examples) < MAX_LAZY_EXAMPLES:
                    report.image_examples.append(src)
        elif kind == "video":
            if lazy:
                report.videos_with_lazy += 1
            else:
                report.videos_without_lazy += 1
                if len(report.video_examples) < MAX_LAZY_EXAMPLES:
                    report.video_examples.append(src)
    return report


# ----------------------------------------------------------------------
# Formatting
# ----------------------------------------------------------------------

def _examples_line(label: str, examples: list[str], count: int) -> str:
    extra = f" (+{count - len(examples)} more)" if count > len(examples) else ""
    return f"{label} without lazy loading: {', '.join(examples)}{extra}"


def format_signals(signals: PageSignals) -> str:
    """Render structured signals as the text block handed to the judge."""
    lines = [
        f"Buttons/Links: {' | '.join(signals.interactive)}",
        f"Headings: {' | '.join(signals.headings)}",
        f"Breadcrumbs: {signals.breadcrumbs or 'Not found'}",
    ]

    colors = signals.colors
    if colors.available:
        lines.append(f"Colors found: {', '.join(colors.palette) or 'No colors detected'}")
        lines.append(f"Pure black (#000000) detected: {'YES' if colors.has_pure_black else 'NO'}")
    else:
        lines.append("Color detection: Unable to extract")

    lazy = signals.lazy_loading
    if lazy is None:
        lines.append("Lazy loading detection: Unable to extract")
    elif lazy.below_fold_total == 0:
        lines.append("Lazy loading: No below-fold images or videos found (or all are above-fold)")
    else:
        lines.append(
            f"Images (below-fold): {lazy.images_with_lazy} with lazy, "
            f"{lazy.images_without_lazy} without lazy"
        )
        lines.append(
            f"Videos (below-fold): {lazy.videos_with_lazy} with lazy, "
            f"{lazy.videos_without_lazy} without lazy"
        )
        if lazy.images_without_lazy:
            lines.append(_examples_line("Images", lazy.image_examples, lazy.images_without_lazy))
        if lazy.videos_without_lazy:
            lines.append(_examples_line("Videos", lazy.video_examples, lazy.videos_without_lazy))
        status = (
            "PASS - All below-fold images/videos have lazy loading"
            if lazy.compliant
            else "FAIL - Some below-fold images/videos missing lazy loading"
        )
        lines.append(f"Lazy loading status: {status}")

    return "\n".join(lines)
