"""Playwright browser manager and page renderer.

``PageRenderer.render`` is the only entry point the scan pipeline uses: it
opens a browser session, walks the navigation fallback chain, settles lazy
content, extracts text and signals, and always closes the session.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from types import TracebackType
from typing import Any, AsyncIterator, Callable

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from wrc.errors import NavigationError
from wrc.schemas.config import NavigationConfig
from wrc.schemas.scan import ColorSample, PageContext, PageSignals
from wrc.shared import extraction
from wrc.shared.urls import canonicalize_site_url, host_of, normalize_url

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

_STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""


class BrowserManager:
    """Owns one headless Chromium session.

    Usage::

        async with BrowserManager() as bm:
            async with bm.page() as page:
                await page.goto("https://example.com")
    """

    def __init__(self, nav: NavigationConfig | None = None) -> None:
        self._nav = nav or NavigationConfig()
        self._pw: Playwright | None = None
        self._browser: Browser | None = None

    async def __aenter__(self) -> "BrowserManager":
        self._pw = await async_playwright().start()
        try:
            self._browser = await self._pw.chromium.launch(
                headless=True,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
        except BaseException:
            await self._pw.stop()
            self._pw = None
            raise
        logger.info("Browser launched")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if self._browser:
                await self._browser.close()
        finally:
            self._browser = None
            if self._pw:
                await self._pw.stop()
                self._pw = None
        logger.info("Browser closed")

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Open a desktop-sized page in a fresh context; closed on exit."""
        assert self._browser is not None, "BrowserManager not entered"
        context = await self._browser.new_context(
            viewport={"width": self._nav.viewport_width, "height": self._nav.viewport_height},
            user_agent=USER_AGENT,
            extra_http_headers=EXTRA_HEADERS,
        )
        try:
            await context.add_init_script(_STEALTH_JS)
            page = await context.new_page()
            yield page
        finally:
            await context.close()


# ----------------------------------------------------------------------
# Navigation
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class NavigationStrategy:
    wait_until: str
    timeout_ms: int


def strategies_from_config(nav: NavigationConfig) -> list[NavigationStrategy]:
    """DOM-ready, then network-idle, then full load, with growing timeouts."""
    return [
        NavigationStrategy("domcontentloaded", nav.dom_ready_timeout_ms),
        NavigationStrategy("networkidle", nav.network_idle_timeout_ms),
        NavigationStrategy("load", nav.full_load_timeout_ms),
    ]


def is_blocked_landing(
    requested_url: str,
    landed_url: str,
    *,
    blocked_markers: list[str],
    redirect_hosts: list[str],
) -> bool:
    """True if navigation ended on a captcha page or a generic redirect host."""
    landed = (landed_url or "").lower()
    if any(marker.lower() in landed for marker in blocked_markers):
        return True
    landed_host = host_of(landed_url)
    if landed_host and landed_host != host_of(requested_url):
        return landed_host in {h.lower() for h in redirect_hosts}
    return False


async def navigate(
    page: Any,
    url: str,
    strategies: list[NavigationStrategy],
    *,
    blocked_markers: list[str],
    redirect_hosts: list[str],
) -> NavigationStrategy:
    """Try each strategy in order and return the one that succeeded.

    Timeouts and blocked landings fall through to the next strategy; any
    other Playwright error aborts immediately.
    """
    last_error: str = "no strategies configured"
    for strategy in strategies:
        logger.info(
            "Trying navigation with wait_until=%s, timeout=%dms",
            strategy.wait_until, strategy.timeout_ms,
        )
        try:
            response = await page.goto(
                url, wait_until=strategy.wait_until, timeout=strategy.timeout_ms,
            )
        except PlaywrightTimeoutError as exc:
            last_error = str(exc)
            logger.warning("Navigation timed out with %s: %s", strategy.wait_until, exc)
            continue
        except PlaywrightError as exc:
            raise NavigationError(f"Navigation to {url} failed: {exc}") from exc

        landed = page.url
        if response is None or is_blocked_landing(
            url, landed, blocked_markers=blocked_markers, redirect_hosts=redirect_hosts,
        ):
            last_error = f"landed on {landed!r}" if response is not None else "no response"
            logger.warning(
                "Blocked or empty navigation with %s (%s), trying next strategy",
                strategy.wait_until, last_error,
            )
            continue

        logger.info("Navigation successful with %s", strategy.wait_until)
        return strategy

    raise NavigationError(f"All navigation strategies failed. Last error: {last_error}")


# ----------------------------------------------------------------------
# Settling dynamic content
# ----------------------------------------------------------------------

async def scroll_sweep(page: Any, nav: NavigationConfig) -> None:
    """Scroll top to bottom in steps to trigger lazy loading, then back to top."""
    try:
        scroll_height = await page.evaluate("() => document.body ? document.body.scrollHeight : 0")
        viewport_height = await page.evaluate("() => window.innerHeight")
        if scroll_height <= viewport_height:
            return
        logger.debug("Scrolling to trigger lazy loading (height=%s)", scroll_height)
        for step in range(nav.scroll_steps + 1):
            y = int(step / nav.scroll_steps * scroll_height)
            await page.evaluate("(y) => window.scrollTo(0, y)", y)
            await page.wait_for_timeout(nav.scroll_step_ms)
        await page.evaluate("() => window.scrollTo(0, 0)")
        await page.wait_for_timeout(nav.final_settle_ms)
    except PlaywrightError as exc:
        logger.warning("Scroll sweep failed, continuing: %s", exc)


async def wait_for_images(page: Any, nav: NavigationConfig) -> None:
    """Wait for the first few images or the hard timeout, whichever is first.

    Never raises.
    """
    try:
        await asyncio.wait_for(
            page.evaluate(extraction.IMAGES_SETTLED_JS, nav.image_sample),
            timeout=nav.image_wait_ms / 1000,
        )
    except asyncio.TimeoutError:
        logger.info("Image loading timed out after %dms, proceeding", nav.image_wait_ms)
    except Exception as exc:
        logger.warning("Image wait failed, proceeding: %s", exc)


def is_slow_site(url: str, nav: NavigationConfig) -> bool:
    host = host_of(url)
    return any(pattern in host for pattern in nav.slow_site_patterns)


async def settle_slow_site(page: Any, nav: NavigationConfig) -> None:
    """Extra wait plus forced eager media loading for lazy-heavy marketplaces."""
    logger.info("Slow site detected, waiting %dms for lazy content", nav.slow_site_wait_ms)
    await page.wait_for_timeout(nav.slow_site_wait_ms)
    try:
        touched = await page.evaluate(extraction.EAGER_LOAD_JS)
        logger.debug("Forced eager load on %s media elements", touched)
        await page.wait_for_timeout(nav.eager_load_wait_ms)
    except PlaywrightError as exc:
        logger.warning("Failed to force-load lazy media: %s", exc)


async def settle(page: Any, url: str, nav: NavigationConfig) -> None:
    await page.wait_for_timeout(nav.settle_ms)
    await scroll_sweep(page, nav)
    await wait_for_images(page, nav)
    if is_slow_site(url, nav):
        await settle_slow_site(page, nav)


# ----------------------------------------------------------------------
# Extraction
# ----------------------------------------------------------------------

async def _safe_evaluate(page: Any, label: str, script: str, default: Any, *args: Any) -> Any:
    try:
        return await page.evaluate(script, *args)
    except Exception as exc:
        logger.warning("Extraction step %r failed, using default: %s", label, exc)
        return default


async def extract_page_context(page: Any, url: str) -> PageContext:
    """Pull visible text and structured signals.  Each step degrades on its own."""
    visible_text = await _safe_evaluate(page, "visible_text", extraction.VISIBLE_TEXT_JS, "")
    if not isinstance(visible_text, str):
        visible_text = ""

    labels = await _safe_evaluate(page, "interactive", extraction.INTERACTIVE_JS, [])
    headings = await _safe_evaluate(page, "headings", extraction.HEADINGS_JS, [])
    candidates = await _safe_evaluate(
        page, "breadcrumbs", extraction.BREADCRUMB_CANDIDATES_JS, [],
        extraction.BREADCRUMB_SELECTORS,
    )
    color_pairs = await _safe_evaluate(page, "colors", extraction.COLOR_SAMPLE_JS, None)
    media = await _safe_evaluate(page, "lazy_loading", extraction.MEDIA_JS, None)

    signals = PageSignals(
        interactive=extraction.reduce_labels(labels or [], extraction.MAX_INTERACTIVE),
        headings=extraction.reduce_labels(headings or [], extraction.MAX_HEADINGS),
        breadcrumbs=extraction.detect_breadcrumbs(
            [c for c in candidates or [] if isinstance(c, str)], visible_text,
        ),
        colors=(
            extraction.reduce_colors(color_pairs)
            if isinstance(color_pairs, list)
            else ColorSample(available=False)
        ),
        lazy_loading=extraction.build_lazy_load_report(media) if isinstance(media, list) else None,
    )
    return PageContext(
        url=url,
        visible_text=visible_text,
        structured_signals=extraction.format_signals(signals),
        signals=signals,
    )


# ----------------------------------------------------------------------
# Renderer
# ----------------------------------------------------------------------

BrowserFactory = Callable[[], Any]
"""Returns an async context manager yielding an object with a ``page()`` context manager."""


class PageRenderer:
    """Render a URL into a ``PageContext``.

    Raises ``InvalidURLError`` for unusable URLs and ``NavigationError`` when
    the page can't be reached.  The browser session is closed on every path.
    """

    def __init__(
        self,
        nav: NavigationConfig | None = None,
        *,
        browser_factory: BrowserFactory | None = None,
    ) -> None:
        self._nav = nav or NavigationConfig()
        self._browser_factory = browser_factory or (lambda: BrowserManager(self._nav))

    async def render(self, url: str) -> PageContext:
        target = canonicalize_site_url(normalize_url(url))
        nav = self._nav
        try:
            async with self._browser_factory() as browser:
                async with browser.page() as page:
                    await navigate(
                        page,
                        target,
                        strategies_from_config(nav),
                        blocked_markers=nav.blocked_markers,
                        redirect_hosts=nav.redirect_hosts,
                    )
                    await settle(page, target, nav)
                    context = await extract_page_context(page, target)
        except PlaywrightError as exc:
            # Browser launch / context errors outside navigation proper
            raise NavigationError(f"Browser session failed for {target}: {exc}") from exc

        logger.info(
            "Rendered %s: %d chars of text, %d interactive labels",
            target, len(context.visible_text), len(context.signals.interactive),
        )
        return context
