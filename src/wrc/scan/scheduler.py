"""Batch scheduler — partitions rules, paces oracle calls, checkpoints progress.

Everything runs sequentially: batches in ``batch_index`` order, rules in
list order, one oracle call at a time.  After every batch the remaining
queue and the accumulated results are persisted, so a scan cut short by a
timeout or crash can be resumed from the next unprocessed batch.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from wrc.errors import ScanError
from wrc.scan.checkpoint import (
    CheckpointState,
    CheckpointStore,
    load_checkpoint,
    save_checkpoint,
)
from wrc.scan.judge import RuleJudge
from wrc.scan.summarizer import CONTEXT_LIMIT, VISIBLE_TEXT_LIMIT, summarize
from wrc.schemas.scan import Batch, PageContext, Rule, ScanResult

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_MIN_REQUEST_INTERVAL = 10.0  # seconds

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]
ProgressCallback = Callable[[str], None]


class Renderer(Protocol):
    async def render(self, url: str) -> PageContext: ...


# ----------------------------------------------------------------------
# Partitioning
# ----------------------------------------------------------------------

def partition_rules(rules: list[Rule], batch_size: int) -> list[list[Rule]]:
    """Split ``rules`` into ``ceil(N / batch_size)`` contiguous batches.

    The remainder is spread one rule at a time over the earliest batches, so
    sizes never differ by more than one and the later batches are uniform:
    7 rules at size 5 -> [4, 3]; 11 -> [4, 4, 3]; 10 -> [5, 5].
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    if not rules:
        return []

    total_batches = math.ceil(len(rules) / batch_size)
    base, extra = divmod(len(rules), total_batches)

    batches: list[list[Rule]] = []
    start = 0
    for index in range(total_batches):
        size = base + (1 if index < extra else 0)
        batches.append(rules[start:start + size])
        start += size
    return batches


def make_batches(
    url: str,
    rules: list[Rule],
    batch_size: int = DEFAULT_BATCH_SIZE,
    *,
    timestamp: int | None = None,
) -> list[Batch]:
    timestamp = int(time.time() * 1000) if timestamp is None else timestamp
    groups = partition_rules(rules, batch_size)
    return [
        Batch(
            batch_id=f"batch-{timestamp}-{index}",
            url=url,
            rules=group,
            batch_index=index,
            total_batches=len(groups),
            timestamp=timestamp,
        )
        for index, group in enumerate(groups)
    ]


# ----------------------------------------------------------------------
# Session state
# ----------------------------------------------------------------------

class RequestThrottle:
    """Minimum spacing between consecutive oracle calls across a whole scan.

    The interval is measured from the end of the previous call.  The very
    first call of a session never waits.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self.last_request_at: float | None = None
        self._clock = clock
        self._sleep = sleep

    async def wait(self) -> float:
        """Sleep out the rest of the interval; returns seconds waited."""
        if self.last_request_at is None:
            return 0.0
        remaining = self.min_interval - (self._clock() - self.last_request_at)
        if remaining <= 0:
            return 0.0
        logger.debug("Throttling oracle call for %.2fs", remaining)
        await self._sleep(remaining)
        return remaining

    def mark(self) -> None:
        self.last_request_at = self._clock()


@dataclass
class ScanSession:
    """One logical scan: what's left, what's done, and the throttle state."""

    url: str
    remaining: list[Batch]
    throttle: RequestThrottle
    results: list[ScanResult] = field(default_factory=list)
    page_cache: dict[str, str] = field(default_factory=dict)


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class BatchScheduler:
    """Runs batches of rules through the renderer and judge.

    Usage::

        scheduler = BatchScheduler(renderer, judge, store)
        batches = scheduler.schedule_scan(url, rules)
        results = await scheduler.run_batches(batches)

    or, after an interruption::

        if scheduler.has_pending():
            results = await scheduler.resume()
    """

    def __init__(
        self,
        renderer: Renderer,
        judge: RuleJudge,
        store: CheckpointStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        min_request_interval: float = DEFAULT_MIN_REQUEST_INTERVAL,
        visible_text_limit: int = VISIBLE_TEXT_LIMIT,
        context_limit: int = CONTEXT_LIMIT,
        reuse_page_context: bool = False,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        on_progress: ProgressCallback | None = None,
        on_event: ProgressCallback | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.renderer = renderer
        self.judge = judge
        self.store = store
        self.batch_size = batch_size
        self.min_request_interval = min_request_interval
        self.visible_text_limit = visible_text_limit
        self.context_limit = context_limit
        self.reuse_page_context = reuse_page_context
        self._clock = clock
        self._sleep = sleep
        self._on_progress = on_progress
        self._on_event = on_event
        self._session: ScanSession | None = None

    # -- session setup -------------------------------------------------

    def _new_session(
        self, url: str, batches: list[Batch], results: list[ScanResult] | None = None,
    ) -> ScanSession:
        throttle = RequestThrottle(
            self.min_request_interval, clock=self._clock, sleep=self._sleep,
        )
        return ScanSession(url=url, remaining=list(batches), throttle=throttle,
                           results=list(results or []))

    def schedule_scan(self, url: str, rules: list[Rule]) -> list[Batch]:
        """Partition ``rules`` and persist the full queue with empty results."""
        batches = make_batches(url, rules, self.batch_size)
        self._session = self._new_session(url, batches)
        save_checkpoint(self.store, url, batches, [])
        logger.info(
            "Scheduled %d rules in %d batches (batch size %d) for %s",
            len(rules), len(batches), self.batch_size, url,
        )
        return batches

    def pending(self) -> CheckpointState | None:
        """The persisted checkpoint if it still has batches to run."""
        state = load_checkpoint(self.store)
        return state if state is not None and state.pending else None

    def has_pending(self) -> bool:
        return self.pending() is not None

    async def resume(self) -> list[ScanResult]:
        """Continue a persisted scan from its next unprocessed batch."""
        state = self.pending()
        if state is None:
            raise ScanError("No pending scan to resume")
        logger.info(
            "Resuming scan of %s: %d batches remaining, %d results so far",
            state.url, len(state.batches), len(state.results),
        )
        self._event(
            f"Resuming from batch {state.batches[0].batch_index + 1}"
            f"/{state.batches[0].total_batches}"
        )
        self._session = self._new_session(state.url, state.batches, state.results)
        return await self.run_batches(state.batches)

    # -- execution -----------------------------------------------------

    async def run_batches(self, batches: list[Batch]) -> list[ScanResult]:
        """Process ``batches`` in order and return the accumulated results.

        Clears the checkpoint once every batch has run.
        """
        indexes = [b.batch_index for b in batches]
        if indexes != sorted(set(indexes)):
            raise ValueError(f"Batches must be in strictly increasing batch_index order, got {indexes}")

        session = self._session
        if session is None or [b.batch_id for b in session.remaining] != [b.batch_id for b in batches]:
            url = batches[0].url if batches else ""
            session = self._new_session(url, batches)
            self._session = session

        for position, batch in enumerate(batches):
            label = f"batch {batch.batch_index + 1}/{batch.total_batches}"
            self._progress(f"Processing {label} ({len(batch.rules)} rules)")
            logger.info("Processing %s with %d rules", label, len(batch.rules))

            batch_results = await self._run_batch(session, batch, label)
            added = self._accumulate(session, batch_results)

            session.remaining = list(batches[position + 1:])
            save_checkpoint(self.store, session.url, session.remaining, session.results)

            passed = sum(r.passed for r in batch_results)
            self._event(f"{label.capitalize()} done: {passed}/{len(batch_results)} passed")
            logger.info(
                "%s completed (%d new results). Total results: %d",
                label.capitalize(), added, len(session.results),
            )

        self.store.clear()
        logger.info("Scan of %s complete: %d results", session.url, len(session.results))
        return list(session.results)

    async def _run_batch(self, session: ScanSession, batch: Batch, label: str) -> list[ScanResult]:
        try:
            context = await self._context_for(session, batch.url)
        except Exception as exc:
            if not isinstance(exc, ScanError):
                logger.exception("Unexpected render failure for %s", label)
            else:
                logger.error("Render failed for %s: %s", label, exc)
            self._event(f"[red]Could not render page for {label}: {exc}[/]")
            reason = f"Error processing {label}: page could not be rendered ({exc})"
            return [ScanResult.failed(rule, reason) for rule in batch.rules]

        results: list[ScanResult] = []
        for rule in batch.rules:
            self._progress(f"{label.capitalize()}: judging {rule.title!r}")
            await session.throttle.wait()
            try:
                result = await self.judge.judge(context, rule, batch.url)
            finally:
                session.throttle.mark()
            results.append(result)
        return results

    async def _context_for(self, session: ScanSession, url: str) -> str:
        if self.reuse_page_context and url in session.page_cache:
            logger.debug("Reusing rendered page context for %s", url)
            return session.page_cache[url]

        page = await self.renderer.render(url)
        summary = summarize(
            page,
            visible_text_limit=self.visible_text_limit,
            context_limit=self.context_limit,
        )
        if self.reuse_page_context:
            session.page_cache[url] = summary
        return summary

    @staticmethod
    def _accumulate(session: ScanSession, batch_results: list[ScanResult]) -> int:
        """Append results whose rule_id hasn't been seen; first occurrence wins."""
        seen = {r.rule_id for r in session.results}
        added = 0
        for result in batch_results:
            if result.rule_id in seen:
                logger.warning("Duplicate result for rule %s, keeping the first", result.rule_id)
                continue
            seen.add(result.rule_id)
            session.results.append(result)
            added += 1
        return added

    def _progress(self, message: str) -> None:
        if self._on_progress:
            self._on_progress(message)

    def _event(self, message: str) -> None:
        if self._on_event:
            self._on_event(message)
