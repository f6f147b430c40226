"""Scan service — wires renderer, judge, scheduler and aggregator together.

``ScanService.scan`` is the Python entry point; ``ScanService.handle`` is
the transport-agnostic form that takes and returns plain dicts, the shape
an HTTP handler would pass through.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from wrc.errors import InvalidInputError, ScanError
from wrc.scan.aggregator import aggregate
from wrc.scan.checkpoint import CheckpointState, CheckpointStore, JsonFileCheckpointStore
from wrc.scan.judge import JudgingOracle, RetryPolicy, RuleJudge
from wrc.scan.scheduler import BatchScheduler, Clock, ProgressCallback, Renderer, Sleep
from wrc.schemas.config import ScanConfig
from wrc.schemas.scan import AggregatedResults, Rule, ScanRequest
from wrc.shared.browser import PageRenderer

logger = logging.getLogger(__name__)


def format_validation_error(exc: ValidationError) -> str:
    """``Validation failed: rules.0.title: String should have ...``"""
    parts = []
    for err in exc.errors():
        path = ".".join(str(p) for p in err["loc"])
        parts.append(f"{path}: {err['msg']}" if path else err["msg"])
    return "Validation failed: " + ", ".join(parts)


def validate_request(url: Any, rules: Any) -> ScanRequest:
    """Validate scan input, raising ``InvalidInputError`` on any violation."""
    try:
        return ScanRequest.model_validate({"url": url, "rules": rules})
    except ValidationError as exc:
        raise InvalidInputError(format_validation_error(exc)) from exc


class ScanService:
    """Runs scans end to end for one configuration."""

    def __init__(
        self,
        config: ScanConfig,
        client: JudgingOracle,
        *,
        store: CheckpointStore | None = None,
        renderer: Renderer | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        on_progress: ProgressCallback | None = None,
        on_event: ProgressCallback | None = None,
    ) -> None:
        self.config = config
        self.store = store or JsonFileCheckpointStore(Path(config.checkpoint_dir))
        self.judge = RuleJudge(
            client,
            policy=RetryPolicy(
                max_attempts=config.max_attempts,
                base=config.backoff_base,
                max_delay=config.backoff_max,
            ),
            sleep=sleep,
            judge_context_limit=config.judge_context_limit,
            reason_max_chars=config.reason_max_chars,
        )
        self.scheduler = BatchScheduler(
            renderer or PageRenderer(config.navigation),
            self.judge,
            self.store,
            batch_size=config.batch_size,
            min_request_interval=config.min_request_interval,
            visible_text_limit=config.visible_text_limit,
            context_limit=config.context_limit,
            reuse_page_context=config.reuse_page_context,
            clock=clock,
            sleep=sleep,
            on_progress=on_progress,
            on_event=on_event,
        )

    async def scan(self, url: Any, rules: Any) -> AggregatedResults:
        """Validate, schedule and run a full scan of ``rules`` against ``url``.

        ``rules`` may be ``Rule`` objects or plain dicts.  Raises
        ``InvalidInputError`` before any rendering or judging if the input is
        bad.
        """
        if isinstance(rules, (list, tuple)):
            rules = [r.model_dump() if isinstance(r, Rule) else r for r in rules]
        request = validate_request(url, rules)
        batches = self.scheduler.schedule_scan(request.url, request.rules)
        results = await self.scheduler.run_batches(batches)
        return aggregate(results)

    async def resume(self) -> AggregatedResults:
        """Finish a scan left pending in the checkpoint store."""
        return aggregate(await self.scheduler.resume())

    def pending(self) -> CheckpointState | None:
        return self.scheduler.pending()

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Dict in, dict out: ``{"results", "total", "passed", "failed"}`` or ``{"error"}``."""
        if not isinstance(payload, dict):
            return {"error": "Validation failed: request body must be an object"}
        try:
            aggregated = await self.scan(payload.get("url"), payload.get("rules"))
        except InvalidInputError as exc:
            logger.warning("Rejected scan request: %s", exc)
            return {"error": str(exc)}
        except ScanError as exc:
            logger.error("Scan failed: %s", exc)
            return {"error": str(exc)}
        return aggregated.model_dump(mode="json", by_alias=True)
