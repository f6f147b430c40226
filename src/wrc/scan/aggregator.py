"""Result aggregation — dedupe by rule id and tally pass/fail."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import TypeAdapter

from wrc.schemas.scan import AggregatedResults, ScanResult

logger = logging.getLogger(__name__)

_result_adapter = TypeAdapter(ScanResult)


def aggregate(results: Iterable[ScanResult | dict[str, Any]]) -> AggregatedResults:
    """Combine results from any number of batches.

    The first result seen for a ``rule_id`` wins and later ones are dropped,
    so aggregating an already aggregated list returns it unchanged.  Plain
    dicts (either camelCase or snake_case keys) are validated into
    ``ScanResult`` first.
    """
    seen: set[str] = set()
    unique: list[ScanResult] = []
    dropped = 0

    for item in results:
        result = item if isinstance(item, ScanResult) else _result_adapter.validate_python(item)
        if result.rule_id in seen:
            dropped += 1
            continue
        seen.add(result.rule_id)
        unique.append(result)

    if dropped:
        logger.warning("Dropped %d duplicate result(s) while aggregating", dropped)

    passed = sum(1 for r in unique if r.passed)
    return AggregatedResults(
        results=unique,
        total=len(unique),
        passed=passed,
        failed=len(unique) - passed,
    )
