"""Rule judge — one (context, rule) pair in, one ScanResult out.

Lifecycle of a judging call::

    Pending -> Calling -> Success
                       -> RateLimited -> Backoff -> Calling (retry)
                       -> FatalError

``judge()`` never raises: every failure becomes ``passed=False`` with a
reason naming the failure class, so one bad rule can't abort its batch.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from pydantic import BaseModel, StrictBool, StrictStr, ValidationError

from wrc.errors import (
    CreditExhaustedError,
    MalformedResponseError,
    QuotaExceededError,
    RateLimitError,
)
from wrc.scan.classify import classify_rule, focus_hints
from wrc.scan.prompts import SYSTEM_PROMPT, build_user_message
from wrc.scan.summarizer import JUDGE_CONTEXT_LIMIT, slice_for_judging
from wrc.schemas.scan import REASON_MAX_CHARS, Rule, ScanResult
from wrc.shared.llm_client import TokensCallback, retry_hint_ms, translate_error

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

CREDIT_REASON = (
    "Error: Token limit exceeded. The API account is out of credits or tokens "
    "for this request. Scan fewer rules at a time or top up your API credits."
)
RATE_LIMIT_REASON = "Error: Rate limit exceeded. Please wait a moment and try again."
QUOTA_REASON = "Error: API quota exceeded. Please check your account limits."
MALFORMED_REASON = "Error: Invalid AI response format"
NO_REASON = "No reason provided"


class JudgingOracle(Protocol):
    async def judge_completion(
        self,
        *,
        system: str,
        user_message: str,
        on_tokens: TokensCallback | None = None,
    ) -> str: ...


class JudgeVerdict(BaseModel):
    """Strict shape of the oracle's answer."""

    passed: StrictBool
    reason: StrictStr


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def extract_json(text: str) -> dict[str, Any]:
    """Return the first balanced JSON object in ``text``.

    Tolerates surrounding prose and markdown code fences.  Raises
    ``MalformedResponseError`` if no object can be decoded.
    """
    text = (text or "").strip()
    decoder = json.JSONDecoder()

    # Fenced blocks first: prose before a fence may itself contain braces
    for block in _FENCE_RE.findall(text):
        block = block.strip()
        if block.startswith("{"):
            try:
                obj, _ = decoder.raw_decode(block)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                return obj

    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, idx=start)
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(obj, dict):
                return obj
        start = text.find("{", start + 1)

    raise MalformedResponseError(
        f"Could not extract JSON from model response (length={len(text)}). "
        f"First 300 chars: {text[:300]!r}"
    )


def parse_verdict(raw: str) -> JudgeVerdict:
    """Parse and schema-check the oracle's text; ``MalformedResponseError`` on failure."""
    data = extract_json(raw)
    try:
        return JudgeVerdict.model_validate(data)
    except ValidationError as exc:
        fields = ", ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise MalformedResponseError(f"Verdict failed validation ({fields})") from exc


# ----------------------------------------------------------------------
# Retry policy
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """How rate-limited judging calls are retried.

    ``max_attempts`` counts the first call.  An explicit retry hint from the
    provider is honored exactly; otherwise the delay doubles from ``base``
    up to ``max_delay`` (seconds).
    """

    max_attempts: int = 5
    base: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def backoff(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failure (0-based), without a hint."""
        return min(self.base * (2 ** attempt), self.max_delay)

    def delay_for(self, attempt: int, exc: BaseException) -> float:
        hint_ms = retry_hint_ms(exc)
        if hint_ms is not None:
            return hint_ms / 1000
        return self.backoff(attempt)


# ----------------------------------------------------------------------
# Judge
# ----------------------------------------------------------------------

class RuleJudge:
    """Judges one rule against a page context via the oracle."""

    def __init__(
        self,
        client: JudgingOracle,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        judge_context_limit: int = JUDGE_CONTEXT_LIMIT,
        reason_max_chars: int = REASON_MAX_CHARS,
        on_tokens: TokensCallback | None = None,
    ) -> None:
        self.client = client
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._context_limit = judge_context_limit
        self._reason_max = min(reason_max_chars, REASON_MAX_CHARS)
        self._on_tokens = on_tokens

    def build_request(self, context: str, rule: Rule, url: str) -> tuple[str, str]:
        """Return (system prompt, user message) for this rule."""
        user_message = build_user_message(
            url=url,
            title=rule.title,
            description=rule.description,
            content=slice_for_judging(context, self._context_limit),
            hints=focus_hints(classify_rule(rule)),
        )
        return SYSTEM_PROMPT, user_message

    async def judge(self, context: str, rule: Rule, url: str) -> ScanResult:
        """Judge ``rule``; failures come back as ``passed=False`` results."""
        try:
            verdict = await self.evaluate(context, rule, url)
        except CreditExhaustedError as exc:
            logger.error("Rule %s: credits/tokens exhausted: %s", rule.id, exc)
            return ScanResult.failed(rule, CREDIT_REASON)
        except QuotaExceededError as exc:
            logger.error("Rule %s: quota exceeded: %s", rule.id, exc)
            return ScanResult.failed(rule, QUOTA_REASON)
        except RateLimitError as exc:
            logger.error("Rule %s: still rate limited after %d attempts: %s",
                         rule.id, self.policy.max_attempts, exc)
            return ScanResult.failed(rule, RATE_LIMIT_REASON)
        except MalformedResponseError as exc:
            logger.warning("Rule %s: malformed verdict: %s", rule.id, exc)
            return ScanResult.failed(rule, f"{MALFORMED_REASON}: {exc}")
        except Exception as exc:
            logger.exception("Rule %s: judging failed", rule.id)
            return ScanResult.failed(rule, f"Error: {str(exc) or type(exc).__name__}")

        reason = verdict.reason.strip() or NO_REASON
        if len(reason) > self._reason_max:
            reason = reason[: self._reason_max - 3] + "..."
        return ScanResult(
            rule_id=rule.id,
            rule_title=rule.title,
            passed=verdict.passed,
            reason=reason,
        )

    async def evaluate(self, context: str, rule: Rule, url: str) -> JudgeVerdict:
        """Call the oracle with retry on rate limiting; raises on failure."""
        system, user_message = self.build_request(context, rule, url)
        attempts = self.policy.max_attempts

        for attempt in range(attempts):
            try:
                raw = await self.client.judge_completion(
                    system=system, user_message=user_message, on_tokens=self._on_tokens,
                )
            except Exception as exc:
                err = translate_error(exc)
                if not isinstance(err, RateLimitError):
                    if err is exc:
                        raise
                    raise err from exc
                if attempt == attempts - 1:
                    if err is exc:
                        raise
                    raise err from exc

                delay = self.policy.delay_for(attempt, err)
                logger.warning(
                    "Rate limited on rule %s, retrying in %.3fs (attempt %d/%d): %s",
                    rule.id, delay, attempt + 1, attempts, err,
                )
                await self._sleep(delay)
                continue

            logger.debug("Rule %s raw verdict: %s", rule.id, raw[:300])
            return parse_verdict(raw)

        raise RuntimeError("RetryPolicy.max_attempts must be at least 1")
