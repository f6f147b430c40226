"""Async OpenAI-compatible client for the judging oracle.

Works against OpenAI directly or OpenRouter (selected by the API key prefix).
Provider exceptions are translated into the ``wrc.errors`` taxonomy here so
the judge can decide what to retry without knowing about the SDK.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
from typing import Any, Callable

from openai import APIStatusError, AsyncOpenAI

from wrc.errors import CreditExhaustedError, QuotaExceededError, RateLimitError

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_KEY_PREFIX = "sk-or-v1"
MAX_TOKENS = 1_000

TokensCallback = Callable[[int, int], None]
"""Called with (input_tokens, output_tokens) when a completion finishes."""


# ----------------------------------------------------------------------
# Error translation
# ----------------------------------------------------------------------

_QUOTA_PHRASES = ("insufficient_quota", "exceeded your current quota", "quota")
_CREDIT_PHRASES = (
    "request too large",
    "context_length_exceeded",
    "maximum context length",
    "fewer max_tokens",
    "credits",
    "insufficient credit",
)
_RATE_LIMIT_PHRASES = ("rate limit", "rate_limit", "ratelimit", "too many requests")

_RETRY_HINT_RE = re.compile(
    r"(?:try again|retry)\s+(?:in|after)\s+(\d+(?:\.\d+)?)\s*(ms|milliseconds?|s|sec|secs|seconds?)\b",
    re.IGNORECASE,
)


def parse_retry_after(exc: BaseException) -> float | None:
    """Extract the suggested retry delay in seconds, or None.

    Checks ``retry-after-ms`` / ``retry-after`` response headers first, then
    phrases like "try again in 2.5s", "retry after 3 seconds", "try again in
    500ms" in the error text.
    """
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        try:
            if value := headers.get("retry-after-ms"):
                return float(value) / 1000
            if value := headers.get("retry-after"):
                return float(value)
        except (AttributeError, TypeError, ValueError):
            pass

    match = _RETRY_HINT_RE.search(str(exc))
    if match:
        value = float(match.group(1))
        return value / 1000 if match.group(2).lower().startswith("m") else value
    return None


def retry_hint_ms(exc: BaseException) -> int | None:
    """The retry hint in whole milliseconds, rounded up."""
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        seconds = exc.retry_after
    else:
        seconds = parse_retry_after(exc)
    if seconds is None:
        return None
    # round() first so 2.5 * 1000 = 2500.0000000000005 doesn't become 2501
    return math.ceil(round(seconds * 1000, 6))


def translate_error(exc: BaseException) -> BaseException:
    """Map a provider exception onto the scan error taxonomy.

    Quota and credit signals are checked before rate limiting: OpenAI
    reports an exhausted quota as a 429 too, and that must not be retried.
    Unrecognized errors are returned unchanged.
    """
    if isinstance(exc, (RateLimitError, QuotaExceededError, CreditExhaustedError)):
        return exc

    msg = str(exc).lower()
    status = getattr(exc, "status_code", None)

    if any(p in msg for p in _QUOTA_PHRASES):
        return QuotaExceededError(str(exc))
    if status == 402 or any(p in msg for p in _CREDIT_PHRASES):
        return CreditExhaustedError(str(exc))
    if status == 429 or any(p in msg for p in _RATE_LIMIT_PHRASES):
        return RateLimitError(str(exc), retry_after=parse_retry_after(exc))
    return exc


# ----------------------------------------------------------------------
# Client
# ----------------------------------------------------------------------

def resolve_provider(api_key: str | None) -> tuple[str | None, dict[str, str] | None]:
    """Return (base_url, default_headers) for the given key."""
    if api_key and api_key.startswith(OPENROUTER_KEY_PREFIX):
        headers = {
            "HTTP-Referer": os.environ.get("OPENROUTER_HTTP_REFERER", "https://localhost:3000"),
            "X-Title": "Website Rule Checker",
        }
        return OPENROUTER_BASE_URL, headers
    return None, None


class LLMClient:
    """Thin async wrapper around the OpenAI SDK for deterministic judging calls."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = "gpt-4o-mini",
        openrouter_model: str = "openai/gpt-4o-mini",
        seed: int = 42,
    ) -> None:
        api_key = api_key or os.environ.get("OPENROUTER_API_KEY") or os.environ.get("OPENAI_API_KEY")
        base_url, headers = resolve_provider(api_key)
        self.is_openrouter = base_url is not None
        self.model = openrouter_model if self.is_openrouter else model
        self.seed = seed
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, default_headers=headers)

    async def judge_completion(
        self,
        *,
        system: str,
        user_message: str,
        on_tokens: TokensCallback | None = None,
    ) -> str:
        """Single JSON-mode request at zero temperature.

        Provider errors are re-raised as ``RateLimitError``,
        ``QuotaExceededError`` or ``CreditExhaustedError`` where they match;
        anything else propagates as-is.
        """
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "temperature": 0,
            "top_p": 1,
            "seed": self.seed,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user_message},
            ],
            "response_format": {"type": "json_object"},
        }
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except APIStatusError as exc:
            translated = translate_error(exc)
            if translated is exc:
                raise
            raise translated from exc

        usage = getattr(response, "usage", None)
        if on_tokens and usage:
            on_tokens(getattr(usage, "prompt_tokens", 0), getattr(usage, "completion_tokens", 0))
        return response.choices[0].message.content or ""


class DryRunClient:
    """Drop-in replacement for LLMClient that makes zero API calls."""

    model = "dry-run"

    def __init__(self) -> None:
        self.calls: list[dict[str, str]] = []

    async def judge_completion(
        self,
        *,
        system: str,
        user_message: str,
        on_tokens: TokensCallback | None = None,
    ) -> str:
        self.calls.append({"system": system, "user_message": user_message})
        logger.info("[dry-run] Judging call %d (%d chars)", len(self.calls), len(user_message))
        return json.dumps({
            "passed": False,
            "reason": "[dry-run] No API call was made; the rule was not evaluated.",
        })
