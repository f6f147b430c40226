"""Error taxonomy for the scan pipeline.

Only ``InvalidInputError`` and checkpoint persistence failures ever reach the
caller of a scan.  Everything else is contained by the scheduler or the judge
and turned into a failed ``ScanResult`` with a readable reason.
"""

from __future__ import annotations


class ScanError(Exception):
    """Base class for all scan pipeline errors."""


class InvalidInputError(ScanError):
    """Bad URL or rule schema, rejected before any work starts."""


class InvalidURLError(InvalidInputError):
    """URL is unparsable or uses a scheme other than http/https."""


class NavigationError(ScanError):
    """Every navigation strategy failed, or a non-timeout error aborted navigation."""


class MalformedResponseError(ScanError):
    """The judging oracle returned text with no valid verdict object."""


class RateLimitError(ScanError):
    """The oracle asked us to slow down (HTTP 429 or equivalent)."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class QuotaExceededError(ScanError):
    """Account quota exhausted.  Retrying won't help."""


class CreditExhaustedError(ScanError):
    """Out of credits or tokens for this request.  Retrying won't help."""


class CheckpointError(ScanError):
    """The scan checkpoint could not be read or written."""
