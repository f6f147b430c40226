"""URL normalization helpers shared by request validation and the renderer."""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

from wrc.errors import InvalidURLError

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
# "host:8080/path" has a port after the colon, not a scheme
_PORT_RE = re.compile(r"^\d+(?:[/?#]|$)")
_ALLOWED_SCHEMES = {"http", "https"}

_AMAZON_DP_RE = re.compile(r"/dp/([^/]+)")
_AMAZON_GP_RE = re.compile(r"/gp/product/([^/]+)")


def normalize_url(url: str) -> str:
    """Return ``url`` with a scheme, defaulting to ``https://``.

    Raises ``InvalidURLError`` for empty input, non-HTTP(S) schemes, or a
    URL without a usable host.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise InvalidURLError("URL is required")

    match = _SCHEME_RE.match(candidate)
    if match and not _PORT_RE.match(candidate[match.end():]):
        scheme = match.group(1).lower()
        if scheme not in _ALLOWED_SCHEMES:
            raise InvalidURLError(f"URL must be a valid HTTP or HTTPS URL, got scheme {scheme!r}")
    else:
        candidate = "https://" + candidate

    try:
        parts = urlsplit(candidate)
        # .port raises ValueError on garbage like "host:abc"
        parts.port
    except ValueError as exc:
        raise InvalidURLError(f"Invalid URL format: {url!r} ({exc})") from exc

    if not parts.hostname or " " in parts.netloc:
        raise InvalidURLError(f"Invalid URL format: {url!r}")
    return candidate


def host_of(url: str) -> str:
    """Lower-cased hostname of ``url`` (empty string if it has none)."""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def canonicalize_site_url(url: str) -> str:
    """Apply site-specific URL canonicalization.

    Amazon product pages carry long tracking paths; the product is fully
    identified by its ASIN, so ``/dp/<ASIN>`` and ``/gp/product/<ASIN>`` URLs
    are reduced to ``<scheme>://<host>/dp/<ASIN>``.  Other URLs pass through.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    host = (parts.hostname or "").lower()
    if "amazon." not in host:
        return url

    match = _AMAZON_DP_RE.search(parts.path) or _AMAZON_GP_RE.search(parts.path)
    if not match:
        return url

    normalized = f"{parts.scheme}://{parts.netloc}/dp/{match.group(1)}"
    logger.info("Normalizing Amazon URL: %s -> %s", url, normalized)
    return normalized
