"""URL validation and sanitization utilities.

Provides security-focused URL validation for scraped content.
"""

import re
from typing import Iterable, Optional, Set
from urllib.parse import urljoin, urlparse

from ingest.config import BASE_URL
from ingest.exceptions import URLValidationError

__all__ = [
    "validate_url",
    "sanitize_url",
    "absolutize",
    "is_http_url",
    "matched_keyword",
    "URLValidationError",
    "ALLOWED_DOMAINS",
]

_base_host = urlparse(BASE_URL).netloc.lower()

# Domains we trust for page navigation (images may come from any CDN)
ALLOWED_DOMAINS: Set[str] = frozenset({
    _base_host,
    _base_host[4:] if _base_host.startswith("www.") else f"www.{_base_host}",
})

# Dangerous URL schemes to reject
DANGEROUS_SCHEMES = {"javascript", "data", "vbscript", "file"}

SUSPICIOUS_PATTERNS = (
    r"\.\./",            # Path traversal
    r"%2e%2e",           # Encoded path traversal
    r"<script",          # XSS attempt
    r"javascript:",      # JS injection
)


def sanitize_url(url: str) -> str:
    """Strip whitespace, control characters and null bytes from a URL."""
    if not url:
        return ""

    url = url.strip()
    url = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", url)
    url = url.replace("%00", "")

    return url


def absolutize(href: str, base: str = BASE_URL) -> str:
    """Resolve a possibly relative href against the page it was found on.

    Protocol-relative (``//host/...``) and fragment-only hrefs resolve the
    same way a browser would resolve them.
    """
    href = sanitize_url(href)
    if not href:
        return ""
    if is_http_url(href):
        return href
    return urljoin(base, href)


def is_http_url(url: Optional[str]) -> bool:
    """True for absolute http(s) URLs."""
    return bool(url) and re.match(r"^https?://", url, re.IGNORECASE) is not None


def matched_keyword(text: str, keywords: Iterable[str]) -> Optional[str]:
    """Return the first keyword contained in text (case-insensitive), if any."""
    lowered = (text or "").lower()
    for keyword in keywords:
        if keyword and keyword.lower() in lowered:
            return keyword
    return None


def validate_url(
    url: str,
    allowed_domains: Optional[Set[str]] = None,
    require_https: bool = False,
) -> str:
    """Validate a URL for safety.

    Args:
        url: URL to validate
        allowed_domains: Set of allowed domains (default: ALLOWED_DOMAINS);
            pass an empty set to allow any domain
        require_https: Whether to require HTTPS scheme

    Returns:
        Validated URL

    Raises:
        URLValidationError: If URL is invalid or from untrusted domain
    """
    if not url:
        raise URLValidationError("URL is empty")

    url = sanitize_url(url)

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise URLValidationError(f"Failed to parse URL: {e}") from e

    scheme = parsed.scheme.lower()
    if scheme in DANGEROUS_SCHEMES:
        raise URLValidationError(f"Dangerous URL scheme: {scheme}")

    if require_https and scheme != "https":
        raise URLValidationError(f"URL must use HTTPS, got: {scheme}")

    if scheme not in ("http", "https"):
        raise URLValidationError(f"Invalid URL scheme: {scheme}")

    domain = parsed.netloc.lower().split(":")[0]
    if not domain:
        raise URLValidationError("URL has no domain")

    domains_to_check = allowed_domains if allowed_domains is not None else ALLOWED_DOMAINS
    if domains_to_check and domain not in domains_to_check:
        raise URLValidationError(
            f"URL domain '{domain}' not in allowed domains: {sorted(domains_to_check)}"
        )

    url_lower = url.lower()
    for pattern in SUSPICIOUS_PATTERNS:
        if re.search(pattern, url_lower):
            raise URLValidationError(f"URL contains suspicious pattern: {pattern}")

    return url
