"""Sitemap walking: category and product link discovery.

Links are found with small ordered lists of href patterns, made absolute,
filtered by the exclusion rules and de-duplicated preserving first-seen order.
"""

import re
from typing import Iterable, List, Optional, Pattern, Sequence
from urllib.parse import urlparse

from ingest.config import BASE_URL, EXCLUDED_KEYWORDS, EXCLUDED_PRODUCT_PATHS
from ingest.logging_config import get_logger
from ingest.models import CategoryLink
from ingest.url_validation import absolutize, matched_keyword

__all__ = [
    "CATEGORY_LINK_PATTERNS",
    "PRODUCT_LINK_PATTERNS",
    "list_category_links",
    "list_product_links",
    "category_links",
    "derive_category_name",
]

logger = get_logger("sitemap")

_HREF_RE = re.compile(r'href="([^"]*)"')

# An href is a category link when any of these matches it
CATEGORY_LINK_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r"-c\.asp$"),
    re.compile(r"category", re.IGNORECASE),
    re.compile(r"cat", re.IGNORECASE),
)

PRODUCT_LINK_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r'href="([^"]*-p\.asp[^"]*)"'),
)

_CATEGORY_SLUG_RE = re.compile(r"([^/?#]+)-c\.asp", re.IGNORECASE)


def _dedupe(urls: Iterable[str]) -> List[str]:
    seen = set()
    unique: List[str] = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            unique.append(url)
    return unique


def list_category_links(
    sitemap_html: str,
    base_url: str = BASE_URL,
    excluded_keywords: Sequence[str] = EXCLUDED_KEYWORDS,
) -> List[str]:
    """Extract category URLs from the sitemap page, in the order they appear."""
    found: List[str] = []
    for match in _HREF_RE.finditer(sitemap_html):
        href = match.group(1)
        if not any(pattern.search(href) for pattern in CATEGORY_LINK_PATTERNS):
            continue
        if href.startswith("#") or href.lower().startswith("javascript:"):
            continue
        url = absolutize(href, base_url)
        keyword = matched_keyword(url, excluded_keywords)
        if keyword:
            logger.debug(f"Excluding category ({keyword}): {url}")
            continue
        found.append(url)
    return _dedupe(found)


def _is_utility_path(href: str) -> bool:
    lowered = href.lower()
    return href.startswith("//") or any(part in lowered for part in EXCLUDED_PRODUCT_PATHS)


def list_product_links(
    category_html: str,
    base_url: str = BASE_URL,
    excluded_keywords: Sequence[str] = EXCLUDED_KEYWORDS,
) -> List[str]:
    """Extract product URLs from a category (or sitemap) page."""
    found: List[str] = []
    for pattern in PRODUCT_LINK_PATTERNS:
        for match in pattern.finditer(category_html):
            href = match.group(1)
            if href.startswith("#") or _is_utility_path(href):
                continue
            url = absolutize(href, base_url)
            parsed = urlparse(url)
            if _is_utility_path(f"{parsed.path}?{parsed.query}"):
                continue
            keyword = matched_keyword(url, excluded_keywords)
            if keyword:
                logger.debug(f"Excluding product ({keyword}): {url}")
                continue
            found.append(url)
    return _dedupe(found)


def derive_category_name(url: str) -> str:
    """Human-readable category name from a category URL.

    ``.../skin-care-123-c.asp`` becomes ``Skin Care``; anything that does not
    follow the category URL shape becomes ``Other``.
    """
    match = _CATEGORY_SLUG_RE.search(url)
    if not match:
        return "Other"
    slug = re.sub(r"-\d+$", "", match.group(1))
    words = [w for w in slug.replace("_", "-").split("-") if w]
    if not words:
        return "Other"
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def category_links(
    sitemap_html: str,
    base_url: str = BASE_URL,
    limit: Optional[int] = None,
) -> List[CategoryLink]:
    """Category links in sitemap order, each with its derived display name."""
    urls = list_category_links(sitemap_html, base_url)
    if limit is not None:
        urls = urls[:limit]
    return [CategoryLink(url=url, derived_name=derive_category_name(url)) for url in urls]
