"""Product page extraction.

Each field is recovered by an ordered list of strategies. A strategy pairs a
finder (pull a candidate value out of the page) with an acceptance check; the
first strategy whose candidate is accepted wins. Selector lists cover the
page templates the source site has used over time, with text and page-title
fallbacks for pages where none of them match.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

from bs4 import BeautifulSoup, Tag

from ingest.browser import ImageMetrics, RenderedPage
from ingest.config import EXCLUDED_KEYWORDS, MAX_IMAGES_PER_PRODUCT, SOURCE_NAME
from ingest.exceptions import ExcludedProductError, ExtractionError
from ingest.models import ExtractedProduct
from ingest.url_validation import absolutize, is_http_url, matched_keyword

__all__ = [
    "Strategy",
    "PageContext",
    "first_match",
    "NAME_SELECTORS",
    "DESCRIPTION_SELECTORS",
    "PRICE_SELECTORS",
    "PRICE_TEXT_PATTERNS",
    "IMAGE_SELECTORS",
    "BRAND_SELECTORS",
    "SPEC_SELECTORS",
    "parse_price_text",
    "title_to_name",
    "extract_name",
    "extract_description",
    "extract_price",
    "extract_images",
    "extract_brand",
    "extract_specifications",
    "extract_product",
]

T = TypeVar("T")

NAME_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
BRAND_MAX_LENGTH = 100
SPEC_KEY_MAX_LENGTH = 50
SPEC_VALUE_MAX_LENGTH = 200
PRIMARY_IMAGE_MIN_SIZE = 50
SWEEP_IMAGE_MIN_SIZE = 100

NAME_SELECTORS = (
    "h1",
    ".product-title",
    ".product__title",
    ".product-name",
    ".item-name",
    "[data-product-name]",
)

DESCRIPTION_SELECTORS = (
    "#tab1",
    ".product-description",
    ".product__description",
    ".product-content",
    ".rte",
    ".description",
    ".product-details",
    ".content",
    ".product-info",
    "[data-product-description]",
)

PRICE_SELECTORS = (
    "#lblPrice",
    ".product-price",
    ".price",
    ".price-item",
    "[data-price]",
    ".ourprice",
    ".product__price",
    ".price-current",
    ".current-price",
    ".sale-price",
    ".price-now",
    ".final-price",
)

# Whole-page text fallbacks, tried in order; the first non-zero amount wins
PRICE_TEXT_PATTERNS = (
    re.compile(r"[£$€]\s?(\d+(?:\.\d{1,2})?)"),
    re.compile(r"(\d+(?:\.\d{1,2})?)\s?[£$€]"),
    re.compile(r"Price[:\s]*[£$€]?\s*(\d+(?:\.\d{1,2})?)", re.IGNORECASE),
    re.compile(r"Cost[:\s]*[£$€]?\s*(\d+(?:\.\d{1,2})?)", re.IGNORECASE),
)

_PRICE_TOKEN_RE = re.compile(r"\d+(?:\.\d{1,2})?")

IMAGE_SELECTORS = (
    "#_EKM_PRODUCTIMAGE_1_2",
    "#_EKM_PRODUCTIMAGE_2_2",
    "#_EKM_PRODUCTIMAGE_3_2",
    "#_EKM_PRODUCTIMAGE_4_2",
    "#_EKM_PRODUCTIMAGE_5_2",
    ".main-prod-image img",
    ".zoom img",
    ".product-image img",
    ".gallery img",
    ".product-photo img",
    ".product__media img",
    "#ProductImage",
    ".product-single__media img",
    ".product-img",
    ".product-gallery img",
    ".main-image img",
    ".featured-image img",
    ".product-photos img",
    'img[itemprop="image"]',
    "#Image",
    ".thumbnail img",
)

# Substrings that mark decorative or not-yet-loaded images
PLACEHOLDER_TOKENS = ("placeholder", "loading", "loader", "spinner", "logo", "//:0")
SWEEP_EXCLUDED_TOKENS = PLACEHOLDER_TOKENS + ("icon", "button", "arrow", "banner")
# The broad sweep only keeps images that look like product shots
SWEEP_HINTS = ("product", "item", "ekmcdn.com")

BRAND_SELECTORS = (
    ".brand",
    ".manufacturer",
    ".product-brand",
    "[data-brand]",
    ".brand-name",
    ".maker",
)

SPEC_SELECTORS = (
    "table tr",
    ".specs li",
    ".specifications li",
    ".product-info li",
    ".product-details li",
    ".attributes li",
)

_TITLE_SEPARATORS_RE = re.compile(r"\s+[|\-–—:]\s+|\s*\|\s*")


@dataclass
class PageContext:
    """Parsed page handed to every strategy."""

    page: RenderedPage
    soup: BeautifulSoup
    source_name: str = SOURCE_NAME

    @classmethod
    def from_page(cls, page: RenderedPage, source_name: str = SOURCE_NAME) -> "PageContext":
        return cls(page=page, soup=BeautifulSoup(page.html, "html.parser"), source_name=source_name)

    def body_text(self) -> str:
        body = self.soup.body or self.soup
        return body.get_text(" ", strip=True)


@dataclass(frozen=True)
class Strategy(Generic[T]):
    """One way of finding a field value; ``accept`` decides if it counts."""

    name: str
    find: Callable[[PageContext], Optional[T]]
    accept: Callable[[T], bool] = bool


def first_match(strategies: Iterable[Strategy[T]], ctx: PageContext) -> Optional[T]:
    """Evaluate strategies in order and return the first accepted value."""
    for strategy in strategies:
        value = strategy.find(ctx)
        if value is not None and strategy.accept(value):
            return value
    return None


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _select_text(selector: str) -> Callable[[PageContext], Optional[str]]:
    def find(ctx: PageContext) -> Optional[str]:
        el = ctx.soup.select_one(selector)
        return _clean_text(el.get_text(" ")) if el else None
    return find


# ---------------------------------------------------------------------------
# Name
# ---------------------------------------------------------------------------

def title_to_name(title: str, source_name: str = SOURCE_NAME) -> Optional[str]:
    """Product name from a page title, dropping site-name segments.

    ``"Rose Soap | Northwest Cosmetics"`` becomes ``"Rose Soap"``.
    """
    source_key = source_name.lower().split()[0] if source_name else ""
    for segment in _TITLE_SEPARATORS_RE.split(title or ""):
        segment = _clean_text(segment)
        if segment and not (source_key and source_key in segment.lower()):
            return segment
    return None


def _title_name(ctx: PageContext) -> Optional[str]:
    title = ctx.page.title
    if not title and ctx.soup.title:
        title = ctx.soup.title.get_text()
    return title_to_name(title or "", ctx.source_name)


NAME_STRATEGIES: Sequence[Strategy[str]] = tuple(
    Strategy(f"css:{selector}", _select_text(selector), lambda text: len(text) > 2)
    for selector in NAME_SELECTORS
) + (Strategy("page-title", _title_name),)


def extract_name(ctx: PageContext) -> str:
    name = first_match(NAME_STRATEGIES, ctx) or ""
    return name[:NAME_MAX_LENGTH]


# ---------------------------------------------------------------------------
# Description
# ---------------------------------------------------------------------------

def _meta_description(ctx: PageContext) -> Optional[str]:
    meta = ctx.soup.find("meta", attrs={"name": "description"})
    if meta and meta.get("content"):
        return _clean_text(meta["content"])
    return None


DESCRIPTION_STRATEGIES: Sequence[Strategy[str]] = tuple(
    Strategy(f"css:{selector}", _select_text(selector), lambda text: len(text) > 20)
    for selector in DESCRIPTION_SELECTORS
) + (Strategy("meta-description", _meta_description),)


def extract_description(ctx: PageContext, name: str) -> str:
    description = first_match(DESCRIPTION_STRATEGIES, ctx)
    if not description:
        description = f"Premium {name} from {ctx.source_name}"
    return description[:DESCRIPTION_MAX_LENGTH]


# ---------------------------------------------------------------------------
# Price
# ---------------------------------------------------------------------------

def parse_price_text(text: str) -> Optional[Decimal]:
    """First decimal amount (up to 2 places) in a price element's text."""
    if not text:
        return None
    match = _PRICE_TOKEN_RE.search(text.replace(",", ""))
    if not match:
        return None
    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return None


def _select_price(selector: str) -> Callable[[PageContext], Optional[Decimal]]:
    def find(ctx: PageContext) -> Optional[Decimal]:
        el = ctx.soup.select_one(selector)
        if el is None:
            return None
        raw = el.get("data-price") or el.get("content") or el.get_text(" ")
        return parse_price_text(str(raw))
    return find


def _text_price(pattern: "re.Pattern[str]") -> Callable[[PageContext], Optional[Decimal]]:
    def find(ctx: PageContext) -> Optional[Decimal]:
        for match in pattern.finditer(ctx.body_text().replace(",", "")):
            try:
                value = Decimal(match.group(1))
            except InvalidOperation:
                continue
            if value > 0:
                return value
        return None
    return find


def _positive(value: Decimal) -> bool:
    return value > 0


PRICE_STRATEGIES: Sequence[Strategy[Decimal]] = tuple(
    Strategy(f"css:{selector}", _select_price(selector), _positive)
    for selector in PRICE_SELECTORS
) + tuple(
    Strategy(f"text:{pattern.pattern}", _text_price(pattern), _positive)
    for pattern in PRICE_TEXT_PATTERNS
)


def extract_price(ctx: PageContext) -> Decimal:
    """Scraped price, or 0 when the page shows none."""
    return first_match(PRICE_STRATEGIES, ctx) or Decimal("0")


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def _image_src(img: Tag, base_url: str) -> str:
    for attr in ("src", "data-src", "data-lazy-src"):
        value = img.get(attr)
        if value and not str(value).startswith("data:"):
            return absolutize(str(value), base_url)
    return ""


def _attr_int(img: Tag, attr: str) -> int:
    match = re.match(r"\d+", str(img.get(attr) or ""))
    return int(match.group(0)) if match else 0


def _known_urls(img: Tag, base_url: str) -> List[str]:
    """Every absolute URL an <img> may have been measured under, srcset included."""
    urls = [str(img.get(attr) or "") for attr in ("src", "data-src", "data-lazy-src")]
    for attr in ("srcset", "data-srcset"):
        urls.extend(candidate.split()[0] for candidate in str(img.get(attr) or "").split(",") if candidate.strip())
    return [absolutize(url, base_url) for url in urls if url and not url.startswith("data:")]


def _metrics(ctx: PageContext, img: Tag, src: str) -> ImageMetrics:
    for url in [src] + _known_urls(img, ctx.page.url):
        measured = ctx.page.images.get(url)
        if measured is not None:
            return measured
    # Not measured in the browser: fall back to declared attributes
    return ImageMetrics(width=_attr_int(img, "width"), height=_attr_int(img, "height"))


def _images_for(ctx: PageContext, selector: str) -> List[Tag]:
    images: List[Tag] = []
    for el in ctx.soup.select(selector):
        if el.name == "img":
            images.append(el)
        else:
            images.extend(el.find_all("img"))
    return images


def _primary_ok(src: str, metrics: ImageMetrics) -> bool:
    lowered = src.lower()
    return (
        is_http_url(src)
        and not any(token in lowered for token in PLACEHOLDER_TOKENS)
        and metrics.best_width >= PRIMARY_IMAGE_MIN_SIZE
        and metrics.best_height >= PRIMARY_IMAGE_MIN_SIZE
    )


def _sweep_ok(src: str, alt: str, metrics: ImageMetrics) -> bool:
    lowered = src.lower()
    if not is_http_url(src) or any(token in lowered for token in SWEEP_EXCLUDED_TOKENS):
        return False
    if max(metrics.best_width, metrics.best_height) < SWEEP_IMAGE_MIN_SIZE:
        return False
    return any(hint in lowered for hint in SWEEP_HINTS) or "product" in alt.lower()


def extract_images(ctx: PageContext, limit: int = MAX_IMAGES_PER_PRODUCT) -> List[str]:
    """Product image URLs, de-duplicated, in page order, capped at ``limit``."""
    found: List[str] = []

    def add(src: str) -> None:
        if src not in found:
            found.append(src)

    base = ctx.page.url
    for selector in IMAGE_SELECTORS:
        for img in _images_for(ctx, selector):
            src = _image_src(img, base)
            if src and _primary_ok(src, _metrics(ctx, img, src)):
                add(src)

    if len(found) < limit:
        for img in ctx.soup.find_all("img"):
            src = _image_src(img, base)
            if src and src not in found and _sweep_ok(src, str(img.get("alt") or ""), _metrics(ctx, img, src)):
                add(src)

    return found[:limit]


# ---------------------------------------------------------------------------
# Brand and specifications
# ---------------------------------------------------------------------------

BRAND_STRATEGIES: Sequence[Strategy[str]] = tuple(
    Strategy(f"css:{selector}", _select_text(selector)) for selector in BRAND_SELECTORS
)


def extract_brand(ctx: PageContext) -> str:
    brand = first_match(BRAND_STRATEGIES, ctx) or ctx.source_name
    return brand[:BRAND_MAX_LENGTH]


def extract_specifications(ctx: PageContext) -> Dict[str, str]:
    """``key: value`` pairs from table rows and list items.

    Length bounds keep ordinary prose that happens to contain a colon out.
    """
    specs: Dict[str, str] = {}
    for selector in SPEC_SELECTORS:
        for el in ctx.soup.select(selector):
            text = _clean_text(el.get_text(" "))
            if ":" not in text:
                continue
            key, _, value = text.partition(":")
            key, value = key.strip(), value.strip()
            if key and value and len(key) < SPEC_KEY_MAX_LENGTH and len(value) < SPEC_VALUE_MAX_LENGTH:
                specs[key] = value
    return specs


# ---------------------------------------------------------------------------
# Whole page
# ---------------------------------------------------------------------------

def extract_product(
    page: RenderedPage,
    source_name: str = SOURCE_NAME,
    excluded_keywords: Sequence[str] = EXCLUDED_KEYWORDS,
) -> ExtractedProduct:
    """Extract a product from a rendered page.

    Raises:
        ExtractionError: If no usable product name was found
        ExcludedProductError: If the name or description hits an exclusion keyword
    """
    ctx = PageContext.from_page(page, source_name)

    name = extract_name(ctx)
    if len(name) < 2:
        raise ExtractionError(f"No valid product data extracted from {page.url}")

    description = extract_description(ctx, name)

    # Fragrances can sit at innocuous URLs, so check the content as well
    keyword = matched_keyword(f"{name} {description}", excluded_keywords)
    if keyword:
        raise ExcludedProductError(f"Excluded product ({keyword}): {name}", keyword=keyword)

    return ExtractedProduct(
        name=name,
        description=description,
        price=extract_price(ctx),
        source_url=page.url,
        images=extract_images(ctx),
        brand=extract_brand(ctx),
        specifications=extract_specifications(ctx),
    )
