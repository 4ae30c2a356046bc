"""Configuration and constants for the catalog ingestion pipeline."""

import os
from decimal import Decimal
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv

__all__ = [
    "PROJECT_ROOT",
    "SOURCE_NAME",
    "BASE_URL",
    "SITEMAP_URL",
    "SKU_PREFIX",
    "PRICE_MARKUP",
    "PRICE_LIST_PATH",
    "PRICE_LIST_FIRST_ROW",
    "PRICE_LIST_COLUMNS",
    "PRICE_LIST_HEADER_HINTS",
    "FRAGRANCE_COMMODITY_CODE",
    "EXCLUDED_KEYWORDS",
    "EXCLUDED_PRODUCT_PATHS",
    "UPLOAD_DIR",
    "PRODUCT_IMAGE_SUBDIR",
    "UPLOAD_URL_PREFIX",
    "DB_PATH",
    "USER_AGENT",
    "VIEWPORT",
    "MAX_RETRIES",
    "RETRY_DELAY",
    "RETRY_STRATEGY",
    "REQUEST_COOLDOWN",
    "RENDER_SETTLE_DELAY",
    "PAGE_TIMEOUT",
    "IMAGE_TIMEOUT",
    "MAX_IMAGES_PER_PRODUCT",
    "SITEMAP_MIN_LENGTH",
    "TEST_MODE_CATEGORY_LIMIT",
    "TEST_MODE_PRODUCT_LIMIT",
    "DEFAULT_STOCK_QUANTITY",
    "LOW_STOCK_THRESHOLD",
    "FEATURED_PERCENT",
    "PRODUCT_TAGS",
    "SCHEMA_VERSION",
]

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Variables already set in the environment take precedence over .env
load_dotenv(dotenv_path=PROJECT_ROOT / ".env")

# Source site
SOURCE_NAME = "Northwest Cosmetics"
BASE_URL = os.getenv("INGEST_BASE_URL", "https://northwest-cosmetics.com").rstrip("/")
SITEMAP_URL = os.getenv("INGEST_SITEMAP_URL", f"{BASE_URL}/sitemap.asp")
SKU_PREFIX = "NWC"

# Pricing: retail price = authority (or scraped) price + fixed markup
PRICE_MARKUP = Decimal(os.getenv("INGEST_PRICE_MARKUP", "0.50"))

# Price list workbook layout. Rows and columns are 1-based, as shown in Excel.
PRICE_LIST_PATH = os.getenv("INGEST_PRICE_LIST", str(PROJECT_ROOT / "data" / "NWC Pricelist.xlsx"))
PRICE_LIST_FIRST_ROW = 16
PRICE_LIST_COLUMNS: Dict[str, int] = {
    "brand": 1,
    "name": 2,
    "barcode": 3,
    "item_code": 4,
    "unit_price": 6,
    "commodity_code": 10,
}
# Words expected somewhere in the header cell of each column (row above the data)
PRICE_LIST_HEADER_HINTS: Dict[str, Tuple[str, ...]] = {
    "brand": ("brand",),
    "name": ("description", "name", "product"),
    "barcode": ("barcode", "ean"),
    "item_code": ("item", "code"),
    "unit_price": ("price", "unit"),
    "commodity_code": ("commodity",),
}
FRAGRANCE_COMMODITY_CODE = 33030010

# Standing business rule: fragrances are never imported
_DEFAULT_EXCLUDED = "fragrance,perfume,eau de toilette,cologne"
EXCLUDED_KEYWORDS: Tuple[str, ...] = tuple(
    kw.strip().lower()
    for kw in os.getenv("INGEST_EXCLUDED_KEYWORDS", _DEFAULT_EXCLUDED).split(",")
    if kw.strip()
)

# Utility paths and asset extensions that are never product pages
EXCLUDED_PRODUCT_PATHS: Tuple[str, ...] = (
    "index.asp",
    "cart",
    "terms",
    "privacy",
    "sitemap",
    "contact",
    "login",
    "register",
    ".css",
    ".js",
    ".png",
    ".jpg",
    ".gif",
    "cdn.",
)

# Storage
# Served as /uploads; product images live in its products/ subdirectory
UPLOAD_DIR = os.getenv("INGEST_UPLOAD_DIR", str(PROJECT_ROOT / "uploads"))
PRODUCT_IMAGE_SUBDIR = "products"
UPLOAD_URL_PREFIX = f"/uploads/{PRODUCT_IMAGE_SUBDIR}"
DB_PATH = os.getenv("INGEST_DB_PATH", str(PROJECT_ROOT / "data" / "catalog.db"))

# Browser
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1920, "height": 1080}

# Retry settings. The sitemap always backs off linearly.
MAX_RETRIES = 3
RETRY_DELAY = 2.0  # seconds
RETRY_STRATEGY = "exponential"  # or "linear"

# Polite rate limit between category and product fetches (seconds)
REQUEST_COOLDOWN = 1.0
# Wait after DOMContentLoaded for client-side rendering (seconds)
RENDER_SETTLE_DELAY = 1.0

# Timeouts (seconds)
PAGE_TIMEOUT = 30
IMAGE_TIMEOUT = 30

MAX_IMAGES_PER_PRODUCT = 5
SITEMAP_MIN_LENGTH = 1000

# --test smoke-run caps
TEST_MODE_CATEGORY_LIMIT = 2
TEST_MODE_PRODUCT_LIMIT = 5

# Catalog defaults for newly created products
DEFAULT_STOCK_QUANTITY = 100
LOW_STOCK_THRESHOLD = 10
FEATURED_PERCENT = 10
PRODUCT_TAGS: Tuple[str, ...] = ("Northwest", "Cosmetics")
SCHEMA_VERSION = "2.0"
