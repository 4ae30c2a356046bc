"""Reconciliation: turn an extracted product into a create, update or skip.

Steps, in order:

1. Resolve the price. The price list wins; a positive scraped price plus
   markup is the fallback; otherwise the record is rejected.
2. Look for an existing product by name or source URL. Without update mode
   an existing product is skipped with no further repository calls.
3. Download images. Zero stored images rejects the record.
4. Build the catalog record (new SKU for creates; id and SKU kept on updates).
5. Persist through the repository.
"""

import hashlib
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Optional

from ingest.config import (
    DEFAULT_STOCK_QUANTITY,
    FEATURED_PERCENT,
    LOW_STOCK_THRESHOLD,
    PRICE_MARKUP,
    PRODUCT_TAGS,
    SCHEMA_VERSION,
    SKU_PREFIX,
    SOURCE_NAME,
)
from ingest.exceptions import NoValidPriceError, ReconciliationError
from ingest.images import ImageDownloader, sanitize_folder_name
from ingest.logging_config import get_logger
from ingest.models import (
    Category,
    ExtractedProduct,
    Inventory,
    PriceRecord,
    Product,
    ProductMetadata,
    ReconcileAction,
    ReconcileResult,
)
from ingest.price_list import normalize_name
from ingest.repository import CatalogRepository

__all__ = [
    "FALLBACK_CATEGORY",
    "ResolvedPrice",
    "resolve_price",
    "is_featured",
    "SkuGenerator",
    "Reconciler",
]

logger = get_logger("reconcile")

FALLBACK_CATEGORY = "Other"
SHORT_DESCRIPTION_LENGTH = 200


@dataclass(frozen=True)
class ResolvedPrice:
    price: Decimal
    original_price: Decimal
    brand: str
    from_price_list: bool


def resolve_price(
    extracted: ExtractedProduct,
    prices: Dict[str, PriceRecord],
    markup: Decimal = PRICE_MARKUP,
) -> ResolvedPrice:
    """Retail price for a product; the price list always beats the page.

    Raises:
        NoValidPriceError: If neither source yields a positive price
    """
    record = prices.get(normalize_name(extracted.name))
    if record is not None:
        return ResolvedPrice(
            price=record.final_price,
            original_price=record.original_price,
            brand=record.brand or extracted.brand,
            from_price_list=True,
        )
    if extracted.price and extracted.price > 0:
        return ResolvedPrice(
            price=extracted.price + markup,
            original_price=extracted.price,
            brand=extracted.brand,
            from_price_list=False,
        )
    raise NoValidPriceError(f"No valid price for '{extracted.name}'")


def is_featured(name: str, percent: int = FEATURED_PERCENT) -> bool:
    """Stable pick of roughly ``percent``% of products, by name."""
    digest = hashlib.md5(name.encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % 100 < percent


class SkuGenerator:
    """``{PREFIX}-{NAME}-{MILLIS}`` SKUs, upper-cased.

    The millisecond component never repeats within a generator, even when
    two products are created in the same millisecond.
    """

    def __init__(self, prefix: str = SKU_PREFIX, clock: Callable[[], float] = time.time) -> None:
        self.prefix = prefix
        self._clock = clock
        self._last_millis = 0
        self._lock = threading.Lock()

    def _next_millis(self) -> int:
        with self._lock:
            millis = max(int(self._clock() * 1000), self._last_millis + 1)
            self._last_millis = millis
            return millis

    def generate(self, name: str) -> str:
        return f"{self.prefix}-{sanitize_folder_name(name)}-{self._next_millis()}".upper()


class Reconciler:
    """Merges extracted products into the catalog."""

    def __init__(
        self,
        repository: CatalogRepository,
        prices: Dict[str, PriceRecord],
        downloader: ImageDownloader,
        update_mode: bool = False,
        markup: Decimal = PRICE_MARKUP,
        sku_generator: Optional[SkuGenerator] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repository = repository
        self.prices = prices
        self.downloader = downloader
        self.update_mode = update_mode
        self.markup = markup
        self.skus = sku_generator or SkuGenerator()
        self._now = now
        self._categories: Dict[str, Category] = {}

    def ensure_category(self, name: str, sort_order: int = 0) -> Category:
        """Get-or-create a category by name.

        If the repository fails, the product is filed under ``Other`` instead.
        """
        name = name or FALLBACK_CATEGORY
        if name in self._categories:
            return self._categories[name]
        try:
            category = self._get_or_create(name, sort_order)
        except Exception as e:
            if name == FALLBACK_CATEGORY:
                raise
            logger.error(f"Could not get or create category '{name}': {e}; using '{FALLBACK_CATEGORY}'")
            category = self._get_or_create(FALLBACK_CATEGORY, 0)
        self._categories[name] = category
        return category

    def _get_or_create(self, name: str, sort_order: int) -> Category:
        existing = self.repository.find_category_by_name(name)
        if existing is not None:
            return existing
        logger.info(f"Creating category: {name}")
        return self.repository.create_category(Category(
            name=name,
            description=f"Premium {name} products from {SOURCE_NAME}",
            is_active=True,
            sort_order=sort_order,
        ))

    def reconcile(self, extracted: ExtractedProduct, category: Category) -> ReconcileResult:
        """Create, update or skip one product.

        Raises:
            ReconciliationError: No valid price, or no image could be stored
        """
        price = resolve_price(extracted, self.prices, self.markup)

        existing = self.repository.find_product_by_name_or_source_url(extracted.name, extracted.source_url)
        if existing is not None and not self.update_mode:
            logger.info(f"Product exists, skipping: {extracted.name}")
            return ReconcileResult(ReconcileAction.SKIPPED, existing, reason="exists")

        images = self.downloader.download_all(extracted.images, extracted.name)
        if not images:
            raise ReconciliationError(f"No images could be stored for '{extracted.name}'")

        metadata = ProductMetadata(
            source_url=extracted.source_url,
            scraped_at=self._now(),
            original_price=price.original_price,
            price_markup=self.markup,
            specifications=dict(extracted.specifications),
            original_brand=extracted.brand,
            version=SCHEMA_VERSION,
        )
        product = Product(
            name=extracted.name,
            description=extracted.description,
            short_description=extracted.description[:SHORT_DESCRIPTION_LENGTH],
            price=price.price,
            sku=existing.sku if existing is not None else self.skus.generate(extracted.name),
            category_id=category.id,
            brand=price.brand or SOURCE_NAME,
            metadata=metadata,
            images=images,
            inventory=Inventory(
                quantity=DEFAULT_STOCK_QUANTITY,
                track_quantity=True,
                low_stock_threshold=LOW_STOCK_THRESHOLD,
            ),
            tags=[category.name, *PRODUCT_TAGS],
            is_active=True,
            is_featured=is_featured(extracted.name),
        )

        if existing is not None:
            saved = self.repository.update_product(existing.id, product)
            logger.info(f"Updated product: {saved.name} ({saved.sku})")
            return ReconcileResult(ReconcileAction.UPDATED, saved)

        saved = self.repository.create_product(product)
        logger.info(f"Created product: {saved.name} ({saved.sku}) at {saved.price}")
        return ReconcileResult(ReconcileAction.CREATED, saved)
