"""Data models for the ingestion pipeline.

Transient records (price records, category links, extracted products, run
statistics) live only for the duration of a run. Category and Product mirror
the persisted catalog entities and are what the repository reads and writes.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

__all__ = [
    "PriceRecord",
    "CategoryLink",
    "ExtractedProduct",
    "StoredImage",
    "Inventory",
    "ProductMetadata",
    "Category",
    "Product",
    "ReconcileAction",
    "ReconcileResult",
    "RunState",
    "RunStats",
    "RunReport",
    "RunOptions",
]


@dataclass(frozen=True)
class PriceRecord:
    """One priced row of the price list, keyed by normalized product name."""

    normalized_name: str
    original_price: Decimal
    final_price: Decimal
    brand: str = ""
    barcode: str = ""
    item_code: str = ""


@dataclass(frozen=True)
class CategoryLink:
    url: str
    derived_name: str


@dataclass
class ExtractedProduct:
    """What the page extractor recovered from one rendered product page."""

    name: str
    description: str
    price: Decimal
    source_url: str
    images: List[str] = field(default_factory=list)
    brand: str = ""
    specifications: Dict[str, str] = field(default_factory=dict)


@dataclass
class StoredImage:
    url: str
    alt: str
    is_primary: bool = False


@dataclass
class Inventory:
    quantity: int = 0
    track_quantity: bool = True
    low_stock_threshold: int = 0


@dataclass
class ProductMetadata:
    source_url: str
    scraped_at: datetime
    original_price: Optional[Decimal] = None
    price_markup: Optional[Decimal] = None
    specifications: Dict[str, str] = field(default_factory=dict)
    original_brand: str = ""
    version: str = ""


@dataclass
class Category:
    name: str
    description: str = ""
    is_active: bool = True
    sort_order: int = 0
    id: Optional[int] = None


@dataclass
class Product:
    """A catalog product as persisted by the repository."""

    name: str
    description: str
    price: Decimal
    sku: str
    category_id: Optional[int]
    brand: str
    metadata: ProductMetadata
    images: List[StoredImage] = field(default_factory=list)
    inventory: Inventory = field(default_factory=Inventory)
    short_description: str = ""
    tags: List[str] = field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Plain-JSON view of the product (Decimals as strings)."""
        data = asdict(self)
        data["price"] = str(self.price)
        meta = data["metadata"]
        meta["scraped_at"] = self.metadata.scraped_at.isoformat()
        for key in ("original_price", "price_markup"):
            if meta[key] is not None:
                meta[key] = str(meta[key])
        return data


class ReconcileAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class ReconcileResult:
    action: ReconcileAction
    product: Optional[Product] = None
    reason: str = ""


class RunState(str, Enum):
    INITIALIZING = "Initializing"
    LOADING_PRICE_AUTHORITY = "Loading price list"
    LOADING_SITEMAP = "Loading sitemap"
    PROCESSING_CATEGORIES = "Processing categories"
    PROCESSING_PRODUCTS = "Processing products"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class RunStats:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def record(self, action: ReconcileAction) -> None:
        if action is ReconcileAction.CREATED:
            self.created += 1
        elif action is ReconcileAction.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class RunReport:
    """Structured outcome of a pipeline run. The caller maps it to an exit code."""

    stats: RunStats
    state: RunState
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.COMPLETED


@dataclass
class RunOptions:
    """Run flags, equivalent to the CLI switches."""

    test_mode: bool = False
    product_limit: Optional[int] = None
    update_images: bool = False
    price_list_path: Optional[str] = None
    strict_price_headers: bool = False
