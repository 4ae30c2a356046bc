"""Catalog repository interface.

The pipeline reads and writes categories and products only through this
interface, so the backing store can be swapped (SQLite by default, see
``ingest.db``).
"""

from abc import ABC, abstractmethod
from typing import Optional

from ingest.models import Category, Product

__all__ = ["CatalogRepository"]


class CatalogRepository(ABC):
    """Data access for the two catalog entities the pipeline touches."""

    @abstractmethod
    def find_category_by_name(self, name: str) -> Optional[Category]:
        ...

    @abstractmethod
    def create_category(self, category: Category) -> Category:
        """Persist a new category and return it with its id set."""

    @abstractmethod
    def find_product_by_name_or_source_url(self, name: str, source_url: str) -> Optional[Product]:
        """Existing product whose name OR source URL matches, if any."""

    @abstractmethod
    def create_product(self, product: Product) -> Product:
        """Persist a new product and return it with its id set."""

    @abstractmethod
    def update_product(self, product_id: int, product: Product) -> Product:
        """Overwrite the mutable fields of an existing product."""

    def close(self) -> None:
        """Release any held resources. Default: nothing to release."""
