"""SQLite catalog store."""

import json
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from ingest.config import DB_PATH
from ingest.models import Category, Inventory, Product, ProductMetadata, StoredImage
from ingest.repository import CatalogRepository

__all__ = [
    "DEFAULT_DB_PATH",
    "get_connection",
    "init_db",
    "SQLiteCatalogRepository",
]

DEFAULT_DB_PATH = DB_PATH


@contextmanager
def get_connection(db_path: str = DEFAULT_DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections."""
    # Ensure directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL,
                slug TEXT NOT NULL,
                description TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                sort_order INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # JSON columns hold the nested parts of a product; source_url is
        # denormalised out of metadata_json for the duplicate lookup
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                short_description TEXT,
                price TEXT NOT NULL,
                sku TEXT UNIQUE NOT NULL,
                category_id INTEGER,
                brand TEXT,
                source_url TEXT,
                images_json TEXT,
                inventory_json TEXT,
                tags_json TEXT,
                metadata_json TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                is_featured INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (category_id) REFERENCES categories(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_name ON products(name)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_source_url ON products(source_url)")

        conn.commit()


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _product_columns(product: Product) -> Dict[str, Any]:
    data = product.to_dict()
    return {
        "name": product.name,
        "description": product.description,
        "short_description": product.short_description,
        "price": str(product.price),
        "sku": product.sku,
        "category_id": product.category_id,
        "brand": product.brand,
        "source_url": product.metadata.source_url,
        "images_json": json.dumps(data["images"], ensure_ascii=False),
        "inventory_json": json.dumps(data["inventory"]),
        "tags_json": json.dumps(product.tags, ensure_ascii=False),
        "metadata_json": json.dumps(data["metadata"], ensure_ascii=False),
        "is_active": int(product.is_active),
        "is_featured": int(product.is_featured),
    }


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        is_active=bool(row["is_active"]),
        sort_order=row["sort_order"],
    )


def _optional_decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _row_to_product(row: sqlite3.Row) -> Product:
    meta = json.loads(row["metadata_json"] or "{}")
    metadata = ProductMetadata(
        source_url=meta.get("source_url", row["source_url"] or ""),
        scraped_at=datetime.fromisoformat(meta["scraped_at"]) if meta.get("scraped_at") else datetime.now(),
        original_price=_optional_decimal(meta.get("original_price")),
        price_markup=_optional_decimal(meta.get("price_markup")),
        specifications=meta.get("specifications") or {},
        original_brand=meta.get("original_brand", ""),
        version=meta.get("version", ""),
    )
    return Product(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        short_description=row["short_description"] or "",
        price=Decimal(row["price"]),
        sku=row["sku"],
        category_id=row["category_id"],
        brand=row["brand"] or "",
        metadata=metadata,
        images=[StoredImage(**img) for img in json.loads(row["images_json"] or "[]")],
        inventory=Inventory(**json.loads(row["inventory_json"] or "{}")),
        tags=json.loads(row["tags_json"] or "[]"),
        is_active=bool(row["is_active"]),
        is_featured=bool(row["is_featured"]),
    )


class SQLiteCatalogRepository(CatalogRepository):
    """Catalog repository backed by a single SQLite file.

    Each call opens its own short-lived connection, so the repository can be
    shared with a background thread (see ``web.api``).
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH) -> None:
        self.db_path = db_path
        init_db(db_path)

    def find_category_by_name(self, name: str) -> Optional[Category]:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM categories WHERE name = ?", (name,)).fetchone()
            return _row_to_category(row) if row else None

    def create_category(self, category: Category) -> Category:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("""
                INSERT INTO categories (name, slug, description, is_active, sort_order)
                VALUES (?, ?, ?, ?, ?)
            """, (category.name, _slugify(category.name), category.description,
                  int(category.is_active), category.sort_order))
            conn.commit()
            category.id = cursor.lastrowid
        return category

    def find_product_by_name_or_source_url(self, name: str, source_url: str) -> Optional[Product]:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM products WHERE name = ? OR source_url = ? ORDER BY id LIMIT 1",
                (name, source_url),
            ).fetchone()
            return _row_to_product(row) if row else None

    def create_product(self, product: Product) -> Product:
        columns = _product_columns(product)
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                f"INSERT INTO products ({names}) VALUES ({placeholders})",
                list(columns.values()),
            )
            conn.commit()
            product.id = cursor.lastrowid
        return product

    def update_product(self, product_id: int, product: Product) -> Product:
        columns = _product_columns(product)
        set_clause = ", ".join(f"{name} = ?" for name in columns)
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE products SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                list(columns.values()) + [product_id],
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise KeyError(f"No product with id {product_id}")
        product.id = product_id
        return product

    def get_product_count(self, category_id: Optional[int] = None) -> int:
        with get_connection(self.db_path) as conn:
            if category_id is not None:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM products WHERE category_id = ?", (category_id,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) AS count FROM products").fetchone()
            return row["count"]

    def get_category_count(self) -> int:
        with get_connection(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) AS count FROM categories").fetchone()["count"]

    def list_products(self, category_id: Optional[int] = None) -> List[Product]:
        with get_connection(self.db_path) as conn:
            if category_id is not None:
                rows = conn.execute(
                    "SELECT * FROM products WHERE category_id = ? ORDER BY id", (category_id,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM products ORDER BY id").fetchall()
            return [_row_to_product(row) for row in rows]
