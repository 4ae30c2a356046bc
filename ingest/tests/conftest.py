"""Shared fixtures for the ingest test suite: fake browser, in-memory
repository and a fake HTTP session for image downloads."""

from decimal import Decimal
from typing import Dict, List, Optional, Union

import pytest

from ingest.browser import ImageMetrics, RenderedPage
from ingest.db import init_db
from ingest.events import ProgressBridge
from ingest.exceptions import PageLoadError
from ingest.images import ImageDownloader
from ingest.models import Category, PriceRecord, Product
from ingest.repository import CatalogRepository

BASE = "https://northwest-cosmetics.com"


# ---------------------------------------------------------------------------
# Browser
# ---------------------------------------------------------------------------

Scripted = Union[RenderedPage, Exception]


class FakeBrowser:
    """Serves scripted pages by URL.

    A URL maps to a page, an exception, or a list of those consumed one per
    fetch (the last entry repeats).
    """

    def __init__(self, pages: Optional[Dict[str, Union[Scripted, List[Scripted]]]] = None):
        self.pages = dict(pages or {})
        self.fetches: List[str] = []
        self.closed = False

    def fetch(self, url: str, timeout=None, check_title: bool = False) -> RenderedPage:
        self.fetches.append(url)
        if url not in self.pages:
            raise PageLoadError("HTTP 404 - page failed to load", url=url, status=404)
        entry = self.pages[url]
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, Exception):
            raise entry
        return entry

    def close(self) -> None:
        self.closed = True


def make_page(url: str, body: str, title: str = "Product | Northwest Cosmetics", head: str = "",
              images: Optional[Dict[str, ImageMetrics]] = None) -> RenderedPage:
    html = f"<html><head><title>{title}</title>{head}</head><body>{body}</body></html>"
    return RenderedPage(url=url, html=html, title=title, status=200, images=images or {})


def product_body(name: str, price: str = "£3.50", images: Optional[List[str]] = None) -> str:
    imgs = "".join(
        f'<img src="{src}" width="400" height="400" alt="{name}">' for src in (images or [])
    )
    return (
        f'<h1>{name}</h1>'
        f'<div class="product-description">{name} is a gentle everyday product for all skin types.</div>'
        f'<span class="price">{price}</span>'
        f'<div class="product-image">{imgs}</div>'
    )


def sitemap_html(category_paths: List[str]) -> str:
    links = "".join(f'<a href="{path}">{path}</a>' for path in category_paths)
    # Real sitemaps are long; pad past the minimum length check
    return f"<html><body>{links}<p>{'x' * 1200}</p></body></html>"


def category_html(product_paths: List[str]) -> str:
    links = "".join(f'<a href="{path}">{path}</a>' for path in product_paths)
    return f"<html><body>{links}</body></html>"


@pytest.fixture
def fake_browser():
    return FakeBrowser()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class RecordingRepository(CatalogRepository):
    """In-memory catalog that records every call made to it."""

    def __init__(self):
        self.categories: Dict[str, Category] = {}
        self.products: Dict[int, Product] = {}
        self.calls: List[str] = []
        self.closed = False
        self._next_id = 1

    def _id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    @property
    def write_calls(self) -> List[str]:
        return [c for c in self.calls if c.startswith(("create", "update"))]

    def find_category_by_name(self, name):
        self.calls.append("find_category_by_name")
        return self.categories.get(name)

    def create_category(self, category):
        self.calls.append("create_category")
        category.id = self._id()
        self.categories[category.name] = category
        return category

    def find_product_by_name_or_source_url(self, name, source_url):
        self.calls.append("find_product_by_name_or_source_url")
        for product in self.products.values():
            if product.name == name or product.metadata.source_url == source_url:
                return product
        return None

    def create_product(self, product):
        self.calls.append("create_product")
        product.id = self._id()
        self.products[product.id] = product
        return product

    def update_product(self, product_id, product):
        self.calls.append("update_product")
        product.id = product_id
        self.products[product_id] = product
        return product

    def close(self):
        self.closed = True


@pytest.fixture
def repository():
    return RecordingRepository()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database."""
    db_path = str(tmp_path / "catalog.db")
    init_db(db_path)
    return db_path


# ---------------------------------------------------------------------------
# HTTP session for image downloads
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, status_code: int = 200, chunks: Optional[List[bytes]] = None,
                 error: Optional[Exception] = None):
        self.status_code = status_code
        self.chunks = chunks if chunks is not None else [b"\xff\xd8image-bytes"]
        self.error = error

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """requests.Session stand-in; unknown URLs answer 200 with a small body."""

    def __init__(self, responses: Optional[Dict[str, FakeResponse]] = None):
        self.responses = dict(responses or {})
        self.requested: List[str] = []

    def get(self, url, stream=False, timeout=None):
        self.requested.append(url)
        return self.responses.get(url, FakeResponse())


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def downloader(upload_dir, fake_session):
    return ImageDownloader(str(upload_dir), session=fake_session)


@pytest.fixture
def bridge():
    return ProgressBridge()


@pytest.fixture
def rose_soap_prices():
    return {
        "rose soap": PriceRecord(
            normalized_name="rose soap",
            original_price=Decimal("2.00"),
            final_price=Decimal("2.50"),
            brand="Acme",
            barcode="5012345678900",
            item_code="RS-100",
        )
    }
