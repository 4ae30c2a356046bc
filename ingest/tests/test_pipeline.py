"""Tests for the import pipeline state machine."""

import threading
from decimal import Decimal

import pytest

from ingest.events import ERROR, FINISH, PROGRESS, START
from ingest.exceptions import PageLoadError, PriceListError
from ingest.models import RunOptions, RunState
from ingest.pipeline import ImportPipeline
from ingest.tests.conftest import BASE, FakeBrowser, category_html, make_page, product_body, sitemap_html

SITEMAP = f"{BASE}/sitemap.asp"
SKIN = f"{BASE}/skin-care-1-c.asp"
HAIR = f"{BASE}/hair-care-2-c.asp"
ROSE = f"{BASE}/rose-soap-101-p.asp"
CREAM = f"{BASE}/hand-cream-102-p.asp"
SHAMPOO = f"{BASE}/shampoo-201-p.asp"


def product_page(url: str, name: str, price: str = "£3.50") -> object:
    images = [f"https://cdn.example.com/{name.lower().replace(' ', '-')}/{i}.jpg" for i in range(2)]
    return make_page(url, product_body(name, price=price, images=images), title=f"{name} | Northwest Cosmetics")


def site_pages() -> dict:
    return {
        SITEMAP: make_page(SITEMAP, sitemap_html(["/skin-care-1-c.asp", "/hair-care-2-c.asp"])),
        SKIN: make_page(SKIN, category_html(["/rose-soap-101-p.asp", "/hand-cream-102-p.asp"])),
        HAIR: make_page(HAIR, category_html(["/shampoo-201-p.asp"])),
        ROSE: product_page(ROSE, "Rose Soap"),
        CREAM: product_page(CREAM, "Hand Cream", price="£4.00"),
        SHAMPOO: product_page(SHAMPOO, "Herbal Shampoo", price="£6.00"),
    }


class Harness:
    """Pipeline wired to fakes, recording sleeps and emitted events."""

    def __init__(self, repository, downloader, bridge, prices=None):
        self.repository = repository
        self.downloader = downloader
        self.bridge = bridge
        self.prices = prices or {}
        self.sleeps = []
        self.events = []
        bridge.subscribe(lambda event, payload: self.events.append((event, payload)))

    def load_prices(self, path, markup, strict_headers):
        return self.prices

    def pipeline(self, browser, options=None, cancel_event=None, **kwargs) -> ImportPipeline:
        return ImportPipeline(
            browser,
            self.repository,
            self.downloader,
            options=options or RunOptions(),
            bridge=self.bridge,
            sleep=self.sleeps.append,
            cancel_event=cancel_event,
            price_loader=kwargs.pop("price_loader", self.load_prices),
            sitemap_url=SITEMAP,
            base_url=BASE,
            markup=Decimal("0.50"),
            **kwargs,
        )

    def names(self):
        return [event for event, _ in self.events]

    def payloads(self, name):
        return [payload for event, payload in self.events if event == name]


@pytest.fixture
def harness(repository, downloader, bridge, rose_soap_prices):
    return Harness(repository, downloader, bridge, prices=rose_soap_prices)


class TestCompletedRun:
    """Tests for a normal run."""

    def test_end_to_end(self, harness, repository):
        browser = FakeBrowser(site_pages())

        report = harness.pipeline(browser).run()

        assert report.state is RunState.COMPLETED
        assert report.succeeded
        assert report.stats.to_dict() == {"processed": 3, "created": 3, "updated": 0, "skipped": 0, "errors": 0}

        rose = repository.find_product_by_name_or_source_url("Rose Soap", ROSE)
        assert rose.price == Decimal("2.50")
        assert rose.metadata.original_price == Decimal("2.00")
        assert len(rose.images) == 2
        assert rose.sku.startswith("NWC-")
        cream = repository.find_product_by_name_or_source_url("Hand Cream", CREAM)
        assert cream.price == Decimal("4.50")

    def test_categories_and_products_in_order(self, harness):
        browser = FakeBrowser(site_pages())
        harness.pipeline(browser).run()
        assert browser.fetches == [SITEMAP, SKIN, ROSE, CREAM, HAIR, SHAMPOO]

    def test_categories_created_with_sitemap_order(self, harness, repository):
        harness.pipeline(FakeBrowser(site_pages())).run()
        assert repository.categories["Skin Care"].sort_order == 0
        assert repository.categories["Hair Care"].sort_order == 1

    def test_cooldown_between_fetches(self, harness):
        harness.pipeline(FakeBrowser(site_pages())).run()
        # One gap between the two categories, one between the two skin care products
        assert harness.sleeps == [1.0, 1.0]

    def test_events(self, harness):
        harness.pipeline(FakeBrowser(site_pages())).run()

        names = harness.names()
        assert names[0] == START
        assert names[-1] == FINISH
        assert names.count(FINISH) == 1
        assert ERROR not in names

        progress = harness.payloads(PROGRESS)
        assert set(progress[0]) == {"current", "total", "scraped", "errors", "skipped", "categories", "url", "phase"}
        last_product = [p for p in progress if p["phase"] == "product"][-1]
        assert last_product["current"] == 3
        assert last_product["total"] == 3
        assert last_product["scraped"] == 3

        finish = harness.payloads(FINISH)[0]
        assert finish["created"] == 3
        assert finish["cancelled"] is False
        assert "error" not in finish

    def test_resources_closed(self, harness, repository):
        browser = FakeBrowser(site_pages())
        harness.pipeline(browser).run()
        assert browser.closed
        assert repository.closed

    def test_second_run_creates_nothing(self, harness, upload_dir):
        browser = FakeBrowser(site_pages())
        harness.pipeline(browser).run()
        files_after_first = sorted(p.name for p in upload_dir.rglob("*"))

        report = harness.pipeline(browser).run()

        assert report.stats.created == 0
        assert report.stats.skipped == 3
        assert sorted(p.name for p in upload_dir.rglob("*")) == files_after_first


class TestSitemap:
    """Tests for sitemap loading and its retry bound."""

    def test_recovers_on_third_attempt(self, harness):
        pages = site_pages()
        pages[SITEMAP] = [PageLoadError("timeout"), PageLoadError("timeout"), pages[SITEMAP]]

        report = harness.pipeline(FakeBrowser(pages)).run()

        assert report.state is RunState.COMPLETED
        # Linear backoff before the 2nd and 3rd attempts
        assert harness.sleeps[:2] == [2.0, 4.0]

    def test_unreachable_sitemap_fails_run(self, harness):
        browser = FakeBrowser({SITEMAP: PageLoadError("timeout")})

        report = harness.pipeline(browser).run()

        assert report.state is RunState.FAILED
        assert not report.succeeded
        assert browser.fetches == [SITEMAP] * 3
        assert harness.payloads(ERROR)[0]["message"]
        assert harness.names().count(FINISH) == 1
        assert harness.payloads(FINISH)[0]["processed"] == 0
        assert "error" in harness.payloads(FINISH)[0]
        assert browser.closed

    def test_short_sitemap_counts_as_failure(self, harness):
        browser = FakeBrowser({SITEMAP: make_page(SITEMAP, '<a href="/skin-care-1-c.asp">x</a>')})
        report = harness.pipeline(browser).run()
        assert report.state is RunState.FAILED

    def test_price_list_error_fails_run(self, harness):
        def broken(path, markup, strict_headers):
            raise PriceListError("unreadable")

        browser = FakeBrowser(site_pages())
        report = harness.pipeline(browser, price_loader=broken).run()

        assert report.state is RunState.FAILED
        assert report.error == "unreadable"
        assert browser.fetches == []


class TestPerItemFailures:
    """Tests for failures that must not abort the run."""

    def test_failing_product_is_counted_and_skipped(self, harness):
        pages = site_pages()
        pages[CREAM] = PageLoadError("HTTP 500")

        browser = FakeBrowser(pages)
        report = harness.pipeline(browser).run()

        assert report.state is RunState.COMPLETED
        assert report.stats.errors == 1
        assert report.stats.created == 2
        assert report.stats.processed == 3
        assert browser.fetches.count(CREAM) == 3

    def test_product_without_price_is_an_error(self, harness):
        pages = site_pages()
        pages[SHAMPOO] = make_page(SHAMPOO, "<h1>Herbal Shampoo</h1>", title="Herbal Shampoo | Northwest Cosmetics")

        browser = FakeBrowser(pages)
        report = harness.pipeline(browser).run()

        assert report.stats.errors == 1
        assert report.stats.created == 2
        assert browser.fetches.count(SHAMPOO) == 1
        # Only the cooldowns, no backoff
        assert harness.sleeps == [1.0, 1.0]

    def test_page_without_product_data_is_not_refetched(self, harness):
        pages = site_pages()
        pages[SHAMPOO] = make_page(SHAMPOO, "<p>Nothing here</p>", title="x | Northwest Cosmetics")

        browser = FakeBrowser(pages)
        report = harness.pipeline(browser).run()

        assert report.stats.errors == 1
        assert browser.fetches.count(SHAMPOO) == 1
        assert harness.sleeps == [1.0, 1.0]

    def test_excluded_product_is_skipped_without_retry(self, harness, repository):
        pages = site_pages()
        pages[CREAM] = product_page(CREAM, "Rose Perfume Mist")

        browser = FakeBrowser(pages)
        report = harness.pipeline(browser).run()

        assert report.stats.skipped == 1
        assert report.stats.errors == 0
        assert browser.fetches.count(CREAM) == 1
        assert repository.find_product_by_name_or_source_url("Rose Perfume Mist", CREAM) is None

    def test_failing_category_is_counted(self, harness):
        pages = site_pages()
        del pages[SKIN]

        report = harness.pipeline(FakeBrowser(pages)).run()

        assert report.state is RunState.COMPLETED
        assert report.stats.errors == 1
        assert report.stats.created == 1


class TestLimits:
    """Tests for test mode and the per-category product limit."""

    def test_product_limit(self, harness):
        report = harness.pipeline(FakeBrowser(site_pages()), options=RunOptions(product_limit=1)).run()
        assert report.stats.processed == 2

    def test_test_mode_caps_categories(self, harness):
        pages = site_pages()
        pages[SITEMAP] = make_page(SITEMAP, sitemap_html(
            ["/skin-care-1-c.asp", "/hair-care-2-c.asp", "/bath-3-c.asp"]
        ))
        browser = FakeBrowser(pages)

        harness.pipeline(browser, options=RunOptions(test_mode=True)).run()

        assert f"{BASE}/bath-3-c.asp" not in browser.fetches

    def test_update_mode_updates_existing(self, harness):
        browser = FakeBrowser(site_pages())
        harness.pipeline(browser).run()

        report = harness.pipeline(browser, options=RunOptions(update_images=True)).run()

        assert report.stats.updated == 3
        assert report.stats.created == 0


class TestCancellation:
    """Tests for stopping a run between products."""

    def test_cancel_after_first_product(self, harness, bridge):
        cancel = threading.Event()

        def stop_after_first(event, payload):
            if payload.get("phase") == "product":
                cancel.set()

        bridge.subscribe(stop_after_first, events=[PROGRESS])
        browser = FakeBrowser(site_pages())

        report = harness.pipeline(browser, cancel_event=cancel).run()

        assert report.cancelled
        assert report.state is not RunState.COMPLETED
        assert report.stats.processed == 1
        assert HAIR not in browser.fetches
        assert harness.payloads(FINISH)[0]["cancelled"] is True
        assert browser.closed
