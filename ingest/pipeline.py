"""Import pipeline orchestration.

Drives one import run end to end:

    Initializing -> Loading price list -> Loading sitemap
        -> Processing categories -> Processing products (per category)
        -> Completed

with Failed reachable from any state on a run-aborting error. Categories and
products are visited one at a time in sitemap/page order, each visit wrapped
in a bounded retry, with a fixed cooldown between fetches. A failing product
is counted and the run moves on; only the price list and the sitemap can
abort a run.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from ingest.browser import BrowserSession, RenderedPage
from ingest.config import (
    BASE_URL,
    DB_PATH,
    MAX_RETRIES,
    PRICE_LIST_PATH,
    PRICE_MARKUP,
    REQUEST_COOLDOWN,
    RETRY_DELAY,
    RETRY_STRATEGY,
    SITEMAP_MIN_LENGTH,
    SITEMAP_URL,
    TEST_MODE_CATEGORY_LIMIT,
    TEST_MODE_PRODUCT_LIMIT,
    UPLOAD_DIR,
)
from ingest.db import SQLiteCatalogRepository
from ingest.events import ERROR, FINISH, PROGRESS, START, ProgressBridge, get_progress_bridge
from ingest.exceptions import (
    ExcludedProductError,
    ExtractionError,
    NoValidPriceError,
    PageLoadError,
    RetriesExhaustedError,
    SitemapUnavailableError,
    URLValidationError,
)
from ingest.extractor import extract_product
from ingest.images import ImageDownloader
from ingest.logging_config import get_logger, log_ingest_event
from ingest.models import CategoryLink, ReconcileResult, RunOptions, RunReport, RunState, RunStats
from ingest.price_list import load_price_list
from ingest.reconcile import Reconciler
from ingest.repository import CatalogRepository
from ingest.retry import LINEAR, retry_call
from ingest.sitemap import category_links, list_product_links
from ingest.url_validation import validate_url

__all__ = ["RunContext", "ImportPipeline", "build_pipeline", "run_import"]

logger = get_logger("pipeline")

# Outcomes that depend only on the page content, so a refetch gives the same answer
NOT_RETRIED = (ExcludedProductError, ExtractionError, NoValidPriceError)


@dataclass
class RunContext:
    """Mutable state of one run, passed explicitly through the call chain."""

    stats: RunStats = field(default_factory=RunStats)
    state: RunState = RunState.INITIALIZING
    total: int = 0
    current: int = 0
    categories: int = 0
    url: str = ""
    phase: str = ""
    error: Optional[str] = None
    cancelled: bool = False

    def progress_payload(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "scraped": self.stats.created + self.stats.updated,
            "errors": self.stats.errors,
            "skipped": self.stats.skipped,
            "categories": self.categories,
            "url": self.url,
            "phase": self.phase,
        }

    def finish_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = self.stats.to_dict()
        payload["cancelled"] = self.cancelled
        if self.error:
            payload["error"] = self.error
        return payload


class ImportPipeline:
    """One configured import run.

    ``browser`` only needs ``fetch(url, check_title=...)`` and ``close()``;
    ``sleep`` and ``cancel_event`` are injectable so runs can be driven
    without real delays.
    """

    def __init__(
        self,
        browser: Any,
        repository: CatalogRepository,
        downloader: ImageDownloader,
        options: Optional[RunOptions] = None,
        bridge: Optional[ProgressBridge] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
        price_loader: Callable[..., Dict] = load_price_list,
        sitemap_url: str = SITEMAP_URL,
        base_url: str = BASE_URL,
        markup: Decimal = PRICE_MARKUP,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        retry_strategy: str = RETRY_STRATEGY,
        cooldown: float = REQUEST_COOLDOWN,
    ) -> None:
        self.browser = browser
        self.repository = repository
        self.downloader = downloader
        self.options = options or RunOptions()
        self.bridge = bridge or get_progress_bridge()
        self.sleep = sleep
        self.cancel_event = cancel_event or threading.Event()
        self.price_loader = price_loader
        self.sitemap_url = sitemap_url
        self.base_url = base_url
        self.markup = markup
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_strategy = retry_strategy
        self.cooldown = cooldown

    # -- limits -------------------------------------------------------------

    @property
    def category_limit(self) -> Optional[int]:
        return TEST_MODE_CATEGORY_LIMIT if self.options.test_mode else None

    @property
    def product_limit(self) -> Optional[int]:
        limit = self.options.product_limit
        if self.options.test_mode:
            limit = min(limit, TEST_MODE_PRODUCT_LIMIT) if limit else TEST_MODE_PRODUCT_LIMIT
        return limit

    # -- helpers ------------------------------------------------------------

    def _set_state(self, ctx: RunContext, state: RunState) -> None:
        ctx.state = state
        logger.info(f"State: {state.value}")

    def _cancelled(self, ctx: RunContext) -> bool:
        if self.cancel_event.is_set():
            if not ctx.cancelled:
                logger.warning("Cancellation requested, stopping run")
            ctx.cancelled = True
        return ctx.cancelled

    def _progress(self, ctx: RunContext, url: str, phase: str) -> None:
        ctx.url = url
        ctx.phase = phase
        self.bridge.emit(PROGRESS, ctx.progress_payload())

    def _retry(self, func: Callable[[], Any], description: str, **kwargs) -> Any:
        return retry_call(
            func,
            attempts=self.max_retries,
            base_delay=self.retry_delay,
            strategy=kwargs.pop("strategy", self.retry_strategy),
            sleep=self.sleep,
            description=description,
            **kwargs,
        )

    # -- stages -------------------------------------------------------------

    def _fetch_sitemap(self) -> str:
        page: RenderedPage = self.browser.fetch(self.sitemap_url)
        if len(page.html) <= SITEMAP_MIN_LENGTH:
            raise PageLoadError(
                f"Sitemap content too short ({len(page.html)} chars)", url=self.sitemap_url
            )
        return page.html

    def load_sitemap(self) -> str:
        """Sitemap HTML, retried with linear backoff.

        Raises:
            SitemapUnavailableError: After all attempts fail
        """
        try:
            return self._retry(self._fetch_sitemap, "Sitemap load", strategy=LINEAR)
        except RetriesExhaustedError as e:
            raise SitemapUnavailableError(str(e)) from e

    def _process_category(
        self, ctx: RunContext, reconciler: Reconciler, index: int, link: CategoryLink
    ) -> None:
        log_ingest_event("category_start", {
            "message": f"Category {index + 1}: {link.derived_name}",
            "category": link.derived_name,
            "url": link.url,
        })

        try:
            page: RenderedPage = self._retry(
                lambda: self.browser.fetch(link.url), f"Category '{link.derived_name}'"
            )
            category = reconciler.ensure_category(link.derived_name, sort_order=index)
        except Exception as e:
            ctx.stats.errors += 1
            ctx.categories += 1
            logger.error(f"Skipping category {link.url}: {e}")
            self._progress(ctx, link.url, "category")
            return

        product_urls = list_product_links(page.html, base_url=page.url or link.url)
        if self.product_limit is not None:
            product_urls = product_urls[: self.product_limit]
        ctx.total += len(product_urls)
        logger.info(f"Found {len(product_urls)} products in {link.derived_name}")

        self._set_state(ctx, RunState.PROCESSING_PRODUCTS)
        for position, url in enumerate(product_urls):
            if self._cancelled(ctx):
                return
            if position > 0:
                self.sleep(self.cooldown)
            self._process_product(ctx, reconciler, category, url)

        ctx.categories += 1
        log_ingest_event("category_complete", {
            "message": f"Finished category {link.derived_name}",
            "category": link.derived_name,
            "products": len(product_urls),
            **ctx.stats.to_dict(),
        })
        self._progress(ctx, link.url, "category")

    def _process_product(self, ctx: RunContext, reconciler: Reconciler, category, url: str) -> None:
        def attempt() -> ReconcileResult:
            page = self.browser.fetch(url, check_title=True)
            return reconciler.reconcile(extract_product(page), category)

        try:
            validate_url(url)
            result = self._retry(attempt, f"Product {url}", give_up_on=NOT_RETRIED)
        except ExcludedProductError as e:
            ctx.stats.skipped += 1
            log_ingest_event("product_result", {
                "message": f"Skipped excluded product: {e}",
                "url": url,
                "action": "skipped",
                "reason": "excluded",
            })
        except (RetriesExhaustedError, URLValidationError, ExtractionError, NoValidPriceError) as e:
            ctx.stats.errors += 1
            log_ingest_event("product_error", {
                "message": f"Product failed: {url}",
                "url": url,
                "error": str(e.__cause__ or e),
            }, level=logging.ERROR)
        else:
            ctx.stats.record(result.action)
            log_ingest_event("product_result", {
                "message": f"{result.action.value.capitalize()}: {url}",
                "url": url,
                "action": result.action.value,
                "reason": result.reason,
                "sku": result.product.sku if result.product else None,
            })

        ctx.stats.processed += 1
        ctx.current += 1
        self._progress(ctx, url, "product")

    # -- run ----------------------------------------------------------------

    def close(self) -> None:
        """Release the browser session and the repository."""
        for name, resource in (("browser", self.browser), ("repository", self.repository)):
            try:
                resource.close()
            except Exception as e:
                logger.warning(f"Failed to close {name}: {e}")

    def run(self) -> RunReport:
        """Execute the import and report how it ended. Never raises for run errors."""
        ctx = RunContext()
        self.bridge.emit(START, {})
        log_ingest_event("run_start", {
            "message": "Import started",
            "test_mode": self.options.test_mode,
            "product_limit": self.options.product_limit,
            "update_images": self.options.update_images,
        })

        try:
            self._set_state(ctx, RunState.LOADING_PRICE_AUTHORITY)
            prices = self.price_loader(
                self.options.price_list_path or PRICE_LIST_PATH,
                markup=self.markup,
                strict_headers=self.options.strict_price_headers,
            )

            self._set_state(ctx, RunState.LOADING_SITEMAP)
            links: List[CategoryLink] = category_links(
                self.load_sitemap(), base_url=self.base_url, limit=self.category_limit
            )
            logger.info(f"Found {len(links)} categories")

            self._set_state(ctx, RunState.PROCESSING_CATEGORIES)
            reconciler = Reconciler(
                self.repository,
                prices,
                self.downloader,
                update_mode=self.options.update_images,
                markup=self.markup,
            )
            for index, link in enumerate(links):
                if self._cancelled(ctx):
                    break
                if index > 0:
                    self.sleep(self.cooldown)
                self._set_state(ctx, RunState.PROCESSING_CATEGORIES)
                self._process_category(ctx, reconciler, index, link)

            if not self._cancelled(ctx):
                self._set_state(ctx, RunState.COMPLETED)
            log_ingest_event("run_complete", {
                "message": "Import cancelled" if ctx.cancelled else "Import completed",
                "cancelled": ctx.cancelled,
                **ctx.stats.to_dict(),
            })

        except Exception as e:
            ctx.error = str(e)
            self._set_state(ctx, RunState.FAILED)
            logger.exception(f"Import failed: {e}")
            log_ingest_event("run_failed", {
                "message": f"Import failed: {e}",
                **ctx.stats.to_dict(),
            }, level=logging.ERROR)
            self.bridge.emit(ERROR, {"message": ctx.error})

        finally:
            self.close()
            self.bridge.emit(FINISH, ctx.finish_payload())

        return RunReport(stats=ctx.stats, state=ctx.state, error=ctx.error, cancelled=ctx.cancelled)


def build_pipeline(
    options: RunOptions,
    cancel_event: Optional[threading.Event] = None,
    db_path: str = DB_PATH,
    upload_dir: str = UPLOAD_DIR,
    bridge: Optional[ProgressBridge] = None,
) -> ImportPipeline:
    """Wire a pipeline with the production browser, store and downloader."""
    return ImportPipeline(
        browser=BrowserSession(),
        repository=SQLiteCatalogRepository(db_path),
        downloader=ImageDownloader(upload_dir, update_images=options.update_images),
        options=options,
        bridge=bridge,
        cancel_event=cancel_event,
    )


def run_import(options: RunOptions, cancel_event: Optional[threading.Event] = None, **kwargs) -> RunReport:
    """Build and run a pipeline in one call."""
    return build_pipeline(options, cancel_event=cancel_event, **kwargs).run()
