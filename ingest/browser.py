"""Headless browser session for client-side rendered pages.

The source site builds its product pages and image galleries in the browser,
so pages are loaded with Playwright and snapshotted as a RenderedPage: the
rendered HTML plus the rendered and natural size of every image, which the
extractor needs and which is not recoverable from the HTML alone.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from ingest.config import PAGE_TIMEOUT, RENDER_SETTLE_DELAY, USER_AGENT, VIEWPORT
from ingest.exceptions import PageLoadError
from ingest.logging_config import get_logger

__all__ = [
    "ImageMetrics",
    "RenderedPage",
    "BrowserSession",
    "collect_image_metrics",
    "looks_like_error_page",
]

logger = get_logger("browser")

# Collected in the page: every <img> with each absolute URL it is known by
# (current source, src and lazy-load attributes)
_IMAGE_METRICS_JS = """
() => Array.from(document.images).map(img => {
    const urls = [img.currentSrc, img.src, img.getAttribute('data-src'), img.getAttribute('data-lazy-src')]
        .filter(value => value && !value.startsWith('data:'))
        .map(value => { try { return new URL(value, document.baseURI).href; } catch (e) { return ''; } })
        .filter(Boolean);
    return {
        urls: Array.from(new Set(urls)),
        width: img.width || 0,
        height: img.height || 0,
        naturalWidth: img.naturalWidth || 0,
        naturalHeight: img.naturalHeight || 0,
    };
})
"""


@dataclass(frozen=True)
class ImageMetrics:
    width: int = 0
    height: int = 0
    natural_width: int = 0
    natural_height: int = 0

    @property
    def best_width(self) -> int:
        return max(self.width, self.natural_width)

    @property
    def best_height(self) -> int:
        return max(self.height, self.natural_height)


@dataclass
class RenderedPage:
    """Snapshot of a page after client-side rendering."""

    url: str
    html: str
    title: str = ""
    status: Optional[int] = None
    images: Dict[str, ImageMetrics] = field(default_factory=dict)


def collect_image_metrics(items: List[Dict[str, Any]]) -> Dict[str, ImageMetrics]:
    """Index measured images by every URL they are known by.

    The first image measured under a URL keeps it.
    """
    images: Dict[str, ImageMetrics] = {}
    for item in items:
        metrics = ImageMetrics(
            width=int(item.get("width") or 0),
            height=int(item.get("height") or 0),
            natural_width=int(item.get("naturalWidth") or 0),
            natural_height=int(item.get("naturalHeight") or 0),
        )
        for url in item.get("urls") or []:
            images.setdefault(url, metrics)
    return images


def looks_like_error_page(title: str) -> bool:
    """Heuristic for soft 404s served with a 200 status."""
    title = (title or "").strip()
    return len(title) < 5 or "404" in title or "Error" in title


class BrowserSession:
    """Lazily started Playwright Chromium session reused across fetches.

    Usage:
        with BrowserSession() as browser:
            page = browser.fetch("https://example.com/item-p.asp", check_title=True)
    """

    def __init__(
        self,
        headless: bool = True,
        timeout: float = PAGE_TIMEOUT,
        settle_delay: float = RENDER_SETTLE_DELAY,
    ) -> None:
        self.headless = headless
        self.timeout = timeout
        self.settle_delay = settle_delay
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._page: Any = None

    def _ensure_browser(self) -> None:
        if self._page is not None:
            return
        logger.debug("Launching headless Chromium")
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(
            headless=self.headless,
            args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
        )
        self._context = self._browser.new_context(user_agent=USER_AGENT, viewport=VIEWPORT)
        self._page = self._context.new_page()

    def fetch(self, url: str, timeout: Optional[float] = None, check_title: bool = False) -> RenderedPage:
        """Navigate to url and return the rendered snapshot.

        Raises:
            PageLoadError: On navigation errors, timeouts, non-OK responses
                and (with check_title) pages that render an error title
        """
        self._ensure_browser()
        timeout_ms = int((timeout or self.timeout) * 1000)

        try:
            response = self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if response is None or not response.ok:
                status = response.status if response is not None else None
                raise PageLoadError(f"HTTP {status} - page failed to load", url=url, status=status)

            try:
                self._page.wait_for_load_state("load", timeout=timeout_ms)
            except PlaywrightTimeoutError:
                # Slow third-party assets; the DOM is usable already
                logger.debug(f"Load event timed out, continuing with DOM: {url}")
            if self.settle_delay:
                time.sleep(self.settle_delay)

            title = self._page.title()
            if check_title and looks_like_error_page(title):
                raise PageLoadError(f"Error page rendered (title: {title!r})", url=url, status=response.status)

            return RenderedPage(
                url=self._page.url,
                html=self._page.content(),
                title=title,
                status=response.status,
                images=collect_image_metrics(self._page.evaluate(_IMAGE_METRICS_JS)),
            )
        except PlaywrightTimeoutError as e:
            raise PageLoadError(f"Timed out after {timeout_ms}ms", url=url) from e
        except PlaywrightError as e:
            raise PageLoadError(f"Navigation failed: {e}", url=url) from e

    def close(self) -> None:
        """Release page, context, browser and driver."""
        try:
            if self._context is not None:
                self._context.close()
            if self._browser is not None:
                self._browser.close()
        except PlaywrightError as e:
            logger.warning(f"Error while closing browser: {e}")
        finally:
            if self._playwright is not None:
                self._playwright.stop()
            self._playwright = None
            self._browser = None
            self._context = None
            self._page = None

    def __enter__(self) -> "BrowserSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
