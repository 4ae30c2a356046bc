"""Exception hierarchy for the ingestion pipeline."""

from typing import Optional

__all__ = [
    "IngestError",
    "PriceListError",
    "SitemapUnavailableError",
    "PageLoadError",
    "ExtractionError",
    "ExcludedProductError",
    "ReconciliationError",
    "NoValidPriceError",
    "ImageDownloadError",
    "RetriesExhaustedError",
    "URLValidationError",
]


class IngestError(Exception):
    """Base class for all pipeline errors."""


class PriceListError(IngestError):
    """The price list exists but could not be read. Aborts the run."""


class SitemapUnavailableError(IngestError):
    """The sitemap could not be loaded after all retries. Aborts the run."""


class PageLoadError(IngestError):
    """A page failed to load, timed out or rendered an error page."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ExtractionError(IngestError):
    """No valid product data could be extracted from a page."""


class ExcludedProductError(IngestError):
    """The product matches an exclusion rule and must not be imported."""

    def __init__(self, message: str, keyword: str = ""):
        super().__init__(message)
        self.keyword = keyword


class ReconciliationError(IngestError):
    """A product cannot be persisted (no valid price, no images)."""


class NoValidPriceError(ReconciliationError):
    """Neither the price list nor the page yields a positive price."""


class ImageDownloadError(IngestError):
    """A single image could not be downloaded."""


class RetriesExhaustedError(IngestError):
    """All retry attempts failed. The last error is chained as __cause__."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class URLValidationError(IngestError):
    """Raised when URL validation fails."""
