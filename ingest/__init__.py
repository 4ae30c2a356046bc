"""Northwest Cosmetics catalog import pipeline."""

__version__ = "2.0.0"

# Re-export main components for convenient imports
from ingest.config import BASE_URL, DB_PATH, SITEMAP_URL
from ingest.db import SQLiteCatalogRepository
from ingest.events import get_progress_bridge
from ingest.models import RunOptions, RunReport, RunState, RunStats
from ingest.pipeline import ImportPipeline, build_pipeline, run_import
from ingest.repository import CatalogRepository

__all__ = [
    # Version
    "__version__",
    # Config
    "BASE_URL",
    "DB_PATH",
    "SITEMAP_URL",
    # Models
    "RunOptions",
    "RunReport",
    "RunState",
    "RunStats",
    # Storage
    "CatalogRepository",
    "SQLiteCatalogRepository",
    # Pipeline
    "ImportPipeline",
    "build_pipeline",
    "run_import",
    "get_progress_bridge",
]
