"""Command-line interface for the catalog import."""

import argparse
import logging
import sys
from typing import List, Optional

from ingest.config import DB_PATH, PRICE_LIST_PATH, UPLOAD_DIR
from ingest.db import SQLiteCatalogRepository
from ingest.logging_config import setup_logging
from ingest.models import RunOptions, RunReport
from ingest.pipeline import build_pipeline
from ingest.shutdown import get_shutdown_handler

__all__ = ["main", "parse_args", "exit_code_for", "show_stats", "EXIT_OK", "EXIT_FAILED", "EXIT_CANCELLED"]

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="catalog-ingest",
        description="Import products from the Northwest Cosmetics website into the catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full import, skipping products that already exist
  catalog-ingest

  # Smoke test: 2 categories, 5 products each
  catalog-ingest --test

  # Refresh existing products and re-download their images, 20 per category
  catalog-ingest --update-images --limit 20

  # Show catalog statistics
  catalog-ingest --stats
        """,
    )

    parser.add_argument(
        "--test",
        action="store_true",
        help="Test mode: only the first 2 categories and 5 products per category",
    )
    parser.add_argument(
        "--limit",
        type=positive_int,
        metavar="N",
        help="Maximum products to import per category",
    )
    parser.add_argument(
        "--update-images",
        action="store_true",
        help="Overwrite existing products and re-download their images instead of skipping them",
    )
    parser.add_argument(
        "--price-list",
        default=PRICE_LIST_PATH,
        help=f"Price list workbook (default: {PRICE_LIST_PATH})",
    )
    parser.add_argument(
        "--strict-price-headers",
        action="store_true",
        help="Abort if the price list header row does not match the expected columns",
    )
    parser.add_argument(
        "--db",
        default=DB_PATH,
        help=f"SQLite catalog database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "--upload-dir",
        default=UPLOAD_DIR,
        help=f"Directory for downloaded product images (default: {UPLOAD_DIR})",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show catalog statistics and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def exit_code_for(report: RunReport) -> int:
    """Completed runs exit 0 even when some products failed."""
    if report.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if report.succeeded else EXIT_FAILED


def show_stats(db_path: str) -> None:
    """Display catalog statistics."""
    repository = SQLiteCatalogRepository(db_path)

    print(f"\n{'='*50}")
    print(f"Database: {db_path}")
    print(f"{'='*50}")
    print(f"\nCategories: {repository.get_category_count()}")
    print(f"Products:   {repository.get_product_count()}")
    print()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    args = parse_args(argv)

    if args.stats:
        show_stats(args.db)
        return EXIT_OK

    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    options = RunOptions(
        test_mode=args.test,
        product_limit=args.limit,
        update_images=args.update_images,
        price_list_path=args.price_list,
        strict_price_headers=args.strict_price_headers,
    )

    handler = get_shutdown_handler().install()
    try:
        pipeline = build_pipeline(
            options,
            cancel_event=handler.event,
            db_path=args.db,
            upload_dir=args.upload_dir,
        )
        # A forced second Ctrl+C skips run()'s own cleanup
        handler.register_cleanup(pipeline.close)
        report = pipeline.run()
    finally:
        handler.uninstall()

    stats = report.stats
    print(f"\n{'='*50}")
    print(f"Import {report.state.value.lower()}{' (cancelled)' if report.cancelled else ''}")
    print(f"{'='*50}")
    print(f"Processed: {stats.processed}")
    print(f"Created:   {stats.created}")
    print(f"Updated:   {stats.updated}")
    print(f"Skipped:   {stats.skipped}")
    print(f"Errors:    {stats.errors}")
    if report.error:
        print(f"\nError: {report.error}")

    return exit_code_for(report)


if __name__ == "__main__":
    sys.exit(main())
