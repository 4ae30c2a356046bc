"""Price authority: the wholesale price list workbook.

The workbook has a block of header rows; data rows start at a fixed row and
columns sit at fixed positions (see ``PRICE_LIST_COLUMNS``). Each usable row
becomes a PriceRecord keyed by the lower-cased, trimmed product name.
"""

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from ingest.config import (
    FRAGRANCE_COMMODITY_CODE,
    PRICE_LIST_COLUMNS,
    PRICE_LIST_FIRST_ROW,
    PRICE_LIST_HEADER_HINTS,
    PRICE_MARKUP,
)
from ingest.exceptions import PriceListError
from ingest.logging_config import get_logger
from ingest.models import PriceRecord

__all__ = [
    "normalize_name",
    "parse_price",
    "load_price_list",
    "check_header_row",
    "records_from_frame",
]

logger = get_logger("price_list")

PriceTable = Dict[str, PriceRecord]


def normalize_name(name: Any) -> str:
    """Lookup key for a product name."""
    if name is None:
        return ""
    return str(name).strip().lower()


def _cell(row: pd.Series, column: int) -> Any:
    """Read a 1-based column from a header-less row; NaN becomes None."""
    index = column - 1
    if index >= len(row):
        return None
    value = row.iloc[index]
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_price(value: Any) -> Decimal:
    """Parse a unit price cell; anything unparseable is treated as zero."""
    if value is None:
        return Decimal("0")
    text = _text(value).replace("£", "").replace(",", "").strip()
    try:
        return Decimal(text)
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _is_fragrance_code(value: Any) -> bool:
    text = _text(value)
    return text.isdigit() and int(text) == FRAGRANCE_COMMODITY_CODE


def check_header_row(frame: pd.DataFrame) -> List[str]:
    """Compare the header row above the data block with the expected columns.

    Returns a list of human-readable mismatches (empty when the layout looks
    right or when the workbook is too short to carry a header row).
    """
    header_index = PRICE_LIST_FIRST_ROW - 2
    if header_index < 0 or header_index >= len(frame):
        return []

    header = frame.iloc[header_index]
    problems = []
    for field_name, column in PRICE_LIST_COLUMNS.items():
        label = _text(_cell(header, column)).lower()
        hints = PRICE_LIST_HEADER_HINTS.get(field_name, ())
        if not any(hint in label for hint in hints):
            problems.append(f"column {column} ({field_name}): header is {label!r}")
    return problems


def records_from_frame(frame: pd.DataFrame, markup: Decimal = PRICE_MARKUP) -> PriceTable:
    """Build the price table from a header-less sheet frame."""
    prices: PriceTable = {}
    cols = PRICE_LIST_COLUMNS

    for _, row in frame.iloc[PRICE_LIST_FIRST_ROW - 1:].iterrows():
        if _is_fragrance_code(_cell(row, cols["commodity_code"])):
            continue

        name = _text(_cell(row, cols["name"]))
        unit_price = parse_price(_cell(row, cols["unit_price"]))
        if not name or unit_price <= 0:
            continue

        key = normalize_name(name)
        prices[key] = PriceRecord(
            normalized_name=key,
            original_price=unit_price,
            final_price=unit_price + markup,
            brand=_text(_cell(row, cols["brand"])),
            barcode=_text(_cell(row, cols["barcode"])),
            item_code=_text(_cell(row, cols["item_code"])),
        )

    return prices


def load_price_list(
    path: Optional[str],
    markup: Decimal = PRICE_MARKUP,
    strict_headers: bool = False,
) -> PriceTable:
    """Load the price list workbook into a name -> PriceRecord map.

    A missing file is not fatal: the run falls back to scraped prices and an
    empty map is returned. A file that exists but cannot be read raises
    PriceListError, as does a header mismatch when ``strict_headers`` is set.
    """
    if not path or not Path(path).exists():
        logger.warning(f"Price list not found ({path}), prices will be taken from the website")
        return {}

    logger.info(f"Loading price list: {path}")
    try:
        frame = pd.read_excel(path, sheet_name=0, header=None, dtype=object, engine="openpyxl")
    except Exception as e:
        raise PriceListError(f"Failed to read price list {path}: {e}") from e

    problems = check_header_row(frame)
    if problems:
        message = "Unexpected price list layout: " + "; ".join(problems)
        if strict_headers:
            raise PriceListError(message)
        logger.warning(message)

    prices = records_from_frame(frame, markup=markup)
    logger.info(f"Loaded {len(prices)} products with prices from the price list")
    return prices
