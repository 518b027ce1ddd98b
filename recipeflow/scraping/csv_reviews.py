"""Review CSV import.

Accepts exports with a header row. Column names are matched loosely
(case, spaces and a few common aliases) onto Review fields; quoted fields
with embedded commas and newlines are handled by the csv module.
"""

import csv
import io
import logging
from typing import Optional

from recipeflow.scraping.providers import Review

logger = logging.getLogger(__name__)

COLUMN_ALIASES = {
    "review_text": ("review_text", "review", "text", "body", "comment", "content"),
    "review_title": ("review_title", "title", "headline", "review_header", "summary"),
    "rating": ("rating", "stars", "score", "star_rating"),
    "reviewer_name": ("reviewer_name", "reviewer", "author", "author_name", "name"),
    "review_date": ("review_date", "date", "posted", "review_posted_date"),
    "product_name": ("product_name", "product", "item"),
    "product_url": ("product_url", "url", "link"),
    "verified_purchase": ("verified_purchase", "verified", "is_verified"),
    "helpful_votes": ("helpful_votes", "helpful", "helpful_count"),
}

_TRUE_VALUES = {"1", "true", "yes", "y", "verified"}


class CSVParseError(ValueError):
    pass


def _normalize_header(header: str) -> str:
    return header.strip().lower().replace(" ", "_").replace("-", "_")


def _column_map(headers: list[str]) -> dict[str, str]:
    """Review field -> CSV header."""
    normalized = {_normalize_header(h): h for h in headers if h}
    mapping = {}
    for field_name, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in normalized:
                mapping[field_name] = normalized[alias]
                break
    return mapping


def parse_review_csv(text: str, platform: Optional[str] = None) -> list[Review]:
    """Parse review rows from CSV text.

    Raises:
        CSVParseError: no header, no review_text column, or no rows
    """
    if not text or not text.strip():
        raise CSVParseError("CSV data is empty")

    reader = csv.DictReader(io.StringIO(text.strip()))
    if not reader.fieldnames:
        raise CSVParseError("CSV has no header row")

    columns = _column_map(list(reader.fieldnames))
    if "review_text" not in columns:
        raise CSVParseError(
            f"CSV needs a review text column (one of: {', '.join(COLUMN_ALIASES['review_text'])})"
        )

    def cell(row: dict, field_name: str) -> str:
        header = columns.get(field_name)
        return (row.get(header) or "").strip() if header else ""

    reviews = []
    for i, row in enumerate(reader):
        text_value = cell(row, "review_text")
        if not text_value:
            continue
        try:
            rating = float(cell(row, "rating") or 0)
        except ValueError:
            rating = 0
        try:
            helpful = int(cell(row, "helpful_votes") or 0)
        except ValueError:
            helpful = 0
        reviews.append(Review(
            id=f"csv-{i}",
            platform=platform or "csv",
            product_url=cell(row, "product_url"),
            product_name=cell(row, "product_name") or "Unknown Product",
            reviewer_name=cell(row, "reviewer_name") or "Anonymous",
            rating=rating,
            review_title=cell(row, "review_title"),
            review_text=text_value,
            review_date=cell(row, "review_date") or None,
            verified_purchase=cell(row, "verified_purchase").lower() in _TRUE_VALUES,
            helpful_votes=helpful,
        ))

    if not reviews:
        raise CSVParseError("CSV contains no reviews")
    logger.info(f"Parsed {len(reviews)} reviews from CSV")
    return reviews
