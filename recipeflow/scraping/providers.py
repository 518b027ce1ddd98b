"""Review providers.

BrightDataProvider triggers a dataset scrape per product URL, polls the
snapshot until it is ready and normalizes the rows. MockReviewProvider
returns deterministic reviews and is used when no BrightData key is set
(or SCRAPING_USE_MOCK=true).
"""

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

BRIGHTDATA_API_BASE = "https://api.brightdata.com"
DEFAULT_DATASET_ID = "gd_le8e811kzy4ggddlq"
POLL_INTERVAL = float(os.environ.get("BRIGHTDATA_POLL_INTERVAL", "5"))
MAX_POLLS = int(os.environ.get("BRIGHTDATA_MAX_POLLS", "120"))

PLATFORMS = ("amazon", "walmart", "wayfair")


def detect_platform(url: str) -> Optional[str]:
    normalized = url.lower()
    for platform in PLATFORMS:
        if f"{platform}." in normalized:
            return platform
    return None


def dataset_for(platform: str) -> str:
    return os.environ.get(f"BRIGHTDATA_{platform.upper()}_DATASET", DEFAULT_DATASET_ID)


class Review(BaseModel):
    id: str
    platform: str
    product_url: str
    product_name: str = "Unknown Product"
    product_price: Optional[str] = None
    reviewer_name: str = "Anonymous"
    rating: float = 0
    review_title: str = ""
    review_text: str = ""
    review_date: Optional[str] = None
    verified_purchase: bool = False
    helpful_votes: int = 0


class ScrapedProduct(BaseModel):
    url: str
    platform: str
    product_name: str = "Unknown Product"
    product_price: Optional[str] = None
    product_features: list[str] = Field(default_factory=list)
    average_rating: Optional[float] = None
    total_reviews: int = 0
    reviews: list[Review] = Field(default_factory=list)
    scraped_at: str = ""


class ScrapeResult(BaseModel):
    products: list[ScrapedProduct] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    requests_made: int = 0

    @property
    def review_count(self) -> int:
        return sum(len(p.reviews) for p in self.products)

    @property
    def success(self) -> bool:
        return bool(self.products)


class ReviewProvider(Protocol):
    name: str

    def scrape(self, urls: list[str]) -> ScrapeResult: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_rows(rows: list[dict], url: str, platform: str) -> ScrapedProduct:
    """Convert BrightData review rows (one per review) into a ScrapedProduct."""
    if not rows:
        return ScrapedProduct(url=url, platform=platform, scraped_at=_now())

    first = rows[0]
    product_name = first.get("product_name") or "Unknown Product"
    price = first.get("product_price")

    reviews = [
        Review(
            id=str(row.get("review_id") or f"{platform}-{i}"),
            platform=platform,
            product_url=row.get("url") or url,
            product_name=row.get("product_name") or product_name,
            product_price=str(row["product_price"]) if row.get("product_price") is not None else None,
            reviewer_name=row.get("author_name") or "Anonymous",
            rating=_to_float(row.get("rating")),
            review_title=row.get("review_header") or "",
            review_text=row.get("review_text") or "",
            review_date=row.get("review_posted_date") or row.get("timestamp"),
            verified_purchase=bool(row.get("is_verified", False)),
            helpful_votes=_to_int(row.get("helpful_count")),
        )
        for i, row in enumerate(rows)
    ]

    features: list[str] = []
    if isinstance(first.get("categories"), list):
        features.extend(str(c) for c in first["categories"])
    if first.get("department"):
        features.append(f"Department: {first['department']}")
    if first.get("brand"):
        features.append(f"Brand: {first['brand']}")

    rating = first.get("product_rating")
    rating_count = first.get("product_rating_count")
    return ScrapedProduct(
        url=first.get("url") or url,
        platform=platform,
        product_name=product_name,
        product_price=str(price) if price is not None else None,
        product_features=features,
        average_rating=_to_float(rating) if rating is not None else None,
        total_reviews=_to_int(rating_count) if rating_count else len(reviews),
        reviews=reviews,
        scraped_at=_now(),
    )


class BrightDataProvider:
    """Review scraping through BrightData's dataset API."""

    name = "brightdata"

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        poll_interval: float = POLL_INTERVAL,
        max_polls: int = MAX_POLLS,
    ):
        self.api_key = api_key or os.environ.get("BRIGHTDATA_API_KEY")
        if not self.api_key:
            raise RuntimeError("BRIGHTDATA_API_KEY not set in environment")
        self.client = client or httpx.Client(
            base_url=BRIGHTDATA_API_BASE,
            timeout=httpx.Timeout(connect=10.0, read=300.0, write=30.0, pool=10.0),
        )
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def scrape(self, urls: list[str]) -> ScrapeResult:
        result = ScrapeResult(requests_made=len(urls))
        for i, url in enumerate(urls, 1):
            logger.info(f"[BrightData] Processing URL {i}/{len(urls)}: {url}")
            platform = detect_platform(url)
            if platform is None:
                result.errors.append(f"Unsupported platform for URL: {url}")
                continue
            try:
                result.products.append(self.scrape_url(url, platform))
            except (httpx.HTTPError, RuntimeError, ValueError) as e:
                logger.error(f"[BrightData] Error scraping {url}: {e}")
                result.errors.append(f"Error scraping {url}: {e}")
        return result

    def scrape_url(self, url: str, platform: str) -> ScrapedProduct:
        dataset_id = dataset_for(platform)
        response = self.client.post(
            "/datasets/v3/scrape",
            params={"dataset_id": dataset_id, "notify": "false", "include_errors": "true"},
            headers={**self._headers, "Content-Type": "application/json"},
            json={"input": [{"url": url, "reviews_to_not_include": []}]},
        )
        if response.status_code not in (200, 201, 202):
            raise RuntimeError(f"Trigger failed: HTTP {response.status_code} {response.text[:200]}")

        payload = response.json()
        rows = _rows_of(payload)
        if rows is not None:
            logger.info(f"[BrightData] Received {len(rows)} rows immediately for {url}")
            return normalize_rows(rows, url, platform)

        snapshot_id = payload.get("snapshot_id") or payload.get("snapshotId") or payload.get("id")
        if not snapshot_id:
            raise RuntimeError("No snapshot id in trigger response")

        logger.info(f"[BrightData] Snapshot {snapshot_id} triggered, polling")
        rows = self._wait_for_snapshot(snapshot_id)
        if not rows:
            raise RuntimeError(f"No reviews found in snapshot {snapshot_id}")
        return normalize_rows(rows, url, platform)

    def _wait_for_snapshot(self, snapshot_id: str) -> list[dict]:
        # 200 = ready, 202 = still building
        for attempt in range(self.max_polls):
            response = self.client.get(
                f"/datasets/v3/snapshot/{snapshot_id}",
                params={"format": "json"},
                headers=self._headers,
            )
            if response.status_code == 200:
                rows = _rows_of(response.json())
                if rows is None:
                    raise RuntimeError("Unexpected snapshot data structure")
                logger.info(f"[BrightData] Snapshot {snapshot_id} ready after {attempt + 1} poll(s)")
                return rows
            if response.status_code != 202:
                raise RuntimeError(
                    f"Snapshot download failed: HTTP {response.status_code} {response.text[:200]}"
                )
            time.sleep(self.poll_interval)

        raise RuntimeError(
            f"Snapshot {snapshot_id} not ready after {self.max_polls} polls"
        )


def _rows_of(payload: Any) -> Optional[list[dict]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    return None


class MockReviewProvider:
    """Deterministic reviews for development and tests."""

    name = "mock"

    def __init__(self, reviews_per_url: int = 5):
        self.reviews_per_url = reviews_per_url

    def scrape(self, urls: list[str]) -> ScrapeResult:
        products = []
        for url_index, url in enumerate(urls):
            platform = detect_platform(url) or "amazon"
            name = f"Sample Product {url_index + 1}"
            reviews = [
                Review(
                    id=f"mock-{url_index}-{i}",
                    platform=platform,
                    product_url=url,
                    product_name=name,
                    product_price="$49.99",
                    reviewer_name=f"Reviewer {i + 1}",
                    rating=5 if i % 2 == 0 else 3,
                    review_title="Great product!" if i % 2 == 0 else "Could be better",
                    review_text=(
                        "This product exceeded my expectations. The quality is excellent."
                        if i % 2 == 0
                        else "The product is okay but I expected better quality for the price."
                    ),
                    verified_purchase=i % 3 != 0,
                    helpful_votes=i * 2,
                )
                for i in range(self.reviews_per_url)
            ]
            products.append(ScrapedProduct(
                url=url,
                platform=platform,
                product_name=name,
                product_price="$49.99",
                product_features=["Feature 1", "Feature 2", "Feature 3"],
                average_rating=4.0,
                total_reviews=len(reviews),
                reviews=reviews,
                scraped_at=_now(),
            ))
        return ScrapeResult(products=products, requests_made=len(urls))


def get_review_provider() -> ReviewProvider:
    """BrightData when configured, otherwise the mock provider."""
    use_mock = os.environ.get("SCRAPING_USE_MOCK", "").lower() in ("1", "true", "yes")
    if not use_mock and os.environ.get("BRIGHTDATA_API_KEY"):
        return BrightDataProvider()
    logger.info("BrightData not configured, using mock review provider")
    return MockReviewProvider()
