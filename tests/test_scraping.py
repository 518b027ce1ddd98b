import httpx
import pytest

from recipeflow.scraping.csv_reviews import CSVParseError, parse_review_csv
from recipeflow.scraping.providers import (
    BrightDataProvider,
    MockReviewProvider,
    detect_platform,
    get_review_provider,
    normalize_rows,
)

BRIGHTDATA_ROWS = [
    {
        "url": "https://www.amazon.com/dp/B01",
        "product_name": "Desk Lamp",
        "product_price": 29.99,
        "product_rating": "4.5",
        "product_rating_count": 812,
        "brand": "Lumo",
        "review_id": "R1",
        "author_name": "Ann",
        "rating": 5,
        "review_header": "Bright",
        "review_text": "Lights up the whole desk.",
        "is_verified": True,
        "helpful_count": "3",
    },
    {"review_id": "R2", "rating": "2", "review_text": "Flickers."},
]


def _provider(handler, **kwargs):
    client = httpx.Client(base_url="https://api.brightdata.test", transport=httpx.MockTransport(handler))
    return BrightDataProvider(api_key="key", client=client, poll_interval=0, **kwargs)


def test_detect_platform():
    assert detect_platform("https://www.Amazon.com/dp/1") == "amazon"
    assert detect_platform("https://wayfair.com/x") == "wayfair"
    assert detect_platform("https://example.com/x") is None


def test_normalize_rows():
    product = normalize_rows(BRIGHTDATA_ROWS, "https://www.amazon.com/dp/B01", "amazon")

    assert product.product_name == "Desk Lamp"
    assert product.product_price == "29.99"
    assert product.average_rating == 4.5
    assert product.total_reviews == 812
    assert product.product_features == ["Brand: Lumo"]
    first, second = product.reviews
    assert (first.id, first.reviewer_name, first.review_title) == ("R1", "Ann", "Bright")
    assert first.verified_purchase is True
    assert first.helpful_votes == 3
    assert second.reviewer_name == "Anonymous"
    assert second.rating == 2.0
    assert second.product_name == "Desk Lamp"


def test_brightdata_immediate_rows():
    def handler(request):
        assert request.url.path == "/datasets/v3/scrape"
        assert request.headers["authorization"] == "Bearer key"
        assert request.url.params["dataset_id"]
        return httpx.Response(200, json=BRIGHTDATA_ROWS)

    result = _provider(handler).scrape(["https://www.amazon.com/dp/B01"])

    assert result.success
    assert result.review_count == 2
    assert result.requests_made == 1


def test_brightdata_polls_snapshot():
    polls = []

    def handler(request):
        if request.url.path == "/datasets/v3/scrape":
            return httpx.Response(202, json={"snapshot_id": "s_1"})
        polls.append(request.url.path)
        if len(polls) < 3:
            return httpx.Response(202, json={"status": "running"})
        return httpx.Response(200, json=BRIGHTDATA_ROWS)

    result = _provider(handler).scrape(["https://www.walmart.com/ip/9"])

    assert polls == ["/datasets/v3/snapshot/s_1"] * 3
    assert result.products[0].platform == "walmart"
    assert result.review_count == 2


def test_brightdata_errors_recorded_per_url():
    def handler(request):
        if request.url.path == "/datasets/v3/scrape":
            return httpx.Response(202, json={"snapshot_id": "s_2"})
        return httpx.Response(202, json={})

    result = _provider(handler, max_polls=2).scrape([
        "https://example.com/item",
        "https://www.amazon.com/dp/B02",
    ])

    assert not result.success
    assert result.errors[0] == "Unsupported platform for URL: https://example.com/item"
    assert "not ready after 2 polls" in result.errors[1]


def test_brightdata_requires_key(monkeypatch):
    monkeypatch.delenv("BRIGHTDATA_API_KEY", raising=False)
    with pytest.raises(RuntimeError, match="BRIGHTDATA_API_KEY"):
        BrightDataProvider()


def test_review_provider_falls_back_to_mock(monkeypatch):
    monkeypatch.delenv("BRIGHTDATA_API_KEY", raising=False)
    assert isinstance(get_review_provider(), MockReviewProvider)

    monkeypatch.setenv("BRIGHTDATA_API_KEY", "key")
    monkeypatch.setenv("SCRAPING_USE_MOCK", "true")
    assert isinstance(get_review_provider(), MockReviewProvider)


def test_parse_review_csv_aliases_and_quoting():
    text = (
        "Review Title,Body,Stars,Author,Verified,Helpful\n"
        'Great,"Sturdy, bright and\ncheap",5,Ann,yes,4\n'
        "Meh,,3,Bob,no,0\n"
        "Bad,Broke in a week,not-a-number,,no,x\n"
    )

    reviews = parse_review_csv(text, platform="amazon")

    assert [r.review_text for r in reviews] == ["Sturdy, bright and\ncheap", "Broke in a week"]
    assert reviews[0].review_title == "Great"
    assert reviews[0].rating == 5.0
    assert reviews[0].verified_purchase is True
    assert reviews[0].helpful_votes == 4
    assert reviews[1].rating == 0
    assert reviews[1].reviewer_name == "Anonymous"
    assert reviews[1].platform == "amazon"


@pytest.mark.parametrize("text, message", [
    ("", "CSV data is empty"),
    ("title,stars\nx,5\n", "review text column"),
    ("review\n\n", "CSV contains no reviews"),
])
def test_parse_review_csv_errors(text, message):
    with pytest.raises(CSVParseError, match=message):
        parse_review_csv(text)
