"""Scraping step executor: product reviews from URLs and/or an uploaded CSV."""

import json
import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel

from recipeflow.executor.variables import file_content, split_url_list
from recipeflow.executors.base import (
    CompiledInput,
    ConfigField,
    ConfigFieldType,
    ConfigOption,
    ExecutorResult,
    StepExecutor,
)
from recipeflow.recipes.schemas import RecipeStep
from recipeflow.scraping.csv_reviews import CSVParseError, parse_review_csv
from recipeflow.scraping.providers import ReviewProvider, get_review_provider

logger = logging.getLogger(__name__)


class ScrapingConfig(BaseModel):
    urls_input: str = "product_urls"
    csv_input: str = "csv_file"
    platform: Optional[str] = None


class ScrapingExecutor(StepExecutor):
    type = "scraping"
    display_name = "Web Scraping"
    icon = "🔍"
    description = "Scrape product reviews from e-commerce platforms using BrightData"
    config_model = ScrapingConfig

    def __init__(self, provider_factory: Callable[[], ReviewProvider] = get_review_provider):
        self._provider_factory = provider_factory

    def config_schema(self) -> list[ConfigField]:
        return [
            ConfigField(
                name="service",
                label="Scraping Service",
                type=ConfigFieldType.SELECT,
                required=True,
                default="brightdata",
                options=[ConfigOption(value="brightdata", label="BrightData")],
            ),
            ConfigField(name="urls_input", label="URL input variable", default="product_urls"),
            ConfigField(name="csv_input", label="CSV input variable", default="csv_file"),
        ]

    def template_fields(self, step, config):
        # Inputs are read from user_inputs directly; nothing to resolve.
        return {}

    def _urls(self, value: Any) -> list[str]:
        return split_url_list(value) if value else []

    def execute(self, compiled: CompiledInput, step: RecipeStep) -> ExecutorResult:
        config: ScrapingConfig = compiled.config or ScrapingConfig()
        inputs = compiled.user_inputs
        service = step.api_config.service if step.api_config else "brightdata"
        endpoint = step.api_config.endpoint if step.api_config else "scrape_reviews"

        urls = self._urls(inputs.get(config.urls_input))
        csv_value = inputs.get("csv_data") or inputs.get(config.csv_input)
        csv_text = file_content(csv_value) if csv_value else ""
        platform = config.platform or inputs.get("platform") or None

        if not urls and not csv_text:
            return ExecutorResult.failure("No product URLs or CSV data provided for scraping")

        reviews: list[dict] = []
        csv_rows = 0
        requests_made = 0
        errors: list[str] = []

        if csv_text:
            try:
                parsed = parse_review_csv(csv_text, platform)
            except CSVParseError as e:
                if not urls:
                    return ExecutorResult.failure(str(e))
                errors.append(f"CSV: {e}")
            else:
                reviews.extend(r.model_dump() for r in parsed)
                csv_rows = len(parsed)

        if urls:
            provider = self._provider_factory()
            result = provider.scrape(urls)
            requests_made = result.requests_made
            errors.extend(result.errors)
            for product in result.products:
                for review in product.reviews:
                    reviews.append({
                        **review.model_dump(),
                        "product_url": product.url,
                        "product_name": product.product_name,
                        "product_price": product.product_price,
                        "product_features": product.product_features,
                    })
            if not result.success and not reviews:
                return ExecutorResult.failure(
                    "; ".join(result.errors) or "Failed to scrape reviews from URLs"
                )

        if errors:
            logger.warning(f"Step {step.step_order} scraping completed with errors: {'; '.join(errors)}")

        content = json.dumps({
            "reviews": reviews,
            "summary": {
                "total_reviews": len(reviews),
                "urls_processed": len(urls),
                "csv_rows_processed": csv_rows,
            },
        }, indent=2)

        return ExecutorResult(
            success=True,
            content=content,
            usage={"requests_made": requests_made, "reviews_fetched": len(reviews)},
            metadata={"service": service, "errors": errors},
            prompt_used=f"Scraped {len(urls)} URL(s), processed {len(reviews)} reviews",
            model_used=f"{service}:{endpoint}",
        )
