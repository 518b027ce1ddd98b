"""HTTP step executor: one request with {{variables}} resolved in url, headers and body."""

import logging
from typing import Callable, Literal, Optional

import httpx
from pydantic import BaseModel, Field

from recipeflow.executors.base import (
    CompiledInput,
    ConfigField,
    ConfigFieldType,
    ConfigOption,
    ExecutorResult,
    StepExecutor,
)
from recipeflow.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)

METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
HEADER_PREFIX = "header:"


class HttpConfig(BaseModel):
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    timeout: int = Field(default=30000, gt=0, description="milliseconds")


class HttpExecutor(StepExecutor):
    type = "http"
    display_name = "HTTP Request"
    icon = "🌐"
    description = "Make an HTTP request to an API endpoint with variable substitution"
    config_model = HttpConfig

    def __init__(self, client_factory: Callable[[float], httpx.Client] = None):
        self._client_factory = client_factory or (lambda timeout: httpx.Client(timeout=timeout))

    def config_schema(self) -> list[ConfigField]:
        return [
            ConfigField(
                name="method",
                label="Method",
                type=ConfigFieldType.SELECT,
                required=True,
                default="GET",
                options=[ConfigOption(value=m, label=m) for m in METHODS],
            ),
            ConfigField(name="url", label="URL", required=True, help_text="Supports {{variables}}"),
            ConfigField(name="headers", label="Headers", type=ConfigFieldType.JSON),
            ConfigField(name="body", label="Body", type=ConfigFieldType.CODE, language="json"),
            ConfigField(name="timeout", label="Timeout (ms)", type=ConfigFieldType.NUMBER, default=30000),
        ]

    def check(self, step: RecipeStep, config: Optional[BaseModel]) -> list[str]:
        if not config.url.strip():
            return [f"Step {step.step_order} (http): url is required"]
        return []

    def template_fields(self, step: RecipeStep, config: HttpConfig) -> dict[str, str]:
        fields = {"url": config.url}
        for name, value in config.headers.items():
            fields[f"{HEADER_PREFIX}{name}"] = value
        if config.body:
            fields["body"] = config.body
        return fields

    def execute(self, compiled: CompiledInput, step: RecipeStep) -> ExecutorResult:
        config: HttpConfig = compiled.config
        url = compiled.fields.get("url", config.url)
        headers = {
            key[len(HEADER_PREFIX):]: value
            for key, value in compiled.fields.items()
            if key.startswith(HEADER_PREFIX)
        }
        body = compiled.fields.get("body")
        prompt_used = f"{config.method} {url}"

        content = None
        if body and config.method != "GET":
            content = body
            if not any(k.lower() == "content-type" for k in headers):
                headers["Content-Type"] = "application/json"

        logger.info(f"Step {step.step_order}: {config.method} {url}")
        try:
            with self._client_factory(config.timeout / 1000) as client:
                response = client.request(config.method, url, headers=headers, content=content)
        except httpx.TimeoutException:
            return ExecutorResult.failure(
                f"Request timed out after {config.timeout}ms", prompt_used=prompt_used, model_used="http"
            )
        except httpx.HTTPError as e:
            return ExecutorResult.failure(
                f"Request failed: {e}", prompt_used=prompt_used, model_used="http"
            )

        metadata = {
            "statusCode": response.status_code,
            "statusText": response.reason_phrase,
            "method": config.method,
            "url": url,
        }
        if not response.is_success:
            return ExecutorResult(
                success=False,
                content=response.text,
                error=f"HTTP {response.status_code} {response.reason_phrase}",
                metadata=metadata,
                prompt_used=prompt_used,
                model_used="http",
            )

        return ExecutorResult(
            success=True,
            content=response.text,
            metadata=metadata,
            prompt_used=prompt_used,
            model_used="http",
        )
