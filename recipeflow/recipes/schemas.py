"""Pydantic schemas for recipes and their steps.

Config blobs may arrive as JSON strings (older clients store them that way).
They are parsed once, here, when the step is validated; everything downstream
works with typed models.
"""

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OutputFormat(str, Enum):
    """Declared output format of a step."""
    TEXT = "text"
    MARKDOWN = "markdown"
    JSON = "json"
    IMAGE = "image"


class InputType(str, Enum):
    """How a user-input variable is collected and flattened into prompts."""
    TEXT = "text"
    TEXTAREA = "textarea"
    IMAGE = "image"
    URL_LIST = "url_list"
    FILE = "file"


def _parse_json_blob(value: Any, field_name: str) -> Any:
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"{field_name} is not valid JSON: {e}")
    return value


class InputSpec(BaseModel):
    """Declaration of one user-input variable and its validation rules."""

    name: str
    type: InputType = InputType.TEXT
    label: str = ""
    description: str = ""
    required: bool = True
    min_items: Optional[int] = Field(default=None, ge=0)
    max_items: Optional[int] = Field(default=None, ge=1)
    max_size_mb: Optional[float] = Field(default=None, gt=0)
    default: Optional[str] = None


class GenerationConfig(BaseModel):
    """Model parameters for `ai` steps."""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    number_of_images: int = Field(default=1, ge=1, le=8)
    aspect_ratio: Optional[str] = None
    negative_prompt: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, data: Any) -> Any:
        if isinstance(data, dict):
            renames = {
                "maxTokens": "max_tokens",
                "topP": "top_p",
                "numberOfImages": "number_of_images",
                "aspectRatio": "aspect_ratio",
                "negativePrompt": "negative_prompt",
            }
            data = {renames.get(k, k): v for k, v in data.items()}
        return data


class ApiConfig(BaseModel):
    """External API selection for `scraping` steps."""

    service: str = "brightdata"
    endpoint: str = "scrape_reviews"
    description: str = ""


class RecipeStep(BaseModel):
    """One unit of work inside a recipe."""

    id: Optional[str] = Field(
        default=None,
        description="Persisted step id; None for caller-supplied override steps",
    )
    step_order: int = Field(ge=1, description="1-based position, unique within a recipe")
    step_name: str = ""
    step_type: str = Field(default="ai", description="Executor discriminator")
    ai_model: Optional[str] = None
    prompt_template: str = ""
    output_format: OutputFormat = OutputFormat.TEXT
    generation_config: GenerationConfig = Field(default_factory=GenerationConfig)
    api_config: ApiConfig = Field(default_factory=ApiConfig)
    executor_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific settings, parsed by the owning executor",
    )
    input_config: list[InputSpec] = Field(default_factory=list)
    auto_approve: bool = Field(
        default=False,
        description="Skip human review even when the executor asks for it by default",
    )
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _accept_model_config_key(cls, data: Any) -> Any:
        # Stored steps and older clients call generation settings "model_config"
        if isinstance(data, dict) and "model_config" in data and "generation_config" not in data:
            data = dict(data)
            data["generation_config"] = data.pop("model_config")
        return data

    @field_validator("generation_config", "api_config", mode="before")
    @classmethod
    def _parse_config_blob(cls, value: Any, info) -> Any:
        value = _parse_json_blob(value, info.field_name)
        return {} if value is None else value

    @field_validator("executor_config", mode="before")
    @classmethod
    def _parse_executor_config(cls, value: Any) -> Any:
        value = _parse_json_blob(value, "executor_config")
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("executor_config must be a JSON object")
        return value

    @field_validator("input_config", mode="before")
    @classmethod
    def _normalize_input_config(cls, value: Any) -> Any:
        """Accept a list of specs, a name->spec mapping, or {"variables": {...}}."""
        value = _parse_json_blob(value, "input_config")
        if value is None:
            return []
        if isinstance(value, dict):
            variables = value.get("variables", value)
            specs = []
            for name, spec in variables.items():
                spec = dict(spec or {})
                spec.setdefault("name", name)
                if "optional" in spec:
                    spec["required"] = not spec.pop("optional")
                if "maxImageSize" in spec:
                    spec["max_size_mb"] = spec.pop("maxImageSize")
                spec = {k: v for k, v in spec.items() if k in InputSpec.model_fields}
                specs.append(spec)
            return specs
        return value

    @field_validator("ai_model", mode="before")
    @classmethod
    def _blank_model_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def step_ref(self) -> str:
        return self.id or f"order-{self.step_order}"

    def input_spec(self, name: str) -> Optional[InputSpec]:
        for spec in self.input_config:
            if spec.name == name:
                return spec
        return None


def _check_step_orders(steps: list[RecipeStep]) -> list[RecipeStep]:
    orders = [s.step_order for s in steps]
    if len(set(orders)) != len(orders):
        raise ValueError(f"Duplicate step_order values: {sorted(orders)}")
    return sorted(steps, key=lambda s: s.step_order)


class RecipeBase(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    is_template: bool = False
    steps: list[RecipeStep] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def _unique_orders(cls, steps: list[RecipeStep]) -> list[RecipeStep]:
        return _check_step_orders(steps)


class RecipeCreate(RecipeBase):
    """Body for creating or replacing a recipe."""


class Recipe(RecipeBase):
    """A named, ordered template of steps."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RecipeSummary(BaseModel):
    id: str
    name: str
    description: str = ""
    is_template: bool = False
    step_count: int = 0
    created_by: Optional[str] = None
    updated_at: Optional[str] = None


class RecipeCloneRequest(BaseModel):
    name: Optional[str] = None


class RecipeVariable(BaseModel):
    """A user input a run of this recipe will ask for."""

    name: str
    type: InputType = InputType.TEXT
    label: str = ""
    description: str = ""
    required: bool = True
    step_orders: list[int] = Field(default_factory=list)
