"""Catalog of AI models a recipe step may name.

The catalog decides which provider backend serves a model and which
sub-modes (vision, image generation) the model supports.
"""

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    MOCK = "mock"


class AIModelInfo(BaseModel):
    id: str
    name: str
    provider: Provider
    max_tokens: int
    supports_vision: bool = False
    supports_image_generation: bool = False


AI_MODELS: tuple[AIModelInfo, ...] = (
    # OpenAI
    AIModelInfo(id="gpt-4o", name="GPT-4o", provider=Provider.OPENAI, max_tokens=128_000, supports_vision=True),
    AIModelInfo(id="gpt-4o-mini", name="GPT-4o mini", provider=Provider.OPENAI, max_tokens=128_000, supports_vision=True),
    AIModelInfo(id="gpt-4-turbo", name="GPT-4 Turbo", provider=Provider.OPENAI, max_tokens=128_000, supports_vision=True),
    AIModelInfo(id="gpt-3.5-turbo", name="GPT-3.5 Turbo", provider=Provider.OPENAI, max_tokens=16_385),
    # Anthropic
    AIModelInfo(id="claude-opus-4-5", name="Claude Opus 4.5", provider=Provider.ANTHROPIC, max_tokens=200_000, supports_vision=True),
    AIModelInfo(id="claude-sonnet-4-5", name="Claude Sonnet 4.5", provider=Provider.ANTHROPIC, max_tokens=200_000, supports_vision=True),
    AIModelInfo(id="claude-3-haiku-20240307", name="Claude 3 Haiku", provider=Provider.ANTHROPIC, max_tokens=200_000, supports_vision=True),
    # Google
    AIModelInfo(id="gemini-2.5-pro", name="Gemini 2.5 Pro", provider=Provider.GOOGLE, max_tokens=1_000_000, supports_vision=True),
    AIModelInfo(id="gemini-2.5-flash", name="Gemini 2.5 Flash", provider=Provider.GOOGLE, max_tokens=1_000_000, supports_vision=True),
    AIModelInfo(
        id="gemini-2.5-flash-image", name="Gemini 2.5 Flash Image", provider=Provider.GOOGLE,
        max_tokens=1_000_000, supports_vision=True, supports_image_generation=True,
    ),
    AIModelInfo(
        id="gemini-3-pro-image-preview", name="Gemini 3 Pro Image", provider=Provider.GOOGLE,
        max_tokens=1_000_000, supports_vision=True, supports_image_generation=True,
    ),
    # Offline
    AIModelInfo(id="mock", name="Mock (testing)", provider=Provider.MOCK, max_tokens=100_000, supports_vision=True),
    AIModelInfo(
        id="mock-imagen", name="Mock Image Generator (testing)", provider=Provider.MOCK,
        max_tokens=100_000, supports_image_generation=True,
    ),
)

# Provider -> env vars, any of which configures it
PROVIDER_KEYS: dict[Provider, tuple[str, ...]] = {
    Provider.OPENAI: ("OPENAI_API_KEY",),
    Provider.ANTHROPIC: ("ANTHROPIC_API_KEY",),
    Provider.GOOGLE: ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    Provider.MOCK: (),
}


def is_provider_configured(provider: Provider) -> bool:
    if provider == Provider.MOCK:
        return True
    return any(os.environ.get(key) for key in PROVIDER_KEYS[provider])


class ModelCatalog:
    """Read-mostly lookup over the model list."""

    def __init__(self, models: tuple[AIModelInfo, ...] = AI_MODELS):
        self._models = {m.id: m for m in models}

    def get(self, model_id: str) -> Optional[AIModelInfo]:
        return self._models.get(model_id)

    def list_all(self) -> list[AIModelInfo]:
        return list(self._models.values())

    def available(self) -> list[AIModelInfo]:
        """Models whose provider has credentials configured."""
        return [m for m in self._models.values() if is_provider_configured(m.provider)]

    def supports_vision(self, model_id: str) -> bool:
        model = self.get(model_id)
        return bool(model and model.supports_vision)

    def supports_image_generation(self, model_id: str) -> bool:
        model = self.get(model_id)
        return bool(model and model.supports_image_generation)


_catalog: Optional[ModelCatalog] = None


def get_model_catalog() -> ModelCatalog:
    """Get the global model catalog."""
    global _catalog
    if _catalog is None:
        _catalog = ModelCatalog()
    return _catalog
