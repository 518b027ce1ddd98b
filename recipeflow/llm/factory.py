"""Model backend factory.

Resolves model IDs to the appropriate backend implementation.
"""

import logging
from typing import Optional, Union

from recipeflow.llm.backends import AnthropicBackend, GeminiBackend, MockBackend, OpenAIBackend
from recipeflow.llm.models import ModelCatalog, Provider, get_model_catalog

logger = logging.getLogger(__name__)

Backend = Union[OpenAIBackend, AnthropicBackend, GeminiBackend, MockBackend]

_PROVIDER_BACKENDS = {
    Provider.OPENAI: OpenAIBackend,
    Provider.ANTHROPIC: AnthropicBackend,
    Provider.GOOGLE: GeminiBackend,
    Provider.MOCK: MockBackend,
}


def provider_for(model_id: str, catalog: Optional[ModelCatalog] = None) -> Provider:
    """Provider for a model: catalog entry first, then model-id prefix.

    Raises:
        ValueError: If model_id is not recognized
    """
    catalog = catalog or get_model_catalog()
    info = catalog.get(model_id)
    if info is not None:
        return info.provider
    if model_id.startswith(("gpt-", "o1", "o3", "o4")):
        return Provider.OPENAI
    if model_id.startswith("claude-"):
        return Provider.ANTHROPIC
    if model_id.startswith("gemini-"):
        return Provider.GOOGLE
    if model_id.startswith("mock"):
        return Provider.MOCK
    raise ValueError(
        f"Unknown model: '{model_id}'. "
        f"Expected a catalog model or an ID starting with 'gpt-', 'claude-', 'gemini-' or 'mock'."
    )


def get_backend(model_id: str, catalog: Optional[ModelCatalog] = None) -> Backend:
    """Get the appropriate backend for a model ID.

    Raises:
        ValueError: If model_id is not recognized
    """
    provider = provider_for(model_id, catalog)
    return _PROVIDER_BACKENDS[provider](model_id=model_id)
