"""LLM provider layer.

Provides the model catalog, one backend per provider (OpenAI, Anthropic,
Google, mock) behind a common protocol, and a retrying call runner used by
the `ai` step executor.
"""

from recipeflow.llm.backends import (
    AnthropicBackend,
    GeminiBackend,
    ImagePart,
    LLMCallResult,
    MockBackend,
    ModelBackend,
    OpenAIBackend,
)
from recipeflow.llm.factory import get_backend
from recipeflow.llm.models import AI_MODELS, AIModelInfo, ModelCatalog, get_model_catalog

__all__ = [
    "AnthropicBackend",
    "GeminiBackend",
    "ImagePart",
    "LLMCallResult",
    "MockBackend",
    "ModelBackend",
    "OpenAIBackend",
    "get_backend",
    "AI_MODELS",
    "AIModelInfo",
    "ModelCatalog",
    "get_model_catalog",
]
