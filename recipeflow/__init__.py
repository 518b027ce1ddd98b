"""Recipeflow - multi-step LLM recipes with human review between steps."""

__version__ = "0.1.0"
