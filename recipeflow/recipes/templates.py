"""Template recipe registry.

Template recipes ship as YAML files in definitions/. Follows the usual
registry pattern: lazy-load from disk, global instance. On startup the
templates are upserted into the recipes table so they are runnable like
any user recipe.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from recipeflow.recipes import store
from recipeflow.recipes.schemas import RecipeCreate, RecipeStep

logger = logging.getLogger(__name__)

TEMPLATE_OWNER = "system"


class TemplateDefinition(BaseModel):
    """A template recipe as written in a definitions file."""

    key: str = Field(description="Stable key; the stored recipe id is tpl-{key}")
    name: str
    description: str = ""
    steps: list[RecipeStep] = Field(default_factory=list)

    @property
    def recipe_id(self) -> str:
        return f"tpl-{self.key}"

    def to_create(self) -> RecipeCreate:
        return RecipeCreate(
            name=self.name,
            description=self.description,
            is_template=True,
            steps=self.steps,
        )


class TemplateRegistry:
    """Registry for template recipe definitions."""

    def __init__(self, definitions_dir: Optional[Path] = None):
        self.definitions_dir = definitions_dir or (
            Path(__file__).parent / "definitions"
        )
        self._templates: dict[str, TemplateDefinition] = {}
        self._loaded = False

    def load(self) -> None:
        """Load all template definitions from YAML files."""
        if self._loaded:
            return

        if not self.definitions_dir.exists():
            self._loaded = True
            return

        for yaml_file in sorted(self.definitions_dir.glob("*.yaml")):
            try:
                with open(yaml_file, "r") as f:
                    data = yaml.safe_load(f)
                if data is None:
                    continue
                template = TemplateDefinition.model_validate(data)
                self._templates[template.key] = template
            except Exception as e:
                logger.error(f"Failed to load template {yaml_file}: {e}")

        logger.info(
            f"Loaded {len(self._templates)} template recipes from {self.definitions_dir}"
        )
        self._loaded = True

    def get(self, key: str) -> Optional[TemplateDefinition]:
        self.load()
        return self._templates.get(key)

    def list_all(self) -> list[TemplateDefinition]:
        self.load()
        return list(self._templates.values())

    def count(self) -> int:
        self.load()
        return len(self._templates)

    def seed(self) -> int:
        """Upsert every template into the recipes table. Returns the count."""
        seeded = 0
        for template in self.list_all():
            if store.get_recipe(template.recipe_id) is None:
                store.create_recipe(
                    template.to_create(),
                    user_id=TEMPLATE_OWNER,
                    recipe_id=template.recipe_id,
                )
            else:
                store.update_recipe(template.recipe_id, template.to_create())
            seeded += 1
        return seeded


# Global registry instance
_registry: Optional[TemplateRegistry] = None


def get_template_registry() -> TemplateRegistry:
    """Get the global template registry instance."""
    global _registry
    if _registry is None:
        _registry = TemplateRegistry()
    return _registry
