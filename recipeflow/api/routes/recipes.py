"""Recipe API routes.

Endpoints:
    GET    /v1/recipes                     List the caller's recipes plus templates
    POST   /v1/recipes                     Create a recipe
    GET    /v1/recipes/{id}                Get a recipe with its steps
    PUT    /v1/recipes/{id}                Replace a recipe (owner only)
    DELETE /v1/recipes/{id}                Delete a recipe (owner only)
    POST   /v1/recipes/{id}/clone          Copy a recipe (e.g. a template) into the caller's own
    GET    /v1/recipes/{id}/variables      User inputs the recipe needs at start
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from recipeflow.api.deps import get_current_user, get_engine, http_error
from recipeflow.errors import RecipeflowError
from recipeflow.executor.engine import WorkflowEngine
from recipeflow.executor.variables import extract_variables, is_user_variable, merged_input_specs
from recipeflow.recipes import store
from recipeflow.recipes.schemas import (
    Recipe,
    RecipeCloneRequest,
    RecipeCreate,
    RecipeSummary,
    RecipeVariable,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recipes", tags=["recipes"])


def _get_or_404(recipe_id: str) -> Recipe:
    recipe = store.get_recipe(recipe_id)
    if recipe is None:
        raise HTTPException(status_code=404, detail=f"Recipe not found: {recipe_id}")
    return recipe


def _visible_or_404(recipe_id: str, user_id: str) -> Recipe:
    recipe = _get_or_404(recipe_id)
    if not recipe.is_template and recipe.created_by != user_id:
        raise HTTPException(status_code=404, detail=f"Recipe not found: {recipe_id}")
    return recipe


def _owned(recipe_id: str, user_id: str) -> Recipe:
    recipe = _get_or_404(recipe_id)
    if recipe.created_by != user_id:
        raise HTTPException(
            status_code=403,
            detail=f"Recipe {recipe_id} is not yours to modify (clone it instead)",
        )
    return recipe


def _validate_steps(recipe: RecipeCreate, engine: WorkflowEngine) -> None:
    try:
        engine.registry.validate_steps(recipe.steps)
    except RecipeflowError as e:
        raise http_error(e)


@router.get("", response_model=list[RecipeSummary])
async def list_recipes(user_id: str = Depends(get_current_user)):
    return store.list_recipes(user_id)


@router.post("", response_model=Recipe, status_code=201)
async def create_recipe(
    recipe: RecipeCreate,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Create a recipe. Step types and configs are validated up front."""
    _validate_steps(recipe, engine)
    # Only seeded definitions are templates
    recipe = recipe.model_copy(update={"is_template": False})
    return store.create_recipe(recipe, user_id)


@router.get("/{recipe_id}", response_model=Recipe)
async def get_recipe(recipe_id: str, user_id: str = Depends(get_current_user)):
    return _visible_or_404(recipe_id, user_id)


@router.put("/{recipe_id}", response_model=Recipe)
async def update_recipe(
    recipe_id: str,
    recipe: RecipeCreate,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Replace name, description and steps. Running executions keep their snapshot."""
    _owned(recipe_id, user_id)
    _validate_steps(recipe, engine)
    return store.update_recipe(recipe_id, recipe.model_copy(update={"is_template": False}))


@router.delete("/{recipe_id}")
async def delete_recipe(recipe_id: str, user_id: str = Depends(get_current_user)):
    _owned(recipe_id, user_id)
    store.delete_recipe(recipe_id)
    return {"deleted": True, "id": recipe_id}


@router.post("/{recipe_id}/clone", response_model=Recipe, status_code=201)
async def clone_recipe(
    recipe_id: str,
    request: RecipeCloneRequest = RecipeCloneRequest(),
    user_id: str = Depends(get_current_user),
):
    source = _visible_or_404(recipe_id, user_id)
    clone = RecipeCreate(
        name=request.name or f"{source.name} (copy)",
        description=source.description,
        is_template=False,
        steps=[s.model_copy(update={"id": None}) for s in source.steps],
    )
    created = store.create_recipe(clone, user_id)
    logger.info(f"Cloned recipe {recipe_id} → {created.id} for {user_id}")
    return created


@router.get("/{recipe_id}/variables", response_model=list[RecipeVariable])
async def get_recipe_variables(
    recipe_id: str,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """User-input variables across all steps, in order of first use.

    Declared input specs supply type, label and required-ness; variables
    that are only referenced in a template default to required text.
    Step outputs and company-standard variables are excluded.
    """
    recipe = _visible_or_404(recipe_id, user_id)
    specs = merged_input_specs(recipe.steps)
    variables: dict[str, RecipeVariable] = {}

    for step in recipe.steps:
        try:
            executor = engine.registry.get(step.step_type)
            templates = executor.template_fields(step, executor.parse_config(step)).values()
        except RecipeflowError as e:
            raise http_error(e)

        names = [n for t in templates for n in extract_variables(t)]
        names += [spec.name for spec in step.input_config]
        for name in names:
            if not is_user_variable(name, engine.standard_registry):
                continue
            if name not in variables:
                spec = specs.get(name)
                variables[name] = RecipeVariable(
                    name=name,
                    type=spec.type if spec else "text",
                    label=(spec.label if spec and spec.label else name.replace("_", " ").title()),
                    description=spec.description if spec else "",
                    required=spec.required if spec else True,
                )
            if step.step_order not in variables[name].step_orders:
                variables[name].step_orders.append(step.step_order)

    return list(variables.values())
