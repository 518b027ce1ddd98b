"""Workflow assistant API routes.

Endpoints:
    POST /v1/assistant/generate   Continue a conversation; may return a workflow draft
    POST /v1/assistant/save       Save a draft as one of the caller's recipes
"""

import logging

from fastapi import APIRouter, Depends

from recipeflow.api.deps import get_current_user, get_engine, http_error
from recipeflow.assistant import builder
from recipeflow.assistant.schemas import AssistantRequest, AssistantResponse, SaveWorkflowRequest
from recipeflow.errors import RecipeflowError
from recipeflow.executor.engine import WorkflowEngine
from recipeflow.recipes import store as recipe_store
from recipeflow.recipes.schemas import Recipe

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistant", tags=["assistant"])


# Plain def: the model call blocks, so FastAPI runs it in its threadpool
@router.post("/generate", response_model=AssistantResponse)
def generate(
    request: AssistantRequest,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """An empty conversation returns starter suggestions without calling a model."""
    try:
        return builder.generate_workflow(
            request.messages,
            registry=engine.registry,
            standard_registry=engine.standard_registry,
        )
    except RecipeflowError as e:
        logger.error(f"Assistant generation failed for {user_id}: {e}")
        raise http_error(e)


@router.post("/save", response_model=Recipe, status_code=201)
async def save(
    request: SaveWorkflowRequest,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    recipe = builder.to_recipe(request.workflow)
    try:
        engine.registry.validate_steps(recipe.steps)
    except RecipeflowError as e:
        raise http_error(e)
    saved = recipe_store.create_recipe(recipe, user_id)
    logger.info(f"Saved assistant workflow '{saved.name}' as recipe {saved.id} for {user_id}")
    return saved
