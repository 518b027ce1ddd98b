"""Outputs gallery API routes.

Endpoints:
    GET /v1/outputs          The caller's step outputs, grouped by kind
    GET /v1/outputs/{id}     One step output (id is the step execution id)
"""

import logging

from fastapi import APIRouter, Depends

from recipeflow.api.deps import get_current_user, http_error
from recipeflow.api.routes.executions import parse_output
from recipeflow.errors import AuthorizationError, NotFoundError
from recipeflow.executor import store
from recipeflow.executor.schemas import OutputGallery, OutputItem
from recipeflow.recipes import store as recipe_store
from recipeflow.recipes.schemas import OutputFormat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/outputs", tags=["outputs"])


def _decorate(items: list[OutputItem]) -> list[OutputItem]:
    names = recipe_store.get_recipe_names(list({i.recipe_id for i in items}))
    for item in items:
        item.recipe_name = names.get(item.recipe_id)
        item.parsed_output = parse_output(item.content, OutputFormat(item.output_format))
    return items


@router.get("", response_model=OutputGallery)
async def list_outputs(limit: int = 200, user_id: str = Depends(get_current_user)):
    """Completed and awaiting-review outputs, newest first.

    `all` holds every item; text / markdown / json / images partition them,
    with anything that generated images filed under images.
    """
    items = _decorate(store.list_step_outputs(user_id, limit=limit))
    return OutputGallery.from_items(items)


@router.get("/{output_id}", response_model=OutputItem)
async def get_output(output_id: str, user_id: str = Depends(get_current_user)):
    item = store.get_step_output(output_id)
    if item is None:
        raise http_error(NotFoundError(f"Output not found: {output_id}"))
    if item.user_id != user_id:
        raise http_error(AuthorizationError(f"Output {output_id} belongs to another user"))
    return _decorate([item])[0]
