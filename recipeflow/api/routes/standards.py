"""Company standards API routes.

Endpoints:
    GET    /v1/standards                 List the caller's standards (?standard_type=voice)
    POST   /v1/standards                 Create a standard
    GET    /v1/standards/variables       Reserved template variables and their types
    GET    /v1/standards/{id}            Get a standard
    PUT    /v1/standards/{id}            Update a standard
    DELETE /v1/standards/{id}            Delete a standard
    GET    /v1/standards/{id}/preview    The text injected into prompts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from recipeflow.api.deps import get_current_user
from recipeflow.standards import store
from recipeflow.standards.render import get_standard_registry, render_standard
from recipeflow.standards.schemas import (
    CompanyStandard,
    StandardCreate,
    StandardPreview,
    StandardType,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/standards", tags=["standards"])


def _owned_or_404(standard_id: str, user_id: str) -> CompanyStandard:
    standard = store.get_standard(standard_id)
    if standard is None or standard.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Standard not found: {standard_id}")
    return standard


@router.get("", response_model=list[CompanyStandard])
async def list_standards(
    standard_type: Optional[StandardType] = None,
    user_id: str = Depends(get_current_user),
):
    return store.list_standards(user_id, standard_type)


@router.post("", response_model=CompanyStandard, status_code=201)
async def create_standard(data: StandardCreate, user_id: str = Depends(get_current_user)):
    return store.create_standard(user_id, data)


@router.get("/variables")
async def list_standard_variables():
    """Template variables that resolve to company standards."""
    return [
        {"name": v.name, "standard_type": v.standard_type.value, "keywords": list(v.keywords)}
        for v in get_standard_registry().variables
    ]


@router.get("/{standard_id}", response_model=CompanyStandard)
async def get_standard(standard_id: str, user_id: str = Depends(get_current_user)):
    return _owned_or_404(standard_id, user_id)


@router.put("/{standard_id}", response_model=CompanyStandard)
async def update_standard(
    standard_id: str,
    data: StandardCreate,
    user_id: str = Depends(get_current_user),
):
    _owned_or_404(standard_id, user_id)
    return store.update_standard(standard_id, data)


@router.delete("/{standard_id}")
async def delete_standard(standard_id: str, user_id: str = Depends(get_current_user)):
    _owned_or_404(standard_id, user_id)
    store.delete_standard(standard_id)
    return {"deleted": True, "id": standard_id}


@router.get("/{standard_id}/preview", response_model=StandardPreview)
async def preview_standard(standard_id: str, user_id: str = Depends(get_current_user)):
    standard = _owned_or_404(standard_id, user_id)
    return StandardPreview(
        id=standard.id,
        standard_type=standard.standard_type,
        name=standard.name,
        preview=render_standard(standard),
    )
