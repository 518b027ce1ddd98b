"""Executor and model catalog routes (drive the recipe editor).

Endpoints:
    GET /v1/executors                 All step types with their config schemas
    GET /v1/executors/models          AI models, with provider availability
    GET /v1/executors/{step_type}     One step type
"""

from fastapi import APIRouter, Depends, HTTPException

from recipeflow.api.deps import get_engine
from recipeflow.executor.engine import WorkflowEngine
from recipeflow.executors.base import ExecutorInfo
from recipeflow.llm.models import AIModelInfo, get_model_catalog, is_provider_configured

router = APIRouter(prefix="/executors", tags=["executors"])


class ModelListing(AIModelInfo):
    available: bool = False


@router.get("", response_model=list[ExecutorInfo])
async def list_executors(engine: WorkflowEngine = Depends(get_engine)):
    return engine.registry.list_info()


@router.get("/models", response_model=list[ModelListing])
async def list_models(available_only: bool = False):
    """Models a step may name. available = the provider has an API key set."""
    models = [
        ModelListing(**m.model_dump(), available=is_provider_configured(m.provider))
        for m in get_model_catalog().list_all()
    ]
    if available_only:
        models = [m for m in models if m.available]
    return models


@router.get("/{step_type}", response_model=ExecutorInfo)
async def get_executor(step_type: str, engine: WorkflowEngine = Depends(get_engine)):
    if not engine.registry.has(step_type):
        raise HTTPException(
            status_code=404,
            detail=f"Unknown executor type: '{step_type}'. Available: {', '.join(engine.registry.types())}",
        )
    return engine.registry.get(step_type).info()
