"""Execution API routes.

Endpoints:
    POST   /v1/executions                                   Create and start an execution
    GET    /v1/executions                                   List the caller's executions
    GET    /v1/executions/{id}                              Full execution with enriched steps
    GET    /v1/executions/{id}/status                       Lightweight status poll
    POST   /v1/executions/{id}/steps/{step_id}/approve      Approve a step awaiting review
    POST   /v1/executions/{id}/steps/{step_id}/reject       Reject a step awaiting review
    POST   /v1/executions/{id}/steps/{step_id}/retry        Re-run a step in place
    POST   /v1/executions/{id}/cancel                       Cancel
    DELETE /v1/executions/{id}                              Delete with history
"""

import json
import logging
import re
from typing import Any, Optional

from fastapi import APIRouter, Depends

from recipeflow.api.deps import get_current_user, get_engine, http_error
from recipeflow.errors import RecipeflowError
from recipeflow.executor.engine import WorkflowEngine
from recipeflow.executor.schemas import (
    EnrichedStepExecution,
    Execution,
    ExecutionDetail,
    ExecutionStatusResponse,
    ExecutionSummary,
    RetryStepRequest,
    StartExecutionRequest,
    StepExecution,
)
from recipeflow.recipes import store as recipe_store
from recipeflow.recipes.schemas import OutputFormat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/executions", tags=["executions"])

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_output(content: str, output_format: OutputFormat) -> Any:
    """JSON outputs are parsed (tolerating a markdown fence); others pass through."""
    if output_format != OutputFormat.JSON or not content:
        return content
    text = content.strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return content


def _enrich(execution: Execution, se: StepExecution) -> EnrichedStepExecution:
    step = execution.step_at(se.step_order)
    enriched = EnrichedStepExecution(**se.model_dump())
    if step is not None:
        enriched.step_name = step.step_name
        enriched.step_type = step.step_type
        enriched.ai_model = step.ai_model
        enriched.output_format = step.output_format.value
        if se.output is not None:
            enriched.parsed_output = parse_output(se.output.content, step.output_format)
    return enriched


def to_detail(execution: Execution) -> ExecutionDetail:
    names = recipe_store.get_recipe_names([execution.recipe_id])
    return ExecutionDetail(
        id=execution.id,
        recipe_id=execution.recipe_id,
        recipe_name=names.get(execution.recipe_id),
        user_id=execution.user_id,
        status=execution.status,
        current_step=execution.current_step,
        total_steps=execution.total_steps,
        input_data=execution.input_data,
        steps_overridden=execution.steps_overridden,
        error=execution.error,
        created_at=execution.created_at,
        started_at=execution.started_at,
        completed_at=execution.completed_at,
        steps=execution.steps,
        step_executions=[_enrich(execution, se) for se in execution.step_executions],
    )


@router.post("", response_model=ExecutionDetail, status_code=201)
async def start_execution(
    request: StartExecutionRequest,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Create an execution and start running its steps.

    Validation (recipe exists, step types registered, required inputs
    present) happens before anything is created.
    """
    try:
        execution = engine.start(user_id, request)
    except RecipeflowError as e:
        raise http_error(e)
    return to_detail(execution)


@router.get("", response_model=list[ExecutionSummary])
async def list_executions(
    limit: int = 50,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """List the caller's executions, newest first, with recipe names."""
    executions = engine.list_executions(user_id, limit=limit)
    names = recipe_store.get_recipe_names(list({e.recipe_id for e in executions}))
    return [
        ExecutionSummary(
            id=e.id,
            recipe_id=e.recipe_id,
            recipe_name=names.get(e.recipe_id),
            status=e.status,
            current_step=e.current_step,
            total_steps=e.total_steps,
            error=e.error,
            created_at=e.created_at,
            completed_at=e.completed_at,
        )
        for e in executions
    ]


@router.get("/{execution_id}", response_model=ExecutionDetail)
async def get_execution(
    execution_id: str,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    try:
        return to_detail(engine.get(user_id, execution_id))
    except RecipeflowError as e:
        raise http_error(e)


@router.get("/{execution_id}/status", response_model=ExecutionStatusResponse)
async def get_execution_status(
    execution_id: str,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    try:
        return engine.status(user_id, execution_id)
    except RecipeflowError as e:
        raise http_error(e)


@router.post("/{execution_id}/steps/{step_execution_id}/approve", response_model=ExecutionDetail)
async def approve_step(
    execution_id: str,
    step_execution_id: str,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    try:
        return to_detail(engine.approve(user_id, execution_id, step_execution_id))
    except RecipeflowError as e:
        raise http_error(e)


@router.post("/{execution_id}/steps/{step_execution_id}/reject", response_model=ExecutionDetail)
async def reject_step(
    execution_id: str,
    step_execution_id: str,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    try:
        return to_detail(engine.reject(user_id, execution_id, step_execution_id))
    except RecipeflowError as e:
        raise http_error(e)


@router.post("/{execution_id}/steps/{step_execution_id}/retry", response_model=ExecutionDetail)
async def retry_step(
    execution_id: str,
    step_execution_id: str,
    request: Optional[RetryStepRequest] = None,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Re-run a failed, rejected or awaiting-review step.

    Body (optional): modified_prompt replaces the step's prompt template for
    this attempt; modified_input is merged into the execution's inputs.
    """
    try:
        return to_detail(engine.retry(user_id, execution_id, step_execution_id, request))
    except RecipeflowError as e:
        raise http_error(e)


@router.post("/{execution_id}/cancel", response_model=ExecutionDetail)
async def cancel_execution(
    execution_id: str,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    try:
        return to_detail(engine.cancel(user_id, execution_id))
    except RecipeflowError as e:
        raise http_error(e)


@router.delete("/{execution_id}")
async def delete_execution(
    execution_id: str,
    user_id: str = Depends(get_current_user),
    engine: WorkflowEngine = Depends(get_engine),
):
    try:
        engine.delete(user_id, execution_id)
    except RecipeflowError as e:
        raise http_error(e)
    return {"deleted": True, "id": execution_id}
