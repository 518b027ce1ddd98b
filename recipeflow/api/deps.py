"""Request dependencies and error mapping shared by the routers."""

import os
from typing import Optional

from fastapi import Header, HTTPException

from recipeflow.errors import (
    AuthorizationError,
    ConflictError,
    ExecutorError,
    NotFoundError,
    RecipeflowError,
    ValidationError,
)
from recipeflow.executor.engine import WorkflowEngine, get_workflow_engine

DEFAULT_USER = os.environ.get("RECIPEFLOW_DEFAULT_USER", "demo-user")

_STATUS_CODES = (
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ExecutorError, 502),
)


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity from the X-User-Id header (authentication happens upstream)."""
    return (x_user_id or "").strip() or DEFAULT_USER


def get_engine() -> WorkflowEngine:
    return get_workflow_engine()


def http_error(e: RecipeflowError) -> HTTPException:
    """Map a domain error onto an HTTPException."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
