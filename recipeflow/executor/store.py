"""Execution store: persistence of executions and their step executions.

The database is the single source of truth. Reading an execution yields its
status, current_step, step snapshot and every step execution, which is all
the engine needs to resume after a restart.

Writes that apply a step result are guarded: they only land while the
parent execution is not terminal, so a result arriving after cancel is
discarded rather than applied.
"""

import logging
import uuid
from typing import Optional

from recipeflow.db import (
    execute,
    execute_batch,
    json_dumps,
    json_loads,
    normalize_timestamps,
    utcnow,
)
from recipeflow.executor.schemas import (
    TERMINAL_STATUSES,
    Execution,
    ExecutionStatus,
    OutputItem,
    StepExecution,
    StepOutcome,
    StepOutput,
    StepStatus,
)
from recipeflow.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)

_TERMINAL_SQL = ", ".join(f"'{s.value}'" for s in TERMINAL_STATUSES)
_LIVE_PARENT = (
    "EXISTS (SELECT 1 FROM executions e WHERE e.id = step_executions.execution_id "
    f"AND e.status NOT IN ({_TERMINAL_SQL}))"
)


def new_execution_id() -> str:
    return f"exec-{uuid.uuid4().hex[:12]}"


def _new_step_execution_id() -> str:
    return f"se-{uuid.uuid4().hex[:12]}"


def _row_to_step_execution(row: dict) -> StepExecution:
    normalize_timestamps(row)
    output = json_loads(row.get("output"), empty=None) if row.get("output") else None
    return StepExecution(
        id=row["id"],
        execution_id=row["execution_id"],
        step_id=row.get("step_id"),
        step_order=row["step_order"],
        status=row["status"],
        input_data=json_loads(row.get("input_data")),
        output=StepOutput(**output) if output else None,
        error_message=row.get("error_message"),
        approved=bool(row.get("approved")),
        prompt_used=row.get("prompt_used"),
        model_used=row.get("model_used"),
        attempts=row.get("attempts") or 0,
        executed_at=row.get("executed_at"),
    )


def _row_to_execution(row: dict, step_rows: Optional[list[dict]] = None) -> Execution:
    normalize_timestamps(row)
    return Execution(
        id=row["id"],
        recipe_id=row["recipe_id"],
        user_id=row["user_id"],
        status=row["status"],
        current_step=row["current_step"],
        input_data=json_loads(row.get("input_data")),
        steps=[RecipeStep(**s) for s in json_loads(row.get("steps_data"), empty=[])],
        steps_overridden=bool(row.get("steps_overridden")),
        error=row.get("error"),
        created_at=row.get("created_at"),
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
        step_executions=[_row_to_step_execution(r) for r in step_rows or []],
    )


def create_execution(
    recipe_id: str,
    user_id: str,
    input_data: dict,
    steps: list[RecipeStep],
    steps_overridden: bool = False,
    execution_id: Optional[str] = None,
) -> Execution:
    """Create an execution plus one pending step execution per step.

    The step list is snapshotted, so later edits to the recipe cannot change
    an in-flight run.
    """
    execution_id = execution_id or new_execution_id()
    now = utcnow()
    steps = sorted(steps, key=lambda s: s.step_order)
    statements = [(
        """INSERT INTO executions
           (id, recipe_id, user_id, status, current_step, input_data,
            steps_data, steps_overridden, created_at)
           VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
        (
            execution_id, recipe_id, user_id, ExecutionStatus.PENDING.value,
            steps[0].step_order if steps else 1,
            json_dumps(input_data),
            json_dumps([s.model_dump(mode="json") for s in steps], empty="[]"),
            steps_overridden, now,
        ),
    )]
    for step in steps:
        statements.append((
            """INSERT INTO step_executions
               (id, execution_id, step_id, step_order, status, input_data, approved, attempts)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                _new_step_execution_id(), execution_id, step.id, step.step_order,
                StepStatus.PENDING.value, "{}", False, 0,
            ),
        ))
    execute_batch(statements)
    logger.info(
        f"Created execution {execution_id} for recipe {recipe_id} "
        f"({len(steps)} steps{', overridden' if steps_overridden else ''})"
    )
    return get_execution(execution_id)


def get_execution(execution_id: str) -> Optional[Execution]:
    row = execute(
        "SELECT * FROM executions WHERE id = %s",
        (execution_id,),
        fetch="one",
    )
    if row is None:
        return None
    step_rows = execute(
        "SELECT * FROM step_executions WHERE execution_id = %s ORDER BY step_order",
        (execution_id,),
        fetch="all",
    )
    return _row_to_execution(row, step_rows)


def get_execution_status(execution_id: str) -> Optional[str]:
    row = execute(
        "SELECT status FROM executions WHERE id = %s",
        (execution_id,),
        fetch="one",
    )
    return row["status"] if row else None


def list_executions(user_id: str, limit: int = 50) -> list[Execution]:
    """A user's executions, newest first, without step executions."""
    rows = execute(
        """SELECT * FROM executions WHERE user_id = %s
           ORDER BY created_at DESC, id DESC LIMIT %s""",
        (user_id, limit),
        fetch="all",
    )
    return [_row_to_execution(row) for row in rows]


def transition_execution(
    execution_id: str,
    status: ExecutionStatus,
    expected: tuple = (),
    current_step: Optional[int] = None,
    error: Optional[str] = None,
) -> bool:
    """Compare-and-swap the execution status.

    Args:
        expected: statuses the execution must be in for the update to apply
            (empty = any non-terminal status)

    Returns True if the row was updated.
    """
    now = utcnow()
    expected = expected or tuple(s for s in ExecutionStatus if s not in TERMINAL_STATUSES)
    sets = ["status = %s", "error = %s"]
    params: list = [status.value, error]

    if current_step is not None:
        sets.append("current_step = %s")
        params.append(current_step)
    if status == ExecutionStatus.RUNNING:
        sets.append("started_at = COALESCE(started_at, %s)")
        params.append(now)
    if status in TERMINAL_STATUSES:
        sets.append("completed_at = %s")
        params.append(now)

    placeholders = ", ".join(["%s"] * len(expected))
    params.extend([execution_id, *[s.value for s in expected]])
    updated = execute(
        f"UPDATE executions SET {', '.join(sets)} WHERE id = %s AND status IN ({placeholders})",
        tuple(params),
    )
    if updated:
        logger.info(
            f"Execution {execution_id} status → {status.value}"
            + (f" (step {current_step})" if current_step is not None else "")
            + (f" (error: {error})" if error else "")
        )
    return bool(updated)


def update_execution_input(execution_id: str, input_data: dict) -> None:
    execute(
        "UPDATE executions SET input_data = %s WHERE id = %s",
        (json_dumps(input_data), execution_id),
    )


def set_step_status(
    step_execution_id: str,
    status: StepStatus,
    expected: tuple = (),
    approved: Optional[bool] = None,
    clear_output: bool = False,
) -> bool:
    """Compare-and-swap a step execution's status (parent must be live)."""
    sets = ["status = %s"]
    params: list = [status.value]
    if approved is not None:
        sets.append("approved = %s")
        params.append(approved)
    if clear_output:
        sets.extend(["output = NULL", "error_message = NULL"])
    params.append(step_execution_id)

    sql = f"UPDATE step_executions SET {', '.join(sets)} WHERE id = %s AND {_LIVE_PARENT}"
    if expected:
        sql += f" AND status IN ({', '.join(['%s'] * len(expected))})"
        params.extend(s.value for s in expected)
    return bool(execute(sql, tuple(params)))


def apply_step_outcome(step_execution_id: str, outcome: StepOutcome) -> bool:
    """Replace a step execution's record in place with a new outcome.

    Returns False (nothing written) if the execution is already terminal.
    """
    updated = execute(
        f"""UPDATE step_executions
            SET status = %s, input_data = %s, output = %s, error_message = %s,
                approved = %s, prompt_used = %s, model_used = %s,
                attempts = attempts + 1, executed_at = %s
            WHERE id = %s AND {_LIVE_PARENT}""",
        (
            outcome.status.value,
            json_dumps(outcome.input_data),
            json_dumps(outcome.output.model_dump(mode="json")) if outcome.output else None,
            outcome.error_message,
            outcome.approved,
            outcome.prompt_used,
            outcome.model_used,
            utcnow(),
            step_execution_id,
        ),
    )
    if not updated:
        logger.warning(
            f"Discarded outcome for step execution {step_execution_id}: "
            f"execution is terminal or gone"
        )
    return bool(updated)


def reset_running_steps(execution_id: str) -> int:
    """Steps interrupted mid-run (process restart) go back to pending."""
    return execute(
        """UPDATE step_executions SET status = %s
           WHERE execution_id = %s AND status = %s""",
        (StepStatus.PENDING.value, execution_id, StepStatus.RUNNING.value),
    )


def delete_execution(execution_id: str) -> bool:
    existing = execute(
        "SELECT id FROM executions WHERE id = %s",
        (execution_id,),
        fetch="one",
    )
    if existing is None:
        return False
    execute_batch([
        ("DELETE FROM step_executions WHERE execution_id = %s", (execution_id,)),
        ("DELETE FROM executions WHERE id = %s", (execution_id,)),
    ])
    logger.info(f"Deleted execution {execution_id}")
    return True


def find_orphaned_executions() -> list[str]:
    """Executions the database shows as in flight (pending or running)."""
    rows = execute(
        "SELECT id FROM executions WHERE status IN (%s, %s) ORDER BY created_at",
        (ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value),
        fetch="all",
    )
    return [row["id"] for row in rows]


# --- Outputs gallery ---

_OUTPUT_STATUSES = (StepStatus.COMPLETED.value, StepStatus.AWAITING_REVIEW.value)

_OUTPUT_SELECT = """SELECT se.*, e.recipe_id, e.user_id, e.steps_data
    FROM step_executions se
    JOIN executions e ON e.id = se.execution_id"""


def _row_to_output(row: dict) -> OutputItem:
    se = _row_to_step_execution(row)
    steps = [RecipeStep(**s) for s in json_loads(row.get("steps_data"), empty=[])]
    step = next((s for s in steps if s.step_order == se.step_order), None)
    output = se.output or StepOutput()
    return OutputItem(
        id=se.id,
        execution_id=se.execution_id,
        recipe_id=row["recipe_id"],
        user_id=row["user_id"],
        step_order=se.step_order,
        step_name=step.step_name if step else "",
        output_format=step.output_format.value if step else "text",
        status=se.status,
        model_used=se.model_used or output.model,
        executed_at=se.executed_at,
        content=output.content,
        generated_images=output.generated_images,
    )


def list_step_outputs(user_id: str, limit: int = 200) -> list[OutputItem]:
    """A user's completed and awaiting-review step outputs, newest first."""
    rows = execute(
        f"""{_OUTPUT_SELECT}
            WHERE e.user_id = %s AND se.status IN (%s, %s) AND se.output IS NOT NULL
            ORDER BY se.executed_at DESC, se.id DESC LIMIT %s""",
        (user_id, *_OUTPUT_STATUSES, limit),
        fetch="all",
    )
    return [_row_to_output(row) for row in rows]


def get_step_output(step_execution_id: str) -> Optional[OutputItem]:
    """One step output, whatever its owner (callers check user_id)."""
    row = execute(
        f"{_OUTPUT_SELECT} WHERE se.id = %s AND se.output IS NOT NULL",
        (step_execution_id,),
        fetch="one",
    )
    return _row_to_output(row) if row else None
