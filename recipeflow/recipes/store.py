"""Recipe persistence.

Each step is stored as one row whose step_data column holds the validated
step definition, so configs are typed on the way in and on the way out.
"""

import logging
import uuid
from typing import Optional

from recipeflow.db import execute, execute_batch, json_dumps, json_loads, normalize_timestamps, utcnow
from recipeflow.recipes.schemas import Recipe, RecipeCreate, RecipeStep, RecipeSummary

logger = logging.getLogger(__name__)


def _new_recipe_id() -> str:
    return f"rcp-{uuid.uuid4().hex[:12]}"


def _step_rows(recipe_id: str, steps: list[RecipeStep]) -> list[tuple[str, tuple]]:
    statements = []
    for step in steps:
        step_id = f"stp-{uuid.uuid4().hex[:12]}"
        statements.append((
            """INSERT INTO recipe_steps (id, recipe_id, step_order, step_data)
               VALUES (%s, %s, %s, %s)""",
            (step_id, recipe_id, step.step_order,
             json_dumps(step.model_dump(mode="json", exclude={"id"}))),
        ))
    return statements


def _load_steps(recipe_id: str) -> list[RecipeStep]:
    rows = execute(
        "SELECT id, step_data FROM recipe_steps WHERE recipe_id = %s ORDER BY step_order",
        (recipe_id,),
        fetch="all",
    )
    steps = []
    for row in rows:
        data = json_loads(row["step_data"])
        data["id"] = row["id"]
        steps.append(RecipeStep.model_validate(data))
    return steps


def create_recipe(
    data: RecipeCreate,
    user_id: Optional[str],
    recipe_id: Optional[str] = None,
) -> Recipe:
    """Insert a recipe and its steps in one transaction."""
    recipe_id = recipe_id or _new_recipe_id()
    now = utcnow()
    statements = [(
        """INSERT INTO recipes (id, name, description, is_template, created_by, created_at, updated_at)
           VALUES (%s, %s, %s, %s, %s, %s, %s)""",
        (recipe_id, data.name, data.description, data.is_template, user_id, now, now),
    )]
    statements.extend(_step_rows(recipe_id, data.steps))
    execute_batch(statements)

    logger.info(f"Created recipe {recipe_id} '{data.name}' with {len(data.steps)} steps")
    return get_recipe(recipe_id)


def get_recipe(recipe_id: str) -> Optional[Recipe]:
    """Get a recipe with its steps, or None."""
    row = execute("SELECT * FROM recipes WHERE id = %s", (recipe_id,), fetch="one")
    if row is None:
        return None
    normalize_timestamps(row)
    return Recipe(
        id=row["id"],
        name=row["name"],
        description=row.get("description") or "",
        is_template=bool(row["is_template"]),
        created_by=row.get("created_by"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        steps=_load_steps(recipe_id),
    )


def list_recipes(user_id: Optional[str] = None) -> list[RecipeSummary]:
    """List the user's own recipes plus every template."""
    rows = execute(
        """SELECT r.id, r.name, r.description, r.is_template, r.created_by, r.updated_at,
                  (SELECT COUNT(*) FROM recipe_steps s WHERE s.recipe_id = r.id) AS step_count
           FROM recipes r
           WHERE r.created_by = %s OR r.is_template = %s
           ORDER BY r.updated_at DESC""",
        (user_id, True),
        fetch="all",
    )
    summaries = []
    for row in rows:
        normalize_timestamps(row)
        summaries.append(RecipeSummary(
            id=row["id"],
            name=row["name"],
            description=row.get("description") or "",
            is_template=bool(row["is_template"]),
            step_count=row.get("step_count") or 0,
            created_by=row.get("created_by"),
            updated_at=row.get("updated_at"),
        ))
    return summaries


def update_recipe(recipe_id: str, data: RecipeCreate) -> Optional[Recipe]:
    """Replace a recipe's fields and its whole step list.

    In-flight executions are unaffected: they run from their own snapshot.
    """
    if get_recipe(recipe_id) is None:
        return None
    statements = [
        (
            """UPDATE recipes SET name = %s, description = %s, is_template = %s, updated_at = %s
               WHERE id = %s""",
            (data.name, data.description, data.is_template, utcnow(), recipe_id),
        ),
        ("DELETE FROM recipe_steps WHERE recipe_id = %s", (recipe_id,)),
    ]
    statements.extend(_step_rows(recipe_id, data.steps))
    execute_batch(statements)

    logger.info(f"Updated recipe {recipe_id} ({len(data.steps)} steps)")
    return get_recipe(recipe_id)


def delete_recipe(recipe_id: str) -> bool:
    """Delete a recipe and its steps. Past executions keep their snapshots."""
    deleted = execute("DELETE FROM recipes WHERE id = %s", (recipe_id,))
    if deleted:
        logger.info(f"Deleted recipe {recipe_id}")
    return bool(deleted)


def get_recipe_names(recipe_ids: list[str]) -> dict[str, str]:
    """Map recipe ids to names (missing recipes are simply absent)."""
    if not recipe_ids:
        return {}
    placeholders = ", ".join(["%s"] * len(recipe_ids))
    rows = execute(
        f"SELECT id, name FROM recipes WHERE id IN ({placeholders})",
        tuple(recipe_ids),
        fetch="all",
    )
    return {row["id"]: row["name"] for row in rows}
