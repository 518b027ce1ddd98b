"""Company standard persistence."""

import logging
import uuid
from typing import Optional

from recipeflow.db import execute, normalize_timestamps, utcnow
from recipeflow.standards.schemas import CompanyStandard, StandardCreate, StandardType

logger = logging.getLogger(__name__)


def _row_to_standard(row: dict) -> CompanyStandard:
    normalize_timestamps(row)
    return CompanyStandard(**row)


def create_standard(user_id: str, data: StandardCreate) -> CompanyStandard:
    standard_id = f"std-{uuid.uuid4().hex[:12]}"
    now = utcnow()
    execute(
        """INSERT INTO company_standards
           (id, user_id, standard_type, name, content, created_at, updated_at)
           VALUES (%s, %s, %s, %s, %s, %s, %s)""",
        (standard_id, user_id, data.standard_type.value, data.name, data.content, now, now),
    )
    logger.info(f"Created {data.standard_type.value} standard {standard_id} for user {user_id}")
    return get_standard(standard_id)


def get_standard(standard_id: str) -> Optional[CompanyStandard]:
    row = execute(
        "SELECT * FROM company_standards WHERE id = %s",
        (standard_id,),
        fetch="one",
    )
    return _row_to_standard(row) if row else None


def list_standards(
    user_id: str,
    standard_type: Optional[StandardType] = None,
) -> list[CompanyStandard]:
    """List a user's standards, oldest first, optionally filtered by type."""
    if standard_type is not None:
        rows = execute(
            """SELECT * FROM company_standards
               WHERE user_id = %s AND standard_type = %s
               ORDER BY created_at, id""",
            (user_id, standard_type.value),
            fetch="all",
        )
    else:
        rows = execute(
            """SELECT * FROM company_standards
               WHERE user_id = %s
               ORDER BY created_at, id""",
            (user_id,),
            fetch="all",
        )
    return [_row_to_standard(row) for row in rows]


def update_standard(standard_id: str, data: StandardCreate) -> Optional[CompanyStandard]:
    updated = execute(
        """UPDATE company_standards
           SET standard_type = %s, name = %s, content = %s, updated_at = %s
           WHERE id = %s""",
        (data.standard_type.value, data.name, data.content, utcnow(), standard_id),
    )
    if not updated:
        return None
    logger.info(f"Updated standard {standard_id}")
    return get_standard(standard_id)


def delete_standard(standard_id: str) -> bool:
    deleted = execute("DELETE FROM company_standards WHERE id = %s", (standard_id,))
    if deleted:
        logger.info(f"Deleted standard {standard_id}")
    return bool(deleted)
