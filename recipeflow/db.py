"""Storage for recipes, company standards and executions.

RECIPEFLOW_DATABASE_URL=postgres://... selects PostgreSQL (psycopg2, pooled);
left empty, a local SQLite file is used. Queries are plain SQL written with
%s placeholders.

Each SQLite call opens its own connection, so execution threads never share
one; Postgres connections come from a ThreadedConnectionPool.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Database URL: postgres://... for Postgres, or empty for SQLite
DATABASE_URL = os.environ.get("RECIPEFLOW_DATABASE_URL", "")

# SQLite default path
SQLITE_PATH = Path(
    os.environ.get("RECIPEFLOW_SQLITE_PATH", "")
    or Path(__file__).parent / "recipeflow.db"
)

_initialized = False
_pg_pool = None


def _is_postgres() -> bool:
    """Check if we're using Postgres."""
    return DATABASE_URL.startswith("postgres")


def _get_pg_pool():
    """Get or create the Postgres connection pool (lazy singleton)."""
    global _pg_pool
    if _pg_pool is None:
        import psycopg2.pool
        _pg_pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=10,
            dsn=DATABASE_URL,
        )
        logger.info("PostgreSQL connection pool initialized (1-10 connections)")
    return _pg_pool


@contextmanager
def get_connection():
    """Connection context manager; the caller commits."""
    if _is_postgres():
        pool = _get_pg_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)
    else:
        conn = sqlite3.connect(str(SQLITE_PATH), check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()


def utcnow() -> str:
    """Current UTC time as an ISO string (the storage format for timestamps)."""
    return datetime.now(timezone.utc).isoformat()


def json_dumps(data: Any, empty: str = "{}") -> str:
    """Serialize data to JSON string for storage."""
    if data is None:
        return empty
    return json.dumps(data, ensure_ascii=False, default=str)


def json_loads(text: Any, empty: Any = None) -> Any:
    """Deserialize JSON string from storage."""
    if text is None or text == "":
        return {} if empty is None else empty
    if isinstance(text, (dict, list)):
        return text  # Already parsed (Postgres JSONB)
    return json.loads(text)


def normalize_timestamps(row: dict, keys: tuple = ("created_at", "updated_at", "started_at", "completed_at", "executed_at")) -> dict:
    """Convert datetime objects to ISO strings (Postgres returns datetimes for TIMESTAMP columns)."""
    for key in keys:
        val = row.get(key)
        if val is not None and isinstance(val, datetime):
            row[key] = val.isoformat()
    return row


def _adapt(sql: str) -> str:
    # Statements are written with %s placeholders; sqlite3 wants ?
    return sql if _is_postgres() else sql.replace("%s", "?")


def _as_dicts(cursor, rows: list) -> list[dict]:
    if _is_postgres():
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row)) for row in rows]
    return [dict(row) for row in rows]


def execute(sql: str, params: tuple = (), fetch: str = "none") -> Any:
    """Run one statement.

    fetch="one" returns a dict or None, fetch="all" a list of dicts, and
    "none" commits and returns the affected row count.
    """
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(_adapt(sql), params)

        if fetch == "one":
            row = cursor.fetchone()
            return _as_dicts(cursor, [row])[0] if row is not None else None
        if fetch == "all":
            return _as_dicts(cursor, cursor.fetchall())

        conn.commit()
        return cursor.rowcount


def execute_batch(statements: list[tuple[str, tuple]]) -> None:
    """Run several writes in one transaction: all commit or none do."""
    with get_connection() as conn:
        cursor = conn.cursor()
        try:
            for sql, params in statements:
                cursor.execute(_adapt(sql), params)
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def init_db() -> None:
    """Create tables if they don't exist."""
    global _initialized
    if _initialized:
        return

    if _is_postgres():
        _init_postgres()
    else:
        _init_sqlite()

    _initialized = True
    backend = "PostgreSQL" if _is_postgres() else f"SQLite ({SQLITE_PATH})"
    logger.info(f"Recipeflow database initialized: {backend}")


def _init_postgres():
    """Create Postgres tables."""
    ddl = """
    CREATE TABLE IF NOT EXISTS recipes (
        id VARCHAR(100) PRIMARY KEY,
        name VARCHAR(300) NOT NULL,
        description TEXT,
        is_template BOOLEAN NOT NULL DEFAULT FALSE,
        created_by VARCHAR(100),
        created_at TIMESTAMP DEFAULT NOW(),
        updated_at TIMESTAMP DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS recipe_steps (
        id VARCHAR(100) PRIMARY KEY,
        recipe_id VARCHAR(100) NOT NULL REFERENCES recipes(id) ON DELETE CASCADE,
        step_order INTEGER NOT NULL,
        step_data JSONB NOT NULL,
        UNIQUE(recipe_id, step_order)
    );

    CREATE TABLE IF NOT EXISTS company_standards (
        id VARCHAR(100) PRIMARY KEY,
        user_id VARCHAR(100) NOT NULL,
        standard_type VARCHAR(20) NOT NULL,
        name VARCHAR(300) NOT NULL,
        content TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT NOW(),
        updated_at TIMESTAMP DEFAULT NOW()
    );

    CREATE INDEX IF NOT EXISTS idx_standards_user
        ON company_standards(user_id, standard_type);

    CREATE TABLE IF NOT EXISTS executions (
        id VARCHAR(100) PRIMARY KEY,
        recipe_id VARCHAR(100) NOT NULL,
        user_id VARCHAR(100) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'pending',
        current_step INTEGER NOT NULL DEFAULT 1,
        input_data JSONB DEFAULT '{}',
        steps_data JSONB NOT NULL DEFAULT '[]',
        steps_overridden BOOLEAN NOT NULL DEFAULT FALSE,
        error TEXT,
        created_at TIMESTAMP DEFAULT NOW(),
        started_at TIMESTAMP,
        completed_at TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_executions_user
        ON executions(user_id, created_at);

    CREATE TABLE IF NOT EXISTS step_executions (
        id VARCHAR(100) PRIMARY KEY,
        execution_id VARCHAR(100) NOT NULL REFERENCES executions(id) ON DELETE CASCADE,
        step_id VARCHAR(100),
        step_order INTEGER NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'pending',
        input_data JSONB DEFAULT '{}',
        output JSONB,
        error_message TEXT,
        approved BOOLEAN NOT NULL DEFAULT FALSE,
        prompt_used TEXT,
        model_used VARCHAR(100),
        attempts INTEGER NOT NULL DEFAULT 0,
        executed_at TIMESTAMP,
        UNIQUE(execution_id, step_order)
    );
    """
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(ddl)
        conn.commit()


def _init_sqlite():
    """Create SQLite tables."""
    ddl = """
    CREATE TABLE IF NOT EXISTS recipes (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        is_template INTEGER NOT NULL DEFAULT 0,
        created_by TEXT,
        created_at TEXT,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS recipe_steps (
        id TEXT PRIMARY KEY,
        recipe_id TEXT NOT NULL REFERENCES recipes(id) ON DELETE CASCADE,
        step_order INTEGER NOT NULL,
        step_data TEXT NOT NULL,
        UNIQUE(recipe_id, step_order)
    );

    CREATE TABLE IF NOT EXISTS company_standards (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        standard_type TEXT NOT NULL,
        name TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_standards_user
        ON company_standards(user_id, standard_type);

    CREATE TABLE IF NOT EXISTS executions (
        id TEXT PRIMARY KEY,
        recipe_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        current_step INTEGER NOT NULL DEFAULT 1,
        input_data TEXT DEFAULT '{}',
        steps_data TEXT NOT NULL DEFAULT '[]',
        steps_overridden INTEGER NOT NULL DEFAULT 0,
        error TEXT,
        created_at TEXT,
        started_at TEXT,
        completed_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_executions_user
        ON executions(user_id, created_at);

    CREATE TABLE IF NOT EXISTS step_executions (
        id TEXT PRIMARY KEY,
        execution_id TEXT NOT NULL REFERENCES executions(id) ON DELETE CASCADE,
        step_id TEXT,
        step_order INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        input_data TEXT DEFAULT '{}',
        output TEXT,
        error_message TEXT,
        approved INTEGER NOT NULL DEFAULT 0,
        prompt_used TEXT,
        model_used TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        executed_at TEXT,
        UNIQUE(execution_id, step_order)
    );
    """
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.executescript(ddl)
        conn.commit()
