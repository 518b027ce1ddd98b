"""Shared fixtures: a throwaway SQLite database and fake executors."""

import time
from typing import Callable, Optional

import pytest

from recipeflow import db
from recipeflow.executor.engine import WorkflowEngine
from recipeflow.executors.base import CompiledInput, ExecutorResult, StepExecutor
from recipeflow.executors.registry import ExecutorRegistry
from recipeflow.recipes import store as recipe_store
from recipeflow.recipes.schemas import RecipeCreate, RecipeStep
from recipeflow.standards.render import StandardRegistry

USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture
def database(tmp_path, monkeypatch):
    """Fresh SQLite database per test."""
    monkeypatch.setattr(db, "DATABASE_URL", "")
    monkeypatch.setattr(db, "SQLITE_PATH", tmp_path / "test.db")
    monkeypatch.setattr(db, "_initialized", False)
    db.init_db()
    return tmp_path / "test.db"


class FakeExecutor(StepExecutor):
    """Records what it was asked to run and answers from a script.

    `responses` maps step_order -> content (or an Exception to raise);
    anything unscripted echoes the compiled prompt.
    """

    display_name = "Fake"

    def __init__(self, step_type: str = "ai", requires_review: bool = True):
        self.type = step_type
        self.requires_review = requires_review
        self.responses: dict[int, object] = {}
        self.calls: list[tuple[int, CompiledInput]] = []
        self.on_execute: Optional[Callable[[RecipeStep], None]] = None

    def execute(self, compiled: CompiledInput, step: RecipeStep) -> ExecutorResult:
        self.calls.append((step.step_order, compiled))
        if self.on_execute is not None:
            self.on_execute(step)
        response = self.responses.get(step.step_order, compiled.prompt)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, ExecutorResult):
            return response
        return ExecutorResult(
            success=True,
            content=str(response),
            usage={"input_tokens": 1, "output_tokens": 1},
            prompt_used=compiled.prompt,
            model_used="fake-model",
        )


@pytest.fixture
def fake_ai():
    return FakeExecutor("ai", requires_review=True)


@pytest.fixture
def fake_tool():
    return FakeExecutor("script", requires_review=False)


@pytest.fixture
def registry(fake_ai, fake_tool):
    return ExecutorRegistry([fake_ai, fake_tool])


@pytest.fixture
def engine(database, registry):
    return WorkflowEngine(
        registry=registry,
        standard_registry=StandardRegistry(),
        background=False,
        default_timeout=None,
    )


@pytest.fixture
def threaded_engine(database, registry):
    """Engine that advances executions on daemon threads, as in production."""
    return WorkflowEngine(
        registry=registry,
        standard_registry=StandardRegistry(),
        background=True,
        default_timeout=None,
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def make_recipe(database):
    def _make(steps: list[dict], user_id: str = USER, name: str = "Test recipe"):
        return recipe_store.create_recipe(
            RecipeCreate(name=name, steps=[RecipeStep(**s) for s in steps]),
            user_id,
        )
    return _make
