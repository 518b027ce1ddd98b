"""Executor registry: step_type -> executor.

Built once at startup and injected into the workflow engine, so tests can
register fakes without touching globals.
"""

import logging
from typing import Iterable, Optional

from recipeflow.errors import InvalidInput, UnknownExecutorType
from recipeflow.executors.base import ExecutorInfo, StepExecutor
from recipeflow.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)


class ExecutorRegistry:
    """Closed set of executors keyed by step type."""

    def __init__(self, executors: Iterable[StepExecutor] = ()):
        self._executors: dict[str, StepExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: StepExecutor) -> None:
        if not executor.type:
            raise ValueError(f"Executor {executor!r} has no type")
        if executor.type in self._executors:
            logger.warning(f"Replacing executor for step type '{executor.type}'")
        self._executors[executor.type] = executor

    def get(self, step_type: str) -> StepExecutor:
        """Get the executor for a step type.

        Raises:
            UnknownExecutorType: nothing is registered for step_type
        """
        executor = self._executors.get(step_type)
        if executor is None:
            raise UnknownExecutorType(step_type, self._executors.keys())
        return executor

    def has(self, step_type: str) -> bool:
        return step_type in self._executors

    def types(self) -> list[str]:
        return sorted(self._executors)

    def list_info(self) -> list[ExecutorInfo]:
        return [self._executors[t].info() for t in self.types()]

    def validate_steps(self, steps: list[RecipeStep]) -> None:
        """Reject a step list before anything runs.

        Raises:
            UnknownExecutorType: a step names an unregistered type
            InvalidInput: a step's configuration is invalid
        """
        problems: list[str] = []
        for step in steps:
            executor = self.get(step.step_type)
            problems.extend(executor.validate_config(step))
        if problems:
            raise InvalidInput("Invalid step configuration: " + "; ".join(problems))


_registry: Optional[ExecutorRegistry] = None


def create_default_registry() -> ExecutorRegistry:
    """Registry with the built-in executors."""
    from recipeflow.executors.ai import AIExecutor
    from recipeflow.executors.http import HttpExecutor
    from recipeflow.executors.scraping import ScrapingExecutor
    from recipeflow.executors.script import ScriptExecutor
    from recipeflow.executors.transform import TransformExecutor

    return ExecutorRegistry([
        AIExecutor(),
        ScrapingExecutor(),
        ScriptExecutor(),
        HttpExecutor(),
        TransformExecutor(),
    ])


def get_executor_registry() -> ExecutorRegistry:
    """Get the global executor registry instance."""
    global _registry
    if _registry is None:
        _registry = create_default_registry()
    return _registry
