"""Step executors: one per step type, behind a uniform contract."""

from recipeflow.executors.base import (
    CompiledInput,
    ConfigField,
    ExecutorInfo,
    ExecutorResult,
    StepExecutor,
)
from recipeflow.executors.registry import (
    ExecutorRegistry,
    create_default_registry,
    get_executor_registry,
)

__all__ = [
    "CompiledInput",
    "ConfigField",
    "ExecutorInfo",
    "ExecutorResult",
    "StepExecutor",
    "ExecutorRegistry",
    "create_default_registry",
    "get_executor_registry",
]
