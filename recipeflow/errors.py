"""Error taxonomy shared by the engine, executors and API routes.

Request-time problems (ValidationError and subclasses, NotFoundError,
AuthorizationError, ConflictError) propagate to the API boundary and map to
HTTP status codes. UnresolvedVariable and ExecutorError are recovered by the
step runner into a failed step execution and never reach the caller.
"""

from typing import Iterable


class RecipeflowError(Exception):
    """Base class for all recipeflow errors."""


class ValidationError(RecipeflowError):
    """Request rejected before any execution state was created."""


class UnknownExecutorType(ValidationError):
    def __init__(self, step_type: str, available: Iterable[str] = ()):
        self.step_type = step_type
        available = sorted(available)
        msg = f"Unknown executor type: '{step_type}'"
        if available:
            msg += f". Available: {', '.join(available)}"
        super().__init__(msg)


class MissingRequiredInput(ValidationError):
    def __init__(self, names: Iterable[str]):
        self.names = list(names)
        super().__init__(f"Missing required inputs: {', '.join(self.names)}")


class InvalidInput(ValidationError):
    """An input value or step definition failed its declared rules."""


class UnresolvedVariable(RecipeflowError):
    def __init__(self, names: Iterable[str], reason: str = ""):
        self.names = list(names)
        msg = f"Unresolved variables: {', '.join(self.names)}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class ExecutorError(RecipeflowError):
    """Failure raised inside an executor (provider error, bad config, timeout)."""


class ConflictError(RecipeflowError):
    """Action not allowed in the current execution or step state."""


class AuthorizationError(RecipeflowError):
    """Caller does not own the targeted resource."""


class NotFoundError(RecipeflowError):
    """Referenced recipe, execution, step or standard does not exist."""
