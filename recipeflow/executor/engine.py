"""Workflow engine: the execution state machine.

    pending → running → (paused ↔ running) → completed | cancelled | failed

Steps run strictly in ascending step_order, one at a time per execution.
A step that needs review or has failed pauses the execution at that step;
the engine then returns and waits for approve, reject, retry or cancel to
re-enter it. `failed` is reserved for internal engine errors: a failed step
leaves the execution paused and retryable.

Concurrency: each execution has its own lock, held only while checking and
mutating state (never across an executor call), and an active-set guard so
at most one thread advances a given execution. An advance requested while
another thread holds the execution is recorded, and that thread makes one
more pass before releasing it. The store's compare-and-swap updates back
both up across processes. Locks and flags are dropped once an execution is
terminal.
"""

import logging
import threading
from typing import Any, Callable, Optional

from recipeflow.errors import (
    AuthorizationError,
    ConflictError,
    InvalidInput,
    NotFoundError,
    ValidationError,
)
from recipeflow.executor import store
from recipeflow.executor.schemas import (
    CANCELLABLE_STATUSES,
    TERMINAL_STATUSES,
    Execution,
    ExecutionStatus,
    ExecutionStatusResponse,
    RetryStepRequest,
    StartExecutionRequest,
    StepExecution,
    StepStatus,
)
from recipeflow.executor.step_runner import EXECUTOR_TIMEOUT_SECONDS, run_step
from recipeflow.executor.variables import (
    merged_input_specs,
    required_user_inputs,
    validate_user_inputs,
)
from recipeflow.executors.registry import ExecutorRegistry, get_executor_registry
from recipeflow.recipes import store as recipe_store
from recipeflow.recipes.schemas import RecipeStep
from recipeflow.standards import store as standards_store
from recipeflow.standards.render import StandardRegistry, get_standard_registry
from recipeflow.standards.schemas import CompanyStandard

logger = logging.getLogger(__name__)

RETRYABLE_STEP_STATUSES = (StepStatus.FAILED, StepStatus.AWAITING_REVIEW, StepStatus.PENDING)


class WorkflowEngine:
    """Runs executions and applies review actions to them.

    Args:
        registry: executors by step type
        standards_loader: user_id -> that user's company standards
        background: run steps on a daemon thread per execution (False runs
            them inline in the calling thread, which tests rely on)
    """

    def __init__(
        self,
        registry: Optional[ExecutorRegistry] = None,
        standards_loader: Callable[[str], list[CompanyStandard]] = standards_store.list_standards,
        standard_registry: Optional[StandardRegistry] = None,
        background: bool = True,
        default_timeout: Optional[float] = EXECUTOR_TIMEOUT_SECONDS,
    ):
        self.registry = registry or get_executor_registry()
        self.standards_loader = standards_loader
        self.standard_registry = standard_registry or get_standard_registry()
        self.background = background
        self.default_timeout = default_timeout

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._active: set[str] = set()
        self._readvance: dict[str, Optional[tuple]] = {}
        self._active_lock = threading.Lock()
        self._cancelled: set[str] = set()
        self._cancelled_lock = threading.Lock()

    # --- Locks, flags ---

    def _lock_for(self, execution_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(execution_id)
            if lock is None:
                lock = self._locks[execution_id] = threading.Lock()
            return lock

    def is_cancelled(self, execution_id: str) -> bool:
        """Fast in-memory check, falling back to the DB (cross-process cancel)."""
        with self._cancelled_lock:
            if execution_id in self._cancelled:
                return True
        status = store.get_execution_status(execution_id)
        if status is None or status == ExecutionStatus.CANCELLED.value:
            with self._cancelled_lock:
                self._cancelled.add(execution_id)
            return True
        return False

    def _forget(self, execution_id: str) -> None:
        with self._cancelled_lock:
            self._cancelled.discard(execution_id)
        with self._locks_guard:
            self._locks.pop(execution_id, None)

    def _forget_if_terminal(self, execution_id: str) -> None:
        status = store.get_execution_status(execution_id)
        if status is None or ExecutionStatus(status) in TERMINAL_STATUSES:
            self._forget(execution_id)

    # --- Queries ---

    def _load_owned(self, user_id: str, execution_id: str) -> Execution:
        execution = store.get_execution(execution_id)
        if execution is None:
            raise NotFoundError(f"Execution not found: {execution_id}")
        if execution.user_id != user_id:
            raise AuthorizationError(f"Execution {execution_id} belongs to another user")
        return execution

    def get(self, user_id: str, execution_id: str) -> Execution:
        return self._load_owned(user_id, execution_id)

    def list_executions(self, user_id: str, limit: int = 50) -> list[Execution]:
        return store.list_executions(user_id, limit=limit)

    def status(self, user_id: str, execution_id: str) -> ExecutionStatusResponse:
        execution = self._load_owned(user_id, execution_id)
        return ExecutionStatusResponse(
            id=execution.id,
            status=execution.status,
            current_step=execution.current_step,
            total_steps=execution.total_steps,
            error=execution.error,
            awaiting_review=[
                se.id for se in execution.step_executions
                if se.status == StepStatus.AWAITING_REVIEW
            ],
            step_statuses={str(se.step_order): se.status for se in execution.step_executions},
        )

    # --- Start ---

    def _effective_steps(self, request: StartExecutionRequest) -> tuple[list[RecipeStep], bool]:
        recipe = recipe_store.get_recipe(request.recipe_id)
        if recipe is None:
            raise ValidationError(f"Recipe not found: {request.recipe_id}")

        if request.steps is not None:
            steps, overridden = list(request.steps), True
        else:
            steps, overridden = list(recipe.steps), False
        if not steps:
            raise InvalidInput("No steps to execute")

        orders = [s.step_order for s in steps]
        if len(set(orders)) != len(orders):
            raise InvalidInput(f"Duplicate step_order values: {sorted(orders)}")
        return sorted(steps, key=lambda s: s.step_order), overridden

    def validate(self, steps: list[RecipeStep], input_data: dict[str, Any]) -> None:
        """Reject a run before any state is created.

        Raises:
            UnknownExecutorType, InvalidInput, MissingRequiredInput
        """
        self.registry.validate_steps(steps)

        templates: list[str] = []
        for step in steps:
            executor = self.registry.get(step.step_type)
            config = executor.parse_config(step)
            templates.extend(executor.template_fields(step, config).values())

        specs = merged_input_specs(steps)
        required = required_user_inputs(templates, specs, self.standard_registry)
        validate_user_inputs(input_data, required, specs)

    def start(self, user_id: str, request: StartExecutionRequest) -> Execution:
        """Validate, create and start an execution.

        Raises:
            ValidationError: missing recipe, unknown step type, bad config
                or missing/invalid inputs (nothing is created)
        """
        steps, overridden = self._effective_steps(request)
        self.validate(steps, request.input_data)

        execution = store.create_execution(
            recipe_id=request.recipe_id,
            user_id=user_id,
            input_data=request.input_data,
            steps=steps,
            steps_overridden=overridden,
        )
        self._dispatch(execution.id, self._run)
        return store.get_execution(execution.id)

    # --- Run loop ---

    def _dispatch(self, execution_id: str, target: Callable, *args) -> None:
        if not self.background:
            target(execution_id, *args)
            return
        thread = threading.Thread(
            target=target,
            args=(execution_id, *args),
            name=f"execution-{execution_id}",
            daemon=True,
        )
        thread.start()
        logger.info(f"Started execution thread for {execution_id}")

    def _run(self, execution_id: str, retry: Optional[tuple] = None) -> None:
        """Advance an execution as far as it can go. Called on its own thread.

        If another thread is already advancing this execution, the request
        (and its retry, if any) is handed to that thread instead.
        """
        with self._active_lock:
            if execution_id in self._active:
                if retry is not None or execution_id not in self._readvance:
                    self._readvance[execution_id] = retry
                logger.info(f"Execution {execution_id} is being advanced; queued another pass")
                return
            self._active.add(execution_id)

        released = False
        try:
            while True:
                advance = True
                if retry is not None:
                    step_order, retry_request = retry
                    advance = self._retry_step(execution_id, step_order, retry_request)
                if advance:
                    self._advance(execution_id)

                with self._active_lock:
                    if execution_id not in self._readvance:
                        self._active.discard(execution_id)
                        released = True
                        break
                    retry = self._readvance.pop(execution_id)

        except Exception as e:
            logger.error(f"Execution {execution_id} failed: {e}", exc_info=True)
            store.transition_execution(execution_id, ExecutionStatus.FAILED, error=str(e))

        finally:
            if not released:
                with self._active_lock:
                    self._active.discard(execution_id)
                    self._readvance.pop(execution_id, None)

        self._forget_if_terminal(execution_id)

    def _step_kwargs(self, execution: Execution) -> dict:
        return dict(
            standard_registry=self.standard_registry,
            cancellation_check=lambda: self.is_cancelled(execution.id),
            default_timeout=self.default_timeout,
        )

    def _pause(self, execution: Execution, step_order: int, error: Optional[str] = None) -> None:
        store.transition_execution(
            execution.id,
            ExecutionStatus.PAUSED,
            current_step=step_order,
            error=error,
        )

    def _next_step(self, execution: Execution) -> Optional[StepExecution]:
        for se in execution.step_executions:
            if se.status != StepStatus.COMPLETED:
                return se
        return None

    def _advance(self, execution_id: str) -> None:
        while True:
            if self.is_cancelled(execution_id):
                logger.info(f"Execution {execution_id} cancelled; stopping")
                return
            execution = store.get_execution(execution_id)
            if execution is None or execution.is_terminal:
                return

            se = self._next_step(execution)
            if se is None:
                store.transition_execution(
                    execution_id, ExecutionStatus.COMPLETED,
                    current_step=execution.step_executions[-1].step_order if execution.step_executions else None,
                )
                return

            # A step that needs a human decision blocks the run at that step.
            if se.status == StepStatus.AWAITING_REVIEW:
                self._pause(execution, se.step_order)
                return
            if se.status == StepStatus.FAILED:
                self._pause(execution, se.step_order, error=se.error_message)
                return
            # A pending step that has been attempted before was rejected.
            if se.status == StepStatus.PENDING and se.attempts > 0:
                self._pause(execution, se.step_order)
                return
            # Claimed by a retry queued behind this pass.
            if se.status == StepStatus.RUNNING:
                return

            if not store.transition_execution(
                execution_id, ExecutionStatus.RUNNING, current_step=se.step_order
            ):
                return
            if not store.set_step_status(se.id, StepStatus.RUNNING, expected=(StepStatus.PENDING,)):
                return

            standards = self.standards_loader(execution.user_id)
            outcome = run_step(
                execution, se.step_order, self.registry, standards, **self._step_kwargs(execution)
            )
            if not outcome.applied:
                return
            if outcome.status != StepStatus.COMPLETED:
                self._pause(
                    execution, se.step_order,
                    error=outcome.error_message if outcome.status == StepStatus.FAILED else None,
                )
                return

    def _retry_step(self, execution_id: str, step_order: int, request: RetryStepRequest) -> bool:
        """Re-run one step in place. Returns True if the run should advance."""
        execution = store.get_execution(execution_id)
        if execution is None or execution.is_terminal:
            return False

        standards = self.standards_loader(execution.user_id)
        outcome = run_step(
            execution,
            step_order,
            self.registry,
            standards,
            prompt_override=request.modified_prompt,
            **self._step_kwargs(execution),
        )
        if not outcome.applied:
            return False
        if outcome.status != StepStatus.COMPLETED:
            self._pause(
                execution, step_order,
                error=outcome.error_message if outcome.status == StepStatus.FAILED else None,
            )
            return False
        return True

    # --- Review actions ---

    def _owned_step(self, user_id: str, execution_id: str, step_execution_id: str) -> tuple[Execution, StepExecution]:
        execution = self._load_owned(user_id, execution_id)
        se = execution.find_step_execution(step_execution_id)
        if se is None:
            raise NotFoundError(f"Step execution not found: {step_execution_id}")
        if execution.is_terminal:
            self._forget(execution_id)
            raise ConflictError(f"Execution {execution_id} is {execution.status.value}")
        return execution, se

    def approve(self, user_id: str, execution_id: str, step_execution_id: str) -> Execution:
        """Approve a step awaiting review and continue the run.

        Raises:
            ConflictError: the step is not awaiting review (nothing changes)
        """
        with self._lock_for(execution_id):
            execution, se = self._owned_step(user_id, execution_id, step_execution_id)
            if se.status != StepStatus.AWAITING_REVIEW:
                raise ConflictError(
                    f"Step {se.step_order} is {se.status.value}, not awaiting_review"
                )
            if not store.set_step_status(
                se.id, StepStatus.COMPLETED, expected=(StepStatus.AWAITING_REVIEW,), approved=True
            ):
                raise ConflictError(f"Step {se.step_order} changed state; approve not applied")
            store.transition_execution(execution_id, ExecutionStatus.RUNNING, error=None)
            logger.info(f"Execution {execution_id} step {se.step_order} approved")

        self._dispatch(execution_id, self._run)
        return store.get_execution(execution_id)

    def reject(self, user_id: str, execution_id: str, step_execution_id: str) -> Execution:
        """Send a step awaiting review back for another attempt.

        The same row is reset to pending with its output cleared; the run
        stays paused at that step until it is retried.
        """
        with self._lock_for(execution_id):
            execution, se = self._owned_step(user_id, execution_id, step_execution_id)
            if se.status != StepStatus.AWAITING_REVIEW:
                raise ConflictError(
                    f"Step {se.step_order} is {se.status.value}, not awaiting_review"
                )
            if not store.set_step_status(
                se.id, StepStatus.PENDING,
                expected=(StepStatus.AWAITING_REVIEW,),
                approved=False,
                clear_output=True,
            ):
                raise ConflictError(f"Step {se.step_order} changed state; reject not applied")
            self._pause(execution, se.step_order)
            logger.info(f"Execution {execution_id} step {se.step_order} rejected")

        return store.get_execution(execution_id)

    def retry(
        self,
        user_id: str,
        execution_id: str,
        step_execution_id: str,
        request: Optional[RetryStepRequest] = None,
    ) -> Execution:
        """Re-execute a failed, rejected or awaiting-review step in place.

        modified_input is merged into the execution's inputs and kept;
        modified_prompt replaces the step's template for this attempt only.
        """
        request = request or RetryStepRequest()
        with self._lock_for(execution_id):
            execution, se = self._owned_step(user_id, execution_id, step_execution_id)
            never_run = se.status == StepStatus.PENDING and se.attempts == 0
            if se.status not in RETRYABLE_STEP_STATUSES or never_run:
                raise ConflictError(f"Step {se.step_order} is {se.status.value}; cannot retry")

            if request.modified_input:
                store.update_execution_input(
                    execution_id, {**execution.input_data, **request.modified_input}
                )
            if not store.set_step_status(se.id, StepStatus.RUNNING, expected=(se.status,)):
                raise ConflictError(f"Step {se.step_order} changed state; retry not applied")
            store.transition_execution(
                execution_id, ExecutionStatus.RUNNING, current_step=se.step_order, error=None
            )
            logger.info(f"Execution {execution_id} retrying step {se.step_order}")

        self._dispatch(execution_id, self._run, (se.step_order, request))
        return store.get_execution(execution_id)

    def cancel(self, user_id: str, execution_id: str) -> Execution:
        """Logically cancel: in-flight executor calls finish, but their results are dropped.

        Raises:
            ConflictError: the execution is already terminal
        """
        with self._lock_for(execution_id):
            execution = self._load_owned(user_id, execution_id)
            if execution.status not in CANCELLABLE_STATUSES:
                self._forget(execution_id)
                raise ConflictError(
                    f"Cannot cancel execution {execution_id}: status is {execution.status.value}"
                )
            with self._cancelled_lock:
                self._cancelled.add(execution_id)
            if not store.transition_execution(
                execution_id, ExecutionStatus.CANCELLED, expected=CANCELLABLE_STATUSES
            ):
                raise ConflictError(f"Execution {execution_id} finished before it could be cancelled")
            logger.info(f"Execution {execution_id} cancelled")

        # An advancing thread forgets the execution itself when it stops.
        with self._active_lock:
            idle = execution_id not in self._active
        if idle:
            self._forget(execution_id)
        return store.get_execution(execution_id)

    def delete(self, user_id: str, execution_id: str) -> None:
        """Remove an execution and its history (owner only, any state)."""
        with self._lock_for(execution_id):
            self._load_owned(user_id, execution_id)
            with self._cancelled_lock:
                self._cancelled.add(execution_id)
            store.delete_execution(execution_id)
        self._forget(execution_id)

    # --- Startup recovery ---

    def recover(self) -> int:
        """Resume executions left pending or running by a previous process.

        Steps that were mid-run are reset to pending and re-run from the
        persisted step snapshot. Returns the number resumed.
        """
        resumed = 0
        for execution_id in store.find_orphaned_executions():
            reset = store.reset_running_steps(execution_id)
            logger.info(
                f"Recovering execution {execution_id}"
                + (f" ({reset} interrupted step(s) reset)" if reset else "")
            )
            self._dispatch(execution_id, self._run)
            resumed += 1
        if resumed:
            logger.info(f"Recovered {resumed} orphaned execution(s)")
        return resumed


_engine: Optional[WorkflowEngine] = None


def get_workflow_engine() -> WorkflowEngine:
    """Get the global workflow engine instance."""
    global _engine
    if _engine is None:
        _engine = WorkflowEngine()
    return _engine
