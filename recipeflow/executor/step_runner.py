"""Step runner: resolve, dispatch, classify and persist one step.

run_step() never raises for per-step problems. Resolution failures,
unknown step types, bad config, executor exceptions and timeouts all become
a failed step execution with the error captured verbatim. The outcome is
written with a single guarded store update.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Optional

from recipeflow.errors import ExecutorError, RecipeflowError
from recipeflow.executor import store
from recipeflow.executor.schemas import Execution, StepOutcome, StepOutput, StepStatus
from recipeflow.executor.variables import (
    ImageInput,
    ResolutionContext,
    merged_input_specs,
    resolve,
)
from recipeflow.executors.base import CompiledInput, ExecutorResult, StepExecutor
from recipeflow.executors.registry import ExecutorRegistry
from recipeflow.recipes.schemas import RecipeStep
from recipeflow.standards.render import StandardRegistry, get_standard_registry
from recipeflow.standards.schemas import CompanyStandard

logger = logging.getLogger(__name__)

# Default per-step timeout in seconds; unset means no timeout
EXECUTOR_TIMEOUT_SECONDS = float(os.environ.get("EXECUTOR_TIMEOUT_SECONDS", "0")) or None


def _failed(error: str, **kwargs) -> StepOutcome:
    return StepOutcome(status=StepStatus.FAILED, error_message=error, **kwargs)


def _error_text(e: BaseException) -> str:
    return str(e) or type(e).__name__


def compile_step(
    execution: Execution,
    step: RecipeStep,
    executor: StepExecutor,
    standards: list[CompanyStandard],
    standard_registry: StandardRegistry,
    cancellation_check: Callable[[], bool],
    extra_inputs: Optional[dict[str, Any]] = None,
) -> CompiledInput:
    """Resolve every template the executor needs.

    Raises:
        RecipeflowError: config invalid or a variable cannot be resolved
    """
    config = executor.parse_config(step)
    user_inputs = {**execution.input_data, **(extra_inputs or {})}
    step_outputs = {
        order: content
        for order, content in execution.completed_outputs().items()
        if order < step.step_order
    }
    context = ResolutionContext(
        user_inputs=user_inputs,
        step_outputs=step_outputs,
        standards=standards,
        input_specs=merged_input_specs(execution.steps),
        registry=standard_registry,
    )

    fields: dict[str, str] = {}
    images: list[ImageInput] = []
    variables: dict[str, str] = {}
    for name, template in executor.template_fields(step, config).items():
        resolved = resolve(template, context)
        fields[name] = resolved.text
        variables.update(resolved.variables)
        for image in resolved.images:
            if image not in images:
                images.append(image)

    compiled = CompiledInput(
        fields=fields,
        images=images,
        user_inputs=user_inputs,
        step_outputs=step_outputs,
        config=config,
        variables=variables,
        cancellation_check=cancellation_check,
    )
    return compiled


def _call_executor(
    executor: StepExecutor,
    compiled: CompiledInput,
    step: RecipeStep,
    timeout: Optional[float],
) -> ExecutorResult:
    if not timeout:
        return executor.execute(compiled, step)

    # The worker thread is abandoned on timeout; its late result is ignored.
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"step-{step.step_order}")
    try:
        future = pool.submit(executor.execute, compiled, step)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            logger.error(f"Step {step.step_order} timed out after {timeout}s")
            return ExecutorResult.failure(f"Step timed out after {timeout:g}s")
    finally:
        pool.shutdown(wait=False)


def execute_step(
    execution: Execution,
    step: RecipeStep,
    registry: ExecutorRegistry,
    standards: list[CompanyStandard],
    standard_registry: Optional[StandardRegistry] = None,
    cancellation_check: Callable[[], bool] = lambda: False,
    prompt_override: Optional[str] = None,
    extra_inputs: Optional[dict[str, Any]] = None,
    default_timeout: Optional[float] = EXECUTOR_TIMEOUT_SECONDS,
) -> StepOutcome:
    """Run one step and classify its outcome, without persisting it."""
    standard_registry = standard_registry or get_standard_registry()
    if prompt_override is not None:
        step = step.model_copy(update={"prompt_template": prompt_override})

    try:
        executor = registry.get(step.step_type)
        compiled = compile_step(
            execution, step, executor, standards, standard_registry,
            cancellation_check, extra_inputs,
        )
    except RecipeflowError as e:
        logger.warning(f"Execution {execution.id} step {step.step_order} not dispatched: {e}")
        return _failed(_error_text(e), model_used=step.ai_model)

    input_data = {
        "variables": compiled.variables,
        "images": [img.name for img in compiled.images],
    }
    timeout = step.timeout_seconds or default_timeout

    logger.info(
        f"Execution {execution.id} step {step.step_order} ({step.step_type}) dispatching"
    )
    try:
        result = _call_executor(executor, compiled, step, timeout)
    except Exception as e:
        # ExecutorError is an expected provider or config failure: no traceback
        logger.error(
            f"Execution {execution.id} step {step.step_order} raised: {e}",
            exc_info=not isinstance(e, ExecutorError),
        )
        return _failed(
            _error_text(e),
            input_data=input_data,
            prompt_used=compiled.prompt or None,
            model_used=step.ai_model,
        )

    output = None
    if result.content or result.generated_images or result.usage or result.metadata:
        output = StepOutput(
            content=result.content,
            model=result.model_used,
            usage=result.usage,
            generated_images=result.generated_images,
            metadata=result.metadata,
        )
    common = dict(
        output=output,
        input_data=input_data,
        prompt_used=result.prompt_used or compiled.prompt or None,
        model_used=result.model_used or step.ai_model,
    )

    if not result.success:
        return _failed(result.error or "Executor reported failure", **common)
    if executor.requires_review and not step.auto_approve:
        return StepOutcome(status=StepStatus.AWAITING_REVIEW, **common)
    return StepOutcome(status=StepStatus.COMPLETED, approved=True, **common)


def run_step(
    execution: Execution,
    step_order: int,
    registry: ExecutorRegistry,
    standards: list[CompanyStandard],
    **kwargs,
) -> StepOutcome:
    """Run the step at step_order and persist the outcome in place.

    outcome.applied is False if the execution became terminal while the
    step was running; the result is then discarded.
    """
    step = execution.step_at(step_order)
    step_execution = execution.step_execution_at(step_order)
    if step is None or step_execution is None:
        raise RecipeflowError(f"Execution {execution.id} has no step {step_order}")

    outcome = execute_step(execution, step, registry, standards, **kwargs)
    applied = store.apply_step_outcome(step_execution.id, outcome)
    outcome.applied = applied
    if applied:
        logger.info(
            f"Execution {execution.id} step {step_order} → {outcome.status.value}"
            + (f": {outcome.error_message}" if outcome.error_message else "")
        )
    return outcome
