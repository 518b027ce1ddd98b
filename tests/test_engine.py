import time

import pytest

from recipeflow.errors import (
    AuthorizationError,
    ConflictError,
    MissingRequiredInput,
    NotFoundError,
    UnknownExecutorType,
    ValidationError,
)
from recipeflow.executor import store
from recipeflow.executor.schemas import (
    ExecutionStatus,
    RetryStepRequest,
    StartExecutionRequest,
    StepStatus,
)
from recipeflow.executors.base import ExecutorResult
from recipeflow.recipes.schemas import RecipeStep

from conftest import OTHER_USER, USER


def _start(engine, recipe, input_data=None, steps=None):
    return engine.start(
        USER,
        StartExecutionRequest(recipe_id=recipe.id, input_data=input_data or {}, steps=steps),
    )


def _count_executions():
    return len(store.list_executions(USER)) + len(store.list_executions(OTHER_USER))


def test_auto_approved_steps_run_to_completion(engine, fake_ai, make_recipe):
    fake_ai.responses[1] = "Hello"
    recipe = make_recipe([
        {"step_order": 1, "step_type": "ai", "prompt_template": "Say hello", "auto_approve": True},
        {"step_order": 2, "step_type": "ai", "prompt_template": "Echo {{step_1_output}}", "auto_approve": True},
    ])

    execution = _start(engine, recipe)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.completed_at is not None
    assert [se.status for se in execution.step_executions] == [StepStatus.COMPLETED] * 2
    assert all(se.approved for se in execution.step_executions)
    assert fake_ai.calls[1][1].prompt == "Echo Hello"
    assert execution.step_executions[1].output.content == "Echo Hello"


def test_missing_required_input_creates_nothing(engine, fake_ai, make_recipe):
    recipe = make_recipe([
        {"step_order": 1, "step_type": "ai", "prompt_template": "Describe {{product_name}}"},
    ])

    with pytest.raises(MissingRequiredInput) as exc:
        _start(engine, recipe)

    assert exc.value.names == ["product_name"]
    assert _count_executions() == 0
    assert fake_ai.calls == []


def test_unknown_step_type_rejected_at_start(engine, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "teleport", "prompt_template": "x"}])

    with pytest.raises(UnknownExecutorType, match="teleport"):
        _start(engine, recipe)
    assert _count_executions() == 0


def test_missing_recipe_rejected(engine):
    with pytest.raises(ValidationError, match="Recipe not found"):
        engine.start(USER, StartExecutionRequest(recipe_id="recipe-missing"))


def test_step_override_replaces_recipe_steps(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "original"}])

    execution = _start(engine, recipe, steps=[
        RecipeStep(step_order=1, step_type="ai", prompt_template="override", auto_approve=True),
    ])

    assert execution.steps_overridden is True
    assert execution.status == ExecutionStatus.COMPLETED
    assert fake_ai.calls[0][1].prompt == "override"


def test_review_pauses_then_approve_continues(engine, fake_ai, fake_tool, make_recipe):
    recipe = make_recipe([
        {"step_order": 1, "step_type": "ai", "prompt_template": "Draft for {{product_name}}"},
        {"step_order": 2, "step_type": "script", "prompt_template": "Publish {{step_1_output}}"},
    ])

    execution = _start(engine, recipe, {"product_name": "Lamp"})

    assert execution.status == ExecutionStatus.PAUSED
    assert execution.current_step == 1
    first = execution.step_executions[0]
    assert first.status == StepStatus.AWAITING_REVIEW
    assert first.approved is False
    assert execution.step_executions[1].status == StepStatus.PENDING
    assert fake_tool.calls == []

    execution = engine.approve(USER, execution.id, first.id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.step_executions[0].approved is True
    assert fake_tool.calls[0][1].prompt == "Publish Draft for Lamp"


def test_reject_then_retry_with_modified_prompt(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "First draft"}])
    execution = _start(engine, recipe)
    se = execution.step_executions[0]

    execution = engine.reject(USER, execution.id, se.id)

    rejected = execution.step_executions[0]
    assert execution.status == ExecutionStatus.PAUSED
    assert rejected.status == StepStatus.PENDING
    assert rejected.approved is False
    assert rejected.output is None

    execution = engine.retry(USER, execution.id, se.id, RetryStepRequest(modified_prompt="Second draft"))

    retried = execution.step_executions[0]
    assert retried.id == se.id
    assert retried.status == StepStatus.AWAITING_REVIEW
    assert retried.output.content == "Second draft"
    assert retried.prompt_used == "Second draft"
    assert retried.attempts == 2
    assert execution.status == ExecutionStatus.PAUSED

    execution = engine.approve(USER, execution.id, se.id)
    assert execution.status == ExecutionStatus.COMPLETED
    # The override applied to that attempt only
    assert execution.steps[0].prompt_template == "First draft"


def test_retry_merges_modified_input(engine, fake_ai, make_recipe):
    recipe = make_recipe([
        {"step_order": 1, "step_type": "ai", "prompt_template": "About {{product_name}}"},
    ])
    execution = _start(engine, recipe, {"product_name": "Lamp"})
    se = execution.step_executions[0]

    execution = engine.retry(
        USER, execution.id, se.id, RetryStepRequest(modified_input={"product_name": "Desk"})
    )

    assert execution.input_data == {"product_name": "Desk"}
    assert execution.step_executions[0].output.content == "About Desk"


def test_cancel_during_step_discards_result(engine, fake_ai, make_recipe):
    recipe = make_recipe([
        {"step_order": 1, "step_type": "ai", "prompt_template": "slow", "auto_approve": True},
        {"step_order": 2, "step_type": "ai", "prompt_template": "never", "auto_approve": True},
    ])

    def cancel_mid_step(step):
        running = store.list_executions(USER)[0]
        engine.cancel(USER, running.id)

    fake_ai.on_execute = cancel_mid_step
    execution = _start(engine, recipe)

    assert execution.status == ExecutionStatus.CANCELLED
    assert execution.completed_at is not None
    assert execution.step_executions[0].status != StepStatus.COMPLETED
    assert execution.step_executions[0].output is None
    assert execution.step_executions[1].status == StepStatus.PENDING
    assert len(fake_ai.calls) == 1
    assert len(execution.step_executions) == 2


def test_approve_non_awaiting_step_is_conflict(engine, fake_ai, make_recipe):
    recipe = make_recipe([
        {"step_order": 1, "step_type": "ai", "prompt_template": "a"},
        {"step_order": 2, "step_type": "ai", "prompt_template": "b"},
    ])
    execution = _start(engine, recipe)
    pending = execution.step_executions[1]

    with pytest.raises(ConflictError):
        engine.approve(USER, execution.id, pending.id)

    after = store.get_execution(execution.id)
    assert after.status == ExecutionStatus.PAUSED
    assert [se.status for se in after.step_executions] == [
        StepStatus.AWAITING_REVIEW, StepStatus.PENDING,
    ]


def test_retry_of_never_run_step_is_conflict(engine, fake_ai, make_recipe):
    recipe = make_recipe([
        {"step_order": 1, "step_type": "ai", "prompt_template": "a"},
        {"step_order": 2, "step_type": "ai", "prompt_template": "b"},
    ])
    execution = _start(engine, recipe)

    with pytest.raises(ConflictError):
        engine.retry(USER, execution.id, execution.step_executions[1].id)


def test_cancel_terminal_execution_is_conflict(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "a", "auto_approve": True}])
    execution = _start(engine, recipe)
    assert execution.status == ExecutionStatus.COMPLETED

    with pytest.raises(ConflictError):
        engine.cancel(USER, execution.id)
    assert store.get_execution(execution.id).status == ExecutionStatus.COMPLETED


def test_actions_on_cancelled_execution_are_conflicts(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "a"}])
    execution = _start(engine, recipe)
    se = execution.step_executions[0]
    engine.cancel(USER, execution.id)

    with pytest.raises(ConflictError):
        engine.approve(USER, execution.id, se.id)
    with pytest.raises(ConflictError):
        engine.retry(USER, execution.id, se.id)


def test_ownership_and_delete(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "a"}])
    execution = _start(engine, recipe)

    with pytest.raises(AuthorizationError):
        engine.get(OTHER_USER, execution.id)
    with pytest.raises(AuthorizationError):
        engine.delete(OTHER_USER, execution.id)
    assert store.get_execution(execution.id) is not None

    engine.delete(USER, execution.id)
    assert store.get_execution(execution.id) is None
    with pytest.raises(NotFoundError):
        engine.get(USER, execution.id)


def test_failed_step_pauses_and_retry_completes(engine, fake_tool, make_recipe):
    fake_tool.responses[1] = RuntimeError("upstream exploded")
    recipe = make_recipe([{"step_order": 1, "step_type": "script", "prompt_template": "run"}])

    execution = _start(engine, recipe)

    se = execution.step_executions[0]
    assert execution.status == ExecutionStatus.PAUSED
    assert execution.error == "upstream exploded"
    assert se.status == StepStatus.FAILED
    assert se.error_message == "upstream exploded"

    del fake_tool.responses[1]
    execution = engine.retry(USER, execution.id, se.id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.error is None
    assert execution.step_executions[0].status == StepStatus.COMPLETED


def test_executor_reported_failure_keeps_partial_output(engine, fake_tool, make_recipe):
    fake_tool.responses[1] = ExecutorResult.failure("HTTP 500 Server Error", content="oops")
    recipe = make_recipe([{"step_order": 1, "step_type": "script", "prompt_template": "run"}])

    se = _start(engine, recipe).step_executions[0]

    assert se.status == StepStatus.FAILED
    assert se.error_message == "HTTP 500 Server Error"
    assert se.output.content == "oops"


def test_step_timeout_fails_step(engine, fake_tool, make_recipe):
    fake_tool.on_execute = lambda step: time.sleep(0.5)
    recipe = make_recipe([
        {"step_order": 1, "step_type": "script", "prompt_template": "run", "timeout_seconds": 0.05},
    ])

    execution = _start(engine, recipe)

    se = execution.step_executions[0]
    assert se.status == StepStatus.FAILED
    assert "timed out" in se.error_message
    assert execution.status == ExecutionStatus.PAUSED


def test_reference_to_later_step_fails_unresolved(engine, fake_ai, make_recipe):
    recipe = make_recipe([
        {"step_order": 1, "step_type": "ai", "prompt_template": "Uses {{step_2_output}}"},
        {"step_order": 2, "step_type": "ai", "prompt_template": "b"},
    ])

    execution = _start(engine, recipe)

    se = execution.step_executions[0]
    assert se.status == StepStatus.FAILED
    assert "step_2_output" in se.error_message
    assert fake_ai.calls == []


def test_one_step_execution_per_order_after_retries(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "a"}])
    execution = _start(engine, recipe)
    se = execution.step_executions[0]

    for _ in range(3):
        execution = engine.retry(USER, execution.id, se.id)

    assert len(execution.step_executions) == 1
    assert execution.step_executions[0].attempts == 4


def test_recover_resumes_orphaned_execution(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "a", "auto_approve": True}])
    orphan = store.create_execution(recipe.id, USER, {}, recipe.steps)
    store.transition_execution(orphan.id, ExecutionStatus.RUNNING, current_step=1)
    store.set_step_status(orphan.step_executions[0].id, StepStatus.RUNNING)

    assert engine.recover() == 1

    recovered = store.get_execution(orphan.id)
    assert recovered.status == ExecutionStatus.COMPLETED
    assert recovered.step_executions[0].status == StepStatus.COMPLETED


def test_status_lists_steps_awaiting_review(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "a"}])
    execution = _start(engine, recipe)

    status = engine.status(USER, execution.id)

    assert status.status == ExecutionStatus.PAUSED
    assert status.total_steps == 1
    assert status.awaiting_review == [execution.step_executions[0].id]
    assert status.step_statuses == {"1": StepStatus.AWAITING_REVIEW}
