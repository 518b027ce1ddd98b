"""Same-execution actions racing the thread that advances the execution."""

import threading

import pytest

from recipeflow.errors import ConflictError, ExecutorError
from recipeflow.executor import store
from recipeflow.executor.engine import WorkflowEngine
from recipeflow.executor.schemas import ExecutionStatus, StartExecutionRequest, StepStatus
from recipeflow.standards.render import StandardRegistry

from conftest import USER, wait_for

REVIEW_THEN_PUBLISH = [
    {"step_order": 1, "step_type": "ai", "prompt_template": "Draft"},
    {"step_order": 2, "step_type": "script", "prompt_template": "Publish {{step_1_output}}"},
]


def _start(engine, recipe):
    return engine.start(USER, StartExecutionRequest(recipe_id=recipe.id))


def _status(execution_id):
    return store.get_execution(execution_id).status


def _step(execution_id, step_order):
    return store.get_execution(execution_id).step_execution_at(step_order)


def _engine(cls, registry):
    return cls(
        registry=registry,
        standard_registry=StandardRegistry(),
        background=False,
        default_timeout=None,
    )


class ApproveAfterPauseEngine(WorkflowEngine):
    """Approves the paused step while the advancing thread still holds the run."""

    approved = False

    def _advance(self, execution_id):
        super()._advance(execution_id)
        se = store.get_execution(execution_id).step_execution_at(1)
        if not self.approved and se.status == StepStatus.AWAITING_REVIEW:
            self.approved = True
            self.approve(USER, execution_id, se.id)


class ApproveBeforePauseEngine(WorkflowEngine):
    """Approves between the step outcome write and the execution pause."""

    approved = False

    def _pause(self, execution, step_order, error=None):
        se = store.get_execution(execution.id).step_execution_at(step_order)
        if not self.approved and se.status == StepStatus.AWAITING_REVIEW:
            self.approved = True
            self.approve(USER, execution.id, se.id)
        super()._pause(execution, step_order, error)


class RetryAfterFailureEngine(WorkflowEngine):
    """Retries the failed step before the advancing thread lets go of the run."""

    retried = False
    on_retry = None

    def _advance(self, execution_id):
        super()._advance(execution_id)
        se = store.get_execution(execution_id).step_execution_at(1)
        if not self.retried and se.status == StepStatus.FAILED:
            self.retried = True
            self.on_retry()
            self.retry(USER, execution_id, se.id)


def test_approve_while_run_still_active_advances(registry, fake_tool, make_recipe):
    engine = _engine(ApproveAfterPauseEngine, registry)
    recipe = make_recipe(REVIEW_THEN_PUBLISH)

    execution = _start(engine, recipe)

    assert execution.status == ExecutionStatus.COMPLETED
    assert [se.status for se in execution.step_executions] == [StepStatus.COMPLETED] * 2
    assert [order for order, _ in fake_tool.calls] == [2]


def test_approve_before_pause_write_still_advances(registry, fake_tool, make_recipe):
    engine = _engine(ApproveBeforePauseEngine, registry)
    recipe = make_recipe(REVIEW_THEN_PUBLISH)

    execution = _start(engine, recipe)

    assert engine.approved
    assert execution.status == ExecutionStatus.COMPLETED
    assert fake_tool.calls[0][1].prompt == "Publish Draft"


def test_retry_while_run_still_active_is_queued(registry, fake_tool, make_recipe):
    fake_tool.responses[1] = RuntimeError("flaky upstream")
    engine = _engine(RetryAfterFailureEngine, registry)
    engine.on_retry = lambda: fake_tool.responses.pop(1)
    recipe = make_recipe([{"step_order": 1, "step_type": "script", "prompt_template": "run"}])

    execution = _start(engine, recipe)

    assert engine.retried
    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.step_executions[0].attempts == 2
    assert execution.step_executions[0].output.content == "run"


def test_concurrent_approves_apply_once(threaded_engine, fake_tool, make_recipe):
    recipe = make_recipe(REVIEW_THEN_PUBLISH)
    execution = _start(threaded_engine, recipe)
    assert wait_for(lambda: _status(execution.id) == ExecutionStatus.PAUSED)
    se_id = _step(execution.id, 1).id

    barrier = threading.Barrier(2)
    results = []

    def approve():
        barrier.wait()
        try:
            threaded_engine.approve(USER, execution.id, se_id)
            results.append("approved")
        except ConflictError:
            results.append("conflict")

    threads = [threading.Thread(target=approve) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert sorted(results) == ["approved", "conflict"]
    assert wait_for(lambda: _status(execution.id) == ExecutionStatus.COMPLETED)
    assert [order for order, _ in fake_tool.calls] == [2]


def test_actions_on_running_step_are_conflicts(threaded_engine, fake_tool, make_recipe):
    started, release = threading.Event(), threading.Event()

    def block(step):
        started.set()
        release.wait(5)

    fake_tool.on_execute = block
    recipe = make_recipe([{"step_order": 1, "step_type": "script", "prompt_template": "run"}])
    execution = _start(threaded_engine, recipe)
    assert started.wait(5)
    se_id = _step(execution.id, 1).id

    with pytest.raises(ConflictError):
        threaded_engine.retry(USER, execution.id, se_id)
    with pytest.raises(ConflictError):
        threaded_engine.approve(USER, execution.id, se_id)

    release.set()
    assert wait_for(lambda: _status(execution.id) == ExecutionStatus.COMPLETED)
    assert len(fake_tool.calls) == 1


def test_retry_right_after_failure_pause(threaded_engine, fake_tool, make_recipe):
    fake_tool.responses[1] = RuntimeError("flaky upstream")
    recipe = make_recipe([{"step_order": 1, "step_type": "script", "prompt_template": "run"}])
    execution = _start(threaded_engine, recipe)
    assert wait_for(lambda: _status(execution.id) == ExecutionStatus.PAUSED)

    del fake_tool.responses[1]
    threaded_engine.retry(USER, execution.id, _step(execution.id, 1).id)

    assert wait_for(lambda: _status(execution.id) == ExecutionStatus.COMPLETED)
    assert _step(execution.id, 1).attempts == 2


def test_cancel_during_threaded_step_drops_result(threaded_engine, fake_tool, make_recipe):
    started, release = threading.Event(), threading.Event()

    def block(step):
        started.set()
        release.wait(5)

    fake_tool.on_execute = block
    recipe = make_recipe([
        {"step_order": 1, "step_type": "script", "prompt_template": "one"},
        {"step_order": 2, "step_type": "script", "prompt_template": "two"},
    ])
    execution = _start(threaded_engine, recipe)
    assert started.wait(5)

    threaded_engine.cancel(USER, execution.id)
    release.set()

    assert wait_for(lambda: execution.id not in threaded_engine._locks)
    cancelled = store.get_execution(execution.id)
    assert cancelled.status == ExecutionStatus.CANCELLED
    assert cancelled.step_executions[0].status != StepStatus.COMPLETED
    assert cancelled.step_executions[1].status == StepStatus.PENDING
    assert len(fake_tool.calls) == 1


def test_executor_error_fails_step_and_pauses(engine, fake_tool, make_recipe):
    fake_tool.responses[1] = ExecutorError("SERVICE_API_KEY not set")
    recipe = make_recipe([{"step_order": 1, "step_type": "script", "prompt_template": "run"}])

    execution = _start(engine, recipe)

    se = execution.step_executions[0]
    assert execution.status == ExecutionStatus.PAUSED
    assert se.status == StepStatus.FAILED
    assert se.error_message == "SERVICE_API_KEY not set"
    assert se.prompt_used == "run"


def test_locks_dropped_once_execution_is_terminal(engine, fake_ai, make_recipe):
    recipe = make_recipe([{"step_order": 1, "step_type": "ai", "prompt_template": "a"}])
    done = _start(engine, recipe)
    engine.approve(USER, done.id, done.step_executions[0].id)

    assert _status(done.id) == ExecutionStatus.COMPLETED
    assert done.id not in engine._locks

    with pytest.raises(ConflictError):
        engine.approve(USER, done.id, done.step_executions[0].id)
    assert done.id not in engine._locks

    paused = _start(engine, recipe)
    engine.cancel(USER, paused.id)

    assert paused.id not in engine._locks
    assert paused.id not in engine._cancelled
