from recipeflow.executor import store
from recipeflow.executor.schemas import ExecutionStatus, StepOutcome, StepOutput, StepStatus
from recipeflow.recipes.schemas import RecipeStep

STEPS = [RecipeStep(step_order=2, prompt_template="b"), RecipeStep(step_order=1, prompt_template="a")]


def test_create_execution_snapshots_steps(database):
    execution = store.create_execution("rcp-1", "u1", {"x": "1"}, STEPS)

    assert execution.id.startswith("exec-")
    assert execution.status == ExecutionStatus.PENDING
    assert execution.current_step == 1
    assert [s.prompt_template for s in execution.steps] == ["a", "b"]
    assert [se.step_order for se in execution.step_executions] == [1, 2]
    assert all(se.status == StepStatus.PENDING for se in execution.step_executions)
    assert store.get_execution_status(execution.id) == "pending"


def test_transition_is_compare_and_swap(database):
    execution = store.create_execution("rcp-1", "u1", {}, STEPS)

    assert store.transition_execution(execution.id, ExecutionStatus.RUNNING, current_step=1)
    assert not store.transition_execution(
        execution.id, ExecutionStatus.COMPLETED, expected=(ExecutionStatus.PAUSED,)
    )
    assert store.transition_execution(execution.id, ExecutionStatus.CANCELLED)
    # Terminal states are final
    assert not store.transition_execution(execution.id, ExecutionStatus.RUNNING)

    stored = store.get_execution(execution.id)
    assert stored.status == ExecutionStatus.CANCELLED
    assert stored.started_at is not None
    assert stored.completed_at is not None


def test_outcome_discarded_after_cancel(database):
    execution = store.create_execution("rcp-1", "u1", {}, STEPS)
    se = execution.step_executions[0]
    outcome = StepOutcome(status=StepStatus.COMPLETED, output=StepOutput(content="late"), approved=True)

    assert store.apply_step_outcome(se.id, outcome)
    store.transition_execution(execution.id, ExecutionStatus.CANCELLED)
    assert not store.apply_step_outcome(execution.step_executions[1].id, outcome)
    assert not store.set_step_status(se.id, StepStatus.PENDING)

    stored = store.get_execution(execution.id)
    assert stored.step_executions[0].output.content == "late"
    assert stored.step_executions[0].attempts == 1
    assert stored.step_executions[1].status == StepStatus.PENDING
    assert stored.step_executions[1].output is None


def test_set_step_status_clears_output(database):
    execution = store.create_execution("rcp-1", "u1", {}, STEPS)
    se = execution.step_executions[0]
    store.apply_step_outcome(se.id, StepOutcome(
        status=StepStatus.AWAITING_REVIEW, output=StepOutput(content="draft"),
    ))

    assert not store.set_step_status(se.id, StepStatus.PENDING, expected=(StepStatus.FAILED,))
    assert store.set_step_status(
        se.id, StepStatus.PENDING, expected=(StepStatus.AWAITING_REVIEW,),
        approved=False, clear_output=True,
    )
    stored = store.get_execution(execution.id).step_executions[0]
    assert stored.status == StepStatus.PENDING
    assert stored.output is None


def test_orphans_and_delete(database):
    running = store.create_execution("rcp-1", "u1", {}, STEPS)
    paused = store.create_execution("rcp-1", "u1", {}, STEPS)
    store.transition_execution(running.id, ExecutionStatus.RUNNING)
    store.transition_execution(paused.id, ExecutionStatus.PAUSED)
    store.set_step_status(running.step_executions[0].id, StepStatus.RUNNING)

    assert store.find_orphaned_executions() == [running.id]
    assert store.reset_running_steps(running.id) == 1

    assert store.delete_execution(paused.id) is True
    assert store.get_execution(paused.id) is None
    assert store.delete_execution(paused.id) is False
    assert [e.id for e in store.list_executions("u1")] == [running.id]
