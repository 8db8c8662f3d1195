import pytest

from stepflow.contracts import RunStatus, WorkflowRun
from stepflow.errors import IllegalTransitionError, PersistenceError
from stepflow.state import ALLOWED_TRANSITIONS, RunStateMachine, check_transition


def test_allowed_transitions_are_forward_only():
    check_transition(RunStatus.PENDING, RunStatus.RUNNING)
    check_transition(RunStatus.RUNNING, RunStatus.COMPLETED)
    check_transition(RunStatus.RUNNING, RunStatus.FAILED)

    assert ALLOWED_TRANSITIONS[RunStatus.COMPLETED] == set()
    assert ALLOWED_TRANSITIONS[RunStatus.FAILED] == set()


@pytest.mark.parametrize(
    "current,to",
    [
        (RunStatus.PENDING, RunStatus.COMPLETED),
        (RunStatus.PENDING, RunStatus.FAILED),
        (RunStatus.COMPLETED, RunStatus.RUNNING),
        (RunStatus.FAILED, RunStatus.RUNNING),
        (RunStatus.RUNNING, RunStatus.PENDING),
    ],
)
def test_illegal_transitions_raise(current, to):
    with pytest.raises(IllegalTransitionError):
        check_transition(current, to)


async def _stored_run(repository, make_workflow) -> WorkflowRun:
    workflow = make_workflow(("record",), ("record",))
    await repository.create_workflow(workflow)
    run = WorkflowRun.for_workflow(workflow)
    await repository.create_run(run)
    return run


@pytest.mark.asyncio
async def test_run_lifecycle_is_persisted(repository, make_workflow):
    run = await _stored_run(repository, make_workflow)
    machine = RunStateMachine(repository)

    await machine.start_run(run)
    stored = await repository.get_run(run.id)
    assert stored.status is RunStatus.RUNNING
    assert stored.completed_at is None

    await machine.fail_run(run, "Step 1 failed: boom")
    stored = await repository.get_run(run.id)
    assert stored.status is RunStatus.FAILED
    assert stored.error_message == "Step 1 failed: boom"
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_step_timestamps(repository, make_workflow):
    run = await _stored_run(repository, make_workflow)
    machine = RunStateMachine(repository)
    step_run = run.steps[0]

    await machine.start_step(step_run)
    assert step_run.started_at is not None
    assert step_run.completed_at is None

    await machine.complete_step(step_run, {"success": True, "value": 1})
    stored = (await repository.get_run(run.id)).steps[0]
    assert stored.status is RunStatus.COMPLETED
    assert stored.output == {"success": True, "value": 1}
    assert stored.started_at <= stored.completed_at
    # untouched step-runs stay PENDING without timestamps
    other = (await repository.get_run(run.id)).steps[1]
    assert other.status is RunStatus.PENDING
    assert other.started_at is None


@pytest.mark.asyncio
async def test_terminal_run_cannot_move(repository, make_workflow):
    run = await _stored_run(repository, make_workflow)
    machine = RunStateMachine(repository)
    await machine.start_run(run)
    await machine.complete_run(run)

    with pytest.raises(IllegalTransitionError):
        await machine.start_run(run)
    assert (await repository.get_run(run.id)).status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_stale_copy_loses_conditional_update(repository, make_workflow):
    run = await _stored_run(repository, make_workflow)
    stale = run.model_copy(deep=True)
    machine = RunStateMachine(repository)

    await machine.start_run(run)
    await machine.complete_run(run)

    with pytest.raises(PersistenceError):
        await machine.start_run(stale)
    assert (await repository.get_run(run.id)).status is RunStatus.COMPLETED
