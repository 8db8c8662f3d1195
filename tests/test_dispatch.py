from datetime import timedelta

import pytest

from stepflow.contracts import RunStatus, Trigger, WorkflowRun, utcnow
from stepflow.dispatch import RunDispatcher
from stepflow.errors import (
    InvalidRunStateError,
    RunNotFoundError,
    WorkflowMissingError,
    WorkflowNotFoundError,
)


@pytest.fixture
def dispatcher(repository, executor) -> RunDispatcher:
    return RunDispatcher(repository, executor)


@pytest.mark.asyncio
async def test_trigger_without_match_returns_none(dispatcher, repository, make_workflow):
    await repository.create_workflow(make_workflow(trigger=("manual", "other")))

    assert await dispatcher.trigger("manual", "report") is None
    assert await dispatcher.trigger("webhook", "other") is None


@pytest.mark.asyncio
async def test_trigger_starts_run_in_background(dispatcher, repository, make_workflow):
    workflow = make_workflow(("record",), ("record",), trigger=("webhook", "/orders"))
    await repository.create_workflow(workflow)

    run = await dispatcher.trigger("webhook", "/orders")

    assert run is not None
    assert run.status is RunStatus.PENDING
    assert run.workflow_id == workflow.id
    assert run.trigger == Trigger(type="webhook", value="/orders")
    assert [s.workflow_step_id for s in run.steps] == [s.id for s in workflow.steps]
    assert all(s.status is RunStatus.PENDING for s in run.steps)

    await dispatcher.wait_for_runs()
    finished = await dispatcher.get_run(run.id)
    assert finished.status is RunStatus.COMPLETED
    # the snapshot handed back to the caller is not mutated by execution
    assert run.status is RunStatus.PENDING


@pytest.mark.asyncio
async def test_trigger_picks_earliest_created_workflow(dispatcher, repository, make_workflow):
    first = make_workflow(name="first", trigger=("manual", "dup"))
    second = make_workflow(name="second", trigger=("manual", "dup"))
    await repository.create_workflow(first)
    await repository.create_workflow(second)

    run = await dispatcher.trigger("manual", "dup")
    await dispatcher.wait_for_runs()

    assert run.workflow_id == first.id


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [RunStatus.PENDING, RunStatus.RUNNING, RunStatus.COMPLETED])
async def test_retry_rejects_runs_that_did_not_fail(dispatcher, repository, make_workflow, status):
    workflow = make_workflow(("record",))
    await repository.create_workflow(workflow)
    run = WorkflowRun.for_workflow(workflow)
    run.status = status
    await repository.create_run(run)

    with pytest.raises(InvalidRunStateError) as excinfo:
        await dispatcher.retry(run.id)
    assert str(excinfo.value) == f"Cannot retry run {run.id} with status {status.value}"
    assert len(await repository.list_runs(workflow.id)) == 1


@pytest.mark.asyncio
async def test_retry_unknown_run(dispatcher):
    with pytest.raises(RunNotFoundError):
        await dispatcher.retry("missing")


@pytest.mark.asyncio
async def test_retry_failed_run_creates_new_run(dispatcher, repository, registry, make_workflow):
    workflow = make_workflow(("fail",), ("record",), trigger=("manual", "flaky"))
    await repository.create_workflow(workflow)
    original = await dispatcher.trigger("manual", "flaky")
    await dispatcher.wait_for_runs()
    assert (await dispatcher.get_run(original.id)).status is RunStatus.FAILED

    # the integration recovers before the retry
    registry.register("fail", registry.get("record"))
    retried = await dispatcher.retry(original.id)
    await dispatcher.wait_for_runs()

    assert retried.id != original.id
    assert retried.retry_of == original.id
    assert retried.workflow_id == workflow.id
    # a fresh set of step-runs, all starting PENDING
    assert len(retried.steps) == len(workflow.steps)
    assert all(s.status is RunStatus.PENDING for s in retried.steps)
    assert all(s.workflow_run_id == retried.id for s in retried.steps)
    assert not {s.id for s in retried.steps} & {s.id for s in original.steps}
    assert [s.workflow_step_id for s in retried.steps] == [s.id for s in workflow.steps]

    finished = await dispatcher.get_run(retried.id)
    assert finished.status is RunStatus.COMPLETED
    assert [s.status for s in finished.steps] == [RunStatus.COMPLETED, RunStatus.COMPLETED]
    unchanged = await dispatcher.get_run(original.id)
    assert unchanged.status is RunStatus.FAILED
    assert unchanged.error_message == "Step 1 (fail) failed: boom"
    assert [s.status for s in unchanged.steps] == [RunStatus.FAILED, RunStatus.PENDING]


@pytest.mark.asyncio
async def test_retry_with_missing_workflow(dispatcher, repository):
    run = WorkflowRun(
        workflow_id="deleted", trigger=Trigger(type="manual", value="x"), status=RunStatus.FAILED
    )
    await repository.create_run(run)

    with pytest.raises(WorkflowMissingError):
        await dispatcher.retry(run.id)


@pytest.mark.asyncio
async def test_list_runs_newest_first(dispatcher, repository, make_workflow):
    workflow = make_workflow()
    await repository.create_workflow(workflow)
    older = WorkflowRun.for_workflow(workflow)
    older.started_at = utcnow() - timedelta(minutes=5)
    newer = WorkflowRun.for_workflow(workflow)
    await repository.create_run(newer)
    await repository.create_run(older)

    runs = await dispatcher.list_runs(workflow.id)

    assert [r.id for r in runs] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_list_runs_and_get_run_errors(dispatcher):
    with pytest.raises(WorkflowNotFoundError):
        await dispatcher.list_runs("missing")
    with pytest.raises(RunNotFoundError):
        await dispatcher.get_run("missing")
