import logging

import httpx
import pytest

from stepflow.contracts import RunStatus, WorkflowRun
from stepflow.errors import PersistenceError
from stepflow.execute import RunExecutor
from stepflow.integrations import HttpIntegration
from stepflow.persistence import InMemoryWorkflowRepository


async def _execute(repository, executor, workflow) -> WorkflowRun:
    await repository.create_workflow(workflow)
    run = WorkflowRun.for_workflow(workflow)
    await repository.create_run(run)
    await executor.execute(run, workflow)
    return await repository.get_run(run.id)


@pytest.mark.asyncio
async def test_zero_step_workflow_completes(repository, executor, make_workflow):
    run = await _execute(repository, executor, make_workflow())

    assert run.status is RunStatus.COMPLETED
    assert run.completed_at is not None
    assert run.error_message is None
    assert run.steps == []


@pytest.mark.asyncio
async def test_all_steps_succeed(repository, executor, recorder, make_workflow):
    workflow = make_workflow(("record", {"n": 1}), ("record", {"n": 2}))

    run = await _execute(repository, executor, workflow)

    assert run.status is RunStatus.COMPLETED
    assert [s.status for s in run.steps] == [RunStatus.COMPLETED, RunStatus.COMPLETED]
    assert all(s.output == {"success": True} for s in run.steps)
    assert all(s.started_at <= s.completed_at for s in run.steps)
    # steps ran in order
    assert recorder.calls == [{"n": 1}, {"n": 2}]


@pytest.mark.asyncio
async def test_failing_step_stops_the_run(repository, executor, recorder, make_workflow):
    workflow = make_workflow(("record",), ("fail",), ("record",))

    run = await _execute(repository, executor, workflow)

    assert run.status is RunStatus.FAILED
    assert run.error_message == "Step 2 (fail) failed: boom"
    assert run.completed_at is not None
    first, second, third = run.steps
    assert first.status is RunStatus.COMPLETED
    assert second.status is RunStatus.FAILED
    assert second.error_message == "boom"
    assert second.completed_at is not None
    assert third.status is RunStatus.PENDING
    assert third.started_at is None
    assert len(recorder.calls) == 1


@pytest.mark.asyncio
async def test_raising_integration_fails_step(repository, executor, make_workflow):
    run = await _execute(repository, executor, make_workflow(("explode",)))

    assert run.status is RunStatus.FAILED
    assert run.error_message == "Step 1 (explode) failed: exploded"
    assert run.steps[0].error_message == "exploded"


@pytest.mark.asyncio
async def test_unknown_step_type_fails_step(repository, executor, make_workflow):
    run = await _execute(repository, executor, make_workflow(("fax",)))

    assert run.status is RunStatus.FAILED
    assert run.error_message == "Step 1 (fax) failed: Unknown integration type: fax"


@pytest.mark.asyncio
async def test_outputs_flow_into_later_steps(
    repository, executor, registry, recorder, recording_integration, make_workflow
):
    registry.register(
        "fetch", recording_integration({"success": True, "items": [{"id": 123}]})
    )
    workflow = make_workflow(("fetch",), ("record", {"label": "orig"}))
    fetch_id = workflow.steps[0].id
    workflow.steps[1].input_mapping = {
        "user_id": f"{fetch_id}:items.0.id",
        "by_order": "1:items.0.id",
        "label": "static",
        "gone": "no-such-step:items",
    }

    run = await _execute(repository, executor, workflow)

    assert run.status is RunStatus.COMPLETED
    assert run.steps[0].output == {"success": True, "items": [{"id": 123}]}
    assert recorder.calls == [
        {"label": "static", "user_id": 123, "by_order": 123, "gone": None}
    ]
    # the stored step configuration keeps its original value
    stored = await repository.get_workflow(workflow.id)
    assert stored.steps[1].step_config == {"label": "orig"}


@pytest.mark.asyncio
async def test_invalid_configuration_fails_step(repository, executor, make_workflow):
    run = await _execute(repository, executor, make_workflow(("log", {"level": "loud"})))

    assert run.status is RunStatus.FAILED
    assert run.error_message.startswith("Step 1 (log) failed: Invalid log configuration")


@pytest.mark.asyncio
async def test_http_output_feeds_log_step(repository, executor, registry, make_workflow, caplog):
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"items": [{"id": 123}]})
    )
    registry.register("http", HttpIntegration(transport=transport))
    workflow = make_workflow(
        ("http", {"url": "https://api.example.com/users"}),
        # http results carry the response body under "data"
        ("log", {}, {"data": "1:data.items.0.id"}),
    )

    with caplog.at_level(logging.INFO, logger="stepflow.workflow"):
        run = await _execute(repository, executor, workflow)

    assert run.status is RunStatus.COMPLETED
    assert run.steps[0].output == {
        "success": True,
        "status": 200,
        "data": {"items": [{"id": 123}]},
    }
    assert run.steps[1].status is RunStatus.COMPLETED
    assert "WORKFLOW LOG: None (data=123)" in caplog.text


class _BrokenStepStore(InMemoryWorkflowRepository):
    async def update_step_run(self, step_run, expected=None):
        raise PersistenceError("disk full")


@pytest.mark.asyncio
async def test_unexpected_error_is_recorded_on_run(registry, make_workflow):
    repository = _BrokenStepStore()
    executor = RunExecutor(repository, registry)

    run = await _execute(repository, executor, make_workflow(("record",)))

    assert run.status is RunStatus.FAILED
    assert run.error_message == "Run execution error: disk full"
    assert run.steps[0].status is RunStatus.PENDING
