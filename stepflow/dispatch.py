"""Run dispatcher: trigger matching, run creation and retries."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from .contracts import RunStatus, Workflow, WorkflowRun
from .errors import InvalidRunStateError, RunNotFoundError, WorkflowNotFoundError, WorkflowMissingError
from .execute import RunExecutor
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class RunDispatcher:
    """Service responsible for starting workflow runs.

    Runs are persisted synchronously and executed in background tasks on the
    running event loop. Callers get the PENDING run back immediately and
    observe progress by reading the repository.
    """

    def __init__(self, repository: WorkflowRepository, executor: RunExecutor) -> None:
        self._repository = repository
        self._executor = executor
        self._tasks: Set[asyncio.Task] = set()

    async def trigger(
        self, trigger_type: str, trigger_value: str
    ) -> Optional[WorkflowRun]:
        """Start a run of the workflow registered for ``(type, value)``.

        Returns ``None`` when no workflow matches.
        """
        logger.info(f"Triggering workflow for {trigger_type}:{trigger_value}")
        workflow = await self._repository.find_workflow_by_trigger(
            trigger_type, trigger_value
        )
        if workflow is None:
            logger.info(
                f"No workflows found for trigger type {trigger_type} and value {trigger_value}"
            )
            return None

        logger.info(
            f"Triggering workflow {workflow.name} for {trigger_type}:{trigger_value} "
            f"with {len(workflow.steps)} steps"
        )
        return await self.create_run(workflow)

    async def create_run(
        self, workflow: Workflow, retry_of: Optional[str] = None
    ) -> WorkflowRun:
        """Persist a new PENDING run of ``workflow`` and start executing it."""
        run = WorkflowRun.for_workflow(workflow, retry_of=retry_of)
        await self._repository.create_run(run)
        logger.info(
            f"Created run {run.id} with {len(run.steps)} step runs for workflow {workflow.name}"
        )
        self._spawn(run.model_copy(deep=True), workflow)
        return run

    async def retry(self, run_id: str) -> WorkflowRun:
        """Start a new run for the workflow of a failed run."""
        run = await self._repository.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.status is not RunStatus.FAILED:
            raise InvalidRunStateError(run_id, run.status.value)

        workflow = await self._repository.get_workflow(run.workflow_id)
        if workflow is None:
            raise WorkflowMissingError(run.workflow_id, run_id)

        logger.info(f"Retrying failed run {run_id} of workflow {workflow.name}")
        return await self.create_run(workflow, retry_of=run_id)

    async def get_run(self, run_id: str) -> WorkflowRun:
        run = await self._repository.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def list_runs(self, workflow_id: str) -> list[WorkflowRun]:
        if await self._repository.get_workflow(workflow_id) is None:
            raise WorkflowNotFoundError(workflow_id)
        return await self._repository.list_runs(workflow_id)

    async def wait_for_runs(self) -> None:
        """Wait until every run started by this dispatcher has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    def _spawn(self, run: WorkflowRun, workflow: Workflow) -> None:
        logger.info(f"Executing run {run.id}")
        task = asyncio.create_task(
            self._executor.execute(run, workflow), name=f"stepflow-run-{run.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error executing {task.get_name()}: {exc!r}")
