"""Repository abstraction for workflow and run persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import RunStatus, StepRun, Workflow, WorkflowRun


class WorkflowRepository(Protocol):
    """Protocol for persistence backends.

    ``create_workflow`` and ``create_run`` insert their whole set of rows
    atomically. ``update_run`` and ``update_step_run`` are single-row updates;
    when ``expected`` is given the write only applies if the stored status
    still equals it, otherwise :class:`~stepflow.errors.PersistenceError` is
    raised.
    """

    async def create_workflow(self, workflow: Workflow) -> None:
        """Persist a workflow together with all of its steps."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow with its steps, ordered by ``step_order``."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all workflows, newest first."""

    async def find_workflow_by_trigger(
        self, trigger_type: str, trigger_value: str
    ) -> Workflow | None:
        """Return the earliest created workflow with exactly this trigger."""

    async def create_run(self, run: WorkflowRun) -> None:
        """Persist a run together with all of its step-runs."""

    async def update_run(
        self, run: WorkflowRun, expected: Optional[RunStatus] = None
    ) -> None:
        """Persist status, completion time and error message of a run."""

    async def update_step_run(
        self, step_run: StepRun, expected: Optional[RunStatus] = None
    ) -> None:
        """Persist status, timestamps, output and error of a step-run."""

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        """Retrieve a run with its step-runs in creation order."""

    async def list_runs(self, workflow_id: str) -> list[WorkflowRun]:
        """Return the runs of a workflow, most recently started first.

        Step-runs are not loaded.
        """
