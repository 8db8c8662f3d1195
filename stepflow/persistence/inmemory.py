"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, Optional, Set

from ..contracts import RunStatus, StepRun, Workflow, WorkflowRun
from ..errors import PersistenceError
from .repository import WorkflowRepository


def _first_duplicate(existing: Set[str], new_ids: Iterable[str]) -> str | None:
    seen = set(existing)
    for item_id in new_ids:
        if item_id in seen:
            return item_id
        seen.add(item_id)
    return None


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflows and runs in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored objects are copies, so callers
    only change stored state through the repository API.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._runs: Dict[str, WorkflowRun] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, workflow: Workflow) -> None:
        async with self._lock:
            if workflow.id in self._workflows:
                raise PersistenceError(f"Workflow {workflow.id} already exists")
            # step ids are unique across workflows, as in the SQL schemas
            duplicate = _first_duplicate(
                {s.id for wf in self._workflows.values() for s in wf.steps},
                (s.id for s in workflow.steps),
            )
            if duplicate is not None:
                raise PersistenceError(f"Workflow step {duplicate} already exists")
            self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(self) -> list[Workflow]:
        return [wf.model_copy(deep=True) for wf in reversed(self._workflows.values())]

    async def find_workflow_by_trigger(
        self, trigger_type: str, trigger_value: str
    ) -> Workflow | None:
        # dicts keep insertion order, which is creation order here
        for wf in self._workflows.values():
            if wf.trigger.type == trigger_type and wf.trigger.value == trigger_value:
                return wf.model_copy(deep=True)
        return None

    # ------------------------------------------------------------------
    # Runs
    async def create_run(self, run: WorkflowRun) -> None:
        async with self._lock:
            if run.id in self._runs:
                raise PersistenceError(f"Run {run.id} already exists")
            duplicate = _first_duplicate(
                {s.id for stored in self._runs.values() for s in stored.steps},
                (s.id for s in run.steps),
            )
            if duplicate is not None:
                raise PersistenceError(f"Step run {duplicate} already exists")
            self._runs[run.id] = run.model_copy(deep=True)

    async def update_run(
        self, run: WorkflowRun, expected: Optional[RunStatus] = None
    ) -> None:
        async with self._lock:
            stored = self._runs.get(run.id)
            if stored is None:
                raise PersistenceError(f"Run {run.id} does not exist")
            if expected is not None and stored.status != expected:
                raise PersistenceError(
                    f"Run {run.id} is {stored.status.value}, expected {expected.value}"
                )
            stored.status = run.status
            stored.completed_at = run.completed_at
            stored.error_message = run.error_message

    async def update_step_run(
        self, step_run: StepRun, expected: Optional[RunStatus] = None
    ) -> None:
        async with self._lock:
            run = self._runs.get(step_run.workflow_run_id)
            stored = None
            if run is not None:
                stored = next((s for s in run.steps if s.id == step_run.id), None)
            if stored is None:
                raise PersistenceError(
                    f"Step run {step_run.id} does not exist in run {step_run.workflow_run_id}"
                )
            if expected is not None and stored.status != expected:
                raise PersistenceError(
                    f"Step run {step_run.id} is {stored.status.value}, expected {expected.value}"
                )
            updated = step_run.model_copy(deep=True)
            stored.status = updated.status
            stored.started_at = updated.started_at
            stored.completed_at = updated.completed_at
            stored.output = updated.output
            stored.error_message = updated.error_message

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(self, workflow_id: str) -> list[WorkflowRun]:
        runs = [
            run.model_copy(update={"steps": []}, deep=True)
            for run in self._runs.values()
            if run.workflow_id == workflow_id
        ]
        # stable sort keeps later-created runs first on equal timestamps
        runs.reverse()
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs
