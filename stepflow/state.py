"""Lifecycle of runs and step-runs.

Runs and step-runs follow the same machine::

    PENDING -> RUNNING -> COMPLETED
                       -> FAILED

Every transition is written through the repository before it returns, using
a conditional update on the previous status.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .contracts import RunStatus, StepRun, WorkflowRun, utcnow
from .errors import IllegalTransitionError
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.RUNNING},
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
}


def check_transition(current: RunStatus, to: RunStatus) -> None:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(
            f"Illegal transition: {current.value} -> {to.value}"
        )


class RunStateMachine:
    """Apply and persist status transitions for one repository."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    # ------------------------------------------------------------------
    # Runs
    async def start_run(self, run: WorkflowRun) -> None:
        await self._move_run(run, RunStatus.RUNNING)

    async def complete_run(self, run: WorkflowRun) -> None:
        await self._move_run(run, RunStatus.COMPLETED)

    async def fail_run(self, run: WorkflowRun, error_message: str) -> None:
        await self._move_run(run, RunStatus.FAILED, error_message)

    async def _move_run(
        self, run: WorkflowRun, to: RunStatus, error_message: Optional[str] = None
    ) -> None:
        previous = run.status
        check_transition(previous, to)
        run.status = to
        if to.is_terminal:
            run.completed_at = utcnow()
        if error_message is not None:
            run.error_message = error_message
        await self._repository.update_run(run, expected=previous)
        logger.debug(f"Run {run.id} status updated to {to.value}")

    # ------------------------------------------------------------------
    # Step-runs
    async def start_step(self, step_run: StepRun) -> None:
        await self._move_step(step_run, RunStatus.RUNNING)

    async def complete_step(self, step_run: StepRun, output: dict[str, Any]) -> None:
        await self._move_step(step_run, RunStatus.COMPLETED, output=output)

    async def fail_step(self, step_run: StepRun, error_message: str) -> None:
        await self._move_step(step_run, RunStatus.FAILED, error_message=error_message)

    async def _move_step(
        self,
        step_run: StepRun,
        to: RunStatus,
        output: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        previous = step_run.status
        check_transition(previous, to)
        step_run.status = to
        if to is RunStatus.RUNNING:
            step_run.started_at = utcnow()
        if to.is_terminal:
            step_run.completed_at = utcnow()
        if output is not None:
            step_run.output = output
        if error_message is not None:
            step_run.error_message = error_message
        await self._repository.update_step_run(step_run, expected=previous)
        logger.debug(
            f"Step run {step_run.id} status updated to {to.value} "
            f"for run {step_run.workflow_run_id}"
        )
