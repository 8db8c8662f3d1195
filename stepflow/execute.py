"""Run execution engine for stepflow workflows."""

from __future__ import annotations

import logging
from typing import Any

from .contracts import IntegrationResult, RunStatus, Workflow, WorkflowRun, WorkflowStep
from .errors import IntegrationFailure
from .integrations import IntegrationRegistry
from .persistence import WorkflowRepository
from .resolve import resolve_inputs
from .state import RunStateMachine

logger = logging.getLogger(__name__)


class RunExecutor:
    """Executes the steps of a run strictly in order.

    Each step is resolved against earlier outputs, dispatched to its
    integration and recorded before the next one starts. The first failing
    step fails the run; the step-runs after it stay PENDING.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        integrations: IntegrationRegistry,
    ) -> None:
        self._repository = repository
        self._integrations = integrations
        self._state = RunStateMachine(repository)

    async def execute(self, run: WorkflowRun, workflow: Workflow) -> WorkflowRun:
        """Drive ``run`` to a terminal state and return it."""
        logger.info(
            f"Starting execution of run {run.id} for workflow {workflow.name} ({workflow.id})"
        )
        try:
            await self._state.start_run(run)
            if not workflow.steps:
                logger.info(f"No steps to execute for run {run.id}")
                await self._state.complete_run(run)
                return run

            await self._execute_steps(run, workflow)
        except Exception as exc:
            logger.exception(f"Run {run.id} aborted: {exc}")
            await self._abort(run, exc)
        return run

    async def _execute_steps(self, run: WorkflowRun, workflow: Workflow) -> None:
        outputs: dict[str, Any] = {}

        for index, (step, step_run) in enumerate(zip(workflow.steps, run.steps), start=1):
            await self._state.start_step(step_run)
            try:
                result = await self._run_step(index, step, outputs)
            except IntegrationFailure as failure:
                await self._state.fail_step(step_run, failure.message)
                logger.error(
                    f"Step {index} ({step.step_type}) failed for run {run.id}: {failure.message}"
                )
                await self._state.fail_run(
                    run, f"Step {index} ({step.step_type}) failed: {failure.message}"
                )
                return

            output = result.payload()
            outputs[step.id] = output
            outputs[str(step.step_order)] = output
            await self._state.complete_step(step_run, output)
            logger.info(
                f"Step {index} ({step.step_type}) completed successfully for run {run.id}"
            )

        await self._state.complete_run(run)
        logger.info(
            f"Run {run.id} for workflow {workflow.name} completed successfully "
            f"with {len(workflow.steps)} steps"
        )

    async def _run_step(
        self, index: int, step: WorkflowStep, outputs: dict[str, Any]
    ) -> IntegrationResult:
        """Resolve and dispatch one step, raising ``IntegrationFailure`` on failure."""
        config = resolve_inputs(step.step_config, step.input_mapping, outputs)
        logger.info(f"Executing step {index} ({step.step_type})")
        logger.debug(f"Step {index} config: {config}")

        try:
            result = await self._integrations.dispatch(step.step_type, config)
        except Exception as exc:
            raise IntegrationFailure(
                str(exc) or type(exc).__name__, step.step_type, index
            ) from exc

        if not result.success:
            message = result.error or f"Integration {step.step_type} reported failure"
            raise IntegrationFailure(message, step.step_type, index)
        return result

    async def _abort(self, run: WorkflowRun, exc: Exception) -> None:
        """Best-effort attempt to record an unexpected execution error."""
        if run.status is not RunStatus.RUNNING:
            return
        try:
            await self._state.fail_run(run, f"Run execution error: {exc}")
        except Exception:
            logger.exception(f"Could not record failure of run {run.id}")
