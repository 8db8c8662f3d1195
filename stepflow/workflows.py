"""Workflow definition service."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from pydantic import BaseModel

from .contracts import StepCreate, Trigger, Workflow, WorkflowCreate, WorkflowStep
from .errors import InferenceError, WorkflowNotFoundError
from .inference import WorkflowInferrer
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_TYPE = "manual"

_BASE_ESTIMATE_MS = 500
_STEP_ESTIMATES_MS = {
    "email": 1000,
    "slack": 800,
    "http": 1500,
    "log": 100,
}
_DEFAULT_STEP_ESTIMATE_MS = 500


class WorkflowCreated(BaseModel):
    """Response of :meth:`WorkflowService.create_workflow`."""

    workflow: Workflow
    inferred: bool = False
    trigger_description: str
    execution_estimate: str


def default_trigger_value(name: str) -> str:
    """``"Daily Report"`` -> ``"daily_report"``."""
    return re.sub(r"\s+", "_", name.lower())


def estimate_execution_time(step_types: Iterable[str]) -> str:
    """Rough wall-clock estimate for running steps of the given types."""
    total = _BASE_ESTIMATE_MS + sum(
        _STEP_ESTIMATES_MS.get(t, _DEFAULT_STEP_ESTIMATE_MS) for t in step_types
    )
    if total < 1000:
        return f"{total}ms"
    if total < 60000:
        return f"{total / 1000:.1f}s"
    return f"{total / 60000:.1f}m"


class WorkflowService:
    """Create and read workflow definitions."""

    def __init__(
        self,
        repository: WorkflowRepository,
        inferrer: Optional[WorkflowInferrer] = None,
    ) -> None:
        self._repository = repository
        self._inferrer = inferrer

    async def create_workflow(self, data: WorkflowCreate) -> WorkflowCreated:
        description = data.description
        trigger = data.trigger
        steps = list(data.steps)
        trigger_description = None
        inferred = False

        if trigger is None and data.natural_language_description and self._inferrer:
            try:
                config = await self._inferrer.infer(
                    data.natural_language_description, data.name
                )
            except InferenceError as exc:
                logger.error(f"Error inferring workflow configuration: {exc}")
            else:
                inferred = True
                description = config.description
                trigger = Trigger(type=config.trigger_type, value=config.trigger_value)
                trigger_description = config.trigger_description or None
                if not steps:
                    steps = [
                        StepCreate(
                            step_type=s.step_type,
                            step_config=s.step_config,
                            step_order=s.step_order,
                        )
                        for s in config.steps
                    ]

        if trigger is None:
            trigger = Trigger(type=DEFAULT_TRIGGER_TYPE, value=default_trigger_value(data.name))

        workflow = Workflow(
            name=data.name,
            description=description,
            trigger=trigger,
            steps=[
                WorkflowStep(
                    step_type=s.step_type,
                    step_config=s.step_config,
                    step_order=s.step_order,
                    input_mapping=s.input_mapping,
                )
                for s in steps
            ],
        )
        for step in workflow.steps:
            step.workflow_id = workflow.id
        await self._repository.create_workflow(workflow)
        logger.info(
            f"Created workflow {workflow.name} ({workflow.id}) with {len(workflow.steps)} steps"
        )

        return WorkflowCreated(
            workflow=workflow,
            inferred=inferred,
            trigger_description=trigger_description
            or (
                f"Workflow will be triggered when {trigger.type} event with value "
                f"'{trigger.value}' occurs"
            ),
            execution_estimate=estimate_execution_time(s.step_type for s in workflow.steps),
        )

    async def list_workflows(self) -> list[Workflow]:
        return await self._repository.list_workflows()

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow
