"""Core data contracts for stepflow workflows and runs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class Trigger(BaseModel):
    """Exact-match descriptor used to look up the workflow to run."""

    type: str
    value: str


class StepCreate(BaseModel):
    """Step definition as submitted when creating a workflow."""

    step_type: str
    step_config: Dict[str, Any] = Field(default_factory=dict)
    step_order: int
    input_mapping: Optional[Dict[str, Any]] = None


class WorkflowCreate(BaseModel):
    """Payload accepted by the workflow service."""

    name: str
    description: str = ""
    trigger: Optional[Trigger] = None
    steps: List[StepCreate] = Field(default_factory=list)
    natural_language_description: Optional[str] = None


class WorkflowStep(BaseModel):
    """One step of a workflow definition."""

    id: str = Field(default_factory=_new_id)
    workflow_id: Optional[str] = None
    step_type: str
    step_config: Dict[str, Any] = Field(default_factory=dict)
    step_order: int
    input_mapping: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)


class Workflow(BaseModel):
    """A named, ordered sequence of steps plus one trigger descriptor."""

    id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    trigger: Trigger
    steps: List[WorkflowStep] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("steps")
    @classmethod
    def _ordered_unique_steps(cls, steps: List[WorkflowStep]) -> List[WorkflowStep]:
        orders = [step.step_order for step in steps]
        if len(orders) != len(set(orders)):
            raise ValueError("step_order values must be unique within a workflow")
        return sorted(steps, key=lambda step: step.step_order)


class StepRun(BaseModel):
    """One execution attempt of one step within one run."""

    id: str = Field(default_factory=_new_id)
    workflow_run_id: str
    workflow_step_id: str
    status: RunStatus = RunStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None


class WorkflowRun(BaseModel):
    """One execution attempt of a workflow."""

    id: str = Field(default_factory=_new_id)
    workflow_id: str
    status: RunStatus = RunStatus.PENDING
    trigger: Trigger
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_of: Optional[str] = None
    steps: List[StepRun] = Field(default_factory=list)

    @classmethod
    def for_workflow(
        cls, workflow: Workflow, retry_of: Optional[str] = None
    ) -> "WorkflowRun":
        """Build a PENDING run with one PENDING step-run per workflow step."""
        run_id = _new_id()
        return cls(
            id=run_id,
            workflow_id=workflow.id,
            trigger=workflow.trigger.model_copy(),
            retry_of=retry_of,
            steps=[
                StepRun(workflow_run_id=run_id, workflow_step_id=step.id)
                for step in workflow.steps
            ],
        )


class IntegrationResult(BaseModel):
    """Structured outcome of an integration call.

    Integrations add their own payload fields next to ``success``.
    """

    model_config = ConfigDict(extra="allow")

    success: bool
    error: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        """Return the result as a plain JSON-compatible dict."""
        data = self.model_dump(mode="json")
        if data.get("error") is None:
            data.pop("error", None)
        return data
