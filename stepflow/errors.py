"""Exception hierarchy for stepflow."""

from __future__ import annotations

from typing import Optional


class StepflowError(Exception):
    """Base class for all stepflow errors."""


class NotFoundError(StepflowError):
    """A requested workflow or run does not exist."""


class WorkflowNotFoundError(NotFoundError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class RunNotFoundError(NotFoundError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class InvalidStateError(StepflowError):
    """An operation is not allowed in the current state."""


class InvalidRunStateError(InvalidStateError):
    """Raised when retrying a run that has not failed."""

    def __init__(self, run_id: str, status: str) -> None:
        super().__init__(f"Cannot retry run {run_id} with status {status}")
        self.run_id = run_id
        self.status = status


class IllegalTransitionError(InvalidStateError):
    pass


class WorkflowMissingError(StepflowError):
    """The workflow owning an existing run has disappeared."""

    def __init__(self, workflow_id: str, run_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} for run {run_id} not found")
        self.workflow_id = workflow_id
        self.run_id = run_id


class IntegrationFailure(StepflowError):
    """A step's integration reported failure or raised."""

    def __init__(
        self,
        message: str,
        step_type: Optional[str] = None,
        position: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step_type = step_type
        self.position = position


class PersistenceError(StepflowError):
    """A write to the repository failed or lost a conditional update."""


class InferenceError(StepflowError):
    """Natural-language workflow inference failed."""


class ConfigError(StepflowError):
    pass
