"""stepflow: trigger-driven multi-step workflow automation."""

__version__ = "0.1.0"

from .contracts import (
    IntegrationResult,
    RunStatus,
    StepRun,
    Trigger,
    Workflow,
    WorkflowCreate,
    WorkflowRun,
    WorkflowStep,
)
from .dispatch import RunDispatcher
from .engine import Engine, build_engine
from .execute import RunExecutor
from .integrations import IntegrationRegistry, default_registry
from .persistence import get_repository
from .workflows import WorkflowService

__all__ = [
    "Engine",
    "IntegrationRegistry",
    "IntegrationResult",
    "RunDispatcher",
    "RunExecutor",
    "RunStatus",
    "StepRun",
    "Trigger",
    "Workflow",
    "WorkflowCreate",
    "WorkflowRun",
    "WorkflowService",
    "WorkflowStep",
    "build_engine",
    "default_registry",
    "get_repository",
]
