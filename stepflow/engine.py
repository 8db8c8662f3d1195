"""Wiring of repository, integrations and services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import StepflowConfig, load_config
from .dispatch import RunDispatcher
from .execute import RunExecutor
from .inference import WorkflowInferrer
from .integrations import IntegrationRegistry, default_registry
from .persistence import WorkflowRepository, get_repository
from .workflows import WorkflowService


@dataclass
class Engine:
    repository: WorkflowRepository
    integrations: IntegrationRegistry
    workflows: WorkflowService
    runs: RunDispatcher


def build_engine(
    config: Optional[StepflowConfig] = None,
    repository: Optional[WorkflowRepository] = None,
    integrations: Optional[IntegrationRegistry] = None,
) -> Engine:
    """Assemble an :class:`Engine` from configuration.

    Explicit ``repository`` or ``integrations`` take precedence over the
    configured ones, which is how tests inject fakes.
    """

    config = config or load_config()
    if repository is None:
        # without an explicit URL the process-wide repository is reused
        repository = get_repository(database_url=config.database_url)
    integrations = integrations or default_registry(config.integrations)
    inferrer = (
        WorkflowInferrer(config.inference.model) if config.inference.enabled else None
    )
    executor = RunExecutor(repository, integrations)
    return Engine(
        repository=repository,
        integrations=integrations,
        workflows=WorkflowService(repository, inferrer),
        runs=RunDispatcher(repository, executor),
    )
