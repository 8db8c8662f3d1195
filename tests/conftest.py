from typing import Any, Optional

import pytest
from pydantic import BaseModel, ConfigDict

import stepflow.persistence as persistence
from stepflow.contracts import IntegrationResult, Trigger, Workflow, WorkflowStep
from stepflow.execute import RunExecutor
from stepflow.integrations import Integration, IntegrationRegistry, LogIntegration
from stepflow.persistence import InMemoryWorkflowRepository


class AnyConfig(BaseModel):
    model_config = ConfigDict(extra="allow")


class RecordingIntegration(Integration[AnyConfig]):
    """Records every resolved configuration and returns a canned result."""

    name = "record"
    config_model = AnyConfig

    def __init__(self, result: Optional[dict[str, Any]] = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self._result = result or {"success": True}

    async def run(self, config: AnyConfig) -> IntegrationResult:
        self.calls.append(config.model_dump())
        return IntegrationResult(**self._result)


class RaisingIntegration(Integration[AnyConfig]):
    name = "explode"
    config_model = AnyConfig

    async def run(self, config: AnyConfig) -> IntegrationResult:
        raise RuntimeError("exploded")


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    for var in ("STEPFLOW_CONFIG", "STEPFLOW_DATABASE_URL", "DATABASE_URL", "STEPFLOW_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    # keep a stray stepflow.yaml in the working directory out of the tests
    monkeypatch.setenv("STEPFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def recorder() -> RecordingIntegration:
    return RecordingIntegration()


@pytest.fixture
def registry(recorder) -> IntegrationRegistry:
    return IntegrationRegistry(
        {
            "record": recorder,
            "fail": RecordingIntegration({"success": False, "error": "boom"}),
            "explode": RaisingIntegration(),
            "log": LogIntegration(),
        }
    )


@pytest.fixture
def executor(repository, registry) -> RunExecutor:
    return RunExecutor(repository, registry)


@pytest.fixture
def recording_integration():
    """The recording integration class, for tests that need custom results."""
    return RecordingIntegration


@pytest.fixture
def make_workflow():
    def _make(*steps, name: str = "Test Workflow", trigger=("manual", "test")) -> Workflow:
        workflow = Workflow(
            name=name,
            trigger=Trigger(type=trigger[0], value=trigger[1]),
            steps=[
                WorkflowStep(
                    step_type=step[0],
                    step_config=step[1] if len(step) > 1 else {},
                    step_order=order,
                    input_mapping=step[2] if len(step) > 2 else None,
                )
                for order, step in enumerate(steps, start=1)
            ],
        )
        for step in workflow.steps:
            step.workflow_id = workflow.id
        return workflow

    return _make
