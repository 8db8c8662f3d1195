"""Infer workflow configuration from a natural-language description."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.models import Model

from .errors import InferenceError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a workflow automation expert. Convert natural language descriptions
into a structured workflow configuration.

Available trigger types:
- "manual" - triggered manually by a user
- "schedule" - triggered on a schedule (use cron syntax for the value)
- "webhook" - triggered by an HTTP webhook (use a path for the value)
- "email" - triggered by receiving an email (use an email address for the value)

Available step types:
- "email" - send an email (requires: to, subject, body)
- "slack" - send a Slack message (requires: channel, message)
- "http" - make an HTTP request (requires: method, url; optional: headers, body)
- "log" - log a message (requires: message; optional: level)
- "claude" - use a language model to generate content (requires: prompt; optional: model)

Number steps from 1 in execution order.
"""


class InferredStep(BaseModel):
    step_type: str
    step_config: Dict[str, Any] = Field(default_factory=dict)
    step_order: int
    description: str = ""


class InferredWorkflow(BaseModel):
    """Workflow configuration proposed by the model."""

    description: str
    trigger_type: str
    trigger_value: str
    trigger_description: str = ""
    steps: List[InferredStep] = Field(default_factory=list)


class WorkflowInferrer:
    """Wraps a pydantic-ai agent producing :class:`InferredWorkflow`."""

    def __init__(self, model: Union[str, Model]) -> None:
        self._model = model

    async def infer(self, description: str, workflow_name: str) -> InferredWorkflow:
        logger.info(f'Inferring workflow configuration from description: "{description}"')
        prompt = (
            f"Workflow Name: {workflow_name}\n"
            f"Natural Language Description: {description}\n\n"
            "Determine a concise technical description (1-2 sentences), the trigger "
            "type and value that should start this workflow, and the sequence of steps."
        )
        try:
            agent = Agent(
                self._model, output_type=InferredWorkflow, system_prompt=SYSTEM_PROMPT
            )
            result = await agent.run(prompt)
        except Exception as exc:
            raise InferenceError(f"Failed to infer workflow configuration: {exc}") from exc
        return result.output
