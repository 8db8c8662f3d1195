from __future__ import annotations

import logging
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from ..contracts import IntegrationResult
from .base import Integration

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class LlmConfig(BaseModel):
    prompt: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)


def _history(messages: List[ChatMessage]) -> list[ModelMessage]:
    history: list[ModelMessage] = []
    for msg in messages:
        if msg.role == "user":
            history.append(ModelRequest(parts=[UserPromptPart(content=msg.content)]))
        else:
            history.append(ModelResponse(parts=[TextPart(content=msg.content)]))
    return history


def _model_name(model: Union[str, Model]) -> str:
    if isinstance(model, str):
        return model
    return getattr(model, "model_name", type(model).__name__)


class LlmIntegration(Integration[LlmConfig]):
    """Generate text with a language model through pydantic-ai.

    The agent is built per call so a missing provider key only fails the step
    that needs it.
    """

    name = "llm"
    config_model = LlmConfig

    def __init__(self, default_model: Union[str, Model]) -> None:
        self._default_model = default_model

    async def run(self, config: LlmConfig) -> IntegrationResult:
        model = config.model or self._default_model
        preview = config.prompt[:50] + ("..." if len(config.prompt) > 50 else "")
        logger.info(f"Generating LLM response for prompt: \"{preview}\"")

        try:
            agent = Agent(model, system_prompt=config.system_prompt or ())
            result = await agent.run(
                config.prompt, message_history=_history(config.messages) or None
            )
        except Exception as exc:
            logger.error(f"Error in LLM integration: {exc}")
            return IntegrationResult(
                success=False,
                error=f"LLM error: {exc}",
                response="",
                model=_model_name(model),
            )

        return IntegrationResult(
            success=True, response=str(result.output), model=_model_name(model)
        )
