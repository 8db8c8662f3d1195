"""Integration registry and dispatch."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from ..config import IntegrationsConfig
from ..contracts import IntegrationResult
from .base import Integration
from .email import EmailIntegration
from .http import HttpIntegration
from .llm import LlmIntegration
from .log import LogIntegration
from .slack import SlackIntegration

logger = logging.getLogger(__name__)


class IntegrationRegistry:
    """Map step type tags to integrations."""

    def __init__(self, integrations: Optional[Mapping[str, Integration]] = None) -> None:
        self._integrations: Dict[str, Integration] = dict(integrations or {})

    def register(self, step_type: str, integration: Integration) -> None:
        self._integrations[step_type] = integration

    def get(self, step_type: str) -> Optional[Integration]:
        return self._integrations.get(step_type)

    def types(self) -> list[str]:
        return sorted(self._integrations)

    def __contains__(self, step_type: object) -> bool:
        return step_type in self._integrations

    async def dispatch(
        self, step_type: str, config: Mapping[str, Any]
    ) -> IntegrationResult:
        """Run the integration registered for ``step_type``.

        Unknown types produce a failed result instead of raising.
        """
        integration = self._integrations.get(step_type)
        if integration is None:
            logger.warning(f"Unknown integration type: {step_type}")
            return IntegrationResult(
                success=False, error=f"Unknown integration type: {step_type}"
            )
        return await integration.execute(config)


def default_registry(config: Optional[IntegrationsConfig] = None) -> IntegrationRegistry:
    """Build the registry with the built-in integrations."""

    config = config or IntegrationsConfig()
    llm = LlmIntegration(config.llm.model)
    return IntegrationRegistry(
        {
            "email": EmailIntegration(config.email),
            "slack": SlackIntegration(config.slack.webhook_url),
            "http": HttpIntegration(timeout=config.http.timeout),
            "log": LogIntegration(),
            "llm": llm,
            "claude": llm,
        }
    )


__all__ = [
    "Integration",
    "IntegrationRegistry",
    "EmailIntegration",
    "HttpIntegration",
    "LlmIntegration",
    "LogIntegration",
    "SlackIntegration",
    "default_registry",
]
