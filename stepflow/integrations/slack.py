from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from ..contracts import IntegrationResult, utcnow
from .base import Integration

logger = logging.getLogger(__name__)


class SlackConfig(BaseModel):
    channel: str
    message: str
    attachments: List[Dict[str, Any]] = Field(default_factory=list)


class SlackIntegration(Integration[SlackConfig]):
    """Post a chat message through a Slack incoming webhook.

    Without a webhook URL the message is only logged.
    """

    name = "slack"
    config_model = SlackConfig

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._transport = transport

    async def run(self, config: SlackConfig) -> IntegrationResult:
        timestamp = utcnow().isoformat()
        if not self._webhook_url:
            logger.info(
                f"Dry run: Slack message to channel {config.channel}: \"{config.message}\""
            )
            return IntegrationResult(success=True, timestamp=timestamp, delivered=False)

        payload: dict[str, Any] = {"channel": config.channel, "text": config.message}
        if config.attachments:
            payload["attachments"] = config.attachments
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self._webhook_url, json=payload)
        except httpx.HTTPError as exc:
            return IntegrationResult(success=False, error=f"Slack webhook failed: {exc}")

        if response.is_error:
            return IntegrationResult(
                success=False,
                error=f"Slack webhook returned {response.status_code}: {response.text}",
            )
        logger.info(f"Sent Slack message to channel {config.channel}")
        return IntegrationResult(success=True, timestamp=timestamp, delivered=True)
