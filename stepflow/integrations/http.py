from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from ..contracts import IntegrationResult
from .base import Integration

logger = logging.getLogger(__name__)


class HttpConfig(BaseModel):
    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None


class HttpIntegration(Integration[HttpConfig]):
    """Call an HTTP endpoint and return its status and decoded body.

    Responses with a status of 400 or above are reported as failures.
    """

    name = "http"
    config_model = HttpConfig

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def run(self, config: HttpConfig) -> IntegrationResult:
        method = config.method.upper()
        logger.info(f"Making HTTP {method} request to {config.url}")

        request_kwargs: dict[str, Any] = {
            "headers": config.headers,
            "params": config.params or None,
        }
        if isinstance(config.body, (dict, list)):
            request_kwargs["json"] = config.body
        elif config.body is not None:
            request_kwargs["content"] = str(config.body)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(method, config.url, **request_kwargs)
        except httpx.HTTPError as exc:
            logger.error(f"HTTP {method} {config.url} failed: {exc}")
            return IntegrationResult(success=False, error=f"HTTP request failed: {exc}")

        data = _decode(response)
        if response.is_error:
            return IntegrationResult(
                success=False,
                error=f"HTTP {method} {config.url} returned {response.status_code}",
                status=response.status_code,
                data=data,
            )
        return IntegrationResult(success=True, status=response.status_code, data=data)


def _decode(response: httpx.Response) -> Any:
    if "json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            pass
    return response.text
