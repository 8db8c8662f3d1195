from __future__ import annotations

import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from ..contracts import IntegrationResult
from .base import Integration

workflow_logger = logging.getLogger("stepflow.workflow")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LogConfig(BaseModel):
    """Configuration for ``log`` steps.

    Extra keys (typically values mapped from earlier steps) are appended to
    the logged line.
    """

    model_config = ConfigDict(extra="allow")

    message: Optional[str] = None
    level: Literal["debug", "info", "warn", "warning", "error"] = "info"


class LogIntegration(Integration[LogConfig]):
    name = "log"
    config_model = LogConfig

    async def run(self, config: LogConfig) -> IntegrationResult:
        extra = config.model_extra or {}
        line = f"WORKFLOW LOG: {config.message}"
        if extra:
            details = ", ".join(f"{key}={value!r}" for key, value in extra.items())
            line = f"{line} ({details})"
        workflow_logger.log(_LEVELS[config.level], line)
        return IntegrationResult(success=True, message=config.message)
