from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ValidationError

from .errors import ConfigError


class HttpIntegrationConfig(BaseModel):
    """Settings for the ``http`` step type."""

    timeout: float = 30.0


class SlackIntegrationConfig(BaseModel):
    """Settings for the ``slack`` step type.

    Without a webhook URL messages are only logged.
    """

    webhook_url: Optional[str] = None


class EmailIntegrationConfig(BaseModel):
    """SMTP settings for the ``email`` step type.

    Without an SMTP host messages are only logged.
    """

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    sender: str = "stepflow@localhost"
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True


class LlmIntegrationConfig(BaseModel):
    """Settings for the ``llm`` and ``claude`` step types."""

    model: str = "anthropic:claude-3-5-sonnet-latest"


class IntegrationsConfig(BaseModel):
    http: HttpIntegrationConfig = HttpIntegrationConfig()
    slack: SlackIntegrationConfig = SlackIntegrationConfig()
    email: EmailIntegrationConfig = EmailIntegrationConfig()
    llm: LlmIntegrationConfig = LlmIntegrationConfig()


class InferenceConfig(BaseModel):
    """Natural-language workflow inference settings."""

    enabled: bool = False
    model: str = "anthropic:claude-3-5-sonnet-latest"


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class StepflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    server: ServerConfig = ServerConfig()
    integrations: IntegrationsConfig = IntegrationsConfig()
    inference: InferenceConfig = InferenceConfig()


def load_config(path: Optional[str] = None) -> StepflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPFLOW_CONFIG env
            variable or 'stepflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPFLOW_CONFIG", "stepflow.yaml")
    try:
        if os.path.exists(config_path):
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            config = StepflowConfig(**data)
        else:
            config = StepflowConfig()
    except (yaml.YAMLError, ValidationError) as exc:
        raise ConfigError(f"Invalid configuration in {config_path}: {exc}") from exc

    env_db_url = os.getenv("STEPFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_level = os.getenv("STEPFLOW_LOG_LEVEL")
    if env_level:
        config.log_level = env_level
    return config
