"""Tests for configuration loading and logging setup."""

import json
import logging

import pytest

from stepflow.config import load_config
from stepflow.engine import build_engine
from stepflow.errors import ConfigError
from stepflow.logging_config import JsonFormatter, configure_logging
from stepflow.persistence import SQLiteWorkflowRepository


def test_load_config_defaults():
    config = load_config()

    assert config.database_url is None
    assert config.log_level == "INFO"
    assert config.server.port == 8000
    assert config.integrations.slack.webhook_url is None
    assert config.inference.enabled is False


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
database_url: sqlite:///tmp/stepflow.db
log_format: json
integrations:
  slack:
    webhook_url: https://hooks.slack.test/T000
  email:
    smtp_host: smtp.example.com
    smtp_port: 2525
"""
    )
    monkeypatch.setenv("STEPFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.database_url == "sqlite:///tmp/stepflow.db"
    assert config.log_format == "json"
    assert config.integrations.slack.webhook_url == "https://hooks.slack.test/T000"
    assert config.integrations.email.smtp_host == "smtp.example.com"
    assert config.integrations.email.smtp_port == 2525


def test_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("STEPFLOW_DATABASE_URL", "sqlite:///from-env.db")
    monkeypatch.setenv("STEPFLOW_LOG_LEVEL", "DEBUG")

    config = load_config(str(config_path))
    assert config.database_url == "sqlite:///from-env.db"
    assert config.log_level == "DEBUG"


def test_invalid_config_raises(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("server:\n  port: not-a-number\n")

    with pytest.raises(ConfigError):
        load_config(str(config_path))


def test_build_engine_uses_configured_database(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPFLOW_DATABASE_URL", f"sqlite://{tmp_path / 'engine.db'}")

    engine = build_engine()
    assert isinstance(engine.repository, SQLiteWorkflowRepository)
    assert "http" in engine.integrations
    engine.repository.close()


def test_json_formatter():
    record = logging.LogRecord("stepflow.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
    record.run_id = "r1"

    data = json.loads(JsonFormatter().format(record))
    assert data["message"] == "hello x"
    assert data["level"] == "INFO"
    assert data["logger"] == "stepflow.test"
    assert data["extra"] == {"run_id": "r1"}


def test_configure_logging_respects_existing_handlers():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    try:
        root.addHandler(logging.NullHandler())
        before = list(root.handlers)
        configure_logging("DEBUG", force=False)
        assert root.handlers == before
    finally:
        root.handlers = handlers
        root.setLevel(level)
