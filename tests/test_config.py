"""Tests for settings loading and logging setup."""

from __future__ import annotations

import pytest
import structlog

from src.restaurant_ops.agents import service as service_module
from src.restaurant_ops.config import Environment, Settings, SquareEnvironment, get_settings
from src.restaurant_ops.core import logging as logging_module
from src.restaurant_ops.core.logging import configure_structlog


@pytest.fixture
def fresh_logging(monkeypatch):
    monkeypatch.setattr(logging_module, "_configured", False)
    yield
    structlog.reset_defaults()


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.ENVIRONMENT == Environment.development
    assert settings.SQUARE_ENVIRONMENT == SquareEnvironment.sandbox
    assert settings.SQUARE_MAX_RETRIES == 3
    assert settings.SQUARE_RATE_LIMIT_MAX_REQUESTS == 80
    assert settings.get_square_base_url() == "https://connect.squareupsandbox.com/v2"


def test_environment_variables_override(monkeypatch):
    monkeypatch.setenv("SQUARE_ENVIRONMENT", "production")
    monkeypatch.setenv("SQUARE_MAX_RETRIES", "5")

    settings = get_settings()

    assert settings.SQUARE_MAX_RETRIES == 5
    assert settings.get_square_base_url() == "https://connect.squareup.com/v2"


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_configure_structlog_production(fresh_logging):
    assert configure_structlog(Settings(_env_file=None, ENVIRONMENT="production")) is True

    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)


def test_configure_structlog_development(fresh_logging):
    configure_structlog(Settings(_env_file=None, ENVIRONMENT="development"))

    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
    assert structlog.contextvars.merge_contextvars in processors


def test_configure_structlog_runs_once_unless_forced(fresh_logging):
    assert configure_structlog(Settings(_env_file=None)) is True
    assert configure_structlog(Settings(_env_file=None)) is False
    assert configure_structlog(Settings(_env_file=None, ENVIRONMENT="production"), force=True) is True

    assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)


def test_service_bootstrap_configures_logging(fresh_logging, monkeypatch):
    monkeypatch.setattr(service_module, "_service", None)

    service = service_module.get_agent_service()

    assert logging_module._configured is True
    assert structlog.is_configured()
    assert service_module.get_agent_service() is service
