"""Unit tests for configuration management."""

import os
from collections.abc import Generator

import pytest
from pydantic import ValidationError

from docintake.shared.config import DEFAULT_FIELD_WEIGHTS, Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings()

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "docintake"
    assert settings.provider_order == ["openai", "vision", "tesseract"]
    assert settings.acceptance_floor == 0.85
    assert settings.auto_approve_threshold == 0.95
    assert settings.rate_limit_max_requests == 20
    assert settings.session_ttl_seconds == 86400
    assert settings.default_country_code == "91"


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_ENVIRONMENT"] = "production"
    os.environ["APP_AUTO_APPROVE_THRESHOLD"] = "0.97"
    os.environ["APP_PROVIDER_ORDER"] = '["ollama", "tesseract"]'

    settings = Settings()

    assert settings.environment == "production"
    assert settings.auto_approve_threshold == 0.97
    assert settings.provider_order == ["ollama", "tesseract"]


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings()

    assert settings.log_level == "DEBUG"


def test_threshold_out_of_range_rejected(clean_env: None) -> None:
    """Confidence thresholds must lie within 0..1."""
    with pytest.raises(ValidationError):
        Settings(acceptance_floor=1.5)


def test_timeout_for_uses_override(clean_env: None) -> None:
    """Per-provider overrides win over the default timeout."""
    settings = Settings(provider_timeout_seconds=30, provider_timeouts={"tesseract": 90})

    assert settings.timeout_for("tesseract") == 90
    assert settings.timeout_for("openai") == 30


def test_field_weights_default_is_copied(clean_env: None) -> None:
    """Mutating one instance's weights must not leak into the defaults."""
    settings = Settings()
    settings.field_weights["line_items"] = 0.0

    assert DEFAULT_FIELD_WEIGHTS["line_items"] == 0.25
    assert Settings().field_weights["line_items"] == 0.25


def test_get_settings_factory() -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
