"""Tests for environment-backed settings."""

from __future__ import annotations

import pytest

from artifact_deployer.config import (
    DeployerSettings,
    require_env,
    require_positive_float,
    require_positive_int,
)
from artifact_deployer.errors import ConfigError


def test_defaults_match_deployment_constants() -> None:
    settings = DeployerSettings.from_env({})

    assert settings.api_url == "https://api.github.com"
    assert settings.server_url == "https://github.com"
    assert settings.size_limit_bytes == 2**30
    assert settings.deployment_timeout == 60.0
    assert settings.min_poll_interval == 5.0
    assert settings.max_poll_interval == 15.0
    assert settings.max_error_count == 10
    assert settings.request_timeout == 180.0
    assert settings.success_status == "succeed"
    assert settings.id_token_request_url is None


def test_environment_overrides() -> None:
    settings = DeployerSettings.from_env(
        {
            "GITHUB_API_URL": "https://ghe.example/api/v3",
            "GITHUB_SERVER_URL": "https://ghe.example",
            "ACTIONS_ID_TOKEN_REQUEST_URL": "https://token.test/?a=1",
            "ACTIONS_ID_TOKEN_REQUEST_TOKEN": "req",
            "DEPLOYER_MAX_ERROR_COUNT": "3",
            "DEPLOYER_DEPLOYMENT_TIMEOUT": "600",
            "DEPLOYER_SUCCESS_STATUS": "succeeded",
        }
    )

    assert settings.api_url == "https://ghe.example/api/v3"
    assert settings.server_url == "https://ghe.example"
    assert settings.id_token_request_token == "req"
    assert settings.max_error_count == 3
    assert settings.deployment_timeout == 600.0
    assert settings.success_status == "succeeded"


def test_malformed_numbers_raise_config_error() -> None:
    with pytest.raises(ConfigError, match="DEPLOYER_MAX_ERROR_COUNT"):
        DeployerSettings.from_env({"DEPLOYER_MAX_ERROR_COUNT": "many"})
    with pytest.raises(ConfigError, match="DEPLOYER_MIN_POLL_INTERVAL"):
        DeployerSettings.from_env({"DEPLOYER_MIN_POLL_INTERVAL": "soon"})


def test_poll_bounds_are_validated() -> None:
    with pytest.raises(ConfigError, match="max_poll_interval"):
        DeployerSettings(min_poll_interval=10.0, max_poll_interval=5.0)
    with pytest.raises(ConfigError):
        DeployerSettings(min_poll_interval=-1.0)


def test_positive_validators() -> None:
    assert require_positive_int(3, "x") == 3
    assert require_positive_float(0.5, "y") == 0.5
    with pytest.raises(ConfigError, match="x must be greater than zero"):
        require_positive_int(0, "x")
    with pytest.raises(ConfigError):
        require_positive_float(-2.0, "y")


def test_require_env() -> None:
    assert require_env({"NAME": " value "}, "NAME") == "value"
    with pytest.raises(ConfigError, match="Unable to get NAME env variable"):
        require_env({"NAME": "  "}, "NAME")
