"""Environment-backed settings and shared validation helpers."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from artifact_deployer.errors import ConfigError

SIZE_LIMIT_BYTES = 2**30
DEPLOYMENT_TIMEOUT_SECONDS = 60.0
MIN_POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_INTERVAL_SECONDS = 15.0
MAX_ERROR_COUNT = 10
REQUEST_TIMEOUT_SECONDS = 180.0
# Status the deployment API reports once the site is live.
SUCCESS_STATUS = "succeed"


def require_positive_int(value: int, field_name: str) -> int:
    """Validate a positive integer input and return it."""
    if value <= 0:
        raise ConfigError(f"{field_name} must be greater than zero.")
    return value


def require_positive_float(value: float, field_name: str) -> float:
    """Validate a positive number input and return it."""
    if value <= 0:
        raise ConfigError(f"{field_name} must be greater than zero.")
    return value


def require_env(environ: Mapping[str, str], name: str) -> str:
    """Return a non-empty environment value or raise ConfigError."""
    value = environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"Unable to get {name} env variable")
    return value


def _int_env(environ: Mapping[str, str], name: str, default: int) -> int:
    """Parse an optional integer environment variable."""
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}.") from exc


def _float_env(environ: Mapping[str, str], name: str, default: float) -> float:
    """Parse an optional numeric environment variable."""
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}.") from exc


@dataclass(frozen=True)
class DeployerSettings:
    """Runtime configuration for one deployer process."""

    api_url: str = "https://api.github.com"
    server_url: str = "https://github.com"
    id_token_request_url: str | None = None
    id_token_request_token: str | None = None
    size_limit_bytes: int = SIZE_LIMIT_BYTES
    min_poll_interval: float = MIN_POLL_INTERVAL_SECONDS
    max_poll_interval: float = MAX_POLL_INTERVAL_SECONDS
    max_error_count: int = MAX_ERROR_COUNT
    deployment_timeout: float = DEPLOYMENT_TIMEOUT_SECONDS
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    success_status: str = SUCCESS_STATUS

    def __post_init__(self) -> None:
        require_positive_int(self.size_limit_bytes, "size_limit_bytes")
        require_positive_int(self.max_error_count, "max_error_count")
        require_positive_float(self.deployment_timeout, "deployment_timeout")
        require_positive_float(self.request_timeout, "request_timeout")
        if self.min_poll_interval < 0:
            raise ConfigError("min_poll_interval must not be negative.")
        if self.max_poll_interval < self.min_poll_interval:
            raise ConfigError("max_poll_interval must be at least min_poll_interval.")
        if not self.success_status.strip():
            raise ConfigError("success_status must not be empty.")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> DeployerSettings:
        """Build settings from environment variables, applying documented defaults."""
        env = os.environ if environ is None else environ
        return cls(
            api_url=env.get("GITHUB_API_URL", "").strip() or cls.api_url,
            server_url=env.get("GITHUB_SERVER_URL", "").strip() or cls.server_url,
            id_token_request_url=env.get("ACTIONS_ID_TOKEN_REQUEST_URL") or None,
            id_token_request_token=env.get("ACTIONS_ID_TOKEN_REQUEST_TOKEN") or None,
            size_limit_bytes=_int_env(env, "DEPLOYER_SIZE_LIMIT_BYTES", SIZE_LIMIT_BYTES),
            min_poll_interval=_float_env(
                env, "DEPLOYER_MIN_POLL_INTERVAL", MIN_POLL_INTERVAL_SECONDS
            ),
            max_poll_interval=_float_env(
                env, "DEPLOYER_MAX_POLL_INTERVAL", MAX_POLL_INTERVAL_SECONDS
            ),
            max_error_count=_int_env(env, "DEPLOYER_MAX_ERROR_COUNT", MAX_ERROR_COUNT),
            deployment_timeout=_float_env(
                env, "DEPLOYER_DEPLOYMENT_TIMEOUT", DEPLOYMENT_TIMEOUT_SECONDS
            ),
            request_timeout=_float_env(env, "DEPLOYER_REQUEST_TIMEOUT", REQUEST_TIMEOUT_SECONDS),
            success_status=env.get("DEPLOYER_SUCCESS_STATUS", "").strip() or SUCCESS_STATUS,
        )
