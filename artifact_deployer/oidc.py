"""Identity (OIDC) token acquisition from the CI token sidecar."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

import httpx

from artifact_deployer.errors import ConfigError, IdentityTokenError, ProtocolError
from artifact_deployer.logging_utils import get_logger
from artifact_deployer.security import SECRETS, SecretMask
from artifact_deployer.transport.executor import RequestAttempt, RequestExecutor

LOGGER = get_logger()

ID_TOKEN_URL_ENV = "ACTIONS_ID_TOKEN_REQUEST_URL"
ID_TOKEN_REQUEST_TOKEN_ENV = "ACTIONS_ID_TOKEN_REQUEST_TOKEN"
USER_AGENT = "actions/oidc-client"


@dataclass(frozen=True)
class IdentityToken:
    """Short-lived bearer token; the value never appears in repr output."""

    value: str = field(repr=False)

    def __str__(self) -> str:
        return "IdentityToken(***)"


class IdentityTokenClient:
    """Fetch identity tokens through the shared request executor."""

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        request_url: str | None = None,
        request_token: str | None = None,
        environ: Mapping[str, str] | None = None,
        timeout_seconds: float = 180.0,
        mask: SecretMask | None = None,
    ) -> None:
        env = os.environ if environ is None else environ
        self.executor = executor
        self.request_url = request_url or env.get(ID_TOKEN_URL_ENV) or None
        self.request_token = request_token or env.get(ID_TOKEN_REQUEST_TOKEN_ENV) or None
        self.timeout_seconds = timeout_seconds
        self.mask = mask or SECRETS

    def fetch_token(self, audience: str | None = None) -> IdentityToken | None:
        """Return a fresh token, or None when the sidecar has none (404)."""
        url = self._token_url(audience)
        request_token = self.request_token
        if not request_token:
            raise ConfigError(f"Unable to get {ID_TOKEN_REQUEST_TOKEN_ENV} env variable")
        self.mask.register(request_token)
        LOGGER.debug("ID token url is %s", url)
        response = self.executor.execute(
            RequestAttempt(
                method="GET",
                url=url,
                headers={
                    "Accept": "application/json",
                    "User-Agent": USER_AGENT,
                    "Authorization": f"Bearer {request_token}",
                },
                timeout_seconds=self.timeout_seconds,
            )
        )
        if response.status_code == 404:
            LOGGER.info("Token endpoint reported no identity token available")
            return None
        payload = _parse_json(response)
        if response.status_code > 299:
            raise IdentityTokenError(
                "Failed to get ID Token. "
                f"Error Code: {response.status_code} "
                f"Error Message: {_failure_message(response, payload)}",
                status_code=response.status_code,
            )
        value = payload.get("value") if isinstance(payload, dict) else None
        if not isinstance(value, str) or not value:
            raise ProtocolError("Response json body do not have ID Token field")
        self.mask.register(value)
        return IdentityToken(value=value)

    def _token_url(self, audience: str | None) -> str:
        """Build the sidecar URL, appending the audience parameter when given."""
        if not self.request_url:
            raise ConfigError(f"Unable to get {ID_TOKEN_URL_ENV} env variable")
        base = httpx.URL(self.request_url)
        if audience:
            base = base.copy_add_param("audience", audience)
        return str(base)


def _parse_json(response: httpx.Response) -> object | None:
    """Decode a JSON body, returning None for empty or non-JSON content."""
    if not response.content:
        return None
    try:
        return json.loads(response.text)
    except json.JSONDecodeError:
        return None


def _failure_message(response: httpx.Response, payload: object | None) -> str:
    """Prefer a JSON message, then the raw body, then a generic description."""
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    if response.text:
        return response.text
    return f"Failed request: ({response.status_code})"
