"""Authenticated JSON API calls used by the deployment lifecycle."""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import quote

import httpx

from artifact_deployer.cancellation import CancellationToken
from artifact_deployer.deploy.base import ArtifactMetadata, DeploymentRecord, utc_now
from artifact_deployer.errors import ApiStatusError, ConfigError, ProtocolError
from artifact_deployer.security import SECRETS, SecretMask
from artifact_deployer.transport.executor import RequestAttempt, RequestExecutor

API_VERSION = "2022-11-28"
REQUEST_ID_HEADER = "x-github-request-id"


def split_repo(repo: str) -> tuple[str, str]:
    """Split ``owner/name`` into its two parts."""
    owner, sep, name = repo.strip().partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ConfigError(f"Repository must look like 'owner/name', got {repo!r}.")
    return owner, name


class PagesApiClient:
    """Thin client over the repository deployment endpoints.

    Reads go through ``RequestExecutor.execute`` and may be retried;
    writes use a single ``send`` because they are not idempotent.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        token: str,
        repo: str,
        api_url: str = "https://api.github.com",
        timeout_seconds: float = 180.0,
        mask: SecretMask | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        if not token:
            raise ConfigError("A deploy token is required for API calls.")
        self.executor = executor
        self.owner, self.repo = split_repo(repo)
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._token = token
        self.cancel_token = cancel_token
        (mask or SECRETS).register(token)

    @property
    def repository(self) -> str:
        """Return the ``owner/name`` slug this client targets."""
        return f"{self.owner}/{self.repo}"

    def get_artifact_metadata(self, artifact_id: int) -> ArtifactMetadata:
        """Fetch the uploaded artifact's size and name."""
        data = self._get_json(f"actions/artifacts/{artifact_id}")
        size = data.get("size_in_bytes")
        if not isinstance(size, int) or isinstance(size, bool):
            raise ProtocolError("Artifact metadata is missing an integer 'size_in_bytes'.")
        name = data.get("name")
        return ArtifactMetadata(
            artifact_id=artifact_id,
            size_bytes=size,
            name=name if isinstance(name, str) else "",
        )

    def create_deployment(
        self,
        *,
        artifact_id: int,
        oidc_token: str,
        build_version: str,
        size_bytes: int = 0,
    ) -> DeploymentRecord:
        """Create a pages deployment for an uploaded artifact."""
        data = self._post_json(
            "pages/deployments",
            {
                "artifact_id": artifact_id,
                "oidc_token": oidc_token,
                "pages_build_version": build_version,
            },
        )
        deployment_id = data.get("id") or build_version
        status = data.get("status")
        return DeploymentRecord(
            id=deployment_id,
            created_at=utc_now(),
            status=status if isinstance(status, str) else "",
            size_bytes=size_bytes,
        )

    def get_deployment_status(self, deployment_id: str | int) -> str:
        """Return the current status string of a deployment."""
        data = self._get_json(f"pages/deployments/{_segment(deployment_id)}")
        status = data.get("status")
        if not isinstance(status, str):
            raise ProtocolError("Deployment status response is missing a 'status' string.")
        return status

    def cancel_deployment(self, deployment_id: str | int) -> None:
        """Ask the remote to cancel a pending deployment."""
        self._post_json(f"pages/deployments/{_segment(deployment_id)}/cancel", None)

    def create_issue(self, *, title: str, body: str) -> int | None:
        """Open an issue in the target repository and return its number."""
        data = self._post_json("issues", {"title": title, "body": body})
        number = data.get("number")
        return number if isinstance(number, int) else None

    def _url(self, path: str) -> str:
        """Build an absolute URL under the repository."""
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/{path}"

    def _headers(self) -> dict[str, str]:
        """Return headers shared by every API call."""
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"token {self._token}",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "artifact-deployer",
        }

    def _get_json(self, path: str) -> dict[str, Any]:
        """Issue a retried GET and decode the JSON object reply."""
        response = self.executor.execute(
            RequestAttempt(
                method="GET",
                url=self._url(path),
                headers=self._headers(),
                timeout_seconds=self.timeout_seconds,
            ),
            cancel=self.cancel_token,
        )
        return _decode(response)

    def _post_json(self, path: str, body: dict[str, Any] | None) -> dict[str, Any]:
        """Issue a single POST and decode the JSON object reply."""
        response = self.executor.send(
            RequestAttempt(
                method="POST",
                url=self._url(path),
                headers=self._headers(),
                timeout_seconds=self.timeout_seconds,
                json_body=body,
            )
        )
        return _decode(response)


def _segment(value: str | int) -> str:
    """Quote a value for use as one URL path segment."""
    return quote(str(value), safe="")


def _decode(response: httpx.Response) -> dict[str, Any]:
    """Raise ApiStatusError for failures and return the JSON object body."""
    if response.status_code >= 300:
        raise ApiStatusError(
            _error_message(response),
            status_code=response.status_code,
            request_id=response.headers.get(REQUEST_ID_HEADER),
        )
    if not response.content:
        return {}
    try:
        payload = json.loads(response.text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Expected a JSON body from {response.request.url.path}.") from exc
    if not isinstance(payload, dict):
        raise ProtocolError(f"Expected a JSON object from {response.request.url.path}.")
    return payload


def _error_message(response: httpx.Response) -> str:
    """Extract a readable message from an error reply."""
    try:
        payload = json.loads(response.text) if response.content else None
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    if response.text:
        return response.text
    return f"Failed request: ({response.status_code})"
