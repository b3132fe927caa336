"""Deploy payload carried by dispatch events."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from artifact_deployer.errors import PayloadError
from artifact_deployer.security import find_potential_secrets

DeployType = Literal["npm", "github-pages"]

_PAYLOAD_KEYS = {
    "workflow_dispatch": "inputs",
    "repository_dispatch": "client_payload",
}


class DeployPayload(BaseModel):
    """Validated description of one requested deployment."""

    model_config = ConfigDict(strict=True, populate_by_name=True, frozen=True)

    repo: str = Field(..., pattern=r"^[^/\s]+/[^/\s]+$")
    type: DeployType
    tarball_name: str = Field(..., alias="tarballName", min_length=1)
    artifact_id: int = Field(..., alias="artifactId", gt=0)
    workflow_run_id: int = Field(..., alias="workflowRunId", gt=0)
    build_version: str | int = Field(..., alias="buildVersion")
    target: str | None = None

    @property
    def owner(self) -> str:
        """Return the repository owner."""
        return self.repo.split("/", 1)[0]

    @property
    def name(self) -> str:
        """Return the repository name."""
        return self.repo.split("/", 1)[1]

    def pages_target(self) -> str:
        """Return the site this payload publishes to.

        Explicit targets win; otherwise the default ``owner.github.io/name``
        site of the repository is assumed.
        """
        if self.target:
            return self.target.strip().lower()
        return f"{self.owner.lower()}.github.io/{self.name}"


def validate_payload(raw: Any) -> DeployPayload:
    """Validate an untrusted payload mapping."""
    if not isinstance(raw, dict):
        raise PayloadError("Payload is not an object")
    # Dispatch payloads are echoed into workflow logs.
    for key, value in raw.items():
        if not isinstance(value, str):
            continue
        labels = find_potential_secrets(value)
        if labels:
            raise PayloadError(
                f"`Payload.{key}` looks like a credential ({', '.join(labels)}); "
                "refusing to process it"
            )
    try:
        return DeployPayload.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"`Payload.{'.'.join(str(part) for part in error['loc'])}` {error['msg']}"
            for error in exc.errors()
        )
        raise PayloadError(f"Payload contains invalid properties: {problems}") from exc


def load_event_payload(event_name: str | None, event_path: Path | None) -> DeployPayload:
    """Read the payload from a dispatch event file."""
    if event_path is None:
        raise PayloadError("`GITHUB_EVENT_PATH` environment variable not set")
    key = _PAYLOAD_KEYS.get(event_name or "")
    if key is None:
        raise PayloadError(f"Unknown value for `GITHUB_EVENT_NAME`: {event_name}")
    try:
        event = json.loads(event_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise PayloadError(f"Unable to read event file {event_path}: {exc}") from exc
    if not isinstance(event, dict) or not isinstance(event.get(key), dict):
        raise PayloadError(f"`event.{key}` is not of type `object` in {event_path}")
    return validate_payload(event[key])
