"""Deployment records, outcomes, and the remote status vocabulary."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from artifact_deployer.errors import RemoteFatalStatus, RemoteTransientStatus


class DeploymentState(str, Enum):
    """Lifecycle of one deploy() invocation."""

    idle = "idle"
    created = "created"
    polling = "polling"
    succeeded = "succeeded"
    fatally_failed = "fatally_failed"
    cancelled = "cancelled"


class OutcomeKind(str, Enum):
    """Terminal result classes of a deployment."""

    succeeded = "succeeded"
    fatal_failure = "fatal_failure"
    cancelled_by_user = "cancelled_by_user"
    cancelled_by_error_budget = "cancelled_by_error_budget"
    cancelled_by_timeout = "cancelled_by_timeout"


@dataclass(frozen=True)
class DeploymentOutcome:
    """Terminal result produced exactly once per deploy() call."""

    kind: OutcomeKind
    reason: str
    deployment_id: str | int | None = None

    @property
    def success(self) -> bool:
        """Return whether the deployment went live."""
        return self.kind is OutcomeKind.succeeded

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome."""
        return 0 if self.success else 1


@dataclass(frozen=True)
class ArtifactMetadata:
    """Subset of artifact metadata inspected before deploying."""

    artifact_id: int
    size_bytes: int
    name: str = ""


@dataclass
class DeploymentRecord:
    """Remote deployment owned by the orchestrator while it is pending."""

    id: str | int
    created_at: str
    status: str
    size_bytes: int = 0


class PagesDeploymentStatus(str, Enum):
    """Status values the deployment API is known to report."""

    unknown_status = "unknown_status"
    not_found = "not_found"
    deployment_attempt_error = "deployment_attempt_error"
    deployment_failed = "deployment_failed"
    deployment_content_failed = "deployment_content_failed"
    deployment_cancelled = "deployment_cancelled"
    deployment_lost = "deployment_lost"
    queued = "queued"
    building = "building"
    deployment_in_progress = "deployment_in_progress"
    syncing_files = "syncing_files"
    finished_file_sync = "finished_file_sync"
    updating_pages = "updating_pages"
    purging_cdn = "purging_cdn"


_STATUS_MESSAGES: dict[PagesDeploymentStatus, tuple[bool, str]] = {
    PagesDeploymentStatus.unknown_status: (False, "Unable to get deployment status."),
    PagesDeploymentStatus.not_found: (False, "Deployment not found."),
    PagesDeploymentStatus.deployment_attempt_error: (
        False,
        "Deployment temporarily failed, a retry will be automatically scheduled...",
    ),
    PagesDeploymentStatus.deployment_failed: (True, "Deployment failed, try again later."),
    PagesDeploymentStatus.deployment_content_failed: (
        True,
        "Artifact could not be deployed. Please ensure the content does not contain any "
        "hard links, symlinks and total size is less than 10GB.",
    ),
    PagesDeploymentStatus.deployment_cancelled: (True, "Deployment cancelled."),
    PagesDeploymentStatus.deployment_lost: (True, "Deployment failed to report final status."),
}


def check_status(status: str, success_status: str) -> bool:
    """Classify a reported status.

    Returns True for the success token and False for known in-progress values.
    Raises RemoteFatalStatus for terminal failures and RemoteTransientStatus
    for non-fatal problems, including values this client does not recognise.
    """
    if status == success_status:
        return True
    try:
        known = PagesDeploymentStatus(status)
    except ValueError as exc:
        raise RemoteTransientStatus(status, f"Unrecognized deployment status: {status}") from exc
    if known not in _STATUS_MESSAGES:
        return False
    fatal, message = _STATUS_MESSAGES[known]
    if fatal:
        raise RemoteFatalStatus(status, message)
    raise RemoteTransientStatus(status, message)


def utc_now() -> str:
    """Return current UTC timestamp for deployment events."""
    return datetime.now(tz=UTC).isoformat()
