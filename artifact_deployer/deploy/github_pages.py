"""Pages deployment lifecycle: create, poll to completion, always clean up."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from typing import Protocol

from artifact_deployer.cancellation import CancellationToken, armed_signals
from artifact_deployer.config import DeployerSettings
from artifact_deployer.deploy.base import (
    ArtifactMetadata,
    DeploymentOutcome,
    DeploymentRecord,
    DeploymentState,
    OutcomeKind,
    check_status,
)
from artifact_deployer.errors import (
    ApiStatusError,
    BudgetExceeded,
    DeployerError,
    OperationCancelled,
    ProtocolError,
    RemoteFatalStatus,
    RemoteTransientStatus,
    TransportError,
)
from artifact_deployer.logging_utils import get_logger
from artifact_deployer.oidc import IdentityToken

LOGGER = get_logger()

ERROR_BUDGET = "errors"
TIMEOUT_BUDGET = "timeout"
_BUDGET_OUTCOMES = {
    ERROR_BUDGET: OutcomeKind.cancelled_by_error_budget,
    TIMEOUT_BUDGET: OutcomeKind.cancelled_by_timeout,
}


class DeploymentApi(Protocol):
    """Remote operations the orchestrator drives."""

    def get_artifact_metadata(self, artifact_id: int) -> ArtifactMetadata:
        """Return metadata of an uploaded artifact."""
        ...

    def create_deployment(
        self,
        *,
        artifact_id: int,
        oidc_token: str,
        build_version: str,
        size_bytes: int = 0,
    ) -> DeploymentRecord:
        """Create a remote deployment."""
        ...

    def get_deployment_status(self, deployment_id: str | int) -> str:
        """Return the remote status string."""
        ...

    def cancel_deployment(self, deployment_id: str | int) -> None:
        """Cancel a pending remote deployment."""
        ...


class TokenSource(Protocol):
    """Anything that can mint an identity token."""

    def fetch_token(self, audience: str | None = None) -> IdentityToken | None:
        """Return a token or None when none is available."""
        ...


@dataclass(frozen=True)
class ArtifactRef:
    """Uploaded artifact to deploy."""

    artifact_id: int
    build_version: str
    repo: str = ""


class DeploymentOrchestrator:
    """Drive one remote deployment from creation to a terminal outcome.

    After the remote deployment exists, every exit path (success, fatal
    status, error budget, timeout, interrupt, unexpected exception) leaves it
    either finished or explicitly cancelled.
    """

    def __init__(
        self,
        *,
        api: DeploymentApi,
        token_source: TokenSource,
        settings: DeployerSettings | None = None,
        cancel_token: CancellationToken | None = None,
        clock: Callable[[], float] = time.monotonic,
        arm_signals: bool = True,
        audience: str | None = None,
    ) -> None:
        self.api = api
        self.token_source = token_source
        self.settings = settings or DeployerSettings()
        self.cancel_token = cancel_token or CancellationToken()
        self.clock = clock
        self.arm_signals = arm_signals
        self.audience = audience
        self.state = DeploymentState.idle
        self.record: DeploymentRecord | None = None

    def deploy(self, artifact: ArtifactRef) -> DeploymentOutcome:
        """Deploy an uploaded artifact and return its terminal outcome."""
        if self.record is not None:
            raise RuntimeError(f"Deployment {self.record.id} is still pending.")
        self.state = DeploymentState.idle
        LOGGER.info(
            "Deploy requested for artifact %s (build %s)",
            artifact.artifact_id,
            artifact.build_version,
        )

        metadata = self.api.get_artifact_metadata(artifact.artifact_id)
        limit = self.settings.size_limit_bytes
        if metadata.size_bytes > limit:
            return self._finish(
                OutcomeKind.fatal_failure,
                f"Uploaded artifact size of {metadata.size_bytes} bytes exceeds the allowed "
                f"size of {describe_size(limit)}.",
            )

        token = self.token_source.fetch_token(self.audience)
        if token is None:
            return self._finish(
                OutcomeKind.fatal_failure,
                'No identity token available. Ensure GITHUB_TOKEN has permission "id-token: write".',
            )

        try:
            record = self.api.create_deployment(
                artifact_id=artifact.artifact_id,
                oidc_token=token.value,
                build_version=artifact.build_version,
                size_bytes=metadata.size_bytes,
            )
        except ApiStatusError as exc:
            return self._finish(
                OutcomeKind.fatal_failure,
                describe_create_failure(
                    exc,
                    build_version=artifact.build_version,
                    repo=artifact.repo,
                    server_url=self.settings.server_url,
                ),
            )
        except (TransportError, ProtocolError) as exc:
            return self._finish(
                OutcomeKind.fatal_failure,
                f"Failed to create deployment with build version {artifact.build_version}: {exc}",
            )

        self.record = record
        self.state = DeploymentState.created
        started = self.clock()
        LOGGER.info("Created deployment for %s, ID: %s", artifact.build_version, record.id)

        try:
            with self._interrupts():
                try:
                    return self._poll(record, started)
                except BudgetExceeded as exc:
                    return self._cancel_and_finish(_BUDGET_OUTCOMES[exc.budget], str(exc))
        except BaseException:
            self.cancel()
            raise

    def cancel(self) -> bool:
        """Cancel the pending deployment, if any; never raises for remote failures."""
        record = self.record
        if record is None:
            LOGGER.debug("No deployment to cancel")
            return False
        # Retire first so concurrent exit paths issue at most one cancel call.
        self.record = None
        self.state = DeploymentState.cancelled
        LOGGER.info("Canceling Pages deployment...")
        try:
            self.api.cancel_deployment(record.id)
        except DeployerError as exc:
            LOGGER.error("Canceling Pages deployment failed: %s", exc)
            request_id = getattr(exc, "request_id", None)
            if request_id:
                LOGGER.error("Request ID: %s", request_id)
            return False
        LOGGER.info("Canceled deployment with ID %s", record.id)
        return True

    def poll_interval(self, error_burst: int) -> float:
        """Seconds to wait before the next status read."""
        settings = self.settings
        # Backoff term is 2**burst milliseconds on top of the base interval.
        return min(settings.max_poll_interval, settings.min_poll_interval + 2**error_burst / 1000)

    def _poll(self, record: DeploymentRecord, started: float) -> DeploymentOutcome:
        """Read status until success, fatal status, interrupt, or a budget runs out."""
        self.state = DeploymentState.polling
        error_count = 0
        error_burst = 0
        last_error_status: int | None = None

        while True:
            if self.cancel_token.wait(self.poll_interval(error_burst)):
                return self._interrupted()

            try:
                LOGGER.info("Getting Pages deployment status...")
                status = self.api.get_deployment_status(record.id)
            except OperationCancelled:
                return self._interrupted()
            except (ApiStatusError, TransportError, ProtocolError) as exc:
                LOGGER.error("Getting Pages deployment status failed: %s", exc)
                error_count += 1
                error_burst += 1
                last_error_status = getattr(exc, "status_code", None)
            else:
                # A read that lands after an interrupt does not undo it.
                if self.cancel_token.is_cancelled:
                    return self._interrupted()
                error_burst = 0
                record.status = status
                try:
                    if check_status(status, self.settings.success_status):
                        return self._finish(OutcomeKind.succeeded, "Deployment successful!")
                    LOGGER.info("Current status: %s", status)
                except RemoteFatalStatus as exc:
                    return self._finish(OutcomeKind.fatal_failure, str(exc))
                except RemoteTransientStatus as exc:
                    LOGGER.warning("%s", exc)

            if error_count >= self.settings.max_error_count:
                raise BudgetExceeded(
                    f"Too many errors, aborting! Failed with status code: {last_error_status}",
                    budget=ERROR_BUDGET,
                )
            if self.clock() - started >= self.settings.deployment_timeout:
                raise BudgetExceeded("Timeout reached, aborting!", budget=TIMEOUT_BUDGET)

    def _interrupted(self) -> DeploymentOutcome:
        """Handle an external interrupt observed by the loop."""
        reason = self.cancel_token.reason or "interrupt"
        return self._cancel_and_finish(
            OutcomeKind.cancelled_by_user,
            f"Deployment interrupted ({reason}).",
        )

    def _cancel_and_finish(self, kind: OutcomeKind, reason: str) -> DeploymentOutcome:
        """Cancel the remote deployment, then report a cancelled outcome."""
        deployment_id = self.record.id if self.record is not None else None
        LOGGER.error("%s", reason)
        self.cancel()
        return self._finish(kind, reason, deployment_id=deployment_id)

    def _finish(
        self,
        kind: OutcomeKind,
        reason: str,
        *,
        deployment_id: str | int | None = None,
    ) -> DeploymentOutcome:
        """Retire the record and build the terminal outcome."""
        if deployment_id is None and self.record is not None:
            deployment_id = self.record.id
        self.record = None
        if kind is OutcomeKind.succeeded:
            self.state = DeploymentState.succeeded
            LOGGER.info("%s", reason)
        elif kind is OutcomeKind.fatal_failure:
            self.state = DeploymentState.fatally_failed
            LOGGER.error("%s", reason)
        else:
            self.state = DeploymentState.cancelled
        return DeploymentOutcome(kind=kind, reason=reason, deployment_id=deployment_id)

    @contextmanager
    def _interrupts(self) -> Iterator[None]:
        """Arm interrupt handlers for the lifetime of the pending deployment."""
        guard = armed_signals(self.cancel_token) if self.arm_signals else nullcontext()
        with guard:
            yield


def describe_size(size_bytes: int) -> str:
    """Render a byte ceiling the way error messages quote it."""
    if size_bytes % 2**30 == 0:
        return f"{size_bytes // 2**30} GB"
    if size_bytes % 2**20 == 0:
        return f"{size_bytes // 2**20} MB"
    return f"{size_bytes} bytes"


def describe_create_failure(
    exc: ApiStatusError,
    *,
    build_version: str,
    repo: str,
    server_url: str,
) -> str:
    """Explain a failed create call with a status-specific hint."""
    lines = [
        f"Failed to create deployment (status: {exc.status_code}) "
        f"with build version {build_version}."
    ]
    if exc.request_id:
        lines.append(f"Request ID: {exc.request_id}")
    if exc.status_code >= 500:
        lines.append(
            "Check https://githubstatus.com for a possible GitHub Pages outage and re-run "
            "the deployment at a later time."
        )
    elif exc.status_code == 400:
        lines.append(f"Response: {exc}")
    elif exc.status_code == 403:
        lines.append('Ensure GITHUB_TOKEN has permission "pages: write".')
    elif exc.status_code == 404:
        lines.append(
            f"Ensure GitHub Pages has been enabled: {server_url.rstrip('/')}/{repo}/settings/pages"
        )
    return "\n".join(lines)
