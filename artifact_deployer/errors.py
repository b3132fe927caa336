"""Error taxonomy shared by transport, token, and deployment layers."""

from __future__ import annotations

from enum import Enum


class DeployerError(RuntimeError):
    """Base class for every failure raised by artifact_deployer."""


class ConfigError(DeployerError):
    """Raised when a required setting is missing or invalid. Never retried."""


class PayloadError(ConfigError):
    """Raised when a deploy payload fails validation."""


class TransportErrorKind(str, Enum):
    """Failure classes surfaced by the request executor."""

    timeout = "timeout"
    connection = "connection"
    retries_exhausted = "retries_exhausted"


class TransportError(DeployerError):
    """Network-level failure surfaced after the executor's own retry policy."""

    def __init__(
        self,
        message: str,
        *,
        kind: TransportErrorKind,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class ProtocolError(DeployerError):
    """Raised for malformed or unsafe responses. Never retried."""


class IdentityTokenError(ProtocolError):
    """Raised when the token sidecar answers with a non-success status."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiStatusError(DeployerError):
    """Non-success reply from the authenticated JSON API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id


class RemoteFatalStatus(DeployerError):
    """Remote deployment reported a status that ends the deployment."""

    def __init__(self, status: str, message: str) -> None:
        super().__init__(message)
        self.status = status


class RemoteTransientStatus(DeployerError):
    """Remote deployment reported a status worth logging but not fatal."""

    def __init__(self, status: str, message: str) -> None:
        super().__init__(message)
        self.status = status


class BudgetExceeded(DeployerError):
    """Error budget or wall-clock ceiling reached while polling."""

    def __init__(self, message: str, *, budget: str) -> None:
        super().__init__(message)
        self.budget = budget


class OperationCancelled(DeployerError):
    """A cancellation token fired while an operation was waiting."""
