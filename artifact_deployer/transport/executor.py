"""Single logical HTTP call with redirect, retry, and timeout policy."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import urlsplit

import httpx

from artifact_deployer.cancellation import CancellationToken
from artifact_deployer.errors import (
    OperationCancelled,
    ProtocolError,
    TransportError,
    TransportErrorKind,
)
from artifact_deployer.transport.factory import TransportFactory
from artifact_deployer.transport.proxy import ProxyResolver

REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})
RETRY_CODES = frozenset({502, 503, 504})


@dataclass(frozen=True)
class RequestAttempt:
    """One request as issued on the wire."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float = 180.0
    json_body: Any = None

    def with_url(self, url: str) -> RequestAttempt:
        """Return a copy aimed at a new URL."""
        return replace(self, url=url)


@dataclass(frozen=True)
class RetryPolicy:
    """Budgets and backoff for one logical call."""

    max_attempts: int = 10
    max_redirects: int = 50
    backoff_base_seconds: float = 0.005
    backoff_ceiling: int = 10

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_redirects < 0:
            raise ValueError("max_redirects must be non-negative")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be non-negative")

    def delay_for(self, attempts_used: int) -> float:
        """Return the wait before the next attempt."""
        return self.backoff_base_seconds * (2 ** min(attempts_used, self.backoff_ceiling))


@dataclass
class RetryState:
    """Budget counters owned by one in-flight call."""

    attempts_used: int = 0
    redirects_remaining: int = 50


class RequestExecutor:
    """Issue GET-style reads over cached proxy-aware clients.

    ``execute`` follows same-host redirects, retries 502/503/504 with
    exponential backoff, and returns every other response with its body read.
    ``send`` performs exactly one attempt and is the only path for
    non-idempotent requests. The executor never logs; callers report.
    """

    def __init__(
        self,
        *,
        resolver: ProxyResolver | None = None,
        factory: TransportFactory | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.resolver = resolver or ProxyResolver()
        self.factory = factory or TransportFactory()
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def execute(
        self,
        attempt: RequestAttempt,
        *,
        cancel: CancellationToken | None = None,
    ) -> httpx.Response:
        """Run one logical call and return the final response."""
        state = RetryState(redirects_remaining=self.policy.max_redirects)
        current = attempt
        while True:
            response = self._open(current)
            state.attempts_used += 1
            response = self._follow_redirects(response, current, state)
            if response.status_code not in RETRY_CODES:
                _read(response, current)
                return response
            if state.attempts_used >= self.policy.max_attempts:
                _drain(response, current)
                raise TransportError(
                    f"Giving up on {_path(current.url)} after {state.attempts_used} attempts "
                    f"(last status {response.status_code})",
                    kind=TransportErrorKind.retries_exhausted,
                    status_code=response.status_code,
                )
            current = _with_request_url(current, response)
            _drain(response, current)
            self._wait(self.policy.delay_for(state.attempts_used), cancel)

    def send(self, attempt: RequestAttempt) -> httpx.Response:
        """Issue exactly one attempt and return the response with its body read."""
        response = self._open(attempt)
        _read(response, attempt)
        return response

    def close(self) -> None:
        """Release cached clients."""
        self.factory.close()

    def _open(self, attempt: RequestAttempt) -> httpx.Response:
        """Send the request and return a streaming response."""
        client = self.factory.agent_for(self.resolver.resolve(attempt.url))
        request = client.build_request(
            attempt.method,
            attempt.url,
            headers=dict(attempt.headers),
            json=attempt.json_body,
            timeout=httpx.Timeout(attempt.timeout_seconds),
        )
        try:
            return client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"Request timeout: {_path(attempt.url)}",
                kind=TransportErrorKind.timeout,
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"Request to {_path(attempt.url)} failed: {exc}",
                kind=TransportErrorKind.connection,
            ) from exc

    def _follow_redirects(
        self,
        response: httpx.Response,
        attempt: RequestAttempt,
        state: RetryState,
    ) -> httpx.Response:
        """Follow same-host redirects within the redirect budget."""
        current = attempt
        while response.status_code in REDIRECT_CODES and state.redirects_remaining > 0:
            location = response.headers.get("location")
            if not location:
                break
            source = httpx.URL(current.url)
            try:
                target = source.join(location)
            except httpx.InvalidURL as exc:
                response.close()
                raise ProtocolError(f"Invalid redirect location: {location}") from exc
            if target.scheme not in ("http", "https"):
                response.close()
                raise ProtocolError(f"Redirect to unsupported protocol: {target.scheme}")
            if source.scheme == "https" and target.scheme != "https":
                response.close()
                raise ProtocolError(
                    "Redirect from HTTPS to HTTP protocol. This downgrade is not allowed "
                    "for security reasons."
                )
            if target.host != source.host:
                # Credentials are never replayed to a new authority.
                break
            _drain(response, current)
            state.redirects_remaining -= 1
            current = current.with_url(str(target))
            response = self._open(current)
        return response

    def _wait(self, seconds: float, cancel: CancellationToken | None) -> None:
        """Back off before the next attempt, waking early on cancellation."""
        if cancel is None:
            self._sleep(seconds)
            return
        if cancel.wait(seconds):
            raise OperationCancelled("Request cancelled during retry backoff.")


def _with_request_url(attempt: RequestAttempt, response: httpx.Response) -> RequestAttempt:
    """Retry against the URL that actually produced the response."""
    url = str(response.request.url)
    return attempt if url == attempt.url else attempt.with_url(url)


def _read(response: httpx.Response, attempt: RequestAttempt) -> None:
    """Load the body into memory and release the connection."""
    try:
        response.read()
    except httpx.TimeoutException as exc:
        raise TransportError(
            f"Request timeout: {_path(attempt.url)}",
            kind=TransportErrorKind.timeout,
        ) from exc
    except httpx.TransportError as exc:
        raise TransportError(
            f"Reading response from {_path(attempt.url)} failed: {exc}",
            kind=TransportErrorKind.connection,
        ) from exc
    finally:
        response.close()


def _drain(response: httpx.Response, attempt: RequestAttempt) -> None:
    """Consume and discard a body that will not be returned."""
    _read(response, attempt)


def _path(url: str) -> str:
    """Return the URL path for messages; query strings may carry secrets."""
    return urlsplit(url).path or "/"
