"""Tests for redirect, retry, and timeout handling in the request executor."""

from __future__ import annotations

from collections.abc import Callable, Iterator

import httpx
import pytest

from artifact_deployer.cancellation import CancellationToken
from artifact_deployer.errors import (
    OperationCancelled,
    ProtocolError,
    TransportError,
    TransportErrorKind,
)
from artifact_deployer.transport.executor import RequestAttempt, RequestExecutor, RetryPolicy
from artifact_deployer.transport.factory import TransportFactory
from artifact_deployer.transport.proxy import ProxyResolver


class RecordingStream(httpx.SyncByteStream):
    """Body that records when it is consumed and closed."""

    def __init__(self, label: str, events: list[str], body: bytes = b"body") -> None:
        self.label = label
        self.events = events
        self.body = body

    def __iter__(self) -> Iterator[bytes]:
        self.events.append(f"read:{self.label}")
        yield self.body

    def close(self) -> None:
        self.events.append(f"close:{self.label}")


def _executor(
    handler: Callable[[httpx.Request], httpx.Response],
    sleeps: list[float] | None = None,
    policy: RetryPolicy | None = None,
) -> RequestExecutor:
    recorded = sleeps if sleeps is not None else []
    return RequestExecutor(
        resolver=ProxyResolver({}),
        factory=TransportFactory(transport=httpx.MockTransport(handler)),
        policy=policy,
        sleep=recorded.append,
    )


def _get(url: str) -> RequestAttempt:
    return RequestAttempt(method="GET", url=url, headers={"Authorization": "token abc"})


def test_redirect_chain_drains_each_intermediate_body() -> None:
    events: list[str] = []
    hops = {
        "/start": "/hop1",
        "/hop1": "/hop2",
        "/hop2": "https://api.test/final",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path in hops:
            return httpx.Response(
                302,
                headers={"location": hops[path]},
                stream=RecordingStream(path, events),
            )
        return httpx.Response(200, json={"path": path})

    response = _executor(handler).execute(_get("https://api.test/start"))

    assert response.status_code == 200
    assert response.json() == {"path": "/final"}
    reads = [event for event in events if event.startswith("read:")]
    assert reads == ["read:/start", "read:/hop1", "read:/hop2"]
    assert {"close:/start", "close:/hop1", "close:/hop2"} <= set(events)


def test_redirect_budget_stops_following() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(302, headers={"location": "/again"})

    executor = _executor(handler, policy=RetryPolicy(max_redirects=3))
    response = executor.execute(_get("https://api.test/loop"))

    assert response.status_code == 302
    assert len(calls) == 4


def test_https_to_http_redirect_is_refused() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(301, headers={"location": "http://api.test/plain"})

    with pytest.raises(ProtocolError, match="HTTPS to HTTP"):
        _executor(handler).execute(_get("https://api.test/secure"))


def test_redirect_to_non_http_scheme_is_refused() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(302, headers={"location": "ftp://api.test/file"})

    with pytest.raises(ProtocolError, match="unsupported protocol: ftp"):
        _executor(handler).execute(_get("http://api.test/start"))

    assert seen == ["http://api.test/start"]


def test_cross_host_redirect_is_returned_without_replaying_credentials() -> None:
    seen_hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_hosts.append(request.url.host)
        return httpx.Response(302, headers={"location": "https://other.test/x"})

    response = _executor(handler).execute(_get("https://api.test/start"))

    assert response.status_code == 302
    assert seen_hosts == ["api.test"]


def test_transient_statuses_retry_with_backoff() -> None:
    statuses = [503, 503, 200]
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(statuses.pop(0), json={"ok": True})

    response = _executor(handler, sleeps).execute(_get("https://api.test/status"))

    assert response.status_code == 200
    assert sleeps == pytest.approx([0.01, 0.02])


def test_constant_transient_status_exhausts_attempts() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(503)

    with pytest.raises(TransportError) as excinfo:
        _executor(handler, sleeps).execute(_get("https://api.test/status"))

    assert len(calls) == 10
    assert len(sleeps) == 9
    assert excinfo.value.kind is TransportErrorKind.retries_exhausted
    assert excinfo.value.status_code == 503


def test_non_retryable_error_status_is_returned() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})

    response = _executor(handler).execute(_get("https://api.test/missing"))

    assert response.status_code == 404
    assert response.json()["message"] == "Not Found"


def test_send_makes_exactly_one_attempt() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        return httpx.Response(503)

    attempt = RequestAttempt(method="POST", url="https://api.test/create", json_body={"a": 1})
    response = _executor(handler).send(attempt)

    assert response.status_code == 503
    assert calls == ["POST"]


def test_json_body_and_headers_are_sent() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers.get("authorization")
        captured["body"] = request.content
        return httpx.Response(201, json={})

    attempt = RequestAttempt(
        method="POST",
        url="https://api.test/create",
        headers={"Authorization": "token abc"},
        json_body={"artifact_id": 7},
    )
    _executor(handler).send(attempt)

    assert captured["auth"] == "token abc"
    assert b'"artifact_id"' in captured["body"]  # type: ignore[operator]


def test_timeouts_map_to_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransportError) as excinfo:
        _executor(handler).execute(_get("https://api.test/slow?token=secret"))

    assert excinfo.value.kind is TransportErrorKind.timeout
    assert "secret" not in str(excinfo.value)


def test_connection_errors_are_not_retried() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportError) as excinfo:
        _executor(handler).execute(_get("https://api.test/down"))

    assert excinfo.value.kind is TransportErrorKind.connection
    assert calls == [1]


def test_cancelled_token_interrupts_backoff() -> None:
    token = CancellationToken()
    token.cancel("SIGTERM")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502)

    with pytest.raises(OperationCancelled):
        _executor(handler).execute(_get("https://api.test/status"), cancel=token)


def test_retry_policy_backoff_is_capped() -> None:
    policy = RetryPolicy()

    assert policy.delay_for(1) == pytest.approx(0.01)
    assert policy.delay_for(10) == policy.delay_for(25)


def test_retry_policy_validates_budgets() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
