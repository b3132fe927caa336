"""Build and cache httpx clients for resolved proxy decisions."""

from __future__ import annotations

import threading

import httpx

from artifact_deployer.transport.proxy import ProxyDecision

# Connection ceiling per client.
DEFAULT_MAX_CONNECTIONS = 100


class TransportFactory:
    """Own one reusable client per distinct proxy decision.

    Clients are created on first use and are read-only afterwards, so token
    fetches and deployment polling can share them without extra locking.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 180.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize factory; a fixed transport replaces network access entirely."""
        self.timeout_seconds = timeout_seconds
        self._fixed_transport = transport
        self._clients: dict[tuple[str, str | None, bool], httpx.Client] = {}
        self._lock = threading.Lock()

    def agent_for(self, decision: ProxyDecision) -> httpx.Client:
        """Return the cached client for a decision, building it on first use."""
        key = decision.signature
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = httpx.Client(
                    transport=self._build_transport(decision),
                    follow_redirects=False,
                    trust_env=False,
                    timeout=httpx.Timeout(self.timeout_seconds),
                )
                self._clients[key] = client
        return client

    def close(self) -> None:
        """Close every cached client."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()

    def _build_transport(self, decision: ProxyDecision) -> httpx.BaseTransport:
        """Create a direct, tunneling, or forward-proxy transport."""
        if self._fixed_transport is not None:
            return self._fixed_transport
        # No idle sockets are kept.
        limits = httpx.Limits(
            max_connections=DEFAULT_MAX_CONNECTIONS,
            max_keepalive_connections=0,
        )
        if not decision.uses_proxy:
            return httpx.HTTPTransport(limits=limits, http2=False)
        return httpx.HTTPTransport(
            limits=limits,
            http2=False,
            proxy=build_proxy(decision),
        )


def build_proxy(decision: ProxyDecision) -> httpx.Proxy:
    """Describe the forward proxy, including basic-auth credentials when present.

    httpx opens a CONNECT tunnel for https destinations (``decision.tunnels``)
    and forwards plain http requests through the proxy otherwise.
    """
    if decision.proxy_url is None:
        raise ValueError("Decision does not use a proxy.")
    if decision.has_credentials:
        return httpx.Proxy(decision.proxy_url, auth=(decision.username, decision.password))
    return httpx.Proxy(decision.proxy_url)
