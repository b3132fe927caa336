"""Proxy selection for outbound requests.

Proxy settings follow the usual CI conventions: ``https_proxy``/``http_proxy``
name the forward proxy and ``no_proxy`` lists hosts that must be reached
directly. A broken proxy value degrades to a direct connection instead of
failing the run.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import SplitResult, unquote, urlsplit

from artifact_deployer.errors import ConfigError

_DEFAULT_PORTS = {"http": 80, "https": 443}
_LOOPBACK_HOSTS = frozenset({"LOCALHOST", "::1", "[::1]"})


@dataclass(frozen=True)
class ProxyDecision:
    """How requests to one base URL reach the network."""

    target_scheme: str
    proxy_url: str | None = None
    username: str = ""
    password: str = field(default="", repr=False)
    proxy_over_tls: bool = False
    tunnels: bool = False

    @property
    def uses_proxy(self) -> bool:
        """Return whether traffic goes through a forward proxy."""
        return self.proxy_url is not None

    @property
    def has_credentials(self) -> bool:
        """Return whether the proxy expects basic-auth credentials."""
        return bool(self.username or self.password)

    @property
    def signature(self) -> tuple[str, str | None, bool]:
        """Cache key shared by equivalent decisions."""
        return (self.target_scheme, self.proxy_url, self.has_credentials)


def parse_bypass_rules(no_proxy: str | None) -> list[str]:
    """Split a no-proxy string into trimmed, upper-cased patterns."""
    if not no_proxy:
        return []
    return [item.strip().upper() for item in no_proxy.split(",") if item.strip()]


def _is_loopback(host: str) -> bool:
    """Return whether host names the local machine."""
    return host in _LOOPBACK_HOSTS or host.startswith("127.")


def should_bypass(host: str, port: int | None, no_proxy: str | None) -> bool:
    """Return whether a request to host:port must skip the proxy."""
    upper_host = host.upper()
    if _is_loopback(upper_host):
        return True
    rules = parse_bypass_rules(no_proxy)
    if not rules:
        return False
    candidates = [upper_host]
    if port is not None:
        candidates.append(f"{upper_host}:{port}")
    for rule in rules:
        if rule == "*":
            return True
        if rule in candidates:
            return True
        suffix = rule if rule.startswith(".") else f".{rule}"
        if any(candidate.endswith(suffix) for candidate in candidates):
            return True
    return False


def _parse_proxy_url(value: str) -> SplitResult | None:
    """Parse a proxy URL, returning None when it is unusable."""
    try:
        parsed = urlsplit(value)
        _ = parsed.port
    except ValueError:
        return None
    if parsed.scheme not in _DEFAULT_PORTS or not parsed.hostname:
        return None
    return parsed


def parse_proxy_value(value: str) -> SplitResult | None:
    """Parse a proxy variable, retrying with ``http://`` when no scheme is given."""
    candidate = value.strip()
    if not candidate:
        return None
    parsed = _parse_proxy_url(candidate)
    if parsed is None and not candidate.startswith(("http://", "https://")):
        parsed = _parse_proxy_url(f"http://{candidate}")
    return parsed


def _first_env(environ: Mapping[str, str], *names: str) -> str | None:
    """Return the first non-empty environment value among names."""
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


class ProxyResolver:
    """Resolve and cache proxy decisions per base URL."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ
        self._cache: dict[tuple[str, str, int], ProxyDecision] = {}
        self._lock = threading.Lock()

    def resolve(self, target_url: str) -> ProxyDecision:
        """Return the cached decision for the URL's scheme, host, and port."""
        parts = urlsplit(target_url)
        scheme = parts.scheme.lower()
        if scheme not in _DEFAULT_PORTS or not parts.hostname:
            raise ConfigError(f"Unsupported request URL: {target_url}")
        port = parts.port or _DEFAULT_PORTS[scheme]
        key = (scheme, parts.hostname.lower(), port)
        with self._lock:
            cached = self._cache.get(key)
            if cached is None:
                cached = self._compute(scheme, parts.hostname, port)
                self._cache[key] = cached
        return cached

    def _compute(self, scheme: str, host: str, port: int) -> ProxyDecision:
        """Evaluate bypass rules and proxy variables for one base URL."""
        no_proxy = _first_env(self._environ, "no_proxy", "NO_PROXY")
        if should_bypass(host, port, no_proxy):
            return ProxyDecision(target_scheme=scheme)
        if scheme == "https":
            raw = _first_env(self._environ, "https_proxy", "HTTPS_PROXY")
        else:
            raw = _first_env(self._environ, "http_proxy", "HTTP_PROXY")
        parsed = parse_proxy_value(raw) if raw else None
        if parsed is None:
            return ProxyDecision(target_scheme=scheme)
        proxy_port = parsed.port or _DEFAULT_PORTS[parsed.scheme]
        proxy_host = f"[{parsed.hostname}]" if ":" in parsed.hostname else parsed.hostname
        return ProxyDecision(
            target_scheme=scheme,
            proxy_url=f"{parsed.scheme}://{proxy_host}:{proxy_port}",
            username=unquote(parsed.username or ""),
            password=unquote(parsed.password or ""),
            proxy_over_tls=parsed.scheme == "https",
            tunnels=scheme == "https",
        )
