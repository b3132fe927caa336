"""Proxy-aware HTTP transport used by token and API clients."""

from artifact_deployer.transport.executor import RequestAttempt, RequestExecutor, RetryPolicy
from artifact_deployer.transport.factory import TransportFactory
from artifact_deployer.transport.proxy import ProxyDecision, ProxyResolver

__all__ = [
    "ProxyDecision",
    "ProxyResolver",
    "RequestAttempt",
    "RequestExecutor",
    "RetryPolicy",
    "TransportFactory",
]
