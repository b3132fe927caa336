"""Deployment lifecycle for hosted static sites."""

from artifact_deployer.deploy.api_client import PagesApiClient
from artifact_deployer.deploy.base import DeploymentOutcome, DeploymentState, OutcomeKind
from artifact_deployer.deploy.github_pages import ArtifactRef, DeploymentOrchestrator

__all__ = [
    "ArtifactRef",
    "DeploymentOrchestrator",
    "DeploymentOutcome",
    "DeploymentState",
    "OutcomeKind",
    "PagesApiClient",
]
