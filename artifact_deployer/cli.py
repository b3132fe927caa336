"""Command-line interface for deploying CI artifacts."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from artifact_deployer import __version__
from artifact_deployer.cancellation import CancellationToken
from artifact_deployer.config import DeployerSettings
from artifact_deployer.deploy.api_client import PagesApiClient
from artifact_deployer.deploy.base import DeploymentOutcome
from artifact_deployer.deploy.github_pages import ArtifactRef, DeploymentOrchestrator
from artifact_deployer.errors import ConfigError, DeployerError, PayloadError
from artifact_deployer.logging_utils import configure_logging, get_logger
from artifact_deployer.oidc import IdentityTokenClient
from artifact_deployer.payload import load_event_payload
from artifact_deployer.projects import (
    check_secret_expiration,
    load_project_table,
    render_reminder_body,
    resolve_deploy_token,
    rotation_reminders,
)
from artifact_deployer.transport.executor import RequestExecutor
from artifact_deployer.transport.factory import TransportFactory
from artifact_deployer.transport.proxy import ProxyResolver

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()
LOGGER = get_logger()


def _version_callback(value: bool) -> None:
    """Print package version and exit when requested."""
    if value:
        console.print(__version__)
        raise typer.Exit()


def _fail(exc: DeployerError) -> typer.Exit:
    """Report a deployer error and return the exit to raise."""
    LOGGER.debug("Command failed", exc_info=exc)
    console.print(f"Error: {exc}", style="red", markup=False)
    return typer.Exit(code=1)


def _build_executor(settings: DeployerSettings) -> RequestExecutor:
    """Create the shared executor for one command run."""
    return RequestExecutor(
        resolver=ProxyResolver(),
        factory=TransportFactory(timeout_seconds=settings.request_timeout),
    )


def _outcome_table(outcome: DeploymentOutcome) -> Table:
    """Render a deployment outcome."""
    table = Table(title="Deployment Result")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row(
        "Outcome",
        f"[green]{outcome.kind.value}[/green]"
        if outcome.success
        else f"[red]{outcome.kind.value}[/red]",
    )
    table.add_row("Deployment ID", str(outcome.deployment_id or "-"))
    table.add_row("Reason", outcome.reason)
    return table


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show artifact-deployer version and exit.",
            is_eager=True,
            callback=_version_callback,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug logging."),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Also write logs to this file (truncated per run)."),
    ] = None,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs/--text-logs", help="Emit log records as JSON lines."),
    ] = False,
) -> None:
    """Deploy CI build artifacts and manage deploy-token hygiene."""
    configure_logging(log_file=log_file, verbose=verbose, json_format=json_logs)


@app.command()
def deploy(
    artifact_id: Annotated[
        int | None,
        typer.Option(help="Uploaded artifact ID; omit to read the dispatch event payload."),
    ] = None,
    build_version: Annotated[
        str | None,
        typer.Option(envvar="GITHUB_SHA", help="Build version recorded with the deployment."),
    ] = None,
    repo: Annotated[
        str | None,
        typer.Option(envvar="GITHUB_REPOSITORY", help="Repository in owner/name form."),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option(
            envvar="GITHUB_TOKEN",
            show_envvar=False,
            help="API token used when deploying an explicit artifact ID.",
        ),
    ] = None,
    event_file: Annotated[
        Path | None,
        typer.Option(envvar="GITHUB_EVENT_PATH", help="Dispatch event JSON file."),
    ] = None,
    event_name: Annotated[
        str | None,
        typer.Option(envvar="GITHUB_EVENT_NAME", help="Dispatch event name."),
    ] = None,
    projects_file: Annotated[
        Path | None,
        typer.Option(envvar="DEPLOYER_PROJECTS_FILE", help="YAML project allowlist override."),
    ] = None,
    audience: Annotated[
        str | None,
        typer.Option(help="Audience requested for the identity token."),
    ] = None,
) -> None:
    """Create a pages deployment and poll it to a terminal outcome."""
    try:
        settings = DeployerSettings.from_env()
        if artifact_id is None:
            payload = load_event_payload(event_name, event_file)
            if payload.type != "github-pages":
                raise PayloadError(f"Deploy type {payload.type} is not handled by this command.")
            table = load_project_table(projects_file)
            deploy_token = resolve_deploy_token(table, payload)
            artifact = ArtifactRef(
                artifact_id=payload.artifact_id,
                build_version=str(payload.build_version),
                repo=payload.repo,
            )
        else:
            if not repo or not build_version or not token:
                raise ConfigError(
                    "--repo, --build-version and --token are required with --artifact-id."
                )
            deploy_token = token
            artifact = ArtifactRef(artifact_id=artifact_id, build_version=build_version, repo=repo)

        executor = _build_executor(settings)
        cancel_token = CancellationToken()
        try:
            orchestrator = DeploymentOrchestrator(
                api=PagesApiClient(
                    executor,
                    token=deploy_token,
                    repo=artifact.repo,
                    api_url=settings.api_url,
                    timeout_seconds=settings.request_timeout,
                    cancel_token=cancel_token,
                ),
                token_source=IdentityTokenClient(
                    executor,
                    request_url=settings.id_token_request_url,
                    request_token=settings.id_token_request_token,
                    timeout_seconds=settings.request_timeout,
                ),
                settings=settings,
                cancel_token=cancel_token,
                audience=audience,
            )
            outcome = orchestrator.deploy(artifact)
        finally:
            executor.close()
    except DeployerError as exc:
        raise _fail(exc) from exc

    console.print(_outcome_table(outcome))
    if outcome.exit_code:
        raise typer.Exit(code=outcome.exit_code)


@app.command()
def token(
    audience: Annotated[
        str | None,
        typer.Option(help="Audience requested for the identity token."),
    ] = None,
) -> None:
    """Fetch an identity token and report whether one is available."""
    try:
        settings = DeployerSettings.from_env()
        executor = _build_executor(settings)
        try:
            identity = IdentityTokenClient(
                executor,
                request_url=settings.id_token_request_url,
                request_token=settings.id_token_request_token,
                timeout_seconds=settings.request_timeout,
            ).fetch_token(audience)
        finally:
            executor.close()
    except DeployerError as exc:
        raise _fail(exc) from exc

    if identity is None:
        console.print("No identity token available.", style="yellow")
        raise typer.Exit(code=1)
    console.print(f"Identity token acquired ({len(identity.value)} characters).")


@app.command()
def proxy(
    url: Annotated[str, typer.Argument(help="Request URL to resolve.")],
) -> None:
    """Show how requests to a URL reach the network."""
    try:
        decision = ProxyResolver().resolve(url)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc

    table = Table(title="Proxy Decision")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Target Scheme", decision.target_scheme)
    table.add_row("Proxy", decision.proxy_url or "direct")
    table.add_row("Credentials", "yes" if decision.has_credentials else "no")
    table.add_row("Proxy Over TLS", str(decision.proxy_over_tls).lower())
    table.add_row("Tunnels", str(decision.tunnels).lower())
    console.print(table)


@app.command()
def remind(
    projects_file: Annotated[
        Path | None,
        typer.Option(envvar="DEPLOYER_PROJECTS_FILE", help="YAML project allowlist override."),
    ] = None,
    check: Annotated[
        list[str] | None,
        typer.Option(help="Fail when this local secret has expired (repeatable)."),
    ] = None,
    open_issue: Annotated[
        bool,
        typer.Option("--open-issue/--no-open-issue", help="Open an issue listing the secrets."),
    ] = False,
    mention: Annotated[
        str,
        typer.Option(help="Handle or team mentioned at the top of the issue."),
    ] = "",
    repo: Annotated[
        str | None,
        typer.Option(envvar="GITHUB_REPOSITORY", help="Repository that receives the issue."),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option(envvar="GITHUB_TOKEN", show_envvar=False, help="Token for opening issues."),
    ] = None,
) -> None:
    """List deploy secrets that expire within the rotation window."""
    now = datetime.now(tz=UTC)
    try:
        table = load_project_table(projects_file)
        for name in check or []:
            check_secret_expiration(table, name, now=now)
        reminders = rotation_reminders(table, now=now)
        if not reminders:
            console.print("No secrets need rotation.")
            return

        listing = Table(title="Secrets Due For Rotation")
        listing.add_column("Secret", style="cyan")
        listing.add_column("Kind")
        listing.add_column("Location")
        listing.add_column("Expires")
        for item in reminders:
            listing.add_row(
                item.name,
                item.subcomponent or "local",
                item.location or "-",
                item.expires_at.date().isoformat(),
            )
        console.print(listing)

        if open_issue:
            if not repo or not token:
                raise ConfigError("--repo and --token are required with --open-issue.")
            settings = DeployerSettings.from_env()
            executor = _build_executor(settings)
            try:
                number = PagesApiClient(
                    executor,
                    token=token,
                    repo=repo,
                    api_url=settings.api_url,
                    timeout_seconds=settings.request_timeout,
                ).create_issue(
                    title="Deploy secrets need rotated",
                    body=render_reminder_body(
                        reminders,
                        now=now,
                        mention=mention,
                        server_url=settings.server_url,
                    ),
                )
            finally:
                executor.close()
            console.print(f"Opened issue #{number if number is not None else '?'}")
    except DeployerError as exc:
        raise _fail(exc) from exc


if __name__ == "__main__":
    app()
