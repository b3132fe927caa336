"""Deployment allowlist, deploy-token resolution, and rotation reminders."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

import yaml

from artifact_deployer.errors import ConfigError
from artifact_deployer.payload import DeployPayload
from artifact_deployer.security import register_secret

ROTATION_THRESHOLD_DAYS = 30


def _utc_date(year: int, month: int, day: int) -> datetime:
    """Return midnight UTC of a calendar day."""
    return datetime(year, month, day, tzinfo=UTC)


@dataclass(frozen=True)
class Project:
    """One allowlisted deployment target."""

    location: str
    token_expiry: datetime
    token_name: str


@dataclass(frozen=True)
class ProjectTable:
    """Allowlist per deploy type plus expiry dates of this repo's own secrets."""

    projects: dict[str, dict[str, Project]] = field(default_factory=dict)
    local_token_expiry: dict[str, datetime] = field(default_factory=dict)

    def allowed_targets(self, deploy_type: str, repository: str) -> set[str]:
        """Return the targets the repository may publish for a deploy type."""
        return {
            name
            for name, project in self.projects.get(deploy_type, {}).items()
            if project.location == repository
        }


DEFAULT_PROJECTS = ProjectTable(
    projects={
        "npm": {
            "test-package": Project(
                location="MithrilJS/infra",
                token_expiry=_utc_date(9999, 12, 31),
                token_name="INFRA_TEST_TOKEN",
            ),
        },
        "github-pages": {},
    },
    local_token_expiry={
        "INFRA_TEST_TOKEN": _utc_date(9999, 12, 31),
        "NPM_TOKEN": _utc_date(2027, 9, 13),
        "GH_PAGES_TOKEN": _utc_date(2027, 9, 13),
    },
)


def _parse_date(value: object, field_name: str) -> datetime:
    """Accept YAML dates or ISO ``YYYY-MM-DD`` strings."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return _utc_date(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            parsed = date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ConfigError(f"{field_name} must be a YYYY-MM-DD date.") from exc
        return _utc_date(parsed.year, parsed.month, parsed.day)
    raise ConfigError(f"{field_name} must be a date.")


def parse_project_table(raw: Any) -> ProjectTable:
    """Validate a raw allowlist mapping."""
    if not isinstance(raw, dict):
        raise ConfigError("Project table must be a mapping.")
    raw_tokens = raw.get("local_tokens", {})
    if not isinstance(raw_tokens, dict):
        raise ConfigError("`local_tokens` must be a mapping of token name to expiry date.")
    local_tokens = {
        str(name): _parse_date(value, f"local_tokens.{name}")
        for name, value in raw_tokens.items()
    }

    raw_projects = raw.get("projects", {})
    if not isinstance(raw_projects, dict):
        raise ConfigError("`projects` must be a mapping of deploy type to targets.")
    projects: dict[str, dict[str, Project]] = {}
    for deploy_type, targets in raw_projects.items():
        if not isinstance(targets, dict):
            raise ConfigError(f"projects.{deploy_type} must be a mapping.")
        parsed: dict[str, Project] = {}
        for name, entry in targets.items():
            label = f"{deploy_type} project {name}"
            if not isinstance(entry, dict):
                raise ConfigError(f"{label} must be an object.")
            location = entry.get("location")
            if not isinstance(location, str) or not location:
                raise ConfigError(f"{label}'s location must be a string.")
            if "token_expiry" not in entry:
                raise ConfigError(f"{label} is missing a token expiry date.")
            token_name = entry.get("token_name")
            if not isinstance(token_name, str):
                raise ConfigError(f"{label}'s token name must be a string.")
            if token_name not in local_tokens:
                allowed = ", ".join(sorted(local_tokens))
                raise ConfigError(
                    f"{label}'s token name must be one of the following: {allowed}"
                )
            parsed[str(name)] = Project(
                location=location,
                token_expiry=_parse_date(entry["token_expiry"], f"{label} token_expiry"),
                token_name=token_name,
            )
        projects[str(deploy_type)] = parsed
    return ProjectTable(projects=projects, local_token_expiry=local_tokens)


def load_project_table(path: Path | None) -> ProjectTable:
    """Load the allowlist from YAML, or return the built-in table."""
    if path is None:
        return DEFAULT_PROJECTS
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Unable to read project table {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Project table {path} is not valid YAML: {exc}") from exc
    return parse_project_table(raw)


def check_secret_expiration(
    table: ProjectTable,
    name: str,
    *,
    now: datetime | None = None,
) -> None:
    """Fail when one of this repo's own secrets is past its expiry date."""
    expiry = table.local_token_expiry.get(name)
    if expiry is None:
        raise ConfigError(f"Secret `{name}` has no recorded expiry date.")
    if (now or datetime.now(tz=UTC)) >= expiry:
        raise ConfigError(
            f"Secret `{name}` has expired. This secret must be replaced as soon as possible."
        )


def resolve_deploy_token(
    table: ProjectTable,
    payload: DeployPayload,
    *,
    environ: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> str:
    """Return the deploy token for a payload after every allowlist check passes."""
    env = os.environ if environ is None else environ
    current = now or datetime.now(tz=UTC)
    target = payload.pages_target() if payload.type == "github-pages" else payload.target
    if not target:
        raise ConfigError("Payload does not name a deployment target.")
    targets = table.projects.get(payload.type)
    if targets is None:
        raise ConfigError(f"Unrecognized project type: {payload.type}")
    project = targets.get(target)
    if project is None:
        allowed = ", ".join(sorted(table.allowed_targets(payload.type, payload.repo)))
        raise ConfigError(
            f"Refusing to publish {target} as it is not allowlisted "
            f"(allowlisted for {payload.repo}: {allowed or 'none'})"
        )
    if project.location != payload.repo:
        raise ConfigError(f"Refusing to publish {target} as its repo is not allowlisted")
    if project.token_expiry <= current:
        raise ConfigError(
            f"Refusing to publish {target} as its public token appears to have expired"
        )
    local_expiry = table.local_token_expiry.get(project.token_name)
    if local_expiry is None or local_expiry <= current:
        raise ConfigError(
            f"Refusing to publish {target} as the local deploy token for it "
            f"({project.token_name}) appears to have expired"
        )
    token = env.get(f"INPUT_{project.token_name}", "").strip()
    if not token:
        raise ConfigError(
            f"Refusing to publish {target} as the local deploy token "
            f"({project.token_name}) is empty or missing"
        )
    register_secret(token)
    return token


@dataclass(frozen=True)
class RotationReminder:
    """A secret due for rotation."""

    name: str
    expires_at: datetime
    subcomponent: str | None = None
    location: str | None = None


def rotation_reminders(
    table: ProjectTable,
    *,
    now: datetime | None = None,
    threshold_days: int = ROTATION_THRESHOLD_DAYS,
) -> list[RotationReminder]:
    """List local secrets and project tokens expiring within the threshold."""
    current = now or datetime.now(tz=UTC)
    horizon = current + timedelta(days=threshold_days)
    reminders = [
        RotationReminder(name=name, expires_at=expiry)
        for name, expiry in table.local_token_expiry.items()
        if horizon >= expiry
    ]
    for subcomponent, targets in table.projects.items():
        for name, project in targets.items():
            if horizon >= project.token_expiry:
                reminders.append(
                    RotationReminder(
                        name=name,
                        expires_at=project.token_expiry,
                        subcomponent=subcomponent,
                        location=project.location,
                    )
                )
    return reminders


def expire_duration(expires_at: datetime, *, now: datetime) -> str:
    """Describe how far an expiry date is from now, to the minute."""
    delta_minutes = int((expires_at - now).total_seconds() / 60)
    if delta_minutes == 0:
        return "expired just now"
    magnitude = abs(delta_minutes)
    days, remainder = divmod(magnitude, 60 * 24)
    hours, minutes = divmod(remainder, 60)
    duration = ""
    if days:
        duration += f"{days}d"
    if hours:
        duration += f"{hours}h"
    if minutes:
        duration += f"{minutes}m"
    return f"expires {duration} from now" if delta_minutes > 0 else f"expired {duration} ago"


def render_reminder_body(
    reminders: list[RotationReminder],
    *,
    now: datetime,
    mention: str = "",
    server_url: str = "https://github.com",
) -> str:
    """Render the issue body listing secrets that need rotation."""
    local = [item for item in reminders if item.subcomponent is None]
    remote = [item for item in reminders if item.subcomponent is not None]
    lines: list[str] = []
    if mention:
        lines.extend([mention, ""])
    if local:
        lines.append("The following secrets need rotated in this repo:")
        lines.extend(
            f"- `{item.name}`: {expire_duration(item.expires_at, now=now)}" for item in local
        )
    if remote:
        if local:
            lines.append("")
        lines.append("The following deploy secrets need rotated:")
        lines.extend(
            f"- `{item.name}` ({item.subcomponent}) in "
            f"[{item.location}]({server_url.rstrip('/')}/{item.location}): "
            f"{expire_duration(item.expires_at, now=now)}"
            for item in remote
        )
    return "\n".join(lines) + "\n"
