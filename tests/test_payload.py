"""Tests for deploy payload validation and event loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from artifact_deployer.errors import PayloadError
from artifact_deployer.payload import DeployPayload, load_event_payload, validate_payload

RAW = {
    "repo": "Octo/site",
    "type": "github-pages",
    "tarballName": "pages.tgz",
    "artifactId": 77,
    "workflowRunId": 1234,
    "buildVersion": "abc123",
}


def _event_file(tmp_path: Path, event: object) -> Path:
    path = tmp_path / "event.json"
    path.write_text(json.dumps(event), encoding="utf-8")
    return path


def test_valid_payload_uses_wire_names() -> None:
    payload = validate_payload(RAW)

    assert isinstance(payload, DeployPayload)
    assert payload.artifact_id == 77
    assert payload.tarball_name == "pages.tgz"
    assert payload.owner == "Octo"
    assert payload.name == "site"


def test_default_pages_target_derives_from_repo() -> None:
    assert validate_payload(RAW).pages_target() == "octo.github.io/site"
    explicit = validate_payload({**RAW, "target": " Docs.Example.COM "})
    assert explicit.pages_target() == "docs.example.com"


def test_types_are_strict() -> None:
    with pytest.raises(PayloadError, match="artifactId"):
        validate_payload({**RAW, "artifactId": "77"})


def test_unknown_deploy_type_is_rejected() -> None:
    with pytest.raises(PayloadError, match="type"):
        validate_payload({**RAW, "type": "pypi"})


def test_repo_must_be_owner_and_name() -> None:
    with pytest.raises(PayloadError, match="repo"):
        validate_payload({**RAW, "repo": "no-slash"})


def test_credential_like_values_are_rejected() -> None:
    leaked = "ghp_" + "A1b2C3d4" * 4

    with pytest.raises(PayloadError, match="tarballName` looks like a credential") as excinfo:
        validate_payload({**RAW, "tarballName": leaked})

    assert "github_token" in str(excinfo.value)
    assert leaked not in str(excinfo.value)


def test_non_object_payload_is_rejected() -> None:
    with pytest.raises(PayloadError, match="not an object"):
        validate_payload(["repo"])


def test_workflow_dispatch_reads_inputs(tmp_path: Path) -> None:
    path = _event_file(tmp_path, {"inputs": RAW})

    payload = load_event_payload("workflow_dispatch", path)

    assert payload.repo == "Octo/site"


def test_repository_dispatch_reads_client_payload(tmp_path: Path) -> None:
    path = _event_file(tmp_path, {"client_payload": {**RAW, "type": "npm"}})

    payload = load_event_payload("repository_dispatch", path)

    assert payload.type == "npm"


def test_missing_event_path_is_rejected() -> None:
    with pytest.raises(PayloadError, match="GITHUB_EVENT_PATH"):
        load_event_payload("workflow_dispatch", None)


def test_unknown_event_name_is_rejected(tmp_path: Path) -> None:
    path = _event_file(tmp_path, {"inputs": RAW})

    with pytest.raises(PayloadError, match="GITHUB_EVENT_NAME"):
        load_event_payload("push", path)


def test_missing_payload_section_is_rejected(tmp_path: Path) -> None:
    path = _event_file(tmp_path, {"inputs": "nope"})

    with pytest.raises(PayloadError, match="event.inputs"):
        load_event_payload("workflow_dispatch", path)


def test_unreadable_event_file_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "event.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PayloadError, match="Unable to read event file"):
        load_event_payload("workflow_dispatch", path)
