"""Shared fixtures for artifact_deployer tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from artifact_deployer.security import SECRETS


def _reset_package_logger() -> None:
    logger = logging.getLogger("artifact_deployer")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture(autouse=True)
def isolated_logging() -> Iterator[None]:
    """Give every test an unconfigured package logger and an empty secret mask."""
    _reset_package_logger()
    SECRETS.clear()
    yield
    _reset_package_logger()
    SECRETS.clear()
