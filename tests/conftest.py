"""Shared test fixtures for veracode_mcp tests."""

from __future__ import annotations

import logging

import pytest

from fakes import FakeSession
from veracode_mcp.client import VeracodeClient
from veracode_mcp.config import Credentials
from veracode_mcp.log import ROOT_LOGGER

API_ID = "a1b2c3d4e5f6a7b8c9d0e1f2a3b4c5d6"
API_KEY = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's real Veracode environment out of the tests."""
    for name in (
        "VERACODE_API_ID",
        "VERACODE_API_KEY",
        "VERACODE_API_BASE_URL",
        "VERACODE_PLATFORM_URL",
        "VERACODE_TIMEOUT_SECONDS",
        "VERACODE_COMPLIANCE_PRECEDENCE",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(api_id=API_ID, api_key=API_KEY, timeout=5.0)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(credentials: Credentials, session: FakeSession) -> VeracodeClient:
    return VeracodeClient(credentials, session=session)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging() so caplog keeps seeing package records."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_veracode_mcp", False):
            logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
