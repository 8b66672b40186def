"""
Unit test configuration.

Patches dotenv so pydantic-settings never reads the project's real .env file
during unit tests. Tests control config exclusively through monkeypatch.setenv()
or explicit constructor arguments.

Workflows are exercised against the in-memory repositories and email
provider from tests/fakes.py.
"""

from __future__ import annotations

import pytest

from config import AppSettings
from services.session_service import SessionService
from services.token_codec import TokenCodec
from tests.fakes import (
    FakeAccountRepository,
    FakeEmailProvider,
    FakePendingRegistrationRepository,
    make_settings,
)


@pytest.fixture(autouse=True)
def disable_dotenv_loading(monkeypatch):
    """Prevent pydantic-settings from loading .env files in all unit tests."""
    import pydantic_settings.sources.providers.dotenv as ps_dotenv

    monkeypatch.setattr(ps_dotenv, "dotenv_values", lambda *a, **kw: {})


@pytest.fixture
def settings() -> AppSettings:
    return make_settings()


@pytest.fixture
def codec(settings) -> TokenCodec:
    return TokenCodec(settings.jwt)


@pytest.fixture
def accounts() -> FakeAccountRepository:
    return FakeAccountRepository()


@pytest.fixture
def pending() -> FakePendingRegistrationRepository:
    return FakePendingRegistrationRepository()


@pytest.fixture
def mailer() -> FakeEmailProvider:
    return FakeEmailProvider()


@pytest.fixture
def sessions(accounts, codec, settings) -> SessionService:
    return SessionService(accounts, codec, settings)


@pytest.fixture
def settings_factory():
    """Build AppSettings with overrides, e.g. ``settings_factory(env="production")``."""
    return make_settings
