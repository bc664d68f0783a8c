# tests/conftest.py
from __future__ import annotations

import os

# Settings are cached on first use; pin the environment before any app import.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ENABLE_FILE_LOGGING", "false")

from collections.abc import Callable, Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from hello_api.adapters.validation import SchemaCache  # noqa: E402
from hello_api.config.settings import Settings, ValidationSettings, get_settings  # noqa: E402
from hello_api.infrastructure.logging.logger import _REQUEST_ID_CTX  # noqa: E402
from hello_api.main import create_app  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_request_id() -> Generator[None, None, None]:
    """Start each test without a bound correlation id."""
    token = _REQUEST_ID_CTX.set(None)
    yield
    _REQUEST_ID_CTX.reset(token)


@pytest.fixture
def settings() -> Settings:
    """Process settings for the test environment."""
    return get_settings()


@pytest.fixture
def make_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Build fresh Settings from environment overrides (no dotenv files)."""

    def _make(**env: str) -> Settings:
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        return Settings(_env_file=None)  # type: ignore[call-arg]

    return _make


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Client without lifespan; unhandled exceptions become 500 responses."""
    with_client = TestClient(app, raise_server_exceptions=False)
    yield with_client
    with_client.close()


@pytest.fixture
def cache() -> SchemaCache:
    """Isolated schema cache so counters start at zero."""
    return SchemaCache()


@pytest.fixture
def validation_settings() -> ValidationSettings:
    """Lenient validation options with verbose errors on."""
    return ValidationSettings(strict=False, sanitize=True, verbose_errors=True)
