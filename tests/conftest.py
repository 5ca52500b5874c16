"""Shared fixtures and utilities for xibo-auth tests."""

import os
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from xibo_auth.auth.codec import SecretCodec
from xibo_auth.auth.store import CredentialStore

BASE_URL = "https://cms.example.com"


# ============================================================================
# Fakes
# ============================================================================


class FakeClock:
    """Settable wall clock returning aware UTC datetimes."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class Router:
    """Routes mock HTTP requests by (method, path) and records them.

    Unrouted requests get a 404.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, **kwargs: Any) -> "Router":
        """Answer ``method path`` with a fresh response built from ``kwargs``."""
        self.routes[(method, path)] = lambda request: httpx.Response(status, **kwargs)
        return self

    def add_handler(
        self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]
    ) -> "Router":
        self.routes[(method, path)] = handler
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        return handler(request)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))

    def paths(self, method: str | None = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]


def form_fields(request: httpx.Request) -> dict[str, str]:
    """Decode a form-urlencoded request body."""
    return dict(httpx.QueryParams(request.content.decode()))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def codec() -> SecretCodec:
    """A codec shared across tests (key derivation is slow)."""
    return SecretCodec("test-passphrase")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def http_client(router: Router) -> Generator[httpx.Client, None, None]:
    client = router.client()
    yield client
    client.close()


@pytest.fixture
def store(tmp_path: Path, codec: SecretCodec, clock: FakeClock) -> CredentialStore:
    """A credential store in a temporary directory."""
    return CredentialStore(codec, store_dir=tmp_path / "tokens", clock=clock)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Clear XIBO_* variables and run from an empty directory.

    Variables loaded from .env files during the test are removed afterwards.
    """
    for key in list(os.environ):
        if key.startswith("XIBO_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("xibo_auth.config.ENV_SEARCH_PATHS", [Path(".env")])
    yield
    for key in list(os.environ):
        if key.startswith("XIBO_"):
            del os.environ[key]
