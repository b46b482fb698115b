# tests/conftest.py
from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from unilogin_backend.app.auth.orchestrator import CallbackOrchestrator
from unilogin_backend.app.auth.registry import build_registry
from unilogin_backend.app.auth.session import SessionIssuer
from unilogin_backend.app.auth.state_store import InMemoryStateStore
from unilogin_backend.app.core.config import Settings, load_settings
from unilogin_backend.app.db.init_db import init_models
from unilogin_backend.app.db.session import create_engine_and_sessions
from unilogin_backend.app.main import create_app
from unilogin_backend.app.services.identity import IdentityResolver

# ---------- Shared constants ----------
JWT_SECRET = "unit-test-secret-0123456789abcdef0123456789abcdef0123456789abcdef"
SUCCESS_URL = "http://localhost:3000/oauth2/success"
LOGIN_URL = "http://localhost:3000/login"

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


# ---------- Env ----------
@pytest.fixture(autouse=True)
def _env_setup(monkeypatch, tmp_path):
    """Deterministic config: every provider configured, database on a temp sqlite file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'unilogin-test.db'}")
    monkeypatch.setenv("STATE_STORE_URL", "memory://")
    monkeypatch.setenv("JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("FRONTEND_SUCCESS_URL", SUCCESS_URL)
    monkeypatch.setenv("FRONTEND_LOGIN_URL", LOGIN_URL)
    monkeypatch.setenv("LINK_ACCOUNTS_BY_EMAIL", "true")
    monkeypatch.setenv("AUTH_TRACE", "true")

    monkeypatch.setenv("GOOGLE_CLIENT_ID", "google-client.apps.googleusercontent.com")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "google-secret")
    monkeypatch.setenv("FACEBOOK_CLIENT_ID", "fb-app-id")
    monkeypatch.setenv("FACEBOOK_CLIENT_SECRET", "fb-secret")
    monkeypatch.setenv("APPLE_CLIENT_ID", "com.example.web")
    # pre-generated secret so tests need no .p8 key
    monkeypatch.setenv("APPLE_CLIENT_SECRET", "apple-client-secret-jwt")
    monkeypatch.setenv("APPLE_VERIFY_ID_TOKEN", "false")
    for p in ("GOOGLE", "FACEBOOK", "APPLE"):
        monkeypatch.delenv(f"{p}_SIMULATED", raising=False)
    monkeypatch.delenv("APPLE_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("APPLE_PRIVATE_KEY_PATH", raising=False)


# ---------- Core objects ----------
@pytest.fixture
def settings() -> Settings:
    return load_settings()


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def issuer(settings: Settings) -> SessionIssuer:
    return SessionIssuer(settings.session)


@pytest.fixture
async def sessions(settings: Settings):
    engine, factory = create_engine_and_sessions(settings.database_url)
    await init_models(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def resolver(sessions) -> IdentityResolver:
    return IdentityResolver(sessions, link_by_email=True)


@pytest.fixture
def orchestrator(settings, state_store, resolver, issuer) -> CallbackOrchestrator:
    return CallbackOrchestrator(
        registry=build_registry(settings),
        state_store=state_store,
        resolver=resolver,
        issuer=issuer,
        success_url=settings.success_url,
        login_url=settings.login_url,
        state_ttl=settings.state_ttl,
    )


# ---------- HTTP ----------
@pytest.fixture
def app_instance(settings, state_store):
    return create_app(settings=settings, state_store=state_store)


@pytest.fixture
def client(app_instance) -> Iterator[TestClient]:
    # context manager runs the lifespan (tables are created there)
    with TestClient(app_instance, follow_redirects=False) as c:
        yield c


# ---------- Provider mocks ----------
@pytest.fixture
def google_ok(httpx_mock):
    """One successful Google code exchange + userinfo round."""
    def _add(sub: str = "google-sub-1", email: str = "ada@example.com"):
        httpx_mock.add_response(
            method="POST",
            url=GOOGLE_TOKEN_URL,
            json={"access_token": "ya29.access", "expires_in": 3599, "token_type": "Bearer"},
        )
        httpx_mock.add_response(
            method="GET",
            url=GOOGLE_USERINFO_URL,
            json={
                "sub": sub,
                "email": email,
                "name": "Ada Lovelace",
                "picture": "https://lh3.googleusercontent.com/a/ada",
                "email_verified": True,
            },
        )
    return _add
