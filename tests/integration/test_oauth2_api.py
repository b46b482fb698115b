"""HTTP surface: authorize -> provider callback -> success redirect, token endpoint, /auth/me."""

import urllib.parse as urlparse

import pytest
from fastapi.testclient import TestClient

from unilogin_backend.app.core.config import load_settings
from unilogin_backend.app.main import create_app

REDIRECT_URI = "http://localhost:3000/oauth2/callback"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


def _qs(url: str) -> dict:
    return dict(urlparse.parse_qsl(urlparse.urlparse(url).query))


def _authorize(client: TestClient, state="abc123", provider="google", platform="WEB", **extra):
    body = {"provider": provider, "platform": platform, "redirectUri": REDIRECT_URI, "state": state, **extra}
    return client.post("/auth/oauth2/authorize", json=body)


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_providers_listed(client):
    r = client.get("/auth/oauth2/providers")
    assert r.status_code == 200
    assert r.json() == {"providers": ["apple", "facebook", "google"]}


def test_authorize_returns_provider_url(client):
    r = _authorize(client, codeChallenge="chal-123")
    assert r.status_code == 200, r.text

    body = r.json()
    assert body["state"] == "abc123"
    qs = _qs(body["authorizationUrl"])
    assert qs["state"] == "abc123"
    assert qs["client_id"] == "google-client.apps.googleusercontent.com"
    assert qs["code_challenge"] == "chal-123"


@pytest.mark.parametrize(
    "provider, platform, code",
    [("myspace", "WEB", "unsupported_provider"), ("google", "PALM_OS", "unsupported_platform")],
)
def test_authorize_rejects_unsupported(client, provider, platform, code):
    r = _authorize(client, provider=provider, platform=platform)
    assert r.status_code == 400
    assert r.json()["code"] == code
    assert "error" in r.json()


def test_authorize_requires_state(client):
    r = client.post(
        "/auth/oauth2/authorize",
        json={"provider": "google", "platform": "WEB", "redirectUri": REDIRECT_URI, "state": ""},
    )
    assert r.status_code == 422


def test_full_web_login_then_replay(client, google_ok, httpx_mock):
    google_ok()
    assert _authorize(client).status_code == 200

    r = client.get("/auth/oauth2/callback/google", params={"code": "validcode", "state": "abc123"})
    assert r.status_code == 302
    loc = r.headers["location"]
    assert loc.startswith("http://localhost:3000/oauth2/success?")
    qs = _qs(loc)
    assert qs["platform"] == "WEB"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {qs['token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "ada@example.com"
    assert me.json()["platform"] == "WEB"

    replay = client.get("/auth/oauth2/callback/google", params={"code": "validcode", "state": "abc123"})
    assert replay.status_code == 302
    assert replay.headers["location"] == "http://localhost:3000/login?error=invalid_state"
    assert len(httpx_mock.get_requests()) == 2


def test_callback_with_unknown_state(client, httpx_mock):
    r = client.get("/auth/oauth2/callback/google", params={"code": "validcode", "state": "forged"})
    assert r.status_code == 302
    assert _qs(r.headers["location"]) == {"error": "invalid_state"}
    assert httpx_mock.get_requests() == []


def test_callback_provider_error_redirects_to_client(client):
    _authorize(client, state="deny-1")
    r = client.get("/auth/oauth2/callback/google", params={"error": "access_denied", "state": "deny-1"})
    assert r.status_code == 302
    assert r.headers["location"].startswith(REDIRECT_URI + "?")
    assert _qs(r.headers["location"])["error"] == "provider_denied"


def test_legacy_callback_path(client, google_ok):
    google_ok()
    _authorize(client, state="legacy-1")
    r = client.get("/oauth/callback/google", params={"code": "validcode", "state": "legacy-1"})
    assert r.status_code == 302
    assert r.headers["location"].startswith("http://localhost:3000/oauth2/success?")


def test_token_endpoint_for_mobile(client, google_ok):
    google_ok()
    _authorize(client, state="ios-1", platform="IOS")

    r = client.post(
        "/auth/oauth2/token",
        json={"provider": "google", "platform": "IOS", "code": "validcode", "state": "ios-1", "codeVerifier": "v"},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["user"]["email"] == "ada@example.com"
    assert body["user"]["name"] == "Ada Lovelace"
    assert body["user"]["imageUrl"] == "https://lh3.googleusercontent.com/a/ada"
    assert isinstance(body["user"]["id"], int)
    assert client.app.state.issuer.verify(body["token"]) == body["user"]["id"]

    again = client.post(
        "/auth/oauth2/token",
        json={"provider": "google", "code": "validcode", "state": "ios-1"},
    )
    assert again.status_code == 400
    assert again.json() == {"error": "Invalid or expired state", "code": "invalid_state"}


def test_token_endpoint_upstream_failure_is_400(client, httpx_mock):
    httpx_mock.add_response(method="POST", url=GOOGLE_TOKEN_URL, status_code=400, json={"error": "invalid_grant"})
    _authorize(client, state="bad-1", platform="ANDROID")

    r = client.post("/auth/oauth2/token", json={"provider": "google", "code": "nope", "state": "bad-1"})
    assert r.status_code == 400
    assert r.json()["code"] == "token_exchange_failed"


@pytest.mark.parametrize("header", [None, "Bearer", "Bearer not-a-jwt", "Basic dXNlcjpwYXNz"])
def test_me_requires_valid_credential(client, header):
    headers = {"Authorization": header} if header else {}
    r = client.get("/auth/me", headers=headers)
    assert r.status_code == 401
    assert r.json()["code"] == "invalid_credential"


# ---------- simulated Apple (form_post callback) ----------
@pytest.fixture
def simulated_apple_client(monkeypatch, state_store):
    monkeypatch.setenv("APPLE_SIMULATED", "true")
    app = create_app(settings=load_settings(), state_store=state_store)
    with TestClient(app, follow_redirects=False) as c:
        yield c


def test_simulated_apple_form_post_callback(simulated_apple_client, httpx_mock):
    r = _authorize(simulated_apple_client, state="apple-1", provider="apple", platform="WECHAT_MINIAPP")
    auth_url = r.json()["authorizationUrl"]
    assert auth_url.startswith("http://localhost:3000/mock-apple-auth?")
    assert _qs(auth_url)["response_mode"] == "form_post"

    cb = simulated_apple_client.post("/auth/oauth2/callback/apple", data={"code": "c-apple", "state": "apple-1"})
    assert cb.status_code == 302
    qs = _qs(cb.headers["location"])
    assert qs["platform"] == "WECHAT_MINIAPP"
    claims = simulated_apple_client.app.state.issuer.claims(qs["token"])
    assert claims["exp"] - claims["iat"] == 604800
    assert httpx_mock.get_requests() == []
