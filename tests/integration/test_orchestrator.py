"""Callback orchestration end to end: state store + mocked provider + sqlite + session issuer."""

import re
import urllib.parse as urlparse

import pytest

from unilogin_backend.app.auth.orchestrator import FlowStage
from unilogin_backend.app.core.errors import (
    InvalidOrExpiredState,
    TokenExchangeFailed,
    UnsupportedPlatform,
    UnsupportedProvider,
)
from unilogin_backend.app.schemas.auth import ClientPlatform, Provider

REDIRECT_URI = "http://localhost:3000/oauth2/callback"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


def _split(url: str):
    parsed = urlparse.urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}", dict(urlparse.parse_qsl(parsed.query))


async def _authorize(orchestrator, state="abc123", provider="google", platform="WEB", **kw):
    return await orchestrator.authorize(provider, platform, REDIRECT_URI, state, **kw)


# ---------- authorize ----------
async def test_authorize_builds_url_and_remembers_state(orchestrator, state_store):
    result = await _authorize(orchestrator)

    base, qs = _split(result.authorization_url)
    assert base == "https://accounts.google.com/o/oauth2/v2/auth"
    assert qs["state"] == "abc123"
    assert qs["redirect_uri"] == REDIRECT_URI
    assert result.state == "abc123"
    assert len(state_store) == 1


async def test_authorize_rejects_unknown_provider_without_storing(orchestrator, state_store):
    with pytest.raises(UnsupportedProvider):
        await _authorize(orchestrator, provider="myspace")
    assert len(state_store) == 0


async def test_authorize_rejects_unknown_platform(orchestrator, state_store):
    with pytest.raises(UnsupportedPlatform):
        await _authorize(orchestrator, platform="BLACKBERRY")
    assert len(state_store) == 0


async def test_authorize_requires_state(orchestrator):
    with pytest.raises(InvalidOrExpiredState):
        await _authorize(orchestrator, state="")


# ---------- callback ----------
async def test_callback_happy_path_then_replay(orchestrator, issuer, google_ok, httpx_mock, state_store):
    google_ok()
    await _authorize(orchestrator)

    outcome = await orchestrator.callback("validcode", "abc123", provider="google")

    assert outcome.ok
    assert outcome.stage == FlowStage.COMPLETED
    base, qs = _split(outcome.redirect_url)
    assert base == "http://localhost:3000/oauth2/success"
    assert qs["platform"] == "WEB"
    assert issuer.verify(qs["token"]) == outcome.credential.account_id
    assert outcome.credential.expires_in == 86400
    assert len(state_store) == 0

    replay = await orchestrator.callback("validcode", "abc123", provider="google")

    assert not replay.ok
    assert replay.error == "invalid_state"
    assert replay.redirect_url == "http://localhost:3000/login?error=invalid_state"
    # only the first callback reached Google
    assert len(httpx_mock.get_requests()) == 2


async def test_unknown_state_makes_no_provider_calls(orchestrator, httpx_mock):
    outcome = await orchestrator.callback("validcode", "never-issued", provider="google")

    assert outcome.stage == FlowStage.FAILED
    assert outcome.error == "invalid_state"
    assert httpx_mock.get_requests() == []


async def test_stored_provider_wins_over_path(orchestrator, google_ok):
    google_ok()
    await _authorize(orchestrator, state="s-path")

    outcome = await orchestrator.callback("validcode", "s-path", provider="facebook")
    assert outcome.ok


async def test_rejected_code_redirects_back_with_error(orchestrator, httpx_mock, state_store):
    httpx_mock.add_response(
        method="POST", url=GOOGLE_TOKEN_URL, status_code=400,
        json={"error": "invalid_grant", "error_description": "Bad Request"},
    )
    await _authorize(orchestrator)

    outcome = await orchestrator.callback("badcode", "abc123")

    base, qs = _split(outcome.redirect_url)
    assert base == REDIRECT_URI
    assert qs["error"] == "token_exchange_failed"
    assert "invalid_grant" in qs["message"]
    assert outcome.stage == FlowStage.FAILED
    assert len(state_store) == 0


async def test_identity_failure_redirects_back(orchestrator, httpx_mock):
    httpx_mock.add_response(method="POST", url=GOOGLE_TOKEN_URL, json={"access_token": "ya29.x"})
    httpx_mock.add_response(method="GET", url=GOOGLE_USERINFO_URL, status_code=401, json={"error": "invalid_token"})
    await _authorize(orchestrator)

    outcome = await orchestrator.callback("validcode", "abc123")
    assert outcome.error == "identity_fetch_failed"


async def test_user_denied_consent(orchestrator, httpx_mock, state_store):
    await _authorize(orchestrator)

    outcome = await orchestrator.callback("", "abc123", provider_error="access_denied")

    _, qs = _split(outcome.redirect_url)
    assert qs["error"] == "provider_denied"
    assert qs["message"] == "access_denied"
    assert httpx_mock.get_requests() == []
    assert len(state_store) == 0


async def test_missing_code(orchestrator):
    await _authorize(orchestrator)
    outcome = await orchestrator.callback("", "abc123")
    assert outcome.error == "invalid_request"


async def test_unexpected_crash_still_consumes_state(orchestrator, state_store, monkeypatch):
    await _authorize(orchestrator)

    async def _boom(*_a, **_kw):
        raise RuntimeError("db down")

    monkeypatch.setattr(orchestrator.registry.resolve("google"), "exchange_code", _boom)

    outcome = await orchestrator.callback("validcode", "abc123")
    assert outcome.error == "server_error"
    assert outcome.message == "login failed"
    assert len(state_store) == 0


async def test_mobile_platform_gets_mobile_lifetime(orchestrator, google_ok):
    google_ok()
    await _authorize(orchestrator, state="m-1", platform="ANDROID")
    outcome = await orchestrator.callback("validcode", "m-1")
    assert outcome.credential.platform == ClientPlatform.ANDROID
    assert outcome.credential.expires_in == 2592000


# ---------- token exchange ----------
async def test_exchange_token_forwards_pkce_verifier(orchestrator, google_ok, httpx_mock):
    google_ok()
    await _authorize(orchestrator, state="pkce-1", platform="IOS", code_challenge="chal")

    result = await orchestrator.exchange_token(Provider.GOOGLE, "validcode", "pkce-1", code_verifier="verif")

    assert result.user.email == "ada@example.com"
    assert result.credential.platform == ClientPlatform.IOS
    token_req = httpx_mock.get_requests(url=GOOGLE_TOKEN_URL)[0]
    form = dict(urlparse.parse_qsl(token_req.content.decode("utf-8")))
    assert form["code_verifier"] == "verif"


async def test_exchange_token_replay_is_rejected(orchestrator, google_ok):
    google_ok()
    await _authorize(orchestrator, state="once")
    await orchestrator.exchange_token("google", "validcode", "once")

    with pytest.raises(InvalidOrExpiredState):
        await orchestrator.exchange_token("google", "validcode", "once")


async def test_exchange_token_for_other_provider_consumes_state(orchestrator, state_store, httpx_mock):
    await _authorize(orchestrator, state="x-1")

    with pytest.raises(InvalidOrExpiredState):
        await orchestrator.exchange_token("facebook", "code", "x-1")
    assert len(state_store) == 0
    assert httpx_mock.get_requests() == []


async def test_exchange_token_provider_failure_propagates(orchestrator, httpx_mock, state_store):
    httpx_mock.add_response(method="POST", url=GOOGLE_TOKEN_URL, status_code=500, text="oops")
    await _authorize(orchestrator, state="f-1")

    with pytest.raises(TokenExchangeFailed):
        await orchestrator.exchange_token("google", "code", "f-1")
    assert len(state_store) == 0


async def test_same_person_two_providers_one_account(orchestrator, google_ok, httpx_mock):
    google_ok(email="grace@example.com")
    httpx_mock.add_response(
        url=re.compile(r"https://graph\.facebook\.com/v18\.0/oauth/access_token\?.*"),
        json={"access_token": "EAAB"},
    )
    httpx_mock.add_response(
        url=re.compile(r"https://graph\.facebook\.com/me\?.*"),
        json={"id": "fb-77", "name": "Grace", "email": "grace@example.com"},
    )
    await _authorize(orchestrator, state="g")
    await _authorize(orchestrator, state="f", provider="facebook")

    via_google = await orchestrator.exchange_token("google", "c1", "g")
    via_facebook = await orchestrator.exchange_token("facebook", "c2", "f")
    assert via_google.user.id == via_facebook.user.id
