# src/unilogin_backend/app/auth/providers/base.py
from __future__ import annotations

import hashlib
from typing import Any, Dict, Optional, Protocol, runtime_checkable
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from unilogin_backend.app.core.errors import IdentityFetchFailed, TokenExchangeFailed
from unilogin_backend.app.schemas.auth import NormalizedIdentity, Provider, ProviderTokenSet


@runtime_checkable
class ProviderClient(Protocol):
    """
    What the orchestrator needs from an identity provider.

    Implementations are independent classes (Google, Facebook, Apple);
    nothing inherits from this, it only documents the shape.
    """
    provider: Provider

    def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str: ...

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> ProviderTokenSet: ...

    async def fetch_identity(self, tokens: ProviderTokenSet) -> NormalizedIdentity: ...


# ------------------------
# URL helpers
# ------------------------
def with_query(base: str, params: Dict[str, Any]) -> str:
    """Append params to base, keeping any query the configured URI already has."""
    clean = {k: v for k, v in params.items() if v is not None}
    parts = urlsplit(base)
    query = urlencode(clean)
    if parts.query:
        query = f"{parts.query}&{query}" if query else parts.query
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def pkce_params(code_challenge: Optional[str], code_challenge_method: Optional[str]) -> Dict[str, str]:
    if not code_challenge:
        return {}
    return {
        "code_challenge": code_challenge,
        "code_challenge_method": code_challenge_method or "S256",
    }


# ------------------------
# Response helpers
# ------------------------
def upstream_message(resp: httpx.Response) -> str:
    """Best-effort human message out of a provider error body."""
    try:
        body = resp.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            # Graph API: {"error": {"message": ..., "type": ..., "code": ...}}
            return str(err.get("message") or err.get("type") or f"HTTP {resp.status_code}")
        desc = body.get("error_description")
        if err and desc:
            return f"{err}: {desc}"
        if err:
            return str(err)
    return f"HTTP {resp.status_code}"


def parse_token_response(provider: Provider, resp: httpx.Response) -> ProviderTokenSet:
    if not resp.is_success:
        raise TokenExchangeFailed(f"{provider.value} token exchange failed: {upstream_message(resp)}")
    try:
        body = resp.json()
    except ValueError:
        raise TokenExchangeFailed(f"{provider.value} token exchange failed: non-JSON response")
    if not isinstance(body, dict) or not body.get("access_token"):
        raise TokenExchangeFailed(f"{provider.value} token exchange failed: no access_token in response")

    try:
        expires_in = int(body.get("expires_in") or 3600)
    except (TypeError, ValueError):
        expires_in = 3600

    return ProviderTokenSet(
        access_token=str(body["access_token"]),
        refresh_token=body.get("refresh_token"),
        expires_in=expires_in,
        token_type=body.get("token_type"),
        id_token=body.get("id_token"),
    )


def parse_json_object(provider: Provider, resp: httpx.Response) -> Dict[str, Any]:
    if not resp.is_success:
        raise IdentityFetchFailed(f"{provider.value} user info failed: {upstream_message(resp)}")
    try:
        body = resp.json()
    except ValueError:
        raise IdentityFetchFailed(f"{provider.value} user info failed: non-JSON response")
    if not isinstance(body, dict):
        raise IdentityFetchFailed(f"{provider.value} user info failed: unexpected payload")
    return body


def require_subject(provider: Provider, value: Any) -> str:
    subject = str(value).strip() if value is not None else ""
    if not subject:
        raise IdentityFetchFailed(f"{provider.value} identity has no subject id")
    return subject


# ------------------------
# Simulated mode
# ------------------------
def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def simulated_authorization_url(
    mock_uri: str, client_id: str, redirect_uri: str, scopes: str, state: str, **extra: Any
) -> str:
    return with_query(mock_uri, {
        "client_id": client_id or "simulated",
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scopes,
        "state": state,
        **extra,
        "mock": "true",
    })


def simulated_tokens(provider: Provider, code: str) -> ProviderTokenSet:
    """Well-formed token set derived from the code, so replays resolve to the same user."""
    return ProviderTokenSet(
        access_token=f"simulated-{provider.value}-access-{_digest(code)}",
        refresh_token=f"simulated-{provider.value}-refresh",
        expires_in=3600,
        token_type="Bearer",
    )


def simulated_identity(provider: Provider, tokens: ProviderTokenSet) -> NormalizedIdentity:
    subject = f"simulated-{provider.value}-{_digest(tokens.access_token)}"
    return NormalizedIdentity(
        subject_id=subject,
        email=f"{subject}@users.simulated.invalid",
        name=f"{provider.value.capitalize()} Test User",
        avatar_url=None,
        email_verified=False,
    )
