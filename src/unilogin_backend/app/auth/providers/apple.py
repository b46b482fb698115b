# src/unilogin_backend/app/auth/providers/apple.py
from __future__ import annotations

import asyncio
import logging
import time
from functools import cached_property
from typing import Any, Dict, Optional

import httpx
import jwt
from jwt import PyJWKClient

from unilogin_backend.app.auth.providers.base import (
    parse_token_response,
    pkce_params,
    require_subject,
    simulated_authorization_url,
    simulated_identity,
    simulated_tokens,
    with_query,
)
from unilogin_backend.app.core.config import AppleConfig
from unilogin_backend.app.core.errors import IdentityFetchFailed, TokenExchangeFailed
from unilogin_backend.app.core.logging import mask
from unilogin_backend.app.core.trace import auth_trace
from unilogin_backend.app.schemas.auth import NormalizedIdentity, Provider, ProviderTokenSet

log = logging.getLogger(__name__)

APPLE_AUDIENCE = "https://appleid.apple.com"
CLIENT_SECRET_TTL = 3600  # Apple accepts up to 6 months; we mint per exchange


def _as_bool(value: Any) -> Optional[bool]:
    # Apple sends email_verified as "true"/"false" strings
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


class AppleClient:
    """
    Sign in with Apple.

    Differences from the others, all kept inside this class:
      - response_mode=form_post, so the callback arrives as a POST
      - the client secret is an ES256 JWT signed with the team's .p8 key
      - there is no userinfo endpoint; identity is the id_token returned
        by the code exchange
    """
    provider = Provider.APPLE

    def __init__(self, config: AppleConfig):
        self.config = config

    @cached_property
    def _jwks(self) -> PyJWKClient:
        return PyJWKClient(self.config.jwks_uri)

    def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str:
        cfg = self.config
        if cfg.simulated:
            return simulated_authorization_url(
                cfg.mock_authorization_uri, cfg.client_id, redirect_uri, cfg.scopes, state,
                response_mode="form_post",
            )
        return with_query(cfg.authorization_uri, {
            "client_id": cfg.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "response_mode": "form_post",
            "scope": cfg.scopes,
            "state": state,
            **pkce_params(code_challenge, code_challenge_method),
        })

    def client_secret(self, now: Optional[int] = None) -> str:
        """
        Client secret for the token endpoint.
        A pre-generated APPLE_CLIENT_SECRET wins; otherwise sign one with the .p8 key.
        """
        cfg = self.config
        if cfg.client_secret:
            return cfg.client_secret
        if not (cfg.private_key and cfg.team_id and cfg.key_id):
            raise TokenExchangeFailed(
                "apple token exchange failed: client secret not configured "
                "(APPLE_TEAM_ID, APPLE_KEY_ID, APPLE_PRIVATE_KEY)"
            )
        now = now or int(time.time())
        payload = {
            "iss": cfg.team_id,
            "iat": now,
            "exp": now + CLIENT_SECRET_TTL,
            "aud": APPLE_AUDIENCE,
            "sub": cfg.client_id,
        }
        try:
            return jwt.encode(payload, cfg.private_key, algorithm="ES256", headers={"kid": cfg.key_id})
        except (ValueError, TypeError, jwt.PyJWTError) as ex:
            log.error("apple client secret signing failed: %s", ex)
            raise TokenExchangeFailed("apple token exchange failed: invalid signing key")

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> ProviderTokenSet:
        if self.config.simulated:
            auth_trace("provider.exchange.simulated", provider="apple", code=mask(code))
            return simulated_tokens(self.provider, code)

        data = {
            "client_id": self.config.client_id,
            "client_secret": self.client_secret(),
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                resp = await client.post(
                    self.config.token_uri, data=data, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as ex:
            log.warning("apple token exchange transport error: %s", ex)
            raise TokenExchangeFailed(f"apple token exchange failed: {type(ex).__name__}")

        tokens = parse_token_response(self.provider, resp)
        auth_trace("provider.exchange.ok", provider="apple", has_id_token=bool(tokens.id_token))
        return tokens

    async def fetch_identity(self, tokens: ProviderTokenSet) -> NormalizedIdentity:
        if self.config.simulated:
            return simulated_identity(self.provider, tokens)
        if not tokens.id_token:
            raise IdentityFetchFailed("apple user info failed: no id_token in token response")

        claims = await self._decode_id_token(tokens.id_token)
        identity = NormalizedIdentity(
            subject_id=require_subject(self.provider, claims.get("sub")),
            email=claims.get("email"),
            # Apple only sends the name once, in the first form_post, never in the id_token
            name=None,
            avatar_url=None,
            email_verified=_as_bool(claims.get("email_verified")),
        )
        auth_trace("provider.identity.ok", provider="apple", sub=identity.subject_id)
        return identity

    async def _decode_id_token(self, id_token: str) -> Dict[str, Any]:
        cfg = self.config
        try:
            if not cfg.verify_id_token:
                return jwt.decode(id_token, options={"verify_signature": False, "verify_aud": False})

            # PyJWKClient fetches with urllib; keep it off the event loop
            signing_key = await asyncio.to_thread(self._jwks.get_signing_key_from_jwt, id_token)
            return jwt.decode(
                id_token,
                key=signing_key.key,
                algorithms=["RS256"],
                audience=cfg.client_id,
                issuer=cfg.issuer,
                options={"require": ["exp", "iss", "aud", "sub"]},
                leeway=120,
            )
        except jwt.ExpiredSignatureError:
            raise IdentityFetchFailed("apple id_token expired")
        except jwt.InvalidAudienceError:
            raise IdentityFetchFailed("apple id_token audience mismatch")
        except jwt.InvalidIssuerError:
            raise IdentityFetchFailed("apple id_token issuer mismatch")
        except jwt.PyJWTError as ex:
            raise IdentityFetchFailed(f"apple id_token invalid: {ex}")
