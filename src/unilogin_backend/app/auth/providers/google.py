# src/unilogin_backend/app/auth/providers/google.py
from __future__ import annotations

import logging
from typing import Optional

import httpx

from unilogin_backend.app.auth.providers.base import (
    parse_json_object,
    parse_token_response,
    pkce_params,
    require_subject,
    simulated_authorization_url,
    simulated_identity,
    simulated_tokens,
    with_query,
)
from unilogin_backend.app.core.config import ProviderConfig
from unilogin_backend.app.core.errors import IdentityFetchFailed, TokenExchangeFailed
from unilogin_backend.app.core.logging import mask
from unilogin_backend.app.core.trace import auth_trace
from unilogin_backend.app.schemas.auth import NormalizedIdentity, Provider, ProviderTokenSet

log = logging.getLogger(__name__)


class GoogleClient:
    """
    Google OpenID Connect, authorization-code flow.
    Token exchange is a form POST; identity comes from the userinfo endpoint (`sub`).
    """
    provider = Provider.GOOGLE

    def __init__(self, config: ProviderConfig):
        self.config = config

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
                **pkce_params(code_challenge, code_challenge_method),
            )
        return with_query(cfg.authorization_uri, {
            "client_id": cfg.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": cfg.scopes,
            "state": state,
            **pkce_params(code_challenge, code_challenge_method),
        })

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> ProviderTokenSet:
        if self.config.simulated:
            auth_trace("provider.exchange.simulated", provider="google", code=mask(code))
            return simulated_tokens(self.provider, code)

        data = {
            "code": code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                resp = await client.post(
                    self.config.token_uri, data=data, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as ex:
            log.warning("google token exchange transport error: %s", ex)
            raise TokenExchangeFailed(f"google token exchange failed: {type(ex).__name__}")

        tokens = parse_token_response(self.provider, resp)
        auth_trace("provider.exchange.ok", provider="google", access=mask(tokens.access_token))
        return tokens

    async def fetch_identity(self, tokens: ProviderTokenSet) -> NormalizedIdentity:
        if self.config.simulated:
            return simulated_identity(self.provider, tokens)

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                resp = await client.get(
                    self.config.user_info_uri,
                    headers={"Authorization": f"Bearer {tokens.access_token}"},
                )
        except httpx.HTTPError as ex:
            log.warning("google userinfo transport error: %s", ex)
            raise IdentityFetchFailed(f"google user info failed: {type(ex).__name__}")

        body = parse_json_object(self.provider, resp)
        # OpenID Connect uses 'sub', not 'id'
        identity = NormalizedIdentity(
            subject_id=require_subject(self.provider, body.get("sub")),
            email=body.get("email"),
            name=body.get("name"),
            avatar_url=body.get("picture"),
            email_verified=body.get("email_verified"),
        )
        auth_trace("provider.identity.ok", provider="google", sub=identity.subject_id)
        return identity
