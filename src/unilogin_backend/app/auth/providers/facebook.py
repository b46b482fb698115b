# src/unilogin_backend/app/auth/providers/facebook.py
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from unilogin_backend.app.auth.providers.base import (
    parse_json_object,
    parse_token_response,
    require_subject,
    simulated_authorization_url,
    simulated_identity,
    simulated_tokens,
    with_query,
)
from unilogin_backend.app.core.config import ProviderConfig
from unilogin_backend.app.core.errors import IdentityFetchFailed, TokenExchangeFailed
from unilogin_backend.app.core.trace import auth_trace
from unilogin_backend.app.schemas.auth import NormalizedIdentity, Provider, ProviderTokenSet

log = logging.getLogger(__name__)

USER_FIELDS = "id,name,email,picture"


def _picture_url(value: Any) -> Optional[str]:
    # Graph API nests it: {"picture": {"data": {"url": ...}}}
    if isinstance(value, dict):
        data = value.get("data")
        if isinstance(data, dict):
            return data.get("url")
    return None


class FacebookClient:
    """
    Facebook Login. No PKCE; the code exchange is a GET with query params
    and the access token travels as a query param on the Graph call too.
    """
    provider = Provider.FACEBOOK

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
                cfg.mock_authorization_uri, cfg.client_id, redirect_uri, cfg.scopes, state
            )
        return with_query(cfg.authorization_uri, {
            "client_id": cfg.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": cfg.scopes,
            "state": state,
        })

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> ProviderTokenSet:
        if self.config.simulated:
            return simulated_tokens(self.provider, code)

        params = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": redirect_uri,
            "code": code,
        }
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                resp = await client.get(self.config.token_uri, params=params)
        except httpx.HTTPError as ex:
            log.warning("facebook token exchange transport error: %s", ex)
            raise TokenExchangeFailed(f"facebook token exchange failed: {type(ex).__name__}")

        tokens = parse_token_response(self.provider, resp)
        # Facebook hands out no refresh token for this flow
        return tokens.model_copy(update={"refresh_token": None})

    async def fetch_identity(self, tokens: ProviderTokenSet) -> NormalizedIdentity:
        if self.config.simulated:
            return simulated_identity(self.provider, tokens)

        params = {"fields": USER_FIELDS, "access_token": tokens.access_token}
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                resp = await client.get(self.config.user_info_uri, params=params)
        except httpx.HTTPError as ex:
            log.warning("facebook graph transport error: %s", ex)
            raise IdentityFetchFailed(f"facebook user info failed: {type(ex).__name__}")

        body = parse_json_object(self.provider, resp)
        identity = NormalizedIdentity(
            subject_id=require_subject(self.provider, body.get("id")),
            email=body.get("email"),
            name=body.get("name"),
            avatar_url=_picture_url(body.get("picture")),
        )
        auth_trace("provider.identity.ok", provider="facebook", sub=identity.subject_id)
        return identity
