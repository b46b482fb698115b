# src/unilogin_backend/app/auth/orchestrator.py
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel

from unilogin_backend.app.auth.providers.base import with_query
from unilogin_backend.app.auth.registry import ProviderRegistry
from unilogin_backend.app.auth.session import SessionIssuer
from unilogin_backend.app.auth.state_store import DEFAULT_TTL, StateStore
from unilogin_backend.app.core.errors import AuthError, InvalidOrExpiredState
from unilogin_backend.app.core.logging import mask
from unilogin_backend.app.core.trace import auth_trace
from unilogin_backend.app.schemas.auth import (
    AuthorizationState,
    ClientPlatform,
    Provider,
    SessionCredential,
)
from unilogin_backend.app.services.identity import IdentityResolver

log = logging.getLogger(__name__)


class FlowStage(str, Enum):
    START = "START"
    AWAITING_EXCHANGE = "AWAITING_EXCHANGE"
    EXCHANGED = "EXCHANGED"
    IDENTITY_FETCHED = "IDENTITY_FETCHED"
    RESOLVED = "RESOLVED"
    ISSUED = "ISSUED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class _Flow:
    """Current stage of one callback / token request; every transition is traced."""

    def __init__(self, kind: str, state: str):
        self.kind = kind
        self.state = mask(state)
        self.stage = FlowStage.START
        self.reason: Optional[str] = None

    def advance(self, stage: FlowStage, **kv: Any) -> None:
        self.stage = stage
        auth_trace("flow.stage", flow=self.kind, state=self.state, stage=stage.value, **kv)

    def fail(self, reason: str, message: str = "") -> None:
        failed_at = self.stage
        self.stage = FlowStage.FAILED
        self.reason = reason
        log.warning(
            "oauth2 %s failed at %s: %s %s", self.kind, failed_at.value, reason, message
        )
        auth_trace("flow.failed", flow=self.kind, state=self.state, at=failed_at.value, reason=reason)


class AuthorizeResult(BaseModel):
    authorization_url: str
    state: str


class Outcome(BaseModel):
    """How a callback ended: where to send the browser, and why."""
    stage: FlowStage
    redirect_url: str
    error: Optional[str] = None
    message: Optional[str] = None
    credential: Optional[SessionCredential] = None

    @property
    def ok(self) -> bool:
        return self.stage == FlowStage.COMPLETED


class LoginResult(BaseModel):
    user: Any  # ORM User row
    credential: SessionCredential


class CallbackOrchestrator:
    """
    Ties provider clients, the state store, identity resolution and session
    issuance together for the authorize step and the callback step.

    Callback path:
      START -> AWAITING_EXCHANGE -> EXCHANGED -> IDENTITY_FETCHED
            -> RESOLVED -> ISSUED -> COMPLETED, or FAILED(reason) from anywhere.

    The state record is consumed before anything else happens and is gone
    on every exit path. Provider, platform and redirect URI always come from
    the stored record, never from the incoming request.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        state_store: StateStore,
        resolver: IdentityResolver,
        issuer: SessionIssuer,
        success_url: str,
        login_url: str,
        state_ttl: int = DEFAULT_TTL,
    ):
        self.registry = registry
        self.state_store = state_store
        self.resolver = resolver
        self.issuer = issuer
        self.success_url = success_url
        self.login_url = login_url
        self.state_ttl = state_ttl

    # ------------------------
    # Authorize step
    # ------------------------
    async def authorize(
        self,
        provider: "Provider | str",
        platform: "ClientPlatform | str",
        redirect_uri: str,
        state: str,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> AuthorizeResult:
        provider = Provider.parse(provider)
        platform = ClientPlatform.parse(platform)
        if not state:
            raise InvalidOrExpiredState("state token is required")

        client = self.registry.resolve(provider, platform)
        url = client.build_authorization_url(redirect_uri, state, code_challenge, code_challenge_method)

        record = AuthorizationState(
            provider=provider,
            platform=platform,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=(code_challenge_method or "S256") if code_challenge else None,
        )
        await self.state_store.put(state, record, self.state_ttl)

        log.info("oauth2 authorize provider=%s platform=%s state=%s", provider.value, platform.value, mask(state))
        auth_trace("flow.authorize", provider=provider.value, platform=platform.value,
                   pkce=bool(code_challenge), ttl=self.state_ttl)
        return AuthorizeResult(authorization_url=url, state=state)

    # ------------------------
    # Shared exchange -> identity -> account -> credential pipeline
    # ------------------------
    async def _login(
        self,
        flow: _Flow,
        stored: AuthorizationState,
        code: str,
        code_verifier: Optional[str] = None,
    ) -> Tuple[Any, SessionCredential]:
        client = self.registry.resolve(stored.provider, stored.platform)

        flow.advance(FlowStage.AWAITING_EXCHANGE, provider=stored.provider.value)
        tokens = await client.exchange_code(code, stored.redirect_uri, code_verifier)

        flow.advance(FlowStage.EXCHANGED)
        identity = await client.fetch_identity(tokens)

        flow.advance(FlowStage.IDENTITY_FETCHED, sub=identity.subject_id)
        user = await self.resolver.resolve_or_create(identity, stored.provider, stored.platform)

        flow.advance(FlowStage.RESOLVED, user_id=user.id)
        credential = self.issuer.issue(user, stored.platform)

        flow.advance(FlowStage.ISSUED, exp=credential.expires_at)
        return user, credential

    # ------------------------
    # Callback step (browser redirect flow)
    # ------------------------
    async def callback(
        self,
        code: str,
        state: str,
        provider: Optional[str] = None,
        provider_error: Optional[str] = None,
    ) -> Outcome:
        """
        Finish the browser flow. Always returns an Outcome; failures become a
        redirect to the stored redirect URI (or the login page for a bad state).
        `provider_error` is the `error` param a provider sends when the user
        declined or the request was rejected upstream.
        """
        flow = _Flow("callback", state)

        async with self.state_store.claim(state) as stored:
            if stored is None:
                flow.fail("invalid_state")
                return Outcome(
                    stage=flow.stage,
                    redirect_url=with_query(self.login_url, {"error": "invalid_state"}),
                    error="invalid_state",
                )

            if provider and provider.lower() != stored.provider.value:
                # the stored record wins; the path segment is informational
                log.warning("callback path provider %s differs from stored %s", provider, stored.provider.value)

            if provider_error:
                flow.fail("provider_denied", provider_error)
                return self._failure(flow, stored, "provider_denied", provider_error[:200])

            if not code:
                flow.fail("invalid_request", "missing code")
                return self._failure(flow, stored, "invalid_request", "missing authorization code")

            try:
                _, credential = await self._login(flow, stored, code)
            except AuthError as ex:
                flow.fail(ex.code, ex.message)
                return self._failure(flow, stored, ex.code, ex.message)
            except Exception:
                log.exception("oauth2 callback crashed at %s", flow.stage.value)
                flow.fail("server_error")
                return self._failure(flow, stored, "server_error", "login failed")

            flow.advance(FlowStage.COMPLETED)
            return Outcome(
                stage=flow.stage,
                redirect_url=with_query(self.success_url, {
                    "token": credential.token,
                    "platform": stored.platform.value,
                }),
                credential=credential,
            )

    def _failure(self, flow: _Flow, stored: AuthorizationState, code: str, message: str) -> Outcome:
        return Outcome(
            stage=flow.stage,
            redirect_url=with_query(stored.redirect_uri, {"error": code, "message": message}),
            error=code,
            message=message,
        )

    # ------------------------
    # Token step (apps that catch the code themselves)
    # ------------------------
    async def exchange_token(
        self,
        provider: "Provider | str",
        code: str,
        state: str,
        code_verifier: Optional[str] = None,
    ) -> LoginResult:
        """
        Same pipeline as the callback, answered as data instead of a redirect.
        Failures propagate as AuthError; the state is consumed either way.
        """
        flow = _Flow("token", state)
        provider = Provider.parse(provider)

        async with self.state_store.claim(state) as stored:
            try:
                if stored is None:
                    raise InvalidOrExpiredState()
                if stored.provider != provider:
                    raise InvalidOrExpiredState("state was issued for another provider")
                user, credential = await self._login(flow, stored, code, code_verifier)
            except AuthError as ex:
                flow.fail(ex.code, ex.message)
                raise

            flow.advance(FlowStage.COMPLETED)
            return LoginResult(user=user, credential=credential)
