# src/unilogin_backend/app/api/routes/oauth2.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Form, Query
from fastapi.responses import JSONResponse, RedirectResponse

from unilogin_backend.app.auth.deps import get_orchestrator
from unilogin_backend.app.auth.orchestrator import CallbackOrchestrator
from unilogin_backend.app.core.errors import AuthError
from unilogin_backend.app.schemas.api import (
    AuthorizeBody,
    AuthorizeResponse,
    ProvidersResponse,
    TokenBody,
    TokenResponse,
    UserOut,
)

router = APIRouter(prefix="/auth/oauth2", tags=["oauth2"])

# kept for provider consoles still pointing at the old redirect path
legacy_router = APIRouter(prefix="/oauth/callback", tags=["oauth2"])


@router.get("/providers", response_model=ProvidersResponse)
def list_providers(orch: CallbackOrchestrator = Depends(get_orchestrator)):
    return ProvidersResponse(providers=orch.registry.providers())


@router.post("/authorize", response_model=AuthorizeResponse)
async def authorize(body: AuthorizeBody, orch: CallbackOrchestrator = Depends(get_orchestrator)):
    """
    Start a login: returns the provider URL the client should open.
    The caller's `state` is echoed to the provider verbatim and remembered for 5 minutes.
    """
    result = await orch.authorize(
        provider=body.provider,
        platform=body.platform,
        redirect_uri=body.redirect_uri,
        state=body.state,
        code_challenge=body.code_challenge,
        code_challenge_method=body.code_challenge_method,
    )
    return AuthorizeResponse(authorization_url=result.authorization_url, state=result.state)


async def _finish(
    orch: CallbackOrchestrator,
    provider: str,
    code: Optional[str],
    state: Optional[str],
    error: Optional[str],
) -> RedirectResponse:
    outcome = await orch.callback(code or "", state or "", provider=provider, provider_error=error)
    return RedirectResponse(outcome.redirect_url, status_code=302)


@router.get("/callback/{provider}")
async def callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    orch: CallbackOrchestrator = Depends(get_orchestrator),
):
    return await _finish(orch, provider, code, state, error)


@router.post("/callback/{provider}")
async def callback_form_post(
    provider: str,
    code: Optional[str] = Form(None),
    state: Optional[str] = Form(None),
    error: Optional[str] = Form(None),
    orch: CallbackOrchestrator = Depends(get_orchestrator),
):
    """Sign in with Apple answers with response_mode=form_post."""
    return await _finish(orch, provider, code, state, error)


@legacy_router.get("/{provider}")
async def legacy_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    orch: CallbackOrchestrator = Depends(get_orchestrator),
):
    return await _finish(orch, provider, code, state, error)


@router.post("/token", response_model=TokenResponse)
async def token(body: TokenBody, orch: CallbackOrchestrator = Depends(get_orchestrator)):
    """
    Code exchange for clients that receive the code themselves (mobile, mini-app).
    Any flow failure answers 400 {"error": ...}; the state is consumed regardless.
    """
    try:
        result = await orch.exchange_token(
            provider=body.provider,
            code=body.code,
            state=body.state,
            code_verifier=body.code_verifier,
        )
    except AuthError as ex:
        return JSONResponse(status_code=400, content={"error": ex.message, "code": ex.code})

    user = result.user
    return TokenResponse(
        token=result.credential.token,
        user=UserOut(id=user.id, name=user.name, email=user.email, image_url=user.image_url),
    )
