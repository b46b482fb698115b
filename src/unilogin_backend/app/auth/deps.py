# src/unilogin_backend/app/auth/deps.py
from __future__ import annotations
from typing import Any, Dict, Optional

from fastapi import Header, Request

from unilogin_backend.app.auth.orchestrator import CallbackOrchestrator
from unilogin_backend.app.core.errors import InvalidCredential


def get_orchestrator(request: Request) -> CallbackOrchestrator:
    return request.app.state.orchestrator


async def current_account(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """
    Claims of the caller's session credential (Authorization: Bearer <jwt>).
    Anything else is rejected with 401 via the AuthError handler.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise InvalidCredential("Missing token")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise InvalidCredential("Missing token")
    return request.app.state.issuer.claims(token)
