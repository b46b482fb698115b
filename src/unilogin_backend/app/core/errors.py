# src/unilogin_backend/app/core/errors.py
from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """
    Base class for every failure of the login flow.

    `code` is the short token put into error redirects and API bodies,
    `status_code` is what the API layer answers with.
    """
    code = "auth_error"
    status_code = 400

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class UnsupportedProvider(AuthError):
    """No client registered for the provider. Configuration gap, never retried."""
    code = "unsupported_provider"


class UnsupportedPlatform(AuthError):
    code = "unsupported_platform"


class InvalidOrExpiredState(AuthError):
    """State token unknown, expired or already consumed. Client restarts the flow."""
    code = "invalid_state"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Invalid or expired state")


class TokenExchangeFailed(AuthError):
    code = "token_exchange_failed"
    status_code = 502


class IdentityFetchFailed(AuthError):
    code = "identity_fetch_failed"
    status_code = 502


class DuplicateIdentity(AuthError):
    """(provider, subject) or email already claimed by a concurrent resolution."""
    code = "duplicate_identity"
    status_code = 409


class InvalidCredential(AuthError):
    code = "invalid_credential"
    status_code = 401
