# src/unilogin_backend/app/auth/session.py
from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt

from unilogin_backend.app.core.config import SessionConfig
from unilogin_backend.app.core.errors import InvalidCredential
from unilogin_backend.app.core.trace import auth_trace
from unilogin_backend.app.schemas.auth import ClientPlatform, PlatformClass, SessionCredential


def _now() -> int:
    return int(time.time())


class SessionIssuer:
    """
    Mints and checks the application's own session JWT.

    Lifetime comes from the platform class only (web/H5, native mobile,
    mini-app); callers cannot ask for a different expiry.
    """

    def __init__(self, config: SessionConfig):
        self.config = config
        self._ttl = {
            PlatformClass.WEB: config.ttl_web,
            PlatformClass.MOBILE: config.ttl_mobile,
            PlatformClass.MINIAPP: config.ttl_miniapp,
        }

    def ttl_for(self, platform: ClientPlatform) -> int:
        return self._ttl[ClientPlatform.parse(platform).platform_class]

    # -------------------------
    # Issuer
    # -------------------------
    def issue(self, user: Any, platform: "ClientPlatform | str", now: Optional[int] = None) -> SessionCredential:
        platform = ClientPlatform.parse(platform)
        iat = now if now is not None else _now()
        exp = iat + self.ttl_for(platform)
        payload: Dict[str, Any] = {
            "iss": self.config.issuer,
            "aud": self.config.audience,
            "sub": str(user.id),
            "platform": platform.value,
            "email": user.email,
            "name": user.name,
            "iat": iat,
            "exp": exp,
        }
        token = jwt.encode(payload, self.config.secret, algorithm=self.config.algorithm)
        auth_trace(
            "session.issue",
            sub=user.id,
            platform=platform.value,
            exp=exp,
            exp_human=time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime(exp)),
        )
        return SessionCredential(
            token=token, account_id=user.id, platform=platform, issued_at=iat, expires_at=exp
        )

    # -------------------------
    # Verifiers (fail closed)
    # -------------------------
    def claims(self, token: str) -> Dict[str, Any]:
        """Decoded claims of a valid credential; InvalidCredential otherwise."""
        if not token:
            raise InvalidCredential("invalid token: missing")
        try:
            claims = jwt.decode(
                token,
                self.config.secret,
                algorithms=[self.config.algorithm],
                audience=self.config.audience,
                issuer=self.config.issuer,
                options={"require": ["exp", "iat", "sub", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidCredential("invalid token: exp (expired)")
        except jwt.InvalidIssuerError:
            raise InvalidCredential("invalid token: issuer mismatch")
        except jwt.InvalidAudienceError:
            raise InvalidCredential("invalid token: audience mismatch")
        except jwt.PyJWTError as ex:
            raise InvalidCredential(f"invalid token: {ex}")

        try:
            int(claims["sub"])
        except (TypeError, ValueError):
            raise InvalidCredential("invalid token: malformed subject")
        return claims

    def verify(self, token: str) -> int:
        """Account id of a valid credential."""
        claims = self.claims(token)
        auth_trace("session.verify_ok", sub=claims["sub"], platform=claims.get("platform"))
        return int(claims["sub"])

    def decode_subject(self, token: str) -> int:
        return int(self.claims(token)["sub"])

    def is_valid(self, token: str) -> bool:
        try:
            self.claims(token)
        except InvalidCredential:
            return False
        return True
