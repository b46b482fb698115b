# src/unilogin_backend/app/schemas/auth.py

from __future__ import annotations

import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from unilogin_backend.app.core.errors import UnsupportedPlatform, UnsupportedProvider


class Provider(str, Enum):
    GOOGLE = "google"
    FACEBOOK = "facebook"
    APPLE = "apple"

    @classmethod
    def parse(cls, value: "str | Provider") -> "Provider":
        """Case-insensitive lookup; clients send both "GOOGLE" and "google"."""
        if isinstance(value, Provider):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise UnsupportedProvider(f"OAuth2 provider {value} not supported")


class PlatformClass(str, Enum):
    WEB = "web"
    MOBILE = "mobile"
    MINIAPP = "miniapp"


class ClientPlatform(str, Enum):
    WEB = "WEB"
    H5 = "H5"
    IOS = "IOS"
    ANDROID = "ANDROID"
    WECHAT_MINIAPP = "WECHAT_MINIAPP"
    DOUYIN_MINIAPP = "DOUYIN_MINIAPP"

    @classmethod
    def parse(cls, value: "str | ClientPlatform") -> "ClientPlatform":
        if isinstance(value, ClientPlatform):
            return value
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            raise UnsupportedPlatform(f"client platform {value} not supported")

    @property
    def platform_class(self) -> PlatformClass:
        return _PLATFORM_CLASSES[self]


_PLATFORM_CLASSES = {
    ClientPlatform.WEB: PlatformClass.WEB,
    ClientPlatform.H5: PlatformClass.WEB,
    ClientPlatform.IOS: PlatformClass.MOBILE,
    ClientPlatform.ANDROID: PlatformClass.MOBILE,
    ClientPlatform.WECHAT_MINIAPP: PlatformClass.MINIAPP,
    ClientPlatform.DOUYIN_MINIAPP: PlatformClass.MINIAPP,
}


class AuthorizationState(BaseModel):
    """
    What we remember between /authorize and the provider's callback.
    Stored under the client's opaque state token, single use, short TTL.
    """
    provider: Provider
    platform: ClientPlatform
    redirect_uri: str
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    created_at: int = Field(default_factory=lambda: int(time.time()))


class ProviderTokenSet(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    token_type: Optional[str] = None
    # signed identity assertion delivered with the exchange (Apple)
    id_token: Optional[str] = None


class NormalizedIdentity(BaseModel):
    """
    Provider-agnostic "who is this external user?".

    subject_id is the provider's stable id (Google `sub`, Facebook `id`,
    Apple `sub`); it is never empty for a successful resolution.
    """
    subject_id: str = Field(min_length=1)
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    email_verified: Optional[bool] = None


class SessionCredential(BaseModel):
    token: str
    account_id: int
    platform: ClientPlatform
    issued_at: int
    expires_at: int

    @property
    def expires_in(self) -> int:
        return self.expires_at - self.issued_at
