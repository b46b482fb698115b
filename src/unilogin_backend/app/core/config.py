# src/unilogin_backend/app/core/config.py
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    return int(raw) if raw else default


class ProviderConfig(BaseModel):
    """
    Static configuration of one identity provider.
    Built once at startup and handed to the provider client's constructor.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    client_id: str = ""
    client_secret: str = ""
    authorization_uri: str
    token_uri: str
    user_info_uri: str = ""
    scopes: str = ""
    # explicit opt-in: never inferred from what the client id looks like
    simulated: bool = False
    mock_authorization_uri: str = ""
    timeout: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.client_id) or self.simulated


class AppleConfig(ProviderConfig):
    team_id: str = ""
    key_id: str = ""
    private_key: str = ""  # PEM contents of the .p8 signing key
    issuer: str = "https://appleid.apple.com"
    jwks_uri: str = "https://appleid.apple.com/auth/keys"
    verify_id_token: bool = True


class SessionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    secret: str
    issuer: str = "unilogin"
    audience: str = "unilogin-api"
    algorithm: str = "HS512"
    ttl_web: int = 86400          # 1d
    ttl_mobile: int = 2592000     # 30d
    ttl_miniapp: int = 604800     # 7d


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite+aiosqlite:///./unilogin.db"
    database_echo: bool = False
    state_store_url: str = "memory://"
    state_ttl: int = 300
    success_url: str = "http://localhost:3000/oauth2/success"
    login_url: str = "http://localhost:3000/login"
    link_accounts_by_email: bool = True
    cors_origins: List[str] = []
    session: SessionConfig
    providers: Dict[str, ProviderConfig] = {}

    def provider(self, name: str) -> Optional[ProviderConfig]:
        return self.providers.get(name)


# (authorization, token, user-info, scopes) used when the env does not override them
_PROVIDER_DEFAULTS = {
    "google": (
        "https://accounts.google.com/o/oauth2/v2/auth",
        "https://oauth2.googleapis.com/token",
        "https://openidconnect.googleapis.com/v1/userinfo",
        "openid email profile",
    ),
    "facebook": (
        "https://www.facebook.com/v18.0/dialog/oauth",
        "https://graph.facebook.com/v18.0/oauth/access_token",
        "https://graph.facebook.com/me",
        "email,public_profile",
    ),
    "apple": (
        "https://appleid.apple.com/auth/authorize",
        "https://appleid.apple.com/auth/token",
        "",
        "name email",
    ),
}


def _provider_kwargs(name: str, timeout: float) -> dict:
    prefix = name.upper()
    auth_uri, token_uri, info_uri, scopes = _PROVIDER_DEFAULTS[name]
    return {
        "name": name,
        "client_id": _env(f"{prefix}_CLIENT_ID"),
        "client_secret": _env(f"{prefix}_CLIENT_SECRET"),
        "authorization_uri": _env(f"{prefix}_AUTHORIZATION_URI", auth_uri),
        "token_uri": _env(f"{prefix}_TOKEN_URI", token_uri),
        "user_info_uri": _env(f"{prefix}_USER_INFO_URI", info_uri),
        "scopes": _env(f"{prefix}_SCOPES", scopes),
        "simulated": _env_bool(f"{prefix}_SIMULATED"),
        "mock_authorization_uri": _env(
            f"{prefix}_MOCK_AUTHORIZATION_URI", f"http://localhost:3000/mock-{name}-auth"
        ),
        "timeout": timeout,
    }


def _apple_private_key() -> str:
    inline = os.getenv("APPLE_PRIVATE_KEY", "")
    if inline.strip():
        # .env files usually carry the PEM with literal "\n"
        return inline.replace("\\n", "\n").strip()
    path = _env("APPLE_PRIVATE_KEY_PATH")
    if path:
        return Path(path).read_text(encoding="utf-8").strip()
    return ""


def load_settings() -> Settings:
    """Read the whole configuration from the environment."""
    timeout = float(_env("OAUTH_HTTP_TIMEOUT_SEC", "10"))

    providers: Dict[str, ProviderConfig] = {
        "google": ProviderConfig(**_provider_kwargs("google", timeout)),
        "facebook": ProviderConfig(**_provider_kwargs("facebook", timeout)),
        "apple": AppleConfig(
            **_provider_kwargs("apple", timeout),
            team_id=_env("APPLE_TEAM_ID"),
            key_id=_env("APPLE_KEY_ID"),
            private_key=_apple_private_key(),
            issuer=_env("APPLE_ISS", "https://appleid.apple.com"),
            jwks_uri=_env("APPLE_JWKS_URI", "https://appleid.apple.com/auth/keys"),
            verify_id_token=_env_bool("APPLE_VERIFY_ID_TOKEN", True),
        ),
    }

    session = SessionConfig(
        secret=_env("JWT_SECRET", "dev_secret_do_not_use_in_prod"),
        issuer=_env("JWT_ISS", "unilogin"),
        audience=_env("JWT_AUD", "unilogin-api"),
        ttl_web=_env_int("SESSION_TTL_WEB_SEC", 86400),
        ttl_mobile=_env_int("SESSION_TTL_MOBILE_SEC", 2592000),
        ttl_miniapp=_env_int("SESSION_TTL_MINIAPP_SEC", 604800),
    )

    origins = [o.strip() for o in _env("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

    return Settings(
        database_url=_env("DATABASE_URL", "sqlite+aiosqlite:///./unilogin.db"),
        database_echo=_env_bool("DATABASE_ECHO"),
        state_store_url=_env("STATE_STORE_URL", "memory://"),
        state_ttl=_env_int("OAUTH_STATE_TTL_SEC", 300),
        success_url=_env("FRONTEND_SUCCESS_URL", "http://localhost:3000/oauth2/success"),
        login_url=_env("FRONTEND_LOGIN_URL", "http://localhost:3000/login"),
        link_accounts_by_email=_env_bool("LINK_ACCOUNTS_BY_EMAIL", True),
        cors_origins=origins,
        session=session,
        providers=providers,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
