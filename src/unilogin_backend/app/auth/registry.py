# src/unilogin_backend/app/auth/registry.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from unilogin_backend.app.auth.providers.apple import AppleClient
from unilogin_backend.app.auth.providers.base import ProviderClient
from unilogin_backend.app.auth.providers.facebook import FacebookClient
from unilogin_backend.app.auth.providers.google import GoogleClient
from unilogin_backend.app.core.config import AppleConfig, Settings
from unilogin_backend.app.core.errors import UnsupportedProvider
from unilogin_backend.app.schemas.auth import ClientPlatform, Provider

log = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Resolves (provider, platform) to a provider client.
    One client per provider; platform is accepted for per-platform variants later.
    """
    def __init__(self, clients: Optional[Dict[Provider, ProviderClient]] = None):
        self._clients: Dict[Provider, ProviderClient] = dict(clients or {})

    def register(self, client: ProviderClient) -> None:
        self._clients[client.provider] = client

    def resolve(self, provider: "Provider | str", platform: "ClientPlatform | str | None" = None) -> ProviderClient:
        key = Provider.parse(provider)
        client = self._clients.get(key)
        if client is None:
            raise UnsupportedProvider(f"OAuth2 provider {key.value} not supported")
        return client

    def providers(self) -> List[str]:
        return sorted(p.value for p in self._clients)


def build_registry(settings: Settings) -> ProviderRegistry:
    """Register a client for every provider that is configured (or explicitly simulated)."""
    registry = ProviderRegistry()

    google = settings.provider("google")
    if google and google.enabled:
        registry.register(GoogleClient(google))

    facebook = settings.provider("facebook")
    if facebook and facebook.enabled:
        registry.register(FacebookClient(facebook))

    apple = settings.provider("apple")
    if isinstance(apple, AppleConfig) and apple.enabled:
        registry.register(AppleClient(apple))

    for name, cfg in settings.providers.items():
        if cfg.simulated:
            log.warning("provider %s runs SIMULATED: no real %s login happens", name, name)

    log.info("oauth2 providers registered: %s", registry.providers() or "none")
    return registry
