# src/unilogin_backend/app/auth/state_store.py
from __future__ import annotations

import logging
import threading
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from unilogin_backend.app.core.config import Settings
from unilogin_backend.app.core.trace import auth_trace
from unilogin_backend.app.schemas.auth import AuthorizationState

log = logging.getLogger(__name__)

KEY_PREFIX = "oauth2:state:"
DEFAULT_TTL = 300  # 5 minutes


class StateStore:
    """
    Short-lived, single-use records keyed by the client's state token.

    Backends implement put / take_once / discard. take_once must be atomic:
    of any number of concurrent callers with the same token exactly one gets
    the record, everyone else gets None. Expiry is the backend's job.
    """

    async def put(self, token: str, state: AuthorizationState, ttl: int = DEFAULT_TTL) -> None:
        raise NotImplementedError

    async def take_once(self, token: str) -> Optional[AuthorizationState]:
        raise NotImplementedError

    async def discard(self, token: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    @asynccontextmanager
    async def claim(self, token: str) -> AsyncIterator[Optional[AuthorizationState]]:
        """
        Take the record and make sure nothing is left under `token` when the
        block exits, however it exits. Yields None for unknown/expired tokens.
        """
        state = await self.take_once(token) if token else None
        try:
            yield state
        finally:
            if token:
                await self.discard(token)
                auth_trace("state.released", found=state is not None)


class InMemoryStateStore(StateStore):
    """
    Process-local store for development and tests.
    Single instance only; records are lost on restart.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._records: Dict[str, Tuple[AuthorizationState, float]] = {}
        self._lock = threading.Lock()

    def _evict_expired(self, now: float) -> None:
        dead = [k for k, (_, exp) in self._records.items() if exp <= now]
        for k in dead:
            del self._records[k]

    async def put(self, token: str, state: AuthorizationState, ttl: int = DEFAULT_TTL) -> None:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            self._records[token] = (state, now + ttl)

    async def take_once(self, token: str) -> Optional[AuthorizationState]:
        with self._lock:
            entry = self._records.pop(token, None)
            if entry is None:
                return None
            state, expires_at = entry
            if expires_at <= self._clock():
                return None
            return state

    async def discard(self, token: str) -> None:
        with self._lock:
            self._records.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired(self._clock())
            return len(self._records)


class RedisStateStore(StateStore):
    """
    Redis-backed store: SET ... EX for the TTL, GETDEL for the atomic take.
    Needs Redis >= 6.2.
    """

    def __init__(self, client, prefix: str = KEY_PREFIX):
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = KEY_PREFIX) -> "RedisStateStore":
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, token: str) -> str:
        return f"{self._prefix}{token}"

    async def put(self, token: str, state: AuthorizationState, ttl: int = DEFAULT_TTL) -> None:
        await self._redis.set(self._key(token), state.model_dump_json(), ex=ttl)

    async def take_once(self, token: str) -> Optional[AuthorizationState]:
        raw = await self._redis.getdel(self._key(token))
        if raw is None:
            return None
        try:
            return AuthorizationState.model_validate_json(raw)
        except ValidationError:
            # unreadable record: it is gone now either way, treat as unknown
            log.warning("dropping unreadable oauth2 state record for key %s", self._key(token)[:24])
            return None

    async def discard(self, token: str) -> None:
        await self._redis.delete(self._key(token))

    async def close(self) -> None:
        await self._redis.aclose()


def build_state_store(settings: Settings) -> StateStore:
    url = settings.state_store_url
    if url.startswith(("redis://", "rediss://", "unix://")):
        log.info("oauth2 state store: redis")
        return RedisStateStore.from_url(url)
    log.info("oauth2 state store: in-memory (single instance only)")
    return InMemoryStateStore()
