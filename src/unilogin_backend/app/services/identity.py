# src/unilogin_backend/app/services/identity.py

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from unilogin_backend.app.core.errors import DuplicateIdentity
from unilogin_backend.app.core.trace import auth_trace
from unilogin_backend.app.db.models import User, UserIdentity
from unilogin_backend.app.schemas.auth import ClientPlatform, NormalizedIdentity, Provider

log = logging.getLogger(__name__)


# ------------------------------------------------------------
# Store contract: the only queries the resolver needs
# ------------------------------------------------------------
async def find_identity(db: AsyncSession, provider: Provider, subject_id: str) -> Optional[UserIdentity]:
    stmt = select(UserIdentity).where(
        UserIdentity.provider == provider.value,
        UserIdentity.provider_sub == subject_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def find_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def insert_user(
    db: AsyncSession,
    identity: NormalizedIdentity,
    provider: Provider,
    email: Optional[str] = None,
) -> User:
    user = User(
        name=identity.name or identity.email or f"{provider.value}:{identity.subject_id}",
        email=email,
        image_url=identity.avatar_url,
        primary_provider=provider.value,
    )
    db.add(user)
    # flush to get user.id populated without committing yet
    await db.flush()
    return user


async def insert_identity(
    db: AsyncSession,
    user: User,
    identity: NormalizedIdentity,
    provider: Provider,
    platform: ClientPlatform,
) -> UserIdentity:
    row = UserIdentity(
        user_id=user.id,
        provider=provider.value,
        provider_sub=identity.subject_id,
        platform=platform.value,
        email=identity.email,
        display_name=identity.name,
        image_url=identity.avatar_url,
    )
    db.add(row)
    await db.flush()
    return row


def touch_identity(row: UserIdentity, platform: ClientPlatform) -> None:
    row.last_login_at = datetime.now(timezone.utc)
    row.platform = platform.value


# ------------------------------------------------------------
# Resolver
# ------------------------------------------------------------
class IdentityResolver:
    """
    Given an external identity (Google / Facebook / Apple), return the local
    User, creating User and UserIdentity rows if needed.

    Rules:
      1. Known (provider, subject) -> bump last login + platform, return its User.
      2. Else, if linking by email is on and a User has that email -> reuse it.
      3. Else create a new User. Then link a new UserIdentity to it.

    Resolutions of the same (provider, subject) inside this process queue up
    behind each other, so a replayed callback lands on the row the first one
    created. Across processes the database constraints decide:
    each attempt runs in one transaction, and when a concurrent attempt wins
    the (provider, subject) or email unique constraint everything this attempt
    wrote is rolled back and DuplicateIdentity is raised.
    """

    def __init__(self, sessions: async_sessionmaker, link_by_email: bool = True):
        self._sessions = sessions
        self.link_by_email = link_by_email
        self._inflight: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, provider: Provider, subject_id: str) -> asyncio.Lock:
        key = (provider.value, subject_id)
        lock = self._inflight.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._inflight[key] = lock
        return lock

    async def resolve_or_create(
        self,
        identity: NormalizedIdentity,
        provider: Provider,
        platform: ClientPlatform,
    ) -> User:
        provider = Provider.parse(provider)
        platform = ClientPlatform.parse(platform)

        async with self._lock_for(provider, identity.subject_id), self._sessions() as db:
            try:
                async with db.begin():
                    user = await self._resolve(db, identity, provider, platform)
            except IntegrityError as ex:
                log.warning(
                    "identity conflict provider=%s sub=%s: %s",
                    provider.value, identity.subject_id, ex.orig,
                )
                auth_trace("identity.conflict", provider=provider.value, sub=identity.subject_id)
                raise DuplicateIdentity(
                    f"{provider.value} identity is being linked by another request, retry login"
                )
        return user

    async def _resolve(
        self,
        db: AsyncSession,
        identity: NormalizedIdentity,
        provider: Provider,
        platform: ClientPlatform,
    ) -> User:
        # 1) Look up by (provider, subject)
        existing = await find_identity(db, provider, identity.subject_id)
        if existing is not None:
            touch_identity(existing, platform)
            user = await db.get(User, existing.user_id)
            auth_trace("identity.known", provider=provider.value, user_id=existing.user_id)
            return user

        # 2) No identity yet; try the account that already owns this email
        user: Optional[User] = None
        owner = await find_user_by_email(db, identity.email) if identity.email else None
        if owner is not None and self.link_by_email:
            user = owner
            auth_trace("identity.linked_by_email", provider=provider.value, user_id=user.id)

        # 3) Otherwise a brand-new account; an unlinked twin keeps the email on its identity row only
        if user is None:
            email = identity.email if owner is None else None
            user = await insert_user(db, identity, provider, email=email)
            auth_trace("identity.user_created", provider=provider.value, user_id=user.id)

        await insert_identity(db, user, identity, provider, platform)
        log.info(
            "linked %s identity to user %s (platform=%s)", provider.value, user.id, platform.value
        )
        return user
