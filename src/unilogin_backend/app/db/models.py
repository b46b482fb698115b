# src/unilogin_backend/app/db/models.py

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Local account. May accumulate identities from several providers.
    email is unique so the "first seen by email" path cannot create twins.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255))
    email = Column(String(320), unique=True, nullable=True)
    phone = Column(String(32))
    image_url = Column(String(500))
    # provider that created the account: "google", "facebook", "apple"
    primary_provider = Column(String(32), nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    identities = relationship(
        "UserIdentity",
        back_populates="user",
        cascade="all, delete-orphan",
    )


class UserIdentity(Base):
    """
    One external login identity (provider + provider's stable subject id).

    Rules:
      - (provider, provider_sub) is globally unique
      - platform is the client platform that last logged in through it
    """
    __tablename__ = "user_identities"
    __table_args__ = (
        UniqueConstraint("provider", "provider_sub", name="uq_user_identities_provider_sub"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider = Column(String(32), nullable=False)
    provider_sub = Column(String(255), nullable=False)
    platform = Column(String(32), nullable=False)

    email = Column(String(320))
    display_name = Column(String(255))
    image_url = Column(String(500))

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_login_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    user = relationship("User", back_populates="identities")
