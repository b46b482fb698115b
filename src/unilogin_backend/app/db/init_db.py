# src/unilogin_backend/app/db/init_db.py
import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

from unilogin_backend.app.core.config import get_settings
from unilogin_backend.app.db.session import Base, create_engine_and_sessions
from unilogin_backend.app.db import models  # noqa: F401  ensure model classes are registered


async def init_models(engine: AsyncEngine) -> None:
    """
    Creates all tables defined in SQLAlchemy models.
    Safe to run multiple times due to CREATE IF NOT EXISTS behavior.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _main() -> None:
    settings = get_settings()
    engine, _ = create_engine_and_sessions(settings.database_url, echo=settings.database_echo)
    try:
        await init_models(engine)
    finally:
        await engine.dispose()


# Allows:
#   python -m unilogin_backend.app.db.init_db
if __name__ == "__main__":
    asyncio.run(_main())
