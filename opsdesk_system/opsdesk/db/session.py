from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from opsdesk.core.config import settings
from opsdesk.db.base import Base
from opsdesk.db import models  # noqa: F401


def make_engine(url: str | None = None) -> AsyncEngine:
    return create_async_engine(url or settings.DATABASE_URL, echo=False, future=True)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


engine = make_engine()
SessionLocal = make_session_factory(engine)


async def init_db(target: AsyncEngine | None = None):
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
