# opsdesk/db/repo.py

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opsdesk.core.errors import PersistenceError
from opsdesk.db.models import SettingKV, TraceEvent, TranscriptMessage


async def get_setting(db: AsyncSession, key: str) -> str | None:
    res = await db.execute(select(SettingKV).where(SettingKV.key == key))
    row = res.scalar_one_or_none()
    return row.value if row else None


async def put_setting(db: AsyncSession, key: str, value: str) -> None:
    row = await db.get(SettingKV, key)
    if row is None:
        db.add(SettingKV(key=key, value=value))
    else:
        row.value = value
    await db.commit()


async def add_message(db: AsyncSession, msg: TranscriptMessage) -> TranscriptMessage:
    db.add(msg)
    await db.commit()
    await db.refresh(msg)
    return msg


async def list_messages(db: AsyncSession, limit: int | None = None) -> list[TranscriptMessage]:
    if not limit:
        res = await db.execute(select(TranscriptMessage).order_by(TranscriptMessage.seq))
        return list(res.scalars().all())
    # newest `limit` messages, returned oldest first
    res = await db.execute(select(TranscriptMessage).order_by(TranscriptMessage.seq.desc()).limit(limit))
    return list(reversed(res.scalars().all()))


async def add_trace(db: AsyncSession, tr: TraceEvent) -> TraceEvent:
    db.add(tr)
    await db.commit()
    await db.refresh(tr)
    return tr


async def get_trace(db: AsyncSession, execution_id: str) -> list[TraceEvent]:
    res = await db.execute(
        select(TraceEvent)
        .where(TraceEvent.execution_id == execution_id)
        .order_by(TraceEvent.seq)
    )
    return list(res.scalars().all())


class SqlKeyValueStore:
    """Key -> text blob persistence on the settings table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get(self, key: str) -> str | None:
        try:
            async with self.session_factory() as db:
                return await get_setting(db, key)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read setting '{key}': {e}") from e

    async def put(self, key: str, value: str) -> None:
        try:
            async with self.session_factory() as db:
                await put_setting(db, key, value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to write setting '{key}': {e}") from e
