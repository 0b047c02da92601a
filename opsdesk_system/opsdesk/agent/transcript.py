from datetime import datetime
from typing import Literal

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import async_sessionmaker

from opsdesk.core.ids import new_id
from opsdesk.db.models import TranscriptMessage
from opsdesk.db.repo import add_message, list_messages

Role = Literal["user", "assistant", "system"]


class TranscriptEntry(BaseModel):
    id: str
    role: Role
    content: str
    execution_id: str | None = None
    timestamp: datetime


def _entry(m: TranscriptMessage) -> TranscriptEntry:
    return TranscriptEntry(
        id=m.id,
        role=m.role,
        content=m.content,
        execution_id=m.execution_id,
        timestamp=m.created_at,
    )


class Transcript:
    """Ordered chat transcript rendered by the desktop shell."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def post(self, role: Role, content: str, execution_id: str | None = None) -> TranscriptEntry:
        msg = TranscriptMessage(id=new_id("msg"), role=role, content=content, execution_id=execution_id)
        async with self.session_factory() as db:
            msg = await add_message(db, msg)
        return _entry(msg)

    async def entries(self, limit: int | None = None) -> list[TranscriptEntry]:
        async with self.session_factory() as db:
            rows = await list_messages(db, limit)
        return [_entry(m) for m in rows]
