"""
Stores detailed execution logs.
What it records:
- Plans (validated or fallback)
- Gating transitions
- Context pushes
- Tool calls and outputs
- Summaries and errors

And, the main purpose:
Observability and debugging of chain execution.
"""


import json

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from opsdesk.core.ids import new_id
from opsdesk.core.logging import get_logger
from opsdesk.db.models import TraceEvent
from opsdesk.db.repo import add_trace, get_trace

log = get_logger("agent.tracer")


def _safe_jsonable(value):
    try:
        json.dumps(value, ensure_ascii=False)
        return value
    except (TypeError, ValueError):
        return str(value)


class Tracer:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def trace(self, execution_id: str, step_index: int | None, event_type: str, payload: dict):
        tr = TraceEvent(
            id=new_id("tr"),
            execution_id=execution_id,
            step_index=step_index,
            event_type=event_type,
            payload=json.dumps(_safe_jsonable(payload), ensure_ascii=False),
        )
        try:
            async with self.session_factory() as db:
                await add_trace(db, tr)
        except SQLAlchemyError as e:
            # tracing never interrupts a chain
            log.warning(f"Failed to record trace event {event_type} for {execution_id}: {e}")

    async def events(self, execution_id: str) -> list[dict]:
        async with self.session_factory() as db:
            rows = await get_trace(db, execution_id)
        return [
            {
                "id": tr.id,
                "step_index": tr.step_index,
                "type": tr.event_type,
                "payload": json.loads(tr.payload),
                "at": tr.created_at.isoformat(),
            }
            for tr in rows
        ]
