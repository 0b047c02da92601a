from fastapi import FastAPI
import uvicorn

from opsdesk.agent.engine import ChatEngine
from opsdesk.agent.preferences import PreferenceStore
from opsdesk.agent.tracer import Tracer
from opsdesk.agent.transcript import Transcript
from opsdesk.api.routes import router
from opsdesk.backend.session import SessionManager
from opsdesk.db.repo import SqlKeyValueStore
from opsdesk.db.session import SessionLocal, init_db
from opsdesk.llm.router import ReasoningService


app = FastAPI(title="OpsDesk Tool-Chain Engine", version="0.1.0")
app.include_router(router, prefix="/v1")


@app.on_event("startup")
async def on_startup():
    await init_db()
    store = PreferenceStore(SqlKeyValueStore(SessionLocal))
    await store.load()
    app.state.engine = ChatEngine(
        SessionManager(),
        ReasoningService(),
        store,
        Transcript(SessionLocal),
        Tracer(SessionLocal),
    )


@app.on_event("shutdown")
async def on_shutdown():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.session.disconnect()


def run():
    uvicorn.run("opsdesk.main:app", host="127.0.0.1", port=8000)
