from fastapi import APIRouter, HTTPException, Request

from opsdesk.agent.engine import ChatEngine, ChatOutcome
from opsdesk.agent.preferences import Preferences
from opsdesk.api.types import (
    ChatRequest,
    ConnectRequest,
    LockRequest,
    ScopeConfirmation,
    SessionStatusResponse,
    ToolInfo,
    TrackingContainerConfirmation,
)
from opsdesk.backend.transport import ServerConfig
from opsdesk.core.errors import BackendConnectionError, GateStateError, PendingExecutionConflict
from opsdesk.tools.classify import is_modifying_tool


"""
FastAPI routes for the desktop shell.
What it provides:
- Backend session connect / disconnect / ping / status
- Tool catalog listing
- Chat requests and gate confirmations (scope, tracking container, cancel)
- Preferences read / write / lock
- Transcript and execution trace

And, the main purpose:
Expose the engine over HTTP.
"""

router = APIRouter()


def _engine(request: Request) -> ChatEngine:
    return request.app.state.engine


def _status(engine: ChatEngine) -> SessionStatusResponse:
    st = engine.session.status
    return SessionStatusResponse(state=st.state.value, message=st.message, tool_count=len(engine.session.catalog))


# ----------------------------
# Session
# ----------------------------

@router.post("/session/connect", response_model=SessionStatusResponse)
async def api_connect(req: ConnectRequest, request: Request):
    engine = _engine(request)
    config = ServerConfig.from_settings()
    if req.command:
        config.command = req.command
    if req.args is not None:
        config.args = req.args
    if req.cwd is not None:
        config.cwd = req.cwd
    if req.env is not None:
        config.env = req.env

    try:
        await engine.connect(config)
    except BackendConnectionError as e:
        raise HTTPException(503, str(e))
    return _status(engine)


@router.post("/session/disconnect", response_model=SessionStatusResponse)
async def api_disconnect(request: Request):
    engine = _engine(request)
    await engine.disconnect()
    return _status(engine)


@router.post("/session/ping", response_model=SessionStatusResponse)
async def api_ping(request: Request):
    engine = _engine(request)
    await engine.session.check_liveness()
    return _status(engine)


@router.get("/session/status", response_model=SessionStatusResponse)
async def api_status(request: Request):
    return _status(_engine(request))


@router.get("/tools", response_model=list[ToolInfo])
async def api_tools(request: Request):
    catalog = _engine(request).session.catalog
    return [
        ToolInfo(
            name=t.name,
            description=t.description,
            required=t.required_arguments,
            modifying=is_modifying_tool(t.name),
        )
        for t in catalog
    ]


# ----------------------------
# Chat + gating
# ----------------------------

@router.post("/chat", response_model=ChatOutcome)
async def api_chat(req: ChatRequest, request: Request):
    try:
        return await _engine(request).handle_request(req.message)
    except PendingExecutionConflict as e:
        raise HTTPException(409, str(e))


@router.get("/gate")
async def api_gate(request: Request):
    engine = _engine(request)
    view = await engine.gate_view()
    if view is None:
        return {"state": engine.gating.state.value, "pending": None}
    return {"state": engine.gating.state.value, "pending": view.model_dump(mode="json")}


@router.post("/gate/scope", response_model=ChatOutcome)
async def api_confirm_scope(req: ScopeConfirmation, request: Request):
    try:
        return await _engine(request).confirm_scope(req.selection, req.lock)
    except GateStateError as e:
        raise HTTPException(409, str(e))


@router.post("/gate/tracking-container", response_model=ChatOutcome)
async def api_confirm_tracking_container(req: TrackingContainerConfirmation, request: Request):
    try:
        return await _engine(request).confirm_tracking_container(
            req.selection, create_description=req.create_description, lock=req.lock
        )
    except GateStateError as e:
        raise HTTPException(409, str(e))


@router.post("/gate/cancel", response_model=ChatOutcome)
async def api_cancel(request: Request):
    return await _engine(request).cancel()


# ----------------------------
# Preferences
# ----------------------------

@router.get("/preferences", response_model=Preferences)
async def api_get_preferences(request: Request):
    return _engine(request).store.snapshot()


@router.put("/preferences", response_model=Preferences)
async def api_put_preferences(prefs: Preferences, request: Request):
    return await _engine(request).store.replace(prefs)


@router.post("/preferences/locks", response_model=Preferences)
async def api_locks(req: LockRequest, request: Request):
    store = _engine(request).store
    if req.execution_scope is not None:
        await store.lock_scope(req.execution_scope)
    if req.tracking_container is not None:
        await store.lock_tracking_container(req.tracking_container)
    return store.snapshot()


# ----------------------------
# Transcript + trace
# ----------------------------

@router.get("/transcript")
async def api_transcript(request: Request, limit: int | None = None):
    entries = await _engine(request).transcript.entries(limit)
    return [e.model_dump(mode="json") for e in entries]


@router.get("/executions/{execution_id}/trace")
async def api_trace(execution_id: str, request: Request):
    events = await _engine(request).tracer.events(execution_id)
    if not events:
        raise HTTPException(404, "execution not found")
    return events
