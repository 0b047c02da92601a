"""
Orchestrates one chat request end to end.
What it does:
- Enforces single-flight (one pending or running execution at a time)
- Plans the request (reasoning service, or fallback selection)
- Runs the gating controller and returns confirmation prompts to the UI
- Pushes confirmed context to the backend, then runs the chain
- Writes every outcome to the transcript, success or failure

And, the main purpose:
Drive request -> plan -> gate -> execute -> response without ever dropping a request.
"""


import asyncio
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel

from opsdesk.agent.gating import GateState, GatingController, plan_is_gating
from opsdesk.agent.models import ExecutionPlan, ExecutionStep, PendingExecution, Selection, StepResult
from opsdesk.agent.planner import make_plan
from opsdesk.agent.preferences import PreferenceStore
from opsdesk.agent.runner import ChainRunner
from opsdesk.agent.tracer import Tracer
from opsdesk.agent.transcript import Transcript
from opsdesk.backend.context import PlatformContext
from opsdesk.backend.session import SessionManager
from opsdesk.backend.transport import ServerConfig
from opsdesk.core.config import settings
from opsdesk.core.errors import (
    BackendConnectionError,
    ChainExecutionError,
    ContextSyncError,
    GateStateError,
    PendingExecutionConflict,
    PlanValidationError,
)
from opsdesk.core.logging import get_logger
from opsdesk.tools.classify import is_modifying_tool
from opsdesk.tools.registry import ToolCatalog

log = get_logger("agent.engine")


class ChatStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_SCOPE = "awaiting_scope"
    AWAITING_TRACKING_CONTAINER = "awaiting_tracking_container"
    CANCELLED = "cancelled"


class ScopePrompt(BaseModel):
    kind: Literal["scope"] = "scope"
    request_text: str
    gated_tools: list[str]
    available: list[Selection]
    current: Optional[Selection] = None


class TrackingContainerPrompt(BaseModel):
    kind: Literal["tracking_container"] = "tracking_container"
    request_text: str
    gated_tools: list[str]
    available: list[Selection]
    current: Optional[Selection] = None
    scope: Optional[Selection] = None
    prefix: str
    naming_template: str


class ChatOutcome(BaseModel):
    status: ChatStatus
    message: str
    execution_id: Optional[str] = None
    prompt: Optional[Union[ScopePrompt, TrackingContainerPrompt]] = None
    results: list[StepResult] = []


def _gated_tools(plan: ExecutionPlan) -> list[str]:
    return [s.tool_name for s in plan.steps if is_modifying_tool(s.tool_name)]


class ChatEngine:
    def __init__(
        self,
        session: SessionManager,
        reasoner,
        store: PreferenceStore,
        transcript: Transcript,
        tracer: Tracer,
        *,
        context: PlatformContext | None = None,
        runner: ChainRunner | None = None,
        gating: GatingController | None = None,
        pending_policy: str | None = None,
    ):
        self.session = session
        self.reasoner = reasoner
        self.store = store
        self.transcript = transcript
        self.tracer = tracer
        self.context = context or PlatformContext(session)
        self.runner = runner or ChainRunner(session, reasoner, tracer=tracer)
        self.gating = gating or GatingController(store)
        self.pending_policy = (pending_policy or settings.PENDING_POLICY).lower()
        self._lock = asyncio.Lock()

    # ----------------------------
    # Session
    # ----------------------------

    async def connect(self, config: ServerConfig) -> ToolCatalog:
        async with self._lock:
            self._discard_pending("the backend session was restarted")
            try:
                catalog = await self.session.connect(config)
            except BackendConnectionError as e:
                await self.transcript.post("system", f"Connection failed: {e}")
                raise
            await self.transcript.post(
                "system", f"Connected to tool backend. Discovered {len(catalog)} tools."
            )
            return catalog

    async def disconnect(self) -> None:
        async with self._lock:
            self._discard_pending("the backend session was closed")
            await self.session.disconnect()
            await self.transcript.post("system", "Disconnected from tool backend.")

    # ----------------------------
    # Chat
    # ----------------------------

    async def handle_request(self, text: str) -> ChatOutcome:
        async with self._lock:
            await self.transcript.post("user", text)

            if self.gating.is_pending:
                pending = self.gating.pending
                if self.pending_policy != "supersede":
                    conflict = PendingExecutionConflict(pending.request_text)
                    await self.transcript.post("system", str(conflict), pending.id)
                    raise conflict
                self.gating.cancel()
                await self.tracer.trace(pending.id, None, "gate", {"event": "superseded"})
                await self.transcript.post(
                    "system", f"Discarded pending request \"{pending.request_text}\"; nothing was executed.", pending.id
                )

            if not self.session.is_connected:
                msg = "Not connected to the tool backend. Connect first, then retry your request."
                await self.transcript.post("system", msg)
                return ChatOutcome(status=ChatStatus.FAILED, message=msg)

            try:
                plan = await make_plan(text, self.session.catalog, self.reasoner)
            except PlanValidationError as e:
                msg = f"Could not plan \"{text}\": {e}"
                await self.transcript.post("system", msg)
                return ChatOutcome(status=ChatStatus.FAILED, message=msg)

            pending = PendingExecution(plan=plan, request_text=text)
            await self.tracer.trace(pending.id, None, "plan", plan.model_dump())
            self.gating.begin(pending)
            return await self._advance()

    async def confirm_scope(self, selection: Selection, lock: bool = False) -> ChatOutcome:
        async with self._lock:
            pending = self.gating.pending
            await self.gating.confirm_scope(selection, lock)
            await self.tracer.trace(
                pending.id, None, "gate", {"event": "scope_confirmed", "scope": selection.model_dump(), "lock": lock}
            )
            return await self._advance()

    async def confirm_tracking_container(
        self,
        selection: Selection | None = None,
        *,
        create_description: str | None = None,
        lock: bool = False,
    ) -> ChatOutcome:
        async with self._lock:
            if self.gating.state != GateState.AWAITING_TRACKING_CONTAINER:
                raise GateStateError(f"Expected awaiting_tracking_container, but gating is {self.gating.state.value}")
            pending = self.gating.pending

            if selection is None:
                if not (create_description or "").strip():
                    raise GateStateError("Choose an existing tracking container or describe a new one")
                name = self.store.generate_container_name(create_description)
                try:
                    selection = await self.context.create_tracking_container(name, create_description)
                except ContextSyncError as e:
                    msg = f"{e}. Choose another tracking container or cancel."
                    await self.transcript.post("system", msg, pending.id)
                    return ChatOutcome(
                        status=ChatStatus.AWAITING_TRACKING_CONTAINER,
                        message=msg,
                        execution_id=pending.id,
                        prompt=await self._container_prompt(pending),
                    )
                await self.transcript.post("system", f"Created tracking container {selection.name}.", pending.id)

            await self.gating.confirm_tracking_container(selection, lock)
            await self.tracer.trace(
                pending.id,
                None,
                "gate",
                {"event": "tracking_container_confirmed", "tracking_container": selection.model_dump(), "lock": lock},
            )
            return await self._advance()

    async def cancel(self) -> ChatOutcome:
        async with self._lock:
            pending = self.gating.cancel()
            if pending is None:
                return ChatOutcome(status=ChatStatus.CANCELLED, message="Nothing is waiting for confirmation.")
            msg = f"Cancelled \"{pending.request_text}\". Nothing was executed."
            await self.tracer.trace(pending.id, None, "gate", {"event": "cancelled"})
            await self.transcript.post("system", msg, pending.id)
            return ChatOutcome(status=ChatStatus.CANCELLED, message=msg, execution_id=pending.id)

    async def gate_view(self) -> ChatOutcome | None:
        """Current confirmation request, for a UI that reconnects while gating is pending."""
        pending = self.gating.pending
        if pending is None:
            return None
        if self.gating.state == GateState.AWAITING_SCOPE:
            return ChatOutcome(
                status=ChatStatus.AWAITING_SCOPE,
                message="Confirm the execution scope.",
                execution_id=pending.id,
                prompt=await self._scope_prompt(pending),
            )
        return ChatOutcome(
            status=ChatStatus.AWAITING_TRACKING_CONTAINER,
            message="Confirm the tracking container.",
            execution_id=pending.id,
            prompt=await self._container_prompt(pending),
        )

    # ----------------------------
    # Internals
    # ----------------------------

    async def _advance(self) -> ChatOutcome:
        pending = self.gating.pending
        state = self.gating.state

        if state == GateState.AWAITING_SCOPE:
            msg = f"\"{pending.request_text}\" will change data. Choose the execution scope to continue."
            await self.tracer.trace(pending.id, None, "gate", {"event": "awaiting_scope"})
            await self.transcript.post("system", msg, pending.id)
            return ChatOutcome(
                status=ChatStatus.AWAITING_SCOPE,
                message=msg,
                execution_id=pending.id,
                prompt=await self._scope_prompt(pending),
            )

        if state == GateState.AWAITING_TRACKING_CONTAINER:
            msg = f"\"{pending.request_text}\" will change data. Choose a tracking container to record the changes."
            await self.tracer.trace(pending.id, None, "gate", {"event": "awaiting_tracking_container"})
            await self.transcript.post("system", msg, pending.id)
            return ChatOutcome(
                status=ChatStatus.AWAITING_TRACKING_CONTAINER,
                message=msg,
                execution_id=pending.id,
                prompt=await self._container_prompt(pending),
            )

        return await self._execute(self.gating.take_ready())

    async def _execute(self, pending: PendingExecution) -> ChatOutcome:
        plan = pending.plan
        try:
            await self._sync_context(pending)
        except ContextSyncError as e:
            msg = f"Stopped before running \"{pending.request_text}\": {e}. Nothing was executed."
            await self.tracer.trace(pending.id, None, "error", {"error": str(e)})
            await self.transcript.post("system", msg, pending.id)
            return ChatOutcome(status=ChatStatus.FAILED, message=msg, execution_id=pending.id)

        try:
            outcome = await self.runner.run(
                plan,
                pending.request_text,
                execution_id=pending.id,
                on_progress=self._progress(pending, len(plan.steps)),
            )
        except ChainExecutionError as e:
            done = len(e.results)
            kept = (
                f" Step(s) 1-{done} completed and their changes remain in place."
                if done
                else " No step completed."
            )
            msg = f"\"{pending.request_text}\" stopped at step {e.position} ({e.tool_name}): {e.failure.message}.{kept}"
            await self.transcript.post("assistant", msg, pending.id)
            return ChatOutcome(status=ChatStatus.FAILED, message=msg, execution_id=pending.id, results=e.results)

        await self.transcript.post("assistant", outcome.response, pending.id)
        return ChatOutcome(
            status=ChatStatus.COMPLETED,
            message=outcome.response,
            execution_id=pending.id,
            results=outcome.results,
        )

    async def _sync_context(self, pending: PendingExecution) -> None:
        if not plan_is_gating(pending.plan):
            return
        prefs = self.store.snapshot()
        scope = prefs.execution_scope
        if scope.enabled and scope.current is not None:
            await self.context.push_scope(scope.current)
            await self.tracer.trace(pending.id, None, "context", {"scope": scope.current.model_dump()})
        tc = prefs.tracking_container
        if tc.enabled and tc.current is not None:
            await self.context.push_tracking_container(tc.current)
            await self.tracer.trace(pending.id, None, "context", {"tracking_container": tc.current.model_dump()})

    def _progress(self, pending: PendingExecution, total: int):
        async def notify(step: ExecutionStep, result: StepResult) -> None:
            line = f"Step {step.number}/{total}: {step.tool_name} completed."
            if step.rationale:
                line = f"{line} {step.rationale}"
            await self.transcript.post("system", line, pending.id)

        return notify

    async def _scope_prompt(self, pending: PendingExecution) -> ScopePrompt:
        prefs = self.store.snapshot()
        return ScopePrompt(
            request_text=pending.request_text,
            gated_tools=_gated_tools(pending.plan),
            available=await self.context.list_scopes(),
            current=prefs.execution_scope.current,
        )

    async def _container_prompt(self, pending: PendingExecution) -> TrackingContainerPrompt:
        prefs = self.store.snapshot()
        tc = prefs.tracking_container
        return TrackingContainerPrompt(
            request_text=pending.request_text,
            gated_tools=_gated_tools(pending.plan),
            available=await self.context.list_tracking_containers(),
            current=tc.current,
            scope=prefs.execution_scope.current,
            prefix=tc.prefix,
            naming_template=tc.naming_template,
        )

    def _discard_pending(self, reason: str) -> None:
        pending = self.gating.cancel()
        if pending is not None:
            log.info(f"Discarded pending execution {pending.id}: {reason}")
