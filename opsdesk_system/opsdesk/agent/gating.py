"""
Gating controller.
What it does:
- Decides whether a plan needs operator confirmation of scope / tracking container
- Holds the single PendingExecution while confirmation is outstanding
- Walks Idle -> AwaitingScope -> AwaitingTrackingContainer -> Ready -> Idle
- Persists each confirmation to the preference store

And, the main purpose:
Pause a chain before any side effect until its context is confirmed, and resume it
from an independent UI event.
"""


from enum import Enum

from opsdesk.agent.models import ExecutionPlan, GateRequirement, PendingExecution, Selection
from opsdesk.agent.preferences import PreferenceStore, Preferences
from opsdesk.core.errors import GateStateError
from opsdesk.core.logging import get_logger
from opsdesk.tools.classify import is_modifying_tool

log = get_logger("agent.gating")


class GateState(str, Enum):
    IDLE = "idle"
    AWAITING_SCOPE = "awaiting_scope"
    AWAITING_TRACKING_CONTAINER = "awaiting_tracking_container"
    READY = "ready"


def step_requirements(tool_name: str) -> set[GateRequirement]:
    if is_modifying_tool(tool_name):
        return {GateRequirement.EXECUTION_SCOPE, GateRequirement.TRACKING_CONTAINER}
    return set()


def plan_is_gating(plan: ExecutionPlan) -> bool:
    return any(step_requirements(s.tool_name) for s in plan.steps)


def needs_scope(plan: ExecutionPlan, prefs: Preferences) -> bool:
    sc = prefs.execution_scope
    return plan_is_gating(plan) and sc.enabled and not sc.locked


def needs_tracking_container(plan: ExecutionPlan, prefs: Preferences) -> bool:
    tc = prefs.tracking_container
    return plan_is_gating(plan) and tc.enabled and not tc.locked


class GatingController:
    def __init__(self, store: PreferenceStore):
        self.store = store
        self.state = GateState.IDLE
        self.pending: PendingExecution | None = None

    @property
    def is_pending(self) -> bool:
        return self.pending is not None

    def begin(self, pending: PendingExecution) -> GateState:
        if self.state != GateState.IDLE:
            raise GateStateError(f"Cannot start gating while {self.state.value}")
        self.pending = pending
        prefs = self.store.snapshot()
        if needs_scope(pending.plan, prefs):
            self._move(GateState.AWAITING_SCOPE)
        elif needs_tracking_container(pending.plan, prefs):
            self._move(GateState.AWAITING_TRACKING_CONTAINER)
        else:
            self._move(GateState.READY)
        return self.state

    async def confirm_scope(self, selection: Selection, lock: bool = False) -> GateState:
        self._expect(GateState.AWAITING_SCOPE)
        await self.store.set_scope(selection)
        if lock:
            await self.store.lock_scope(True)
        if needs_tracking_container(self.pending.plan, self.store.snapshot()):
            self._move(GateState.AWAITING_TRACKING_CONTAINER)
        else:
            self._move(GateState.READY)
        return self.state

    async def confirm_tracking_container(self, selection: Selection, lock: bool = False) -> GateState:
        self._expect(GateState.AWAITING_TRACKING_CONTAINER)
        await self.store.set_tracking_container(selection)
        if lock:
            await self.store.lock_tracking_container(True)
        self._move(GateState.READY)
        return self.state

    def take_ready(self) -> PendingExecution:
        self._expect(GateState.READY)
        pending, self.pending = self.pending, None
        self._move(GateState.IDLE)
        return pending

    def cancel(self) -> PendingExecution | None:
        pending, self.pending = self.pending, None
        if pending is not None:
            log.info(f"Discarded pending execution {pending.id} ({self.state.value})")
        self._move(GateState.IDLE)
        return pending

    def _expect(self, state: GateState) -> None:
        if self.state != state or self.pending is None:
            raise GateStateError(f"Expected {state.value}, but gating is {self.state.value}")

    def _move(self, state: GateState) -> None:
        if state != self.state:
            log.info(f"Gating {self.state.value} -> {state.value}")
        self.state = state
