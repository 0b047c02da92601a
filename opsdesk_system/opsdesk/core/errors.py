"""
Error taxonomy shared by every layer.

Recovered locally (degraded fallback): PlanValidationError, ReasoningServiceError, PersistenceError.
Surfaced to the operator: StepExecutionError / ChainExecutionError, BackendConnectionError,
ContextSyncError, PendingExecutionConflict.
"""

from typing import Any


class OpsDeskError(Exception):
    pass


# Tool backend

class BackendError(OpsDeskError):
    pass


class BackendConnectionError(BackendError):
    """Session could not be established, discovered, or is not currently connected."""


class TransportError(BackendError):
    """JSON-RPC transport failure: process gone, timeout or an RPC error object."""


# Planning

class PlanValidationError(OpsDeskError):
    pass


class EmptyPlanError(PlanValidationError):
    pass


class UnknownToolError(PlanValidationError):
    def __init__(self, tool_name: str, position: int):
        self.tool_name = tool_name
        self.position = position
        super().__init__(f"Step {position} references unknown tool '{tool_name}'")


class InvalidDependencyOrderError(PlanValidationError):
    def __init__(self, position: int, referenced: Any):
        self.position = position
        self.referenced = referenced
        super().__init__(
            f"Step {position} depends on step {referenced}, which does not run before it"
        )


# Execution

class StepExecutionError(OpsDeskError):
    def __init__(self, position: int, tool_name: str, message: str):
        self.position = position
        self.tool_name = tool_name
        self.message = message
        super().__init__(f"Step {position} ({tool_name}) failed: {message}")


class ChainExecutionError(OpsDeskError):
    def __init__(self, failure: StepExecutionError, results: list):
        self.failure = failure
        self.results = results
        super().__init__(str(failure))

    @property
    def position(self) -> int:
        return self.failure.position

    @property
    def tool_name(self) -> str:
        return self.failure.tool_name


class ContextSyncError(OpsDeskError):
    """Scope or tracking-container state could not be pushed to the backend."""


# Reasoning service / persistence

class ReasoningServiceError(OpsDeskError):
    pass


class PersistenceError(OpsDeskError):
    pass


# Gating / single-flight

class GateStateError(OpsDeskError):
    pass


class PendingExecutionConflict(OpsDeskError):
    def __init__(self, pending_request: str):
        self.pending_request = pending_request
        super().__init__(
            f"A request is still waiting for confirmation: \"{pending_request}\". "
            "Confirm or cancel it first."
        )
