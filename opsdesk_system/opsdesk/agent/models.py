"""
Plan / execution data model.
What it defines:
- ExecutionStep, ExecutionPlan (validated, frozen)
- StepResult (one per successfully executed step)
- PendingExecution (plan + request text held while gating is unresolved)
- GateRequirement, Selection

And, the main purpose:
Typed representation of what will run, and what did run.
"""


from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from opsdesk.core.ids import new_id


class GateRequirement(str, Enum):
    TRACKING_CONTAINER = "tracking_container"
    EXECUTION_SCOPE = "execution_scope"


class Selection(BaseModel):
    """A backend object chosen by the operator (a scope or a tracking container)."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class ExecutionStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0)
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    rationale: str = ""
    depends_on: Optional[int] = None  # 1-based number of an earlier step

    @property
    def number(self) -> int:
        return self.index + 1


class ExecutionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: List[ExecutionStep]
    is_chain: bool = False
    rationale: str = ""
    is_fallback: bool = False

    @property
    def tool_names(self) -> list[str]:
        return [s.tool_name for s in self.steps]


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_index: int
    tool_name: str
    raw_output: str
    resolved_arguments: dict[str, Any]

    @property
    def position(self) -> int:
        return self.step_index + 1


class PendingExecution(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("exec"))
    plan: ExecutionPlan
    request_text: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
