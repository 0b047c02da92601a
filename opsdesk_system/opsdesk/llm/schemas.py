from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RawPlanStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tool_name: str = Field(..., alias="toolName", min_length=1)
    arguments: Any = Field(default_factory=dict)
    reasoning: str = ""
    depends_on: Optional[int] = Field(None, alias="dependsOn")


class RawPlan(BaseModel):
    """Planner output. One shape for both single-step and chain plans, discriminated by is_chain."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_chain: bool = Field(False, alias="isChain")
    reasoning: str = ""
    steps: List[RawPlanStep] = []
