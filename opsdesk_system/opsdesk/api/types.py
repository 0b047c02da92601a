"""
API request and response schemas.
What it defines:
- Session connect payload (optional backend launch overrides)
- Chat + gate confirmation payloads
- Preference lock payload
- Status / tool listing responses

And, the main purpose:
Ensure structured communication between the desktop shell and the engine.
"""


from typing import Optional

from pydantic import BaseModel, Field, model_validator

from opsdesk.agent.models import Selection


class ConnectRequest(BaseModel):
    command: Optional[str] = Field(None, description="Backend executable; defaults to BACKEND_COMMAND")
    args: Optional[list[str]] = None
    cwd: Optional[str] = None
    env: Optional[dict[str, str]] = None


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)


class ScopeConfirmation(BaseModel):
    selection: Selection
    lock: bool = False


class TrackingContainerConfirmation(BaseModel):
    selection: Optional[Selection] = None
    create_description: Optional[str] = Field(None, description="Create a new container from this description")
    lock: bool = False

    @model_validator(mode="after")
    def _one_choice(self):
        has_new = bool((self.create_description or "").strip())
        if (self.selection is None) == (not has_new):
            raise ValueError("Provide exactly one of selection or create_description")
        return self


class LockRequest(BaseModel):
    execution_scope: Optional[bool] = None
    tracking_container: Optional[bool] = None


class SessionStatusResponse(BaseModel):
    state: str
    message: Optional[str] = None
    tool_count: int = 0


class ToolInfo(BaseModel):
    name: str
    description: str = ""
    required: list[str] = []
    modifying: bool = False
