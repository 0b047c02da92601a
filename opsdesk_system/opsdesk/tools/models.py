import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ToolDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    @property
    def required_arguments(self) -> list[str]:
        req = self.input_schema.get("required") or []
        return [str(r) for r in req] if isinstance(req, list) else []

    @property
    def properties(self) -> dict[str, Any]:
        props = self.input_schema.get("properties") or {}
        return props if isinstance(props, dict) else {}


class ToolContent(BaseModel):
    type: str = "text"
    text: str | None = None
    data: Any = None


class ToolCallResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: list[ToolContent] = []
    is_error: bool = Field(default=False, alias="isError")

    @property
    def text(self) -> str:
        """Text items joined; non-text payloads rendered as JSON so nothing is dropped."""
        parts: list[str] = []
        for c in self.content:
            if c.text:
                parts.append(c.text)
            elif c.data is not None:
                try:
                    parts.append(json.dumps(c.data, ensure_ascii=False))
                except (TypeError, ValueError):
                    parts.append(str(c.data))
        return "\n\n".join(parts)
