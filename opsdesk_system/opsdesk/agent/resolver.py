"""
Placeholder resolution between chain steps.

A step's arguments may carry tokens like ``{{step_1_result}}``. Each token is replaced by the
record identifier found in that step's output. When no identifier is found the token becomes
``result_from_step_<N>`` so the backend call still happens and fails visibly downstream.
Always returns a new tree; the step definition is never touched.
"""

import re
from typing import Any, Sequence

from opsdesk.agent.models import StepResult
from opsdesk.core.config import settings

PLACEHOLDER_RE = re.compile(r"\{\{\s*step[\s._-]*(\d+)[\s._-]*result\s*\}\}", re.IGNORECASE)


def missing_value(step_number: int) -> str:
    return f"result_from_step_{step_number}"


def referenced_steps(value: Any) -> set[int]:
    """1-based step numbers referenced anywhere in an argument tree."""
    found: set[int] = set()
    if isinstance(value, str):
        found.update(int(m) for m in PLACEHOLDER_RE.findall(value))
    elif isinstance(value, dict):
        for k, v in value.items():
            found |= referenced_steps(k)
            found |= referenced_steps(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            found |= referenced_steps(v)
    return found


def extract_record_id(text: str, pattern: str | None = None) -> str | None:
    m = re.search(pattern or settings.RECORD_ID_PATTERN, text or "")
    return m.group(0) if m else None


class PlaceholderResolver:
    def __init__(self, pattern: str | None = None):
        self.pattern = re.compile(pattern or settings.RECORD_ID_PATTERN)

    def value_for(self, step_number: int, results: Sequence[StepResult]) -> str:
        idx = step_number - 1
        if 0 <= idx < len(results):
            m = self.pattern.search(results[idx].raw_output or "")
            if m:
                return m.group(0)
        return missing_value(step_number)

    def resolve(self, arguments: Any, results: Sequence[StepResult]) -> Any:
        if isinstance(arguments, str):
            return PLACEHOLDER_RE.sub(lambda m: self.value_for(int(m.group(1)), results), arguments)
        if isinstance(arguments, dict):
            return {
                self.resolve(k, results) if isinstance(k, str) else k: self.resolve(v, results)
                for k, v in arguments.items()
            }
        if isinstance(arguments, (list, tuple)):
            return [self.resolve(v, results) for v in arguments]
        return arguments
