"""
Creates the execution plan.
What it does:
- Sends the user request + tool catalog to the reasoning service
- Validates the proposed plan (non-empty, known tools, dependency order)
- Falls back to deterministic keyword-based tool selection when the plan is unusable

And, the main purpose:
Convert a request into a plan that is safe to execute. Plan content is advisory;
only its structure is trusted, and only after validation.
"""


import re
from typing import Any

from pydantic import ValidationError

from opsdesk.agent.models import ExecutionPlan, ExecutionStep
from opsdesk.agent.resolver import referenced_steps
from opsdesk.core.errors import (
    EmptyPlanError,
    InvalidDependencyOrderError,
    PlanValidationError,
    ReasoningServiceError,
    UnknownToolError,
)
from opsdesk.core.logging import get_logger
from opsdesk.llm.prompts import PLANNER_SYSTEM, build_planner_prompt
from opsdesk.llm.schemas import RawPlan
from opsdesk.tools.models import ToolDescriptor
from opsdesk.tools.registry import ToolCatalog

log = get_logger("agent.planner")


def _normalize_raw(raw: Any) -> Any:
    # single tool-selection shape: {"toolName", "arguments", "reasoning"}
    if isinstance(raw, dict) and "steps" not in raw and "toolName" in raw:
        return {
            "isChain": False,
            "reasoning": raw.get("reasoning", ""),
            "steps": [raw],
        }
    return raw


def validate_plan(raw: Any, catalog: ToolCatalog) -> ExecutionPlan:
    try:
        parsed = RawPlan.model_validate(_normalize_raw(raw))
    except ValidationError as e:
        raise PlanValidationError(f"Plan does not match the expected shape: {e.error_count()} error(s)") from e

    if not parsed.steps:
        raise EmptyPlanError("Plan contains no steps")

    raw_steps = parsed.steps
    if not parsed.is_chain and len(raw_steps) > 1:
        log.warning(f"Non-chain plan has {len(raw_steps)} steps; keeping the first and ignoring the rest")
        raw_steps = raw_steps[:1]

    steps: list[ExecutionStep] = []
    for idx, rs in enumerate(raw_steps):
        number = idx + 1
        if rs.tool_name not in catalog:
            raise UnknownToolError(rs.tool_name, number)
        if not isinstance(rs.arguments, dict):
            raise PlanValidationError(f"Step {number} arguments must be an object")

        if rs.depends_on is not None and not (1 <= rs.depends_on < number):
            raise InvalidDependencyOrderError(number, rs.depends_on)
        for ref in sorted(referenced_steps(rs.arguments)):
            if not (1 <= ref < number):
                raise InvalidDependencyOrderError(number, ref)

        missing = [a for a in catalog.get(rs.tool_name).required_arguments if a not in rs.arguments]
        if missing:
            log.warning(f"Step {number} ({rs.tool_name}) is missing required arguments {missing}")

        steps.append(
            ExecutionStep(
                index=idx,
                tool_name=rs.tool_name,
                arguments=rs.arguments,
                rationale=rs.reasoning,
                depends_on=rs.depends_on,
            )
        )

    return ExecutionPlan(steps=steps, is_chain=parsed.is_chain, rationale=parsed.reasoning)


# ----------------------------
# Deterministic fallback
# ----------------------------

# (intent, request cues, tool-name fragment)
_INTENTS = [
    ("test", ("test", "connection"), "test"),
    ("create", ("create", "new"), "create"),
    ("query", ("how many", "query", "find", "search", "list", "show", "count"), "query"),
]

_TABLE_HINTS = [
    ("change", "change_request"),
    ("problem", "problem"),
    ("user", "sys_user"),
    ("incident", "incident"),
]

_STOPWORDS = {"the", "a", "an", "and", "or", "to", "of", "for", "in", "on", "me", "please", "all", "with", "is", "are"}


def _words(text: str) -> set[str]:
    return {w for w in re.findall(r"[a-z0-9]+", (text or "").lower()) if w not in _STOPWORDS and len(w) > 2}


def _guess_table(low: str) -> str:
    for cue, table in _TABLE_HINTS:
        if cue in low:
            return table
    return "incident"


def _score(tool: ToolDescriptor, request_words: set[str]) -> int:
    return len(request_words & (_words(tool.name.replace("-", " ").replace("_", " ")) | _words(tool.description)))


def _fallback_arguments(tool: ToolDescriptor, intent: str | None, request: str) -> dict:
    low = request.lower()
    props = tool.properties
    candidates: dict[str, Any] = {}

    if intent == "query":
        candidates = {"table": _guess_table(low), "query": "active=true", "limit": 10}
    elif intent == "create":
        if "flow" in tool.name.lower():
            candidates = {"name": "New Flow", "description": f"Created via OpsDesk: {request}"}
        else:
            candidates = {
                "table": _guess_table(low),
                "fields": {
                    "short_description": request,
                    "description": f"Created via OpsDesk: {request}",
                },
                "name": request[:80],
                "description": f"Created via OpsDesk: {request}",
            }

    if not props:
        return {}
    return {k: v for k, v in candidates.items() if k in props}


def fallback_plan(request: str, catalog: ToolCatalog) -> ExecutionPlan:
    """Single-step plan by keyword matching the request against tool names and descriptions."""
    tools = list(catalog)
    if not tools:
        raise PlanValidationError("No tools are available for fallback planning")

    low = (request or "").lower()
    request_words = _words(request)

    for intent, cues, fragment in _INTENTS:
        if not any(re.search(rf"\b{re.escape(c)}\b", low) for c in cues):
            continue
        candidates = catalog.find(fragment)
        if intent == "create":
            if "flow" in low and catalog.find("create", "flow"):
                candidates = catalog.find("create", "flow")
            elif catalog.find("create", "record"):
                candidates = catalog.find("create", "record")
        if not candidates:
            continue
        tool = max(candidates, key=lambda t: _score(t, request_words))
        reason = f"Fallback: request matched '{intent}' intent, selected {tool.name}"
        return _single_step(tool, _fallback_arguments(tool, intent, request), reason)

    best = max(tools, key=lambda t: _score(t, request_words))
    if _score(best, request_words) > 0:
        return _single_step(best, _fallback_arguments(best, None, request), f"Fallback: best keyword match {best.name}")

    default = (catalog.find("test") or tools)[0]
    return _single_step(default, {}, "Fallback: No clear pattern matched, using default tool")


def _single_step(tool: ToolDescriptor, arguments: dict, reason: str) -> ExecutionPlan:
    log.info(reason)
    return ExecutionPlan(
        steps=[ExecutionStep(index=0, tool_name=tool.name, arguments=arguments, rationale=reason)],
        is_chain=False,
        rationale=reason,
        is_fallback=True,
    )


async def make_plan(request: str, catalog: ToolCatalog, reasoner) -> ExecutionPlan:
    try:
        raw = await reasoner.chat_json(PLANNER_SYSTEM, build_planner_prompt(request, catalog))
        plan = validate_plan(raw, catalog)
        log.info(f"Planned {len(plan.steps)} step(s) (chain={plan.is_chain}): {plan.tool_names}")
        return plan
    except ReasoningServiceError as e:
        log.warning(f"Reasoning service unavailable for planning: {e}. Using fallback selection")
    except PlanValidationError as e:
        log.warning(f"Rejected plan: {e}. Using fallback selection")
    return fallback_plan(request, catalog)
