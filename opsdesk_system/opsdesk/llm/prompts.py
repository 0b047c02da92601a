import json
from typing import Iterable

from opsdesk.tools.models import ToolDescriptor


PLANNER_SYSTEM = """You are a service-management platform expert that converts natural language requests into precise tool calls.
Always respond with valid JSON only."""


PLANNER_RULES = """Respond with ONE JSON object matching exactly one of these shapes:

Single operation:
{
  "isChain": false,
  "reasoning": "string",
  "steps": [
    {"toolName": "exact_tool_name", "arguments": { ... }, "reasoning": "string"}
  ]
}

Several dependent operations:
{
  "isChain": true,
  "reasoning": "string",
  "steps": [
    {"toolName": "exact_tool_name", "arguments": { ... }, "reasoning": "string"},
    {"toolName": "exact_tool_name", "arguments": { ... }, "reasoning": "string", "dependsOn": 1}
  ]
}

Rules:
- toolName MUST be one of the available tool names, spelled exactly.
- Use isChain=true ONLY when the request needs more than one operation.
- Steps run in the listed order. Step numbers start at 1.
- When a step needs the record created or found by an earlier step, set "dependsOn" to that step number
  and write the placeholder {{step_N_result}} (N = that step number) where the identifier goes.
- A step may only reference steps that come BEFORE it.
- For queries/searches, use encoded queries (e.g. "active=true^priority=1").
- Use platform table names (incident, sys_user, problem, change_request, ...).
- Extract specific details from the user's message for arguments.

RESPOND ONLY WITH VALID JSON:"""


RESPONSE_SYSTEM = """You are a helpful service-management assistant that interprets tool outputs and provides natural language responses to users."""


SUMMARY_SYSTEM = """You are a helpful service-management assistant. You summarize the results of a sequence of operations that were executed for the user, in order."""


JSON_REPAIR_SYSTEM = "You are a strict JSON formatter. Return ONLY a valid JSON object."


def describe_tools(tools: Iterable[ToolDescriptor]) -> str:
    lines = []
    for t in tools:
        lines.append(
            f"- {t.name}: {t.description or 'No description available'}\n"
            f"  Required fields: {json.dumps(t.required_arguments)}\n"
            f"  Properties: {json.dumps(t.properties, ensure_ascii=False)}"
        )
    return "\n".join(lines)


def build_planner_prompt(user_request: str, tools: Iterable[ToolDescriptor]) -> str:
    return f"""Analyze the user's request and plan the tool calls needed to fulfil it.

User Request: "{user_request}"

Available Tools:
{describe_tools(tools)}

{PLANNER_RULES}"""


def build_response_prompt(user_request: str, tool_name: str, tool_output: str) -> str:
    return f"""The user asked: "{user_request}"

The {tool_name} tool was executed and returned:
{tool_output}

Based on the user's original question and the tool output, provide a clear, helpful response that:
1. Directly answers their question
2. Summarizes key information from the tool output
3. Uses natural language (not just raw data dumps)
4. Provides actionable insights when relevant

For example:
- If they asked "how many incidents are active?", count and tell them the number
- If they asked about specific records, highlight the relevant ones
- If they created something, confirm what was created with key details

Keep your response concise but complete."""


def build_summary_prompt(user_request: str, steps: list[tuple[int, str, str]]) -> str:
    blocks = "\n\n".join(
        f"Step {position} ({tool_name}) returned:\n{output}" for position, tool_name, output in steps
    )
    return f"""The user asked: "{user_request}"

The following operations were executed in order:

{blocks}

Write one response that:
1. Confirms what was done at each step, with the key identifiers and names
2. Answers the user's original request
3. Mentions anything the user still needs to do

Keep it concise."""


def build_repair_prompt(text: str) -> str:
    return f"Fix and output ONLY a JSON object for this content:\n{text}\nReturn ONLY JSON."
