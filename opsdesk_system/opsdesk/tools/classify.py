"""
Read-only vs state-changing classification of backend tools.

A read-only match wins over a modifying match ("get-update-set" is read-only).
Names matching neither vocabulary are treated as non-gating.
"""

READ_ONLY_KEYWORDS = ("query", "search", "get", "list", "find", "test", "discover")
MODIFYING_KEYWORDS = (
    "create",
    "add",
    "update",
    "modify",
    "set",
    "implement",
    "delete",
    "remove",
    "change",
)


def is_read_only_tool(tool_name: str) -> bool:
    low = (tool_name or "").lower()
    return any(k in low for k in READ_ONLY_KEYWORDS)


def is_modifying_tool(tool_name: str) -> bool:
    if is_read_only_tool(tool_name):
        return False
    low = (tool_name or "").lower()
    return any(k in low for k in MODIFYING_KEYWORDS)
