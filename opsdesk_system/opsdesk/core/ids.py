import uuid


def new_id(prefix: str) -> str:
    """Short prefixed id: exec_..., msg_..., tr_..."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def new_request_id() -> str:
    # JSON-RPC ids only need to be unique per transport
    return uuid.uuid4().hex


"""
ID generation utilities & it provides:
- Execution IDs (exec_)
- Transcript message IDs (msg_)
- Trace event IDs (tr_)
- JSON-RPC request IDs

The main purpose:
Consistent identifier creation across system.
"""
