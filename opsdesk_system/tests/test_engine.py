"""End-to-end request handling: plan, gate, push context, execute, transcript."""

import httpx
import pytest

from fakes import STANDARD_TOOLS, FakeReasoner, no_sleep, text_result, tool
from opsdesk.agent.engine import ChatEngine, ChatStatus
from opsdesk.agent.gating import GateState
from opsdesk.agent.models import Selection
from opsdesk.agent.preferences import Preferences
from opsdesk.backend.context import GLOBAL_SCOPE
from opsdesk.backend.session import SessionManager
from opsdesk.backend.transport import ServerConfig
from opsdesk.core.errors import (
    BackendConnectionError,
    GateStateError,
    PendingExecutionConflict,
    TransportError,
)
from opsdesk.llm.router import ReasoningService

SYS_ID = "9d385017c611228701d22104cc95c371"

CREATE_PLAN = {
    "isChain": False,
    "reasoning": "open an incident",
    "steps": [
        {
            "toolName": "create-record",
            "arguments": {"table": "incident", "fields": {"short_description": "outage"}},
            "reasoning": "record the outage",
        }
    ],
}

CONTEXT_TOOLS = [
    tool("list-application-scopes"),
    tool("set-application-scope"),
    tool("list-update-sets"),
    tool("create-update-set"),
    tool("set-update-set"),
]


@pytest.fixture
def build_engine(make_session, store, transcript, tracer):
    async def _build(plans=None, replies=None, tools=None, handlers=None, policy="reject", reasoner=None):
        session, client = await make_session(tools, handlers)
        engine = ChatEngine(
            session,
            reasoner or FakeReasoner(plans, replies),
            store,
            transcript,
            tracer,
            pending_policy=policy,
        )
        return engine, client

    return _build


async def test_gated_request_confirms_scope_then_new_container(build_engine) -> None:
    engine, client = await build_engine(plans=[CREATE_PLAN])

    first = await engine.handle_request("open an incident for the outage")
    assert first.status == ChatStatus.AWAITING_SCOPE
    assert first.prompt.available == [GLOBAL_SCOPE]
    assert first.prompt.gated_tools == ["create-record"]
    assert client.calls == []

    second = await engine.confirm_scope(GLOBAL_SCOPE)
    assert second.status == ChatStatus.AWAITING_TRACKING_CONTAINER
    assert second.prompt.available == []
    assert second.prompt.scope == GLOBAL_SCOPE

    done = await engine.confirm_tracking_container(create_description="outage")
    assert done.status == ChatStatus.COMPLETED
    assert len(done.results) == 1
    assert client.tool_names_called == ["create-record"]
    assert engine.gating.state == GateState.IDLE

    container = engine.store.snapshot().tracking_container.current
    assert container.name.startswith("OPSD_") and container.name.endswith("_outage")


async def test_context_is_pushed_scope_first_before_any_step(build_engine) -> None:
    engine, client = await build_engine(
        plans=[CREATE_PLAN],
        tools=STANDARD_TOOLS + CONTEXT_TOOLS,
        handlers={"list-update-sets": '[{"sys_id": "c1", "name": "OPSD_existing"}]'},
    )

    await engine.handle_request("open an incident")
    await engine.confirm_scope(GLOBAL_SCOPE)
    outcome = await engine.confirm_tracking_container(Selection(id="c1", name="OPSD_existing"))

    assert outcome.status == ChatStatus.COMPLETED
    assert client.tool_names_called == [
        "list-application-scopes",
        "list-update-sets",
        "set-application-scope",
        "set-update-set",
        "create-record",
    ]


async def test_locked_preferences_skip_confirmation(build_engine, store) -> None:
    await store.replace(
        Preferences.model_validate(
            {
                "execution_scope": {"locked": True, "current": {"id": "global", "name": "Global"}},
                "tracking_container": {"locked": True, "current": {"id": "c1", "name": "C1"}},
            }
        )
    )
    engine, client = await build_engine(plans=[CREATE_PLAN], tools=STANDARD_TOOLS + CONTEXT_TOOLS)

    outcome = await engine.handle_request("open an incident")

    assert outcome.status == ChatStatus.COMPLETED
    assert client.tool_names_called == ["set-application-scope", "set-update-set", "create-record"]


async def test_non_json_plan_falls_back_to_query(build_engine) -> None:
    reasoner = ReasoningService(
        provider="openai",
        api_key="sk-test",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(
                200, json={"choices": [{"message": {"content": "You should query the incident table."}}]}
            )
        ),
        sleep=no_sleep,
    )
    engine, client = await build_engine(reasoner=reasoner, handlers={"query-records": "Found 4 records"})

    outcome = await engine.handle_request("How many incidents are open?")

    assert outcome.status == ChatStatus.COMPLETED
    assert client.calls == [("query-records", {"table": "incident", "query": "active=true", "limit": 10})]
    assert len(outcome.results) == 1


async def test_chain_passes_record_id_forward(build_engine) -> None:
    plan = {
        "isChain": True,
        "reasoning": "find then read",
        "steps": [
            {"toolName": "query-records", "arguments": {"table": "incident"}},
            {"toolName": "get-record", "arguments": {"sys_id": "{{step_1_result}}"}, "dependsOn": 1},
        ],
    }
    engine, client = await build_engine(plans=[plan], handlers={"query-records": f"first match: {SYS_ID}"})

    outcome = await engine.handle_request("show the newest incident")

    assert outcome.status == ChatStatus.COMPLETED
    assert client.calls[1] == ("get-record", {"sys_id": SYS_ID})
    assert "**Step 2: get-record**" in outcome.message


async def test_step_failure_is_reported_with_position(build_engine, transcript) -> None:
    plan = {
        "isChain": True,
        "steps": [
            {"toolName": "query-records", "arguments": {}},
            {"toolName": "get-record", "arguments": {}},
            {"toolName": "test-connection", "arguments": {}},
        ],
    }
    engine, client = await build_engine(
        plans=[plan], handlers={"get-record": text_result("Record not found", is_error=True)}
    )

    outcome = await engine.handle_request("chain it")

    assert outcome.status == ChatStatus.FAILED
    assert "step 2 (get-record)" in outcome.message
    assert [r.tool_name for r in outcome.results] == ["query-records"]
    assert "test-connection" not in client.tool_names_called
    entries = await transcript.entries()
    assert entries[-1].role == "assistant"
    assert "Record not found" in entries[-1].content


async def test_second_request_is_rejected_while_pending(build_engine, transcript) -> None:
    engine, client = await build_engine(plans=[CREATE_PLAN])
    await engine.handle_request("open an incident")

    with pytest.raises(PendingExecutionConflict) as exc:
        await engine.handle_request("how many incidents?")

    assert exc.value.pending_request == "open an incident"
    assert engine.gating.state == GateState.AWAITING_SCOPE
    assert client.calls == []
    assert [e.role for e in await transcript.entries()][-2:] == ["user", "system"]


async def test_second_request_supersedes_when_configured(build_engine) -> None:
    engine, client = await build_engine(plans=[CREATE_PLAN], policy="supersede")
    await engine.handle_request("open an incident")

    outcome = await engine.handle_request("How many incidents are open?")

    assert outcome.status == ChatStatus.COMPLETED
    assert client.tool_names_called == ["query-records"]


async def test_cancel_has_no_backend_side_effects(build_engine) -> None:
    engine, client = await build_engine(plans=[CREATE_PLAN])
    await engine.handle_request("open an incident")

    outcome = await engine.cancel()

    assert outcome.status == ChatStatus.CANCELLED
    assert client.calls == []
    assert engine.gating.state == GateState.IDLE
    with pytest.raises(GateStateError):
        await engine.confirm_scope(GLOBAL_SCOPE)


async def test_failed_container_creation_keeps_waiting(build_engine) -> None:
    engine, client = await build_engine(
        plans=[CREATE_PLAN],
        tools=STANDARD_TOOLS + CONTEXT_TOOLS,
        handlers={"create-update-set": text_result("not allowed", is_error=True)},
    )
    await engine.handle_request("open an incident")
    await engine.confirm_scope(GLOBAL_SCOPE)

    outcome = await engine.confirm_tracking_container(create_description="outage")

    assert outcome.status == ChatStatus.AWAITING_TRACKING_CONTAINER
    assert engine.gating.state == GateState.AWAITING_TRACKING_CONTAINER
    assert "create-record" not in client.tool_names_called


async def test_context_push_failure_runs_nothing(build_engine) -> None:
    engine, client = await build_engine(
        plans=[CREATE_PLAN],
        tools=STANDARD_TOOLS + CONTEXT_TOOLS,
        handlers={"set-application-scope": TransportError("Backend process is not running")},
    )
    await engine.handle_request("open an incident")
    await engine.confirm_scope(GLOBAL_SCOPE)

    outcome = await engine.confirm_tracking_container(Selection(id="c1", name="C1"))

    assert outcome.status == ChatStatus.FAILED
    assert "Nothing was executed" in outcome.message
    assert "create-record" not in client.tool_names_called


async def test_request_without_connection(store, transcript, tracer) -> None:
    engine = ChatEngine(SessionManager(sleep=no_sleep), FakeReasoner(), store, transcript, tracer)

    outcome = await engine.handle_request("how many incidents?")

    assert outcome.status == ChatStatus.FAILED
    assert "Not connected" in outcome.message


async def test_connect_posts_to_transcript(store, transcript, tracer) -> None:
    async def refuse(config):
        raise TransportError("Failed to spawn backend process: not found")

    engine = ChatEngine(SessionManager(refuse, sleep=no_sleep), FakeReasoner(), store, transcript, tracer)

    with pytest.raises(BackendConnectionError):
        await engine.connect(ServerConfig(command="missing"))

    last = (await transcript.entries())[-1]
    assert last.role == "system"
    assert last.content.startswith("Connection failed:")


async def test_trace_covers_the_execution(build_engine, tracer) -> None:
    engine, _ = await build_engine(plans=[CREATE_PLAN])
    pending = await engine.handle_request("open an incident")
    await engine.confirm_scope(GLOBAL_SCOPE)
    await engine.confirm_tracking_container(create_description="outage")

    types = [e["type"] for e in await tracer.events(pending.execution_id)]

    assert types[0] == "plan"
    assert "gate" in types
    assert types[-3:] == ["tool", "tool_output", "summary"]
