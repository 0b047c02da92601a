"""Scope and tracking-container calls against the backend."""

import json

import pytest

from fakes import STANDARD_TOOLS, text_result, tool
from opsdesk.agent.models import Selection
from opsdesk.backend.context import GLOBAL_SCOPE, PlatformContext, parse_selections
from opsdesk.core.errors import ContextSyncError

CONTEXT_TOOLS = [
    tool("list-application-scopes"),
    tool("set-application-scope"),
    tool("list-update-sets"),
    tool("create-update-set"),
    tool("set-update-set"),
]
SYS_ID = "aa11bb22cc33dd44ee55ff6677889900"


def test_parse_selections_shapes() -> None:
    wrapped = json.dumps({"result": [{"sys_id": "1", "name": "HR"}, {"scope": "x_app"}, "junk"]})

    assert parse_selections(wrapped) == [Selection(id="1", name="HR"), Selection(id="x_app", name="x_app")]
    assert parse_selections("no json at all") == []


async def test_scopes_always_offer_global(make_session) -> None:
    session, _ = await make_session(
        STANDARD_TOOLS + CONTEXT_TOOLS,
        {"list-application-scopes": json.dumps([{"sys_id": "s1", "name": "HR Service"}])},
    )

    scopes = await PlatformContext(session).list_scopes()

    assert scopes == [GLOBAL_SCOPE, Selection(id="s1", name="HR Service")]


async def test_missing_list_tool_degrades_to_defaults(make_session) -> None:
    session, client = await make_session()
    context = PlatformContext(session)

    assert await context.list_scopes() == [GLOBAL_SCOPE]
    assert await context.list_tracking_containers() == []
    assert client.calls == []


async def test_create_tracking_container_reads_id(make_session) -> None:
    session, client = await make_session(
        STANDARD_TOOLS + CONTEXT_TOOLS,
        {"create-update-set": f"Update set created with sys_id {SYS_ID}"},
    )

    created = await PlatformContext(session).create_tracking_container("OPSD_20260101_outage", "outage")

    assert created == Selection(id=SYS_ID, name="OPSD_20260101_outage")
    assert client.calls == [("create-update-set", {"name": "OPSD_20260101_outage", "description": "outage"})]


async def test_create_failure_raises(make_session) -> None:
    session, _ = await make_session(
        STANDARD_TOOLS + CONTEXT_TOOLS,
        {"create-update-set": text_result("ACL denied", is_error=True)},
    )

    with pytest.raises(ContextSyncError):
        await PlatformContext(session).create_tracking_container("n", "d")


async def test_push_sends_selection(make_session) -> None:
    session, client = await make_session(STANDARD_TOOLS + CONTEXT_TOOLS)
    context = PlatformContext(session)

    await context.push_scope(GLOBAL_SCOPE)
    await context.push_tracking_container(Selection(id="c1", name="C1"))

    assert client.calls == [
        ("set-application-scope", {"id": "global", "name": "Global"}),
        ("set-update-set", {"id": "c1", "name": "C1"}),
    ]


async def test_push_failure_raises(make_session) -> None:
    session, _ = await make_session(
        STANDARD_TOOLS + CONTEXT_TOOLS,
        {"set-application-scope": text_result("no such scope", is_error=True)},
    )

    with pytest.raises(ContextSyncError):
        await PlatformContext(session).push_scope(Selection(id="bad", name="Bad"))
