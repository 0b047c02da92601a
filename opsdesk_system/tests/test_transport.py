"""Stdio transport and protocol client against a scripted backend process."""

import asyncio
import json
import sys
import textwrap

import pytest

from opsdesk.backend.client import McpClient, open_stdio_client
from opsdesk.backend.transport import ServerConfig, StdioTransport
from opsdesk.core.errors import TransportError

# Line-delimited JSON-RPC backend. argv[1] selects the advertised capabilities.
SCRIPTED_BACKEND = textwrap.dedent(
    """
    import json
    import sys

    MODE = sys.argv[1] if len(sys.argv) > 1 else "tools"
    seen = []


    def send(message):
        sys.stdout.write(json.dumps(message) + "\\n")
        sys.stdout.flush()


    def reply(req_id, result):
        send({"jsonrpc": "2.0", "id": req_id, "result": result})


    def text(req_id, value):
        reply(req_id, {"content": [{"type": "text", "text": value}], "isError": False})


    while True:
        line = sys.stdin.readline()
        if not line:
            break
        if not line.strip():
            continue
        message = json.loads(line)
        method = message.get("method")
        seen.append(method)
        if "id" not in message:
            continue
        req_id = message["id"]
        if method == "initialize":
            caps = {} if MODE == "no-tools" else {"tools": {}}
            reply(req_id, {
                "protocolVersion": message["params"]["protocolVersion"],
                "capabilities": caps,
                "serverInfo": {"name": "scripted", "version": "1.0"},
            })
        elif method == "tools/list":
            reply(req_id, {"tools": [{
                "name": "query-records",
                "description": "Query records",
                "inputSchema": {"type": "object", "required": ["table"]},
            }]})
        elif method == "ping":
            reply(req_id, {})
        elif method == "tools/call":
            name = message["params"]["name"]
            arguments = message["params"]["arguments"]
            if name == "hang":
                continue
            if name == "reject":
                send({"jsonrpc": "2.0", "id": req_id, "error": {"code": -32602, "message": "Unknown tool: reject"}})
            elif name == "seen":
                text(req_id, json.dumps(seen))
            elif name == "big":
                text(req_id, "x" * arguments["size"])
            else:
                sys.stdout.write("not json\\n")
                text(req_id, json.dumps(arguments))
        else:
            send({"jsonrpc": "2.0", "id": req_id, "error": {"code": -32601, "message": "Method not found"}})
    """
)


@pytest.fixture
def backend_config(tmp_path):
    script = tmp_path / "scripted_backend.py"
    script.write_text(SCRIPTED_BACKEND)

    def _config(mode: str = "tools") -> ServerConfig:
        return ServerConfig(command=sys.executable, args=[str(script), mode])

    return _config


@pytest.fixture
async def connect(backend_config):
    opened: list[McpClient] = []

    async def _connect(mode: str = "tools", **transport_options) -> McpClient:
        transport = StdioTransport(backend_config(mode), **transport_options)
        await transport.start()
        client = McpClient(transport)
        opened.append(client)
        await client.initialize()
        return client

    yield _connect
    for client in opened:
        await client.close()


async def test_handshake_then_tool_discovery(connect) -> None:
    client = await connect()

    tools = await client.list_tools()
    seen = json.loads((await client.call_tool("seen", {})).text)

    assert client.server_info == {"name": "scripted", "version": "1.0"}
    assert [t.name for t in tools] == ["query-records"]
    assert tools[0].required_arguments == ["table"]
    assert seen[:3] == ["initialize", "notifications/initialized", "tools/list"]


async def test_no_tools_capability_means_empty_catalog(connect) -> None:
    client = await connect("no-tools")

    tools = await client.list_tools()
    seen = json.loads((await client.call_tool("seen", {})).text)

    assert tools == []
    assert "tools/list" not in seen


async def test_call_tool_and_ping(connect) -> None:
    client = await connect()

    result = await client.call_tool("query-records", {"table": "incident"})
    await client.ping()

    assert result.is_error is False
    assert json.loads(result.text) == {"table": "incident"}


async def test_rpc_error_becomes_transport_error(connect) -> None:
    client = await connect()

    with pytest.raises(TransportError, match="RPC error -32602: Unknown tool: reject"):
        await client.call_tool("reject", {})

    # the channel stays usable after an error reply
    assert (await client.call_tool("query-records", {"n": 1})).text == '{"n": 1}'


async def test_request_timeout(connect) -> None:
    client = await connect(request_timeout=0.3)

    with pytest.raises(TransportError, match="Request timeout: tools/call"):
        await client.call_tool("hang", {})

    assert (await client.call_tool("query-records", {})).text == "{}"


async def test_close_fails_in_flight_request(connect) -> None:
    client = await connect()
    call = asyncio.create_task(client.call_tool("hang", {}))
    while not client.transport._pending:
        await asyncio.sleep(0.01)

    await client.close()

    with pytest.raises(TransportError, match="Transport closed"):
        await call
    assert not client.transport.is_alive
    with pytest.raises(TransportError, match="not running"):
        await client.ping()


async def test_output_line_over_64_kib_is_read(connect) -> None:
    client = await connect()

    big = await client.call_tool("big", {"size": 200_000})
    after = await client.call_tool("query-records", {"table": "incident"})

    assert len(big.text) == 200_000
    assert json.loads(after.text) == {"table": "incident"}


async def test_line_over_stream_limit_fails_fast(connect) -> None:
    client = await connect(stream_limit=4096, request_timeout=10.0)

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(TransportError, match="exceeds 4096 bytes"):
        await client.call_tool("big", {"size": 20_000})

    assert loop.time() - started < 5.0
    assert not client.transport.is_alive
    with pytest.raises(TransportError, match="not running"):
        await client.call_tool("query-records", {})


async def test_open_stdio_client_spawn_failure(tmp_path) -> None:
    with pytest.raises(TransportError, match="Failed to spawn backend process"):
        await open_stdio_client(ServerConfig(command=str(tmp_path / "missing-backend")))


async def test_open_stdio_client_initializes(backend_config) -> None:
    client = await open_stdio_client(backend_config())
    try:
        assert client.capabilities == {"tools": {}}
        assert len(await client.list_tools()) == 1
    finally:
        await client.close()
