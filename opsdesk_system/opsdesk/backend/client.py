"""
Tool backend protocol client (initialize / tools/list / tools/call / ping).
"""

from typing import Any, Protocol

from pydantic import ValidationError

from opsdesk.backend.transport import ServerConfig, StdioTransport
from opsdesk.core.errors import TransportError
from opsdesk.core.logging import get_logger
from opsdesk.tools.models import ToolCallResult, ToolDescriptor

log = get_logger("backend.client")

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "OpsDesk", "version": "0.1.0"}


class BackendClient(Protocol):
    async def list_tools(self) -> list[ToolDescriptor]: ...

    async def call_tool(self, name: str, arguments: dict | None) -> ToolCallResult: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class McpClient:
    def __init__(self, transport: StdioTransport):
        self.transport = transport
        self.capabilities: dict[str, Any] | None = None
        self.server_info: dict[str, Any] = {}

    async def initialize(self) -> None:
        result = await self.transport.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        )
        if not isinstance(result, dict):
            raise TransportError(f"Invalid initialize response: {result!r}")
        self.capabilities = result.get("capabilities") or {}
        self.server_info = result.get("serverInfo") or {}
        log.info(
            f"Server: {self.server_info.get('name', '?')} v{self.server_info.get('version', '?')} "
            f"(protocol {result.get('protocolVersion')})"
        )
        await self.transport.notify("notifications/initialized")

    async def list_tools(self) -> list[ToolDescriptor]:
        if self.capabilities is None:
            raise TransportError("Server not initialized")
        if "tools" not in self.capabilities:
            log.info("Server does not support tools - returning empty list")
            return []
        result = await self.transport.request("tools/list")
        try:
            tools = [ToolDescriptor.model_validate(t) for t in (result or {}).get("tools", [])]
        except (ValidationError, AttributeError) as e:
            raise TransportError(f"Invalid tools/list response: {e}") from e
        log.info(f"Discovered {len(tools)} tools")
        return tools

    async def call_tool(self, name: str, arguments: dict | None) -> ToolCallResult:
        result = await self.transport.request("tools/call", {"name": name, "arguments": arguments or {}})
        try:
            return ToolCallResult.model_validate(result or {})
        except ValidationError as e:
            raise TransportError(f"Invalid tools/call response: {e}") from e

    async def ping(self) -> None:
        await self.transport.request("ping")

    async def close(self) -> None:
        await self.transport.close()


async def open_stdio_client(config: ServerConfig) -> McpClient:
    transport = StdioTransport(config)
    await transport.start()
    client = McpClient(transport)
    try:
        await client.initialize()
    except BaseException:
        await transport.close()
        raise
    return client
