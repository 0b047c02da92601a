"""
Owns the single session to the tool backend.
What it does:
- Connects with bounded retry (capped linear backoff)
- Discovers the tool catalog under a short timeout
- Serializes tool calls through one request/response channel
- Answers status queries at any time without blocking
- Liveness check + disconnect

And, the main purpose:
Be the sole owner and mutator of backend session state.
"""


import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from opsdesk.backend.client import BackendClient, open_stdio_client
from opsdesk.backend.transport import ServerConfig
from opsdesk.core.config import settings
from opsdesk.core.errors import BackendConnectionError, BackendError
from opsdesk.core.logging import get_logger
from opsdesk.tools.models import ToolCallResult
from opsdesk.tools.registry import ToolCatalog

log = get_logger("backend.session")

ClientFactory = Callable[[ServerConfig], Awaitable[BackendClient]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class SessionStatus:
    state: ConnectionState
    message: str | None = None


class SessionManager:
    def __init__(
        self,
        client_factory: ClientFactory = open_stdio_client,
        *,
        max_attempts: int | None = None,
        backoff_step: float | None = None,
        backoff_cap: float | None = None,
        discovery_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client_factory = client_factory
        self.max_attempts = max_attempts or settings.CONNECT_MAX_ATTEMPTS
        self.backoff_step = settings.CONNECT_BACKOFF_STEP if backoff_step is None else backoff_step
        self.backoff_cap = settings.CONNECT_BACKOFF_CAP if backoff_cap is None else backoff_cap
        self.discovery_timeout = discovery_timeout or settings.DISCOVERY_TIMEOUT
        self._sleep = sleep

        self._client: BackendClient | None = None
        self._catalog = ToolCatalog()
        self._status = SessionStatus(ConnectionState.DISCONNECTED)
        self._call_lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    @property
    def is_connected(self) -> bool:
        return self._status.state == ConnectionState.CONNECTED and self._client is not None

    def backoff_for(self, attempt: int) -> float:
        return min(attempt * self.backoff_step, self.backoff_cap)

    async def connect(self, config: ServerConfig) -> ToolCatalog:
        async with self._connect_lock:
            await self._drop_client()
            self._status = SessionStatus(ConnectionState.CONNECTING)

            last_err: Exception | None = None
            for attempt in range(1, self.max_attempts + 1):
                client: BackendClient | None = None
                try:
                    client = await self._client_factory(config)
                    tools = await asyncio.wait_for(client.list_tools(), timeout=self.discovery_timeout)
                except (BackendError, OSError, asyncio.TimeoutError) as e:
                    last_err = e
                    if isinstance(e, asyncio.TimeoutError):
                        last_err = BackendConnectionError(
                            f"Tool discovery timed out after {self.discovery_timeout:g}s"
                        )
                    if client is not None:
                        await self._close_quietly(client)
                    if attempt < self.max_attempts:
                        delay = self.backoff_for(attempt)
                        log.warning(
                            f"Connection attempt {attempt}/{self.max_attempts} failed: {last_err}. "
                            f"retrying in {delay:.1f}s"
                        )
                        await self._sleep(delay)
                    continue

                self._client = client
                self._catalog = ToolCatalog(tools)
                self._status = SessionStatus(ConnectionState.CONNECTED)
                log.info(f"Connected on attempt {attempt}; discovered {len(self._catalog)} tools")
                return self._catalog

            message = f"Failed to connect after {self.max_attempts} attempts: {last_err}"
            log.error(message)
            self._status = SessionStatus(ConnectionState.ERROR, message)
            raise BackendConnectionError(message)

    async def disconnect(self) -> None:
        async with self._connect_lock:
            await self._drop_client()
            self._status = SessionStatus(ConnectionState.DISCONNECTED)
            log.info("Disconnected from tool backend")

    async def call_tool(self, name: str, arguments: dict | None) -> ToolCallResult:
        if not self.is_connected:
            raise BackendConnectionError("Not connected to the tool backend")
        async with self._call_lock:
            return await self._client.call_tool(name, arguments)

    async def check_liveness(self) -> SessionStatus:
        if not self.is_connected:
            return self._status
        if self._call_lock.locked():
            # a tool call is in flight on the single channel; report without queueing behind it
            log.debug("Liveness check skipped: tool call in progress")
            return self._status
        try:
            async with self._call_lock:
                await asyncio.wait_for(self._client.ping(), timeout=self.discovery_timeout)
        except (BackendError, OSError, asyncio.TimeoutError) as e:
            message = f"Backend stopped responding: {e or type(e).__name__}"
            log.error(message)
            self._status = SessionStatus(ConnectionState.ERROR, message)
        return self._status

    async def _drop_client(self) -> None:
        client, self._client = self._client, None
        self._catalog = ToolCatalog()
        if client is not None:
            await self._close_quietly(client)

    async def _close_quietly(self, client: BackendClient) -> None:
        try:
            await client.close()
        except (BackendError, OSError) as e:
            log.warning(f"Error while closing backend client: {e}")
