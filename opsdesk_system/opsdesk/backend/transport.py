"""
Stdio JSON-RPC 2.0 transport to the tool backend process.
What it does:
- Spawns the backend command (args, cwd, env)
- Writes one JSON message per line to stdin
- Reads responses line by line and resolves the matching pending request
- Times out requests and fails everything in flight when the process goes away

And, the main purpose:
Message framing only. Protocol semantics live in backend.client.
"""


import asyncio
import json
import os
from dataclasses import dataclass, field
from typing import Any

from opsdesk.core.config import settings
from opsdesk.core.errors import TransportError
from opsdesk.core.ids import new_request_id
from opsdesk.core.logging import get_logger

log = get_logger("backend.transport")


@dataclass
class ServerConfig:
    command: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None

    @classmethod
    def from_settings(cls) -> "ServerConfig":
        return cls(
            command=settings.BACKEND_COMMAND,
            args=list(settings.BACKEND_ARGS),
            cwd=settings.BACKEND_CWD,
            env=dict(settings.BACKEND_ENV) or None,
        )


class StdioTransport:
    def __init__(
        self,
        config: ServerConfig,
        *,
        request_timeout: float | None = None,
        stream_limit: int | None = None,
    ):
        self.config = config
        self.request_timeout = request_timeout or settings.BACKEND_REQUEST_TIMEOUT
        self.stream_limit = stream_limit or settings.BACKEND_STREAM_LIMIT
        self._process: asyncio.subprocess.Process | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()

    @property
    def is_alive(self) -> bool:
        if self._process is None or self._process.returncode is not None:
            return False
        # once the reader has stopped nothing can answer a request
        return self._reader_task is None or not self._reader_task.done()

    async def start(self) -> None:
        log.info(f"Starting backend: {self.config.command} {self.config.args}")
        env = None
        if self.config.env:
            env = {**os.environ, **self.config.env}
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.config.command,
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.cwd,
                env=env,
                limit=self.stream_limit,
            )
        except OSError as e:
            raise TransportError(f"Failed to spawn backend process: {e}") from e

        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def request(self, method: str, params: dict | None = None) -> Any:
        if not self.is_alive:
            raise TransportError("Backend process is not running")

        req_id = new_request_id()
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": req_id, "method": method}
        if params is not None:
            message["params"] = params

        fut = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        try:
            await self._send(message)
            return await asyncio.wait_for(fut, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request timeout: {method}") from e
        finally:
            self._pending.pop(req_id, None)

    async def notify(self, method: str, params: dict | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._send(message)

    async def close(self) -> None:
        self._fail_pending(TransportError("Transport closed"))
        proc = self._process
        self._process = None
        if proc is not None and proc.returncode is None:
            if proc.stdin is not None:
                proc.stdin.close()
            try:
                await asyncio.wait_for(proc.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()

    async def _send(self, message: dict) -> None:
        if not self.is_alive or self._process.stdin is None:
            raise TransportError("Backend process is not running")
        line = json.dumps(message, ensure_ascii=False) + "\n"
        log.debug(f"-> {line.strip()}")
        async with self._write_lock:
            try:
                self._process.stdin.write(line.encode("utf-8"))
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise TransportError(f"Failed to write to backend: {e}") from e

    async def _read_stdout(self) -> None:
        proc = self._process
        assert proc is not None and proc.stdout is not None
        reason = TransportError("Backend process closed its output")
        try:
            while True:
                raw = await proc.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                log.debug(f"<- {line[:2000]}")
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    log.warning(f"Ignoring non-JSON line from backend: {line[:200]}")
                    continue
                self._dispatch(message)
        except (ValueError, asyncio.LimitOverrunError) as e:
            # readline raises ValueError for a line longer than the stream limit
            reason = TransportError(
                f"Failed to read from backend: message exceeds {self.stream_limit} bytes ({e})"
            )
            log.error(str(reason))
        except OSError as e:
            reason = TransportError(f"Failed to read from backend: {e}")
            log.error(str(reason))
        finally:
            self._fail_pending(reason)

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            return
        req_id = message.get("id")
        if req_id is None or ("result" not in message and "error" not in message):
            # notification or server->client request; nothing waits on these
            log.debug(f"Backend notification: {message.get('method')}")
            return
        fut = self._pending.get(str(req_id))
        if fut is None or fut.done():
            return
        if message.get("error") is not None:
            err = message["error"] or {}
            fut.set_exception(
                TransportError(f"RPC error {err.get('code')}: {err.get('message')}")
            )
        else:
            fut.set_result(message.get("result"))

    async def _drain_stderr(self) -> None:
        proc = self._process
        assert proc is not None and proc.stderr is not None
        while True:
            raw = await proc.stderr.readline()
            if not raw:
                break
            log.debug(f"backend stderr: {raw.decode('utf-8', errors='replace').rstrip()}")

    def _fail_pending(self, err: Exception) -> None:
        for fut in list(self._pending.values()):
            if not fut.done():
                fut.set_exception(err)
        self._pending.clear()
