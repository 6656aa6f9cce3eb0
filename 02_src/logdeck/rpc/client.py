"""JSON-RPC client for an MCP peer running as a subprocess."""

import asyncio
import itertools
import json
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Protocol, Sequence

from pydantic import BaseModel, ValidationError

from .. import __version__
from ..errors import ProcessDied, ProtocolError, RpcCallError, Timeout
from ..logging_config import get_logger
from ..models.rpc import (
    PROTOCOL_VERSION,
    InitializeResult,
    RpcNotification,
    RpcPeerRequest,
    RpcRequest,
    RpcResponse,
    ToolCallResult,
    ToolDescriptor,
    ToolListResult,
    UnknownMessage,
    parse_message,
)

logger = get_logger(__name__)

# StreamReader line limit; tool results can be large JSON documents
STDOUT_LINE_LIMIT = 16 * 1024 * 1024


class IRpcClient(Protocol):
    """Tool-calling surface of an MCP peer."""

    def is_alive(self) -> bool:
        """False once the peer exited or a pipe closed."""
        ...

    async def list_tools(self) -> list[ToolDescriptor]:
        """Discover the peer's tools (cached for the process lifetime)."""
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult:
        """Invoke a tool and wait for its own response."""
        ...


class ProcessRpcClient:
    """Spawns the peer and multiplexes concurrent calls over its stdio.

    Writes to the single stdin stream are serialized; each caller waits on a
    future keyed by its request id, so responses may arrive in any order.
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        request_timeout: float = 30.0,
        client_name: str = "logdeck",
    ):
        self._command = command
        self._args = list(args)
        self._env = dict(env or {})
        self._request_timeout = request_timeout
        self._client_name = client_name

        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._peer_reply_tasks: set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._eof = False
        self._closed = False
        self._initialized = False
        self._server_info: InitializeResult | None = None
        self._tools: list[ToolDescriptor] | None = None

    @classmethod
    @asynccontextmanager
    async def spawn(
        cls,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        **options: Any,
    ) -> AsyncIterator["ProcessRpcClient"]:
        """Run the peer for the duration of the block; it is always killed on exit."""
        client = cls(command, args, env, **options)
        await client.start()
        try:
            yield client
        finally:
            await client.close()

    # Lifecycle

    async def start(self) -> None:
        """Start the subprocess and its reader tasks."""
        if self._process is not None:
            raise ProtocolError("RPC client already started")

        logger.info("Starting MCP peer: %s %s", self._command, " ".join(self._args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                self._command,
                *self._args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self._env},
                limit=STDOUT_LINE_LIMIT,
            )
        except OSError as e:
            self._closed = True
            raise ProcessDied(f"Failed to start MCP peer {self._command!r}: {e}") from e

        self._reader_task = asyncio.create_task(self._read_loop())
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def close(self) -> None:
        """Close pipes, kill the peer if needed and fail pending calls."""
        if self._closed:
            return
        self._closed = True

        process = self._process
        if process is not None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.error("MCP peer pid %s did not exit after kill", process.pid)

        for task in (self._reader_task, self._stderr_task, *self._peer_reply_tasks):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._fail_pending(ProcessDied("RPC client closed"))
        logger.info("MCP peer stopped")

    def is_alive(self) -> bool:
        """False once the peer exited or a pipe closed."""
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._eof
            and not self._closed
        )

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def server_info(self) -> InitializeResult | None:
        return self._server_info

    # Protocol operations

    async def initialize(self) -> InitializeResult:
        """Handshake with the peer, then send notifications/initialized."""
        result = await self._request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "clientInfo": {"name": self._client_name, "version": __version__},
            },
        )
        try:
            info = InitializeResult.model_validate(result)
        except ValidationError as e:
            raise ProtocolError(f"Unexpected initialize result: {e}") from e

        await self._send(RpcNotification(method="notifications/initialized"))
        self._server_info = info
        self._initialized = True
        logger.info(
            "MCP peer initialized: %s %s (protocol %s)",
            info.server_info.name,
            info.server_info.version,
            info.protocol_version,
        )
        return info

    async def list_tools(self) -> list[ToolDescriptor]:
        """Discover the peer's tools (cached for the process lifetime)."""
        self._require_initialized()
        if self._tools is None:
            result = await self._request("tools/list")
            try:
                self._tools = ToolListResult.model_validate(result).tools
            except ValidationError as e:
                raise ProtocolError(f"Unexpected tools/list result: {e}") from e
            logger.info("Discovered %d tools: %s", len(self._tools), [t.name for t in self._tools])
        return list(self._tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult:
        """Invoke a tool and wait for its own response."""
        self._require_initialized()
        result = await self._request("tools/call", {"name": name, "arguments": arguments})
        try:
            return ToolCallResult.model_validate(result)
        except ValidationError as e:
            raise ProtocolError(f"Unexpected tools/call result for {name}: {e}") from e

    async def query_logs(self, query: str, max_results: int) -> ToolCallResult:
        """Shortcut for the peer's query_logs tool."""
        return await self.call_tool("query_logs", {"query": query, "maxResults": max_results})

    # Internals

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise ProtocolError("Client not initialized. Call initialize() first")

    def _ensure_alive(self) -> None:
        if not self.is_alive():
            code = self._process.returncode if self._process else None
            raise ProcessDied(f"MCP peer is not running (exit code {code})")

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        self._ensure_alive()

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(RpcRequest(id=request_id, method=method, params=params))
            response: RpcResponse = await asyncio.wait_for(future, self._request_timeout)
        except asyncio.TimeoutError:
            raise Timeout(
                f"No response to {method} (id {request_id}) within {self._request_timeout}s"
            ) from None
        finally:
            self._pending.pop(request_id, None)

        if response.error is not None:
            if method == "initialize":
                raise ProtocolError(f"Initialize failed: {response.error.message}")
            raise RpcCallError(response.error.code, response.error.message, response.error.data)
        return response.result

    async def _send(self, message: BaseModel) -> None:
        line = message.model_dump_json(exclude_none=True) + "\n"
        async with self._write_lock:
            self._ensure_alive()
            stdin = self._process.stdin
            try:
                stdin.write(line.encode("utf-8"))
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                self._eof = True
                raise ProcessDied(f"MCP peer closed its input: {e}") from e

    async def _read_loop(self) -> None:
        stdout = self._process.stdout
        try:
            while True:
                try:
                    line = await stdout.readline()
                except ValueError as e:
                    # Line longer than STDOUT_LINE_LIMIT; the stream is unusable
                    logger.error("MCP peer sent an oversized line: %s", e)
                    break
                if not line:
                    break

                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON output from MCP peer: %s", text[:200])
                    continue

                try:
                    await self._dispatch(payload)
                except Exception as e:
                    logger.error("Failed to dispatch MCP message: %s", e, exc_info=True)
        finally:
            self._eof = True
            code = self._process.returncode
            self._fail_pending(ProcessDied(f"MCP peer exited (exit code {code})"))

    async def _dispatch(self, payload: Any) -> None:
        message = parse_message(payload)

        if isinstance(message, RpcResponse):
            future = self._pending.get(message.id)
            if future is None:
                logger.debug("Dropping response for unknown or expired id %s", message.id)
            elif not future.done():
                future.set_result(message)
        elif isinstance(message, RpcPeerRequest):
            # Replies go through the write lock; the read loop must keep draining stdout
            task = asyncio.create_task(self._answer_peer_request(message))
            self._peer_reply_tasks.add(task)
            task.add_done_callback(self._peer_reply_tasks.discard)
        elif isinstance(message, RpcNotification):
            logger.debug("Notification from MCP peer: %s", message.method)
        elif isinstance(message, UnknownMessage):
            future = self._pending.get(message.id) if message.id is not None else None
            if future is not None and not future.done():
                future.set_exception(ProtocolError(f"Malformed response: {message.reason}"))
            else:
                logger.debug("Ignoring unrecognized message from MCP peer: %s", message.reason)

    async def _answer_peer_request(self, request: RpcPeerRequest) -> None:
        if request.method == "ping":
            reply: dict[str, Any] = {"jsonrpc": "2.0", "id": request.id, "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": request.id,
                "error": {"code": -32601, "message": f"Method not found: {request.method}"},
            }
        async with self._write_lock:
            if not self.is_alive():
                return
            try:
                self._process.stdin.write((json.dumps(reply) + "\n").encode("utf-8"))
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                self._eof = True

    async def _drain_stderr(self) -> None:
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                logger.debug("MCP peer wrote an oversized stderr line")
                continue
            if not line:
                return
            logger.debug("MCP peer stderr: %s", line.decode("utf-8", errors="replace").rstrip())

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
