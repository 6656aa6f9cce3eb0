"""Session bootstrap and lifecycle management."""

import asyncio
from typing import Mapping, Protocol

import httpx

from .backends import IBackendClient, create_backend
from .cache import Cache
from .config import Settings
from .errors import ProcessDied
from .explorer import LogExplorer
from .logging_config import get_logger
from .models import BackendConfig, LogEntry, RpcServerConfig, ToolDescriptor
from .retry import RetryConfig, RetryPolicy
from .rpc import ProcessRpcClient
from .tools import ToolExecutor

logger = get_logger(__name__)


class ISession(Protocol):
    """Owns every shared resource of one client session."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...


class Session:
    """Holds the cache, tool registry, backend clients and explorer.

    One instance is built per terminal session and passed to everything
    that needs it; nothing here is process-global.
    """

    def __init__(
        self,
        backends: Mapping[str, BackendConfig] | None = None,
        rpc_server: RpcServerConfig | None = None,
        settings: Settings | None = None,
        default_backend: str | None = None,
        transports: Mapping[str, httpx.AsyncBaseTransport] | None = None,
    ):
        self._backend_configs = dict(backends or {})
        self._rpc_config = rpc_server
        self._settings = settings or Settings()
        self._default_backend = default_backend
        self._transports = dict(transports or {})

        # Components (will be initialized in start())
        self._cache: Cache[tuple[LogEntry, ...]] | None = None
        self._retry: RetryPolicy | None = None
        self._backends: dict[str, IBackendClient] = {}
        self._rpc: ProcessRpcClient | None = None
        self._tools: list[ToolDescriptor] = []
        self._explorer: LogExplorer | None = None
        self._executor: ToolExecutor | None = None
        self._rpc_lock = asyncio.Lock()
        self._running = False

    async def __aenter__(self) -> "Session":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting session")

        # 1. Cache and retry (no dependencies)
        self._cache = Cache(default_ttl=self._settings.cache_ttl)
        self._retry = RetryPolicy(
            RetryConfig(
                max_attempts=self._settings.retry_max_attempts,
                initial_delay=self._settings.retry_initial_delay,
                max_delay=self._settings.retry_max_delay,
                budget=self._settings.retry_budget,
            )
        )

        try:
            # 2. Backend clients
            for backend_id, config in self._backend_configs.items():
                self._backends[backend_id] = create_backend(
                    config, transport=self._transports.get(backend_id)
                )
                logger.info("Backend %s (%s) ready", backend_id, config.type.value)

            # 3. MCP peer
            if self._rpc_config is not None:
                await self._spawn_rpc()

            # 4. Explorer and tool executor (depend on everything above)
            self._explorer = LogExplorer(
                backends=self._backends,
                cache=self._cache,
                retry=self._retry,
                rpc=self._rpc,
                reconnect=self.reconnect_rpc if self._rpc_config is not None else None,
                default_backend=self._default_backend,
            )
            self._executor = ToolExecutor(self._explorer)
        except BaseException:
            await self.stop()
            raise

        self._running = True
        logger.info("Session started with backends %s", self._explorer.backend_ids)

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        self._running = False
        self._executor = None
        self._explorer = None
        async with self._rpc_lock:
            if self._rpc is not None:
                await self._rpc.close()
                self._rpc = None
        self._tools = []
        for backend_id, backend in self._backends.items():
            await backend.close()
            logger.debug("Backend %s closed", backend_id)
        self._backends.clear()
        if self._cache is not None:
            self._cache.clear()
        logger.info("Session stopped")

    async def reconnect_rpc(self) -> ProcessRpcClient:
        """Replace a dead MCP peer with a fresh, initialized one.

        Concurrent callers share one respawn: whoever gets the lock second
        finds a live peer and returns it.
        """
        async with self._rpc_lock:
            if not self._running:
                raise ProcessDied("Session is not running")
            if self._rpc is not None:
                if self._rpc.is_alive():
                    return self._rpc
                await self._rpc.close()
                self._rpc = None
            return await self._spawn_rpc()

    async def _spawn_rpc(self) -> ProcessRpcClient:
        config = self._rpc_config
        client = ProcessRpcClient(
            config.command,
            config.args,
            config.env,
            request_timeout=self._settings.rpc_timeout,
        )
        await client.start()
        try:
            await client.initialize()
            self._tools = await client.list_tools()
        except BaseException:
            await client.close()
            raise
        self._rpc = client
        return client

    @property
    def explorer(self) -> LogExplorer:
        """Get explorer instance."""
        if not self._explorer:
            raise RuntimeError("Session not started")
        return self._explorer

    @property
    def tool_executor(self) -> ToolExecutor:
        """Get tool executor instance."""
        if not self._executor:
            raise RuntimeError("Session not started")
        return self._executor

    @property
    def cache(self) -> Cache:
        """Get cache instance."""
        if self._cache is None:
            raise RuntimeError("Session not started")
        return self._cache

    @property
    def retry_policy(self) -> RetryPolicy:
        """Get retry policy instance."""
        if self._retry is None:
            raise RuntimeError("Session not started")
        return self._retry

    @property
    def tools(self) -> list[ToolDescriptor]:
        """Tools discovered on the MCP peer."""
        return list(self._tools)

    @property
    def rpc(self) -> ProcessRpcClient | None:
        return self._rpc
