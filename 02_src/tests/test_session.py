"""Tests for Session lifecycle."""

import asyncio

import httpx
import pytest

from logdeck import Session
from logdeck.config import Settings
from logdeck.errors import ProcessDied
from logdeck.explorer import RPC_BACKEND_ID
from logdeck.models import BackendConfig, LogQuery, RpcServerConfig

ES_RESPONSE = {
    "hits": {
        "hits": [
            {
                "_source": {
                    "@timestamp": "2024-01-01T00:00:00Z",
                    "level": "INFO",
                    "message": "hello",
                    "service": {"name": "api"},
                }
            }
        ]
    }
}


@pytest.fixture
def es_config():
    return BackendConfig(type="elasticsearch", url="http://es.local:9200")


@pytest.fixture
def es_transport():
    return httpx.MockTransport(lambda request: httpx.Response(200, json=ES_RESPONSE))


@pytest.fixture
def rpc_config(peer_command):
    command, args = peer_command
    return RpcServerConfig(command=command, args=args)


@pytest.fixture
def settings():
    return Settings(rpc_timeout=5.0, retry_initial_delay=0.01)


class TestSessionLifecycle:
    """Tests for start() and stop()."""

    @pytest.mark.asyncio
    async def test_backends_only(self, es_config, es_transport, settings):
        async with Session(
            backends={"es": es_config},
            settings=settings,
            transports={"es": es_transport},
        ) as session:
            assert session.explorer.backend_ids == ["es"]
            assert session.rpc is None
            assert session.tools == []
            entries = await session.explorer.search(LogQuery())
            assert [e.message for e in entries] == ["hello"]

        with pytest.raises(RuntimeError):
            session.explorer

    @pytest.mark.asyncio
    async def test_with_mcp_peer(self, es_config, es_transport, rpc_config, settings):
        async with Session(
            backends={"es": es_config},
            rpc_server=rpc_config,
            settings=settings,
            transports={"es": es_transport},
        ) as session:
            assert [t.name for t in session.tools] == ["query_logs", "echo", "die"]
            assert session.explorer.backend_ids == ["es", RPC_BACKEND_ID]

            entries = await session.explorer.search(
                LogQuery(level="ERROR"), backend_id=RPC_BACKEND_ID
            )
            assert [e.message for e in entries] == ["payment failed", "db timeout"]
            rpc = session.rpc

        assert not rpc.is_alive()

    @pytest.mark.asyncio
    async def test_reconnects_after_peer_exit(self, rpc_config, settings):
        async with Session(rpc_server=rpc_config, settings=settings) as session:
            first = session.rpc
            with pytest.raises(ProcessDied):
                await first.call_tool("die", {})

            entries = await session.explorer.search(LogQuery(max_results=5))
            assert len(entries) == 3
            assert session.rpc is not first
            assert session.rpc.is_alive()

    @pytest.mark.asyncio
    async def test_tool_executor(self, es_config, es_transport, settings):
        async with Session(
            backends={"es": es_config},
            settings=settings,
            transports={"es": es_transport},
        ) as session:
            result = await session.tool_executor.execute("list_services", "{}")
        assert result is not None

    @pytest.mark.asyncio
    async def test_failed_peer_start_cleans_up(self, es_config, settings):
        session = Session(
            backends={"es": es_config},
            rpc_server=RpcServerConfig(command="/nonexistent/logdeck-peer"),
            settings=settings,
        )
        with pytest.raises(ProcessDied):
            await session.start()
        with pytest.raises(RuntimeError):
            session.explorer

    def test_not_started(self):
        session = Session()
        with pytest.raises(RuntimeError):
            session.cache
        with pytest.raises(RuntimeError):
            session.tool_executor

    @pytest.mark.asyncio
    async def test_retry_budget_from_settings(self):
        async with Session(settings=Settings(retry_budget=2.5, retry_max_attempts=4)) as session:
            config = session.retry_policy.config
        assert config.budget == 2.5
        assert config.max_attempts == 4


class TestSessionReconnect:
    """Tests for replacing a dead MCP peer."""

    @pytest.fixture
    def spawn_counter(self, monkeypatch):
        """Records every peer client a session spawns."""

        def _install(session):
            spawned = []
            original = session._spawn_rpc

            async def counting():
                client = await original()
                spawned.append(client)
                return client

            monkeypatch.setattr(session, "_spawn_rpc", counting)
            return spawned

        return _install

    @pytest.mark.asyncio
    async def test_concurrent_reconnects_share_one_peer(self, rpc_config, settings, spawn_counter):
        session = Session(rpc_server=rpc_config, settings=settings)
        await session.start()
        spawned = spawn_counter(session)
        try:
            with pytest.raises(ProcessDied):
                await session.rpc.call_tool("die", {})

            first, second = await asyncio.gather(session.reconnect_rpc(), session.reconnect_rpc())
            assert first is second
            assert session.rpc is first
            assert len(spawned) == 1
        finally:
            await session.stop()

        assert not first.is_alive()

    @pytest.mark.asyncio
    async def test_concurrent_searches_after_peer_exit(self, rpc_config, settings, spawn_counter):
        """Test searches racing on a dead peer respawn it once and leave no peer behind."""
        session = Session(rpc_server=rpc_config, settings=settings)
        await session.start()
        spawned = spawn_counter(session)
        try:
            with pytest.raises(ProcessDied):
                await session.rpc.call_tool("die", {})

            results = await asyncio.gather(
                session.explorer.search(LogQuery(max_results=5)),
                session.explorer.search(LogQuery(max_results=5)),
            )
            assert [len(entries) for entries in results] == [3, 3]
            assert len(spawned) == 1
        finally:
            await session.stop()

        assert not any(client.is_alive() for client in spawned)

    @pytest.mark.asyncio
    async def test_live_peer_is_kept(self, rpc_config, settings, spawn_counter):
        async with Session(rpc_server=rpc_config, settings=settings) as session:
            spawned = spawn_counter(session)
            current = session.rpc
            assert await session.reconnect_rpc() is current
            assert spawned == []

    @pytest.mark.asyncio
    async def test_no_respawn_after_stop(self, rpc_config, settings):
        session = Session(rpc_server=rpc_config, settings=settings)
        await session.start()
        await session.stop()
        with pytest.raises(ProcessDied):
            await session.reconnect_rpc()
        assert session.rpc is None
