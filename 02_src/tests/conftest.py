"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

FAKE_PEER = Path(__file__).parent / "fixtures" / "fake_mcp_peer.py"

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """In-memory backend recording every query it receives."""

    name = "Fake"

    def __init__(self, entries=None, native_filters=frozenset(), errors=None):
        self.entries = list(entries or [])
        self.native_filters = frozenset(native_filters)
        self.errors = list(errors or [])
        self.calls = []
        self.closed = False

    async def query(self, query, substring=None):
        self.calls.append((query, substring))
        if self.errors:
            raise self.errors.pop(0)
        return list(self.entries)

    async def health_check(self):
        return True

    async def close(self):
        self.closed = True


def _entry(
    seconds: int,
    level: str = "INFO",
    service: str = "api",
    trace_id: str | None = None,
    message: str = "msg",
):
    from logdeck.models import LogEntry

    return LogEntry(
        timestamp=BASE_TIME + timedelta(seconds=seconds),
        level=level,
        message=message,
        service=service,
        trace_id=trace_id if trace_id is not None else f"trace-{seconds}",
    )


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_entry():
    """Factory for entries at BASE_TIME + seconds."""
    return _entry


@pytest.fixture
def backend_factory():
    """The FakeBackend class, for tests needing custom entries or errors."""
    return FakeBackend


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """List collecting delays passed to the fake sleep."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def cache(clock):
    """Cache with a 60 second TTL on the fake clock."""
    from logdeck.cache import Cache

    return Cache(default_ttl=60.0, clock=clock)


@pytest.fixture
def retry_policy(fake_sleep):
    from logdeck.retry import RetryConfig, RetryPolicy

    return RetryPolicy(RetryConfig(max_attempts=3, initial_delay=0.1, multiplier=2.0), sleep=fake_sleep)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def explorer(fake_backend, cache, retry_policy):
    """LogExplorer over a single fake backend called 'fake'."""
    from logdeck.explorer import LogExplorer

    return LogExplorer(backends={"fake": fake_backend}, cache=cache, retry=retry_policy)


@pytest.fixture
def peer_command():
    """Command and args launching the fake MCP peer."""
    return sys.executable, [str(FAKE_PEER)]


@pytest_asyncio.fixture
async def rpc_client(peer_command):
    """Started and initialized client talking to the fake peer."""
    from logdeck.rpc import ProcessRpcClient

    command, args = peer_command
    async with ProcessRpcClient.spawn(command, args, request_timeout=5.0) as client:
        await client.initialize()
        yield client
