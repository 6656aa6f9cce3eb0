"""Tests for LogExplorer.stream()."""

import asyncio

import pytest

from logdeck.backends import FilterField
from logdeck.errors import BackendError, BackendErrorKind
from logdeck.explorer import LogExplorer
from logdeck.models import LogQuery


class ScriptedBackend:
    """Returns a different batch on each successful poll, repeating the last one."""

    name = "Scripted"
    native_filters = frozenset({FilterField.TIME_RANGE})

    def __init__(self, polls, errors=None):
        self.polls = polls
        self.errors = list(errors or [])
        self.calls = []
        self.served = 0

    async def query(self, query, substring=None):
        self.calls.append(query)
        if self.errors:
            raise self.errors.pop(0)
        batch = self.polls[min(self.served, len(self.polls) - 1)]
        self.served += 1
        return list(batch)

    async def health_check(self):
        return True

    async def close(self):
        pass


class WindowBackend:
    """Stores entries and honors the time window and size of each query."""

    name = "Window"
    native_filters = frozenset({FilterField.TIME_RANGE})

    def __init__(self, entries):
        self.entries = list(entries)
        self.calls = []

    async def query(self, query, substring=None):
        self.calls.append(query)
        window = query.time_range
        kept = [e for e in self.entries if window.contains(e.timestamp)]
        kept.sort(key=lambda e: e.timestamp, reverse=True)
        return kept[: query.max_results]

    async def health_check(self):
        return True

    async def close(self):
        pass


@pytest.fixture
def streamer(cache, retry_policy):
    """Builds a LogExplorer over one ScriptedBackend."""

    def _build(backend):
        return LogExplorer({"scripted": backend}, cache, retry_policy)

    return _build


class TestStream:
    """Tests for polling, dedupe and cancellation."""

    @pytest.mark.asyncio
    async def test_delivers_new_entries_once_in_order(self, streamer, make_entry):
        """Test overlapping polls deliver each entry exactly once, oldest first."""
        e1, e2, e3 = make_entry(1), make_entry(2), make_entry(3)
        backend = ScriptedBackend([[e2, e1], [e3, e2], [e3]])
        explorer = streamer(backend)

        delivered = []
        cancel = asyncio.Event()

        def on_entry(entry):
            delivered.append(entry)
            if len(delivered) == 3:
                cancel.set()

        count = await asyncio.wait_for(
            explorer.stream(LogQuery(), None, 10, on_entry, cancel), timeout=5
        )

        assert count == 3
        assert delivered == [e1, e2, e3]

    @pytest.mark.asyncio
    async def test_polls_from_watermark(self, streamer, make_entry):
        e1, e2 = make_entry(1), make_entry(2)
        backend = ScriptedBackend([[e2, e1], []])
        explorer = streamer(backend)

        cancel = asyncio.Event()

        async def stop_after_second_poll():
            while len(backend.calls) < 2:
                await asyncio.sleep(0.005)
            cancel.set()

        stopper = asyncio.create_task(stop_after_second_poll())
        await asyncio.wait_for(
            explorer.stream(LogQuery(), None, 10, lambda entry: None, cancel), timeout=5
        )
        await stopper

        assert backend.calls[0].start_time is None
        assert backend.calls[1].start_time == e2.timestamp

    @pytest.mark.asyncio
    async def test_async_handler(self, streamer, make_entry):
        backend = ScriptedBackend([[make_entry(1)]])
        explorer = streamer(backend)
        cancel = asyncio.Event()
        delivered = []

        async def on_entry(entry):
            await asyncio.sleep(0)
            delivered.append(entry)
            cancel.set()

        count = await asyncio.wait_for(
            explorer.stream(LogQuery(), None, 10, on_entry, cancel), timeout=5
        )
        assert count == 1
        assert len(delivered) == 1

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, explorer, fake_backend):
        cancel = asyncio.Event()
        cancel.set()
        count = await explorer.stream(LogQuery(), None, 10, lambda entry: None, cancel)
        assert count == 0
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_bypasses_cache(self, streamer, make_entry, cache):
        backend = ScriptedBackend([[make_entry(1)]])
        explorer = streamer(backend)
        cancel = asyncio.Event()
        await asyncio.wait_for(
            explorer.stream(LogQuery(), None, 10, lambda entry: cancel.set(), cancel),
            timeout=5,
        )
        assert cache.size() == 0

    @pytest.mark.asyncio
    async def test_transient_failure_does_not_end_stream(self, streamer, make_entry):
        """Test a poll that exhausts its retries is skipped, not fatal."""
        network = [BackendError(BackendErrorKind.NETWORK, "Scripted", "down") for _ in range(3)]
        backend = ScriptedBackend([[make_entry(1)]], errors=network)
        explorer = streamer(backend)
        cancel = asyncio.Event()
        delivered = []

        def on_entry(entry):
            delivered.append(entry)
            cancel.set()

        count = await asyncio.wait_for(
            explorer.stream(LogQuery(), None, 10, on_entry, cancel), timeout=5
        )
        assert count == 1
        assert len(backend.calls) == 4

    @pytest.mark.asyncio
    async def test_permanent_failure_ends_stream(self, streamer):
        backend = ScriptedBackend(
            [[]], errors=[BackendError(BackendErrorKind.AUTH, "Scripted", "denied")]
        )
        explorer = streamer(backend)
        with pytest.raises(BackendError):
            await asyncio.wait_for(
                explorer.stream(LogQuery(), None, 10, lambda entry: None, asyncio.Event()),
                timeout=5,
            )


class TestStreamPaging:
    """Tests for polls returning more entries than fit in one page."""

    @pytest.mark.asyncio
    async def test_burst_larger_than_page_delivered_whole(self, streamer, make_entry):
        """Test every entry of a burst after the watermark is delivered, oldest first."""
        first = make_entry(1)
        burst = [make_entry(seconds) for seconds in range(2, 7)]
        backend = WindowBackend([first])
        explorer = streamer(backend)

        delivered = []
        cancel = asyncio.Event()

        def on_entry(entry):
            delivered.append(entry)
            if entry is first:
                backend.entries.extend(burst)
            if len(delivered) == 6:
                cancel.set()

        count = await asyncio.wait_for(
            explorer.stream(LogQuery(max_results=2), None, 10, on_entry, cancel), timeout=5
        )

        assert count == 6
        assert delivered == [first, *burst]
        # Later pages end where the previous page's oldest entry was
        assert backend.calls[2].end_time == burst[3].timestamp

    @pytest.mark.asyncio
    async def test_first_poll_fetches_newest_page_only(self, streamer, make_entry):
        entries = [make_entry(seconds) for seconds in range(1, 6)]
        backend = WindowBackend(entries)
        explorer = streamer(backend)

        delivered = []
        cancel = asyncio.Event()

        def on_entry(entry):
            delivered.append(entry)
            if len(delivered) == 2:
                cancel.set()

        await asyncio.wait_for(
            explorer.stream(LogQuery(max_results=2), None, 10, on_entry, cancel), timeout=5
        )

        assert delivered == entries[3:]
        assert len(backend.calls) == 1
