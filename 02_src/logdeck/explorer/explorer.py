"""LogExplorer: cached, retried, filtered search over backends and the MCP peer."""

import asyncio
import inspect
import json
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, Union

from ..backends.base import IBackendClient, entry_from_source
from ..cache import Cache
from ..errors import BackendError, BackendErrorKind, ConfigError, LogDeckError, ProcessDied
from ..logging_config import get_logger
from ..models import LogAggregation, LogEntry, LogFilter, LogQuery, ToolCallResult
from ..retry import RetryPolicy
from ..rpc import IRpcClient
from . import export
from .plan import SearchPlan, fingerprint

logger = get_logger(__name__)

RPC_BACKEND_ID = "mcp"

EntryHandler = Callable[[LogEntry], Union[None, Awaitable[None]]]
Reconnect = Callable[[], Awaitable[IRpcClient]]


class ILogExplorer(Protocol):
    """Operations the REPL/TUI layer consumes."""

    async def search(
        self,
        query: LogQuery,
        log_filter: LogFilter | None = None,
        backend_id: str | None = None,
    ) -> list[LogEntry]:
        """Cached search, newest first, capped at query.max_results."""
        ...

    def aggregate(self, entries: Iterable[LogEntry]) -> LogAggregation:
        """Exact counts in one pass."""
        ...

    async def stream(
        self,
        query: LogQuery,
        log_filter: LogFilter | None,
        interval_ms: int,
        on_entry: EntryHandler,
        cancel: asyncio.Event,
        backend_id: str | None = None,
    ) -> int:
        """Poll for new entries until cancel is set."""
        ...


def aggregate(entries: Iterable[LogEntry]) -> LogAggregation:
    """Exact totals, per-level and per-service counts and time bounds in one pass.

    Entries without a service are counted in total and by_level only.
    """
    result = LogAggregation()
    for entry in entries:
        result.total += 1
        result.by_level[entry.level] = result.by_level.get(entry.level, 0) + 1
        if entry.service:
            result.by_service[entry.service] = result.by_service.get(entry.service, 0) + 1
        if result.min_timestamp is None or entry.timestamp < result.min_timestamp:
            result.min_timestamp = entry.timestamp
        if result.max_timestamp is None or entry.timestamp > result.max_timestamp:
            result.max_timestamp = entry.timestamp
    return result


def entries_from_tool_result(result: ToolCallResult) -> list[LogEntry]:
    """Decode the JSON documents inside a query_logs tool result."""
    if result.is_error:
        message = " ".join(result.texts()) or "tool reported an error"
        raise BackendError(BackendErrorKind.QUERY, RPC_BACKEND_ID, message)

    entries: list[LogEntry] = []
    for text in result.texts():
        if not text.strip():
            continue
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise BackendError(
                BackendErrorKind.PARSE, RPC_BACKEND_ID, f"tool output is not JSON: {e}"
            ) from e
        entries.extend(entry_from_source(doc) for doc in _documents(payload))
    return entries


def _documents(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        for key in ("logs", "entries", "hits"):
            inner = payload.get(key)
            if isinstance(inner, dict) and isinstance(inner.get("hits"), list):
                inner = inner["hits"]
            if isinstance(inner, list):
                return _documents(inner)
        return [payload]
    if isinstance(payload, list):
        docs = []
        for item in payload:
            if isinstance(item, dict):
                source = item.get("_source")
                docs.append(source if isinstance(source, dict) else item)
        return docs
    raise BackendError(BackendErrorKind.PARSE, RPC_BACKEND_ID, "unexpected tool output shape")


class LogExplorer:
    """Routes searches to a backend or the MCP peer, with cache and retry."""

    def __init__(
        self,
        backends: Mapping[str, IBackendClient],
        cache: Cache,
        retry: RetryPolicy,
        rpc: IRpcClient | None = None,
        reconnect: Reconnect | None = None,
        default_backend: str | None = None,
        overfetch: int = 4,
        rpc_tool: str = "query_logs",
    ):
        self._backends = dict(backends)
        self._cache = cache
        self._retry = retry
        self._rpc = rpc
        self._reconnect = reconnect
        self._overfetch = overfetch
        self._rpc_tool = rpc_tool

        if default_backend is None:
            default_backend = next(iter(self._backends), RPC_BACKEND_ID)
        self._default_backend = default_backend

    @property
    def default_backend(self) -> str:
        return self._default_backend

    @property
    def backend_ids(self) -> list[str]:
        ids = list(self._backends)
        if self._rpc is not None or self._reconnect is not None:
            ids.append(RPC_BACKEND_ID)
        return ids

    async def search(
        self,
        query: LogQuery,
        log_filter: LogFilter | None = None,
        backend_id: str | None = None,
        use_cache: bool = True,
    ) -> list[LogEntry]:
        """Cached search, newest first, capped at query.max_results."""
        backend_id = backend_id or self._default_backend
        plan = SearchPlan.build(query, log_filter)
        key = fingerprint(backend_id, plan)

        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s search %s", backend_id, key[:12])
                return list(cached)

        if plan.unsatisfiable:
            logger.debug("Search %s cannot match anything, skipping backend", key[:12])
            return []

        if backend_id == RPC_BACKEND_ID:
            fetch = partial(self._fetch_rpc, plan)
        else:
            backend = self._backends.get(backend_id)
            if backend is None:
                raise ConfigError(f"Unknown backend {backend_id!r}")
            fetch = partial(self._fetch_backend, backend, plan)

        raw = await self._retry.retry(fetch)
        entries = plan.apply(raw)
        logger.info(
            "Search on %s returned %d entries (%d before filtering)",
            backend_id,
            len(entries),
            len(raw),
        )

        if use_cache:
            self._cache.set(key, tuple(entries))
        return entries

    def aggregate(self, entries: Iterable[LogEntry]) -> LogAggregation:
        """Exact counts in one pass."""
        return aggregate(entries)

    async def stream(
        self,
        query: LogQuery,
        log_filter: LogFilter | None,
        interval_ms: int,
        on_entry: EntryHandler,
        cancel: asyncio.Event,
        backend_id: str | None = None,
    ) -> int:
        """Poll for new entries until cancel is set. Returns how many were delivered.

        Each poll starts at the watermark (the newest timestamp delivered so
        far); entries already delivered at that timestamp are recognised by
        (timestamp, trace_id). Once a watermark exists, a poll whose page is
        full keeps paging back towards it, so bursts larger than
        query.max_results are delivered whole. Transient failures are logged
        and the next poll proceeds; other errors end the stream.
        """
        watermark: datetime | None = query.start_time
        seen: set[tuple[datetime, str]] = set()
        delivered = 0
        interval = max(interval_ms, 0) / 1000

        while not cancel.is_set():
            try:
                entries = await self._poll(query, log_filter, backend_id, watermark)
            except LogDeckError as e:
                if not e.transient:
                    raise
                logger.warning("Stream poll failed, will retry next interval: %s", e)
                entries = []

            fresh = sorted(
                (e for e in entries if e.dedupe_key not in seen),
                key=lambda e: e.timestamp,
            )
            for entry in fresh:
                if cancel.is_set():
                    break
                seen.add(entry.dedupe_key)
                result = on_entry(entry)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
                if watermark is None or entry.timestamp > watermark:
                    watermark = entry.timestamp

            if watermark is not None:
                seen = {k for k in seen if k[0] >= watermark}

            try:
                await asyncio.wait_for(cancel.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Stream cancelled after delivering %d entries", delivered)
        return delivered

    async def _poll(
        self,
        query: LogQuery,
        log_filter: LogFilter | None,
        backend_id: str | None,
        watermark: datetime | None,
    ) -> list[LogEntry]:
        """Every entry from the watermark on, newest first, fetched page by page.

        Without a watermark only the newest page is fetched.
        """
        collected: dict[tuple[datetime, str], LogEntry] = {}
        end_time = query.end_time
        while True:
            page_query = LogQuery(
                text=query.text,
                start_time=watermark,
                end_time=end_time,
                level=query.level,
                service=query.service,
                max_results=query.max_results,
            )
            page = await self.search(page_query, log_filter, backend_id, use_cache=False)
            new = [e for e in page if e.dedupe_key not in collected]
            collected.update((e.dedupe_key, e) for e in new)

            # A short page, or one with nothing unseen, reached the watermark
            if watermark is None or len(page) < query.max_results or not new:
                break
            end_time = min(e.timestamp for e in page)
            logger.debug("Stream page full, paging back to %s", end_time)

        return sorted(collected.values(), key=lambda e: e.timestamp, reverse=True)

    def export_json(self, entries: Iterable[LogEntry], path: export.PathLike) -> int:
        """Write entries to path as a JSON array. Returns the number written."""
        return export.export_json(entries, path)

    def export_csv(self, entries: Iterable[LogEntry], path: export.PathLike) -> int:
        """Write entries to path as RFC 4180 CSV. Returns the number written."""
        return export.export_csv(entries, path)

    async def _fetch_backend(self, backend: IBackendClient, plan: SearchPlan) -> list[LogEntry]:
        query, substring = plan.backend_query(backend.native_filters, self._overfetch)
        return await backend.query(query, substring=substring)

    async def _fetch_rpc(self, plan: SearchPlan) -> list[LogEntry]:
        rpc = await self._rpc_client()
        # Predicates are passed as hints; the peer's support for them is unknown
        query, _ = plan.backend_query(frozenset(), self._overfetch)
        arguments: dict[str, Any] = {"query": query.text or "*", "maxResults": query.max_results}
        if plan.level:
            arguments["level"] = plan.level
        if plan.service:
            arguments["service"] = plan.service
        if plan.window.start:
            arguments["startTime"] = plan.window.start.isoformat()
        if plan.window.end:
            arguments["endTime"] = plan.window.end.isoformat()

        try:
            result = await rpc.call_tool(self._rpc_tool, arguments)
        except ProcessDied as e:
            if self._reconnect is None:
                raise
            raise ProcessDied(str(e), reconnectable=True) from e
        return entries_from_tool_result(result)

    async def _rpc_client(self) -> IRpcClient:
        if self._rpc is not None and self._rpc.is_alive():
            return self._rpc
        if self._reconnect is None:
            if self._rpc is None:
                raise ConfigError("No MCP peer configured")
            raise ProcessDied("MCP peer is not running")

        logger.warning("MCP peer is not running, reconnecting")
        try:
            self._rpc = await self._reconnect()
        except ProcessDied as e:
            raise ProcessDied(f"Reconnect failed: {e}", reconnectable=True) from e
        return self._rpc
