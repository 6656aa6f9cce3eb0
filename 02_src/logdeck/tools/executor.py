"""Log tools exposed to a conversational front end as JSON in, JSON out."""

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from pydantic import BaseModel, ValidationError

from ..errors import ToolExecutionError
from ..explorer import LogExplorer
from ..logging_config import get_logger
from ..models import LogEntry, LogQuery, format_timestamp, parse_timestamp

logger = get_logger(__name__)

MAX_QUERY_RESULTS = 200
MESSAGE_PREVIEW_CHARS = 500

_RELATIVE = re.compile(r"^(\d+)\s*([smhd])$")
_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_time(value: str | None, now: datetime | None = None) -> datetime | None:
    """Parse '30m', '1h', '2d' relative to now, or an absolute timestamp."""
    if value is None or not value.strip():
        return None
    now = now or datetime.now(timezone.utc)
    match = _RELATIVE.match(value.strip().lower())
    if match:
        amount, unit = match.groups()
        return now - timedelta(**{_UNITS[unit]: int(amount)})
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ToolExecutionError(f"Cannot parse time {value!r}; use e.g. 30m, 1h, 2d or ISO-8601")
    return parsed


class QueryLogsArgs(BaseModel):
    """Search logs by query text with optional level, service and time filters."""

    query: str = "*"
    max_results: int = 50
    level: str | None = None
    service: str | None = None
    start_time: str | None = None
    end_time: str | None = None


class LogStatsArgs(BaseModel):
    """Summarize log volume by level and service over a time window."""

    start_time: str | None = None
    end_time: str | None = None


class ListServicesArgs(BaseModel):
    """List services that logged during the last hour."""


def truncate_message(message: str, limit: int = MESSAGE_PREVIEW_CHARS) -> str:
    if len(message) <= limit:
        return message
    return message[:limit] + "..."


def _summary(entry: LogEntry) -> dict[str, Any]:
    return {
        "timestamp": format_timestamp(entry.timestamp),
        "level": entry.level,
        "message": truncate_message(entry.message),
        "service": entry.service or None,
        "trace_id": entry.trace_id or None,
    }


class IToolExecutor(Protocol):
    """Executes named log tools."""

    async def execute(self, tool_name: str, arguments: str) -> str:
        """Run a tool with JSON arguments, returning JSON text."""
        ...


class ToolExecutor:
    """Answers query_logs, list_services and get_log_stats through a LogExplorer."""

    def __init__(
        self,
        explorer: LogExplorer,
        backend_id: str | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._explorer = explorer
        self._backend_id = backend_id
        self._clock = clock
        self._handlers = {
            "query_logs": (QueryLogsArgs, self._query_logs),
            "list_services": (ListServicesArgs, self._list_services),
            "get_log_stats": (LogStatsArgs, self._get_log_stats),
        }

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Name, description and JSON schema of every tool."""
        return [
            {
                "name": name,
                "description": (model.__doc__ or "").strip(),
                "parameters": model.model_json_schema(),
            }
            for name, (model, _) in self._handlers.items()
        ]

    async def execute(self, tool_name: str, arguments: str) -> str:
        """Run a tool with JSON arguments, returning JSON text."""
        if tool_name not in self._handlers:
            raise ToolExecutionError(f"Unknown tool: {tool_name}")

        model, handler = self._handlers[tool_name]
        try:
            args = model.model_validate_json(arguments or "{}")
        except ValidationError as e:
            raise ToolExecutionError(f"Invalid arguments for {tool_name}: {e}") from e

        logger.info("Executing tool %s", tool_name)
        result = await handler(args)
        return json.dumps(result, indent=2, default=str)

    async def _query_logs(self, args: QueryLogsArgs) -> dict[str, Any]:
        now = self._clock()
        query = LogQuery(
            text=args.query,
            start_time=parse_time(args.start_time, now),
            end_time=parse_time(args.end_time, now),
            level=args.level,
            service=args.service,
            max_results=min(max(args.max_results, 1), MAX_QUERY_RESULTS),
        )
        entries = await self._explorer.search(query, backend_id=self._backend_id)
        stats = self._explorer.aggregate(entries)

        time_range = None
        if stats.min_timestamp is not None:
            time_range = {
                "start": format_timestamp(stats.min_timestamp),
                "end": format_timestamp(stats.max_timestamp),
            }

        return {
            "total_count": stats.total,
            "logs": [_summary(e) for e in entries],
            "level_distribution": stats.by_level,
            "services": sorted(stats.by_service),
            "time_range": time_range,
        }

    async def _list_services(self, args: ListServicesArgs) -> list[str]:
        query = LogQuery(
            text="*",
            start_time=self._clock() - timedelta(hours=1),
            max_results=100,
        )
        entries = await self._explorer.search(query, backend_id=self._backend_id)
        return sorted({e.service for e in entries if e.service})

    async def _get_log_stats(self, args: LogStatsArgs) -> dict[str, Any]:
        now = self._clock()
        query = LogQuery(
            text="*",
            start_time=parse_time(args.start_time, now) or now - timedelta(hours=1),
            end_time=parse_time(args.end_time, now),
            max_results=MAX_QUERY_RESULTS,
        )
        stats = self._explorer.aggregate(
            await self._explorer.search(query, backend_id=self._backend_id)
        )
        return {
            "total_logs": stats.total,
            "level_distribution": stats.by_level,
            "service_distribution": stats.by_service,
            "error_count": stats.by_level.get("ERROR", 0),
            "warn_count": stats.by_level.get("WARN", 0) + stats.by_level.get("WARNING", 0),
        }
