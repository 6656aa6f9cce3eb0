"""OpenObserve backend client."""

import re
from datetime import datetime, timezone
from typing import Any

import httpx

from ..errors import BackendError, BackendErrorKind
from ..logging_config import get_logger
from ..models import BackendConfig, LogEntry, LogQuery
from .base import (
    FilterField,
    build_http_client,
    entry_from_source,
    probe,
    require_basic_auth,
    send_json,
    strip_control_chars,
)

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def sql_string(value: str) -> str:
    """Quote a value as a SQL string literal."""
    return "'" + strip_control_chars(value).replace("'", "''") + "'"


def sql_like_pattern(value: str) -> str:
    """Quote a substring as a LIKE '%...%' pattern with ESCAPE '\\'."""
    escaped = (
        strip_control_chars(value)
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return sql_string(f"%{escaped}%")


def sql_identifier(name: str) -> str:
    """Double-quote a stream name."""
    return '"' + strip_control_chars(name).replace('"', '""') + '"'


def to_micros(value: datetime) -> int:
    """UTC datetime to integer microseconds since the epoch."""
    delta = value.astimezone(timezone.utc) - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def build_sql(
    query: LogQuery,
    stream: str,
    substring: str | None = None,
    message_field: str = "log",
) -> str:
    """Compile a LogQuery into an OpenObserve SELECT statement."""
    if not _IDENTIFIER.match(message_field):
        raise ValueError(f"invalid column name {message_field!r}")

    conditions = []
    if query.has_text:
        conditions.append(f"{message_field} LIKE {sql_like_pattern(query.text.strip())} ESCAPE '\\'")
    if substring:
        conditions.append(f"{message_field} LIKE {sql_like_pattern(substring)} ESCAPE '\\'")
    if query.level:
        # Stored levels differ in case between shippers
        conditions.append(f"lower(level) = {sql_string(query.level.strip().lower())}")
    if query.service:
        conditions.append(f"service_name = {sql_string(query.service.strip())}")
    if query.start_time:
        conditions.append(f"_timestamp >= {to_micros(query.start_time)}")
    if query.end_time:
        conditions.append(f"_timestamp <= {to_micros(query.end_time)}")

    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    return (
        f"SELECT * FROM {sql_identifier(stream)}{where} "
        f"ORDER BY _timestamp DESC LIMIT {int(query.max_results)}"
    )


class OpenObserveClient:
    """Queries a stream through the SQL _search API."""

    name = "OpenObserve"
    native_filters = frozenset(
        {FilterField.LEVEL, FilterField.SERVICE, FilterField.TIME_RANGE, FilterField.SUBSTRING}
    )

    def __init__(
        self,
        config: BackendConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        message_field: str = "log",
    ):
        credentials = require_basic_auth(config, self.name)
        self._config = config
        self._auth = httpx.BasicAuth(credentials.username, credentials.password)
        self._client = build_http_client(config, transport)
        self._message_field = message_field

    def build_request(self, query: LogQuery, substring: str | None = None) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        return {
            "query": {
                "sql": build_sql(query, self._config.index_pattern, substring, self._message_field),
                "start_time": to_micros(query.start_time) if query.start_time else 0,
                "end_time": to_micros(query.end_time) if query.end_time else to_micros(now),
                "from": 0,
                "size": query.max_results,
            }
        }

    async def query(self, query: LogQuery, substring: str | None = None) -> list[LogEntry]:
        body = self.build_request(query, substring)
        url = f"{self._config.url}/api/{self._config.organization}/_search"
        logger.debug("OpenObserve search %s: %s", url, body["query"]["sql"])
        payload = await send_json(
            self._client,
            "POST",
            url,
            backend=self.name,
            json_body=body,
            auth=self._auth,
        )

        hits = payload.get("hits") if isinstance(payload, dict) else None
        if not isinstance(hits, list):
            raise BackendError(BackendErrorKind.PARSE, self.name, "response has no hits array")

        return [
            entry_from_source(
                hit,
                timestamp_fields=("_timestamp", "timestamp", "@timestamp"),
                message_fields=(self._message_field, "message", "log"),
            )
            for hit in hits
            if isinstance(hit, dict)
        ]

    async def health_check(self) -> bool:
        return await probe(self._client, f"{self._config.url}/healthz")

    async def close(self) -> None:
        await self._client.aclose()
