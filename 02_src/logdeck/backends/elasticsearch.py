"""Elasticsearch backend client."""

from typing import Any

import httpx

from ..errors import BackendError, BackendErrorKind
from ..logging_config import get_logger
from ..models import BackendConfig, LogEntry, LogQuery, format_timestamp
from .base import (
    FilterField,
    auth_headers,
    basic_auth,
    build_http_client,
    entry_from_source,
    probe,
    send_json,
    strip_control_chars,
)

logger = get_logger(__name__)


def build_search_body(query: LogQuery) -> dict[str, Any]:
    """Translate a LogQuery into an Elasticsearch _search body.

    The free text is Lucene query_string syntax and passes through untouched;
    level, service and time bounds become structured filter clauses, so their
    values are never parsed as query syntax.
    """
    must: list[dict[str, Any]] = []
    filters: list[dict[str, Any]] = []

    if query.has_text:
        must.append({"query_string": {"query": query.text}})

    if query.level:
        level = strip_control_chars(query.level).strip()
        filters.append({"terms": {"level": sorted({level.lower(), level.upper()})}})

    if query.service:
        filters.append({"term": {"service.name": strip_control_chars(query.service).strip()}})

    if query.start_time or query.end_time:
        bounds: dict[str, str] = {}
        if query.start_time:
            bounds["gte"] = format_timestamp(query.start_time)
        if query.end_time:
            bounds["lte"] = format_timestamp(query.end_time)
        filters.append({"range": {"@timestamp": bounds}})

    if must or filters:
        bool_query: dict[str, Any] = {}
        if must:
            bool_query["must"] = must
        if filters:
            bool_query["filter"] = filters
        es_query: dict[str, Any] = {"bool": bool_query}
    else:
        es_query = {"match_all": {}}

    return {
        "query": es_query,
        "size": query.max_results,
        "sort": [{"@timestamp": {"order": "desc"}}],
    }


def parse_hits(payload: Any, backend: str = "Elasticsearch") -> list[LogEntry]:
    """Extract hits.hits[]._source documents from a search response."""
    hits = payload.get("hits") if isinstance(payload, dict) else None
    hits = hits.get("hits") if isinstance(hits, dict) else None
    if not isinstance(hits, list):
        raise BackendError(BackendErrorKind.PARSE, backend, "response has no hits.hits array")

    entries = []
    for hit in hits:
        source = hit.get("_source") if isinstance(hit, dict) else None
        if not isinstance(source, dict):
            logger.debug("Skipping hit without _source: %s", hit)
            continue
        entries.append(entry_from_source(source))
    return entries


class ElasticsearchClient:
    """Queries an index pattern through the _search API."""

    name = "Elasticsearch"
    native_filters = frozenset({FilterField.LEVEL, FilterField.SERVICE, FilterField.TIME_RANGE})

    def __init__(
        self,
        config: BackendConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._client = build_http_client(config, transport)
        self._headers = auth_headers(config)
        self._auth = basic_auth(config)

    async def query(self, query: LogQuery, substring: str | None = None) -> list[LogEntry]:
        """Run the query; substring is left to the caller."""
        body = build_search_body(query)
        url = f"{self._config.url}/{self._config.index_pattern}/_search"
        logger.debug("Elasticsearch search %s: %s", url, body)
        payload = await send_json(
            self._client,
            "POST",
            url,
            backend=self.name,
            json_body=body,
            headers=self._headers,
            auth=self._auth,
        )
        return parse_hits(payload, self.name)

    async def health_check(self) -> bool:
        return await probe(
            self._client,
            f"{self._config.url}/_cluster/health",
            headers=self._headers,
            auth=self._auth or httpx.USE_CLIENT_DEFAULT,
        )

    async def close(self) -> None:
        await self._client.aclose()
