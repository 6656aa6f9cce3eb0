"""Kibana backend client."""

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
    probe,
    send_json,
    strip_control_chars,
)
from .elasticsearch import parse_hits

logger = get_logger(__name__)

# First version whose search proxy wraps results in rawResponse
ENVELOPE_VERSION = (7, 10)


def kql_quote(value: str) -> str:
    """Quote a value as a KQL string, escaping backslashes and quotes."""
    cleaned = strip_control_chars(value).strip()
    return '"' + cleaned.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_kql(query: LogQuery) -> str:
    """Combine the free-text KQL fragment with level/service predicates."""
    parts = []
    if query.has_text:
        parts.append(f"({query.text.strip()})")
    if query.level:
        level = query.level.strip()
        values = " or ".join(kql_quote(v) for v in sorted({level.lower(), level.upper()}))
        parts.append(f"level: ({values})")
    if query.service:
        parts.append(f"service.name: {kql_quote(query.service)}")
    return " AND ".join(parts) if parts else "*"


def build_search_body(query: LogQuery) -> dict[str, Any]:
    filters: list[dict[str, Any]] = [
        {"query_string": {"query": build_kql(query), "analyze_wildcard": True}}
    ]
    if query.start_time or query.end_time:
        bounds: dict[str, str] = {}
        if query.start_time:
            bounds["gte"] = format_timestamp(query.start_time)
        if query.end_time:
            bounds["lte"] = format_timestamp(query.end_time)
        filters.append({"range": {"@timestamp": bounds}})

    return {
        "version": True,
        "size": query.max_results,
        "sort": [{"@timestamp": {"order": "desc"}}],
        "query": {"bool": {"must": [], "filter": filters}},
    }


class KibanaClient:
    """Queries Elasticsearch through Kibana's search proxy."""

    name = "Kibana"
    native_filters = frozenset({FilterField.LEVEL, FilterField.SERVICE, FilterField.TIME_RANGE})

    def __init__(
        self,
        config: BackendConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._client = build_http_client(config, transport)
        self._auth = basic_auth(config)
        self._headers = {
            "kbn-xsrf": "true",
            "kbn-version": config.version,
            **auth_headers(config),
        }

    @property
    def uses_envelope(self) -> bool:
        return self._config.version_tuple[:2] >= ENVELOPE_VERSION

    async def query(self, query: LogQuery, substring: str | None = None) -> list[LogEntry]:
        body = build_search_body(query)
        index = self._config.index_pattern

        if self.uses_envelope:
            url = f"{self._config.url}/internal/search/es"
            request_body: dict[str, Any] = {"params": {"index": index, "body": body}}
            params = None
        else:
            url = f"{self._config.url}/api/console/proxy"
            request_body = body
            params = {"path": f"{index}/_search", "method": "POST"}

        logger.debug("Kibana %s search %s: %s", self._config.version, url, body)
        payload = await send_json(
            self._client,
            "POST",
            url,
            backend=self.name,
            json_body=request_body,
            params=params,
            headers=self._headers,
            auth=self._auth,
        )
        return parse_hits(self._unwrap(payload), self.name)

    def _unwrap(self, payload: Any) -> Any:
        """Strip the version-specific envelope around the Elasticsearch response."""
        if not isinstance(payload, dict):
            raise BackendError(BackendErrorKind.PARSE, self.name, "response is not an object")

        keys = ("rawResponse", "response") if self.uses_envelope else ("response", "rawResponse")
        for key in keys:
            inner = payload.get(key)
            if isinstance(inner, dict) and "hits" in inner:
                return inner
        if "hits" in payload:
            return payload
        raise BackendError(
            BackendErrorKind.PARSE,
            self.name,
            f"no hits in response envelope for version {self._config.version}",
        )

    async def health_check(self) -> bool:
        return await probe(
            self._client,
            f"{self._config.url}/api/status",
            headers=self._headers,
            auth=self._auth or httpx.USE_CLIENT_DEFAULT,
        )

    async def close(self) -> None:
        await self._client.aclose()
