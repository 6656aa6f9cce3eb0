"""Common backend contract and helpers shared by the three clients."""

import json
import re
from enum import Enum
from typing import Any, Mapping, Protocol

import httpx

from ..errors import BackendError, BackendErrorKind, ConfigError
from ..logging_config import get_logger
from ..models import BackendConfig, BasicAuth, BearerAuth, LogEntry, LogQuery, parse_timestamp

logger = get_logger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class FilterField(str, Enum):
    """Predicates a backend may evaluate natively."""

    LEVEL = "level"
    SERVICE = "service"
    TIME_RANGE = "time_range"
    SUBSTRING = "substring"


class IBackendClient(Protocol):
    """A log store that can answer a LogQuery."""

    name: str
    native_filters: frozenset[FilterField]

    async def query(self, query: LogQuery, substring: str | None = None) -> list[LogEntry]:
        """Run the query; substring is only honoured when natively supported."""
        ...

    async def health_check(self) -> bool:
        """True when the backend answers its health endpoint."""
        ...

    async def close(self) -> None:
        """Release the pooled HTTP connections."""
        ...


def strip_control_chars(value: str) -> str:
    """Remove ASCII control characters (newlines included) from a filter value."""
    return _CONTROL_CHARS.sub("", value)


def build_http_client(
    config: BackendConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Pooled client honouring verify_ssl and timeout."""
    return httpx.AsyncClient(
        verify=config.verify_ssl,
        timeout=config.timeout,
        transport=transport,
    )


def auth_headers(config: BackendConfig) -> dict[str, str]:
    """Authorization header for bearer tokens; basic auth goes through httpx."""
    if isinstance(config.auth, BearerAuth):
        return {"Authorization": f"Bearer {config.auth.token}"}
    return {}


def basic_auth(config: BackendConfig) -> httpx.BasicAuth | None:
    if isinstance(config.auth, BasicAuth):
        return httpx.BasicAuth(config.auth.username, config.auth.password)
    return None


def require_basic_auth(config: BackendConfig, backend: str) -> BasicAuth:
    if not isinstance(config.auth, BasicAuth):
        raise ConfigError(f"{backend} requires basic auth (username and password)")
    return config.auth


async def send_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    backend: str,
    json_body: Any = None,
    params: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
    auth: httpx.Auth | None = None,
) -> Any:
    """Send a request and decode the JSON body, mapping failures to BackendError."""
    try:
        response = await client.request(
            method,
            url,
            json=json_body,
            params=params,
            headers=headers,
            auth=auth if auth is not None else httpx.USE_CLIENT_DEFAULT,
        )
    except httpx.TimeoutException as e:
        raise BackendError(BackendErrorKind.TIMEOUT, backend, f"request to {url} timed out") from e
    except httpx.DecodingError as e:
        raise BackendError(BackendErrorKind.PARSE, backend, f"cannot decode response body: {e}") from e
    except httpx.RequestError as e:
        raise BackendError(BackendErrorKind.NETWORK, backend, f"request to {url} failed: {e}") from e

    status = response.status_code
    if status >= 400:
        detail = response.text[:500]
        if status in (401, 403):
            kind = BackendErrorKind.AUTH
        elif status == 429 or status >= 500:
            kind = BackendErrorKind.NETWORK
        else:
            kind = BackendErrorKind.QUERY
        raise BackendError(kind, backend, f"status {status}: {detail}")

    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BackendError(BackendErrorKind.PARSE, backend, f"response is not JSON: {e}") from e


async def probe(client: httpx.AsyncClient, url: str, **kwargs: Any) -> bool:
    """GET url and report whether it answered with a 2xx."""
    try:
        response = await client.get(url, **kwargs)
    except httpx.HTTPError as e:
        logger.debug("Health check %s failed: %s", url, e)
        return False
    return response.is_success


def _first(source: Mapping[str, Any], *paths: str) -> Any:
    """Value at the first dotted path present in source."""
    for path in paths:
        node: Any = source
        for part in path.split("."):
            if isinstance(node, Mapping) and part in node:
                node = node[part]
            else:
                node = None
                break
        if node is not None and node != "":
            return node
        # Flattened keys such as {"service.name": ...}
        if path in source and source[path] not in (None, ""):
            return source[path]
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping) and "name" in value:
        return str(value["name"])
    return str(value)


_KNOWN_FIELDS = {
    "@timestamp", "timestamp", "_timestamp", "level", "severity", "log.level",
    "message", "body", "log", "service", "service.name", "service_name",
    "trace_id", "traceId", "trace.id",
}


def entry_from_source(
    source: Mapping[str, Any],
    timestamp_fields: tuple[str, ...] = ("@timestamp", "timestamp"),
    message_fields: tuple[str, ...] = ("message", "body"),
) -> LogEntry:
    """Map a backend document to a LogEntry.

    Missing optional fields become empty strings; scalar leftovers and
    `labels` are kept as string attributes.
    """
    attributes: dict[str, str] = {}
    labels = source.get("labels")
    if isinstance(labels, Mapping):
        attributes.update({str(k): _text(v) for k, v in labels.items()})
    for key, value in source.items():
        if key in _KNOWN_FIELDS or key == "labels" or key in timestamp_fields or key in message_fields:
            continue
        if isinstance(value, (str, int, float, bool)):
            attributes[key] = str(value)

    return LogEntry(
        timestamp=parse_timestamp(_first(source, *timestamp_fields)),
        level=_text(_first(source, "level", "severity", "log.level")).upper(),
        message=_text(_first(source, *message_fields)),
        service=_text(_first(source, "service.name", "service_name", "service")),
        trace_id=_text(_first(source, "trace_id", "traceId", "trace.id")),
        attributes=attributes,
    )
