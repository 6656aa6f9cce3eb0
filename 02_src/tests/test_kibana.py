"""Tests for the Kibana backend."""

import json

import httpx
import pytest

from logdeck.backends import KibanaClient, create_backend
from logdeck.backends.kibana import build_kql, build_search_body, kql_quote
from logdeck.errors import BackendError, BackendErrorKind
from logdeck.explorer import LogExplorer
from logdeck.models import BackendConfig, LogQuery

ES_BODY = {
    "hits": {
        "hits": [
            {
                "_source": {
                    "@timestamp": "2024-01-01T00:00:00Z",
                    "level": "ERROR",
                    "message": "boom",
                    "service": {"name": "api"},
                }
            }
        ]
    }
}


def make_config(version="7.10.2", **overrides):
    data = {
        "type": "kibana",
        "url": "https://kibana.local",
        "auth": {"type": "basic", "username": "elastic", "password": "changeme"},
        "version": version,
    }
    data.update(overrides)
    return BackendConfig.from_mapping(data)


class TestKql:
    """Tests for KQL construction."""

    def test_quote_escapes(self):
        assert kql_quote('say "hi" \\ now') == '"say \\"hi\\" \\\\ now"'

    def test_quote_strips_control_chars(self):
        assert kql_quote("api\r\n") == '"api"'

    def test_empty_query_matches_everything(self):
        assert build_kql(LogQuery()) == "*"
        assert build_kql(LogQuery(text="*")) == "*"

    def test_combined(self):
        kql = build_kql(LogQuery(text="status:500", level="ERROR", service="api"))
        assert kql == '(status:500) AND level: ("ERROR" or "error") AND service.name: "api"'

    def test_service_cannot_break_out(self):
        kql = build_kql(LogQuery(service='api" OR level: "DEBUG'))
        assert kql == 'service.name: "api\\" OR level: \\"DEBUG"'

    def test_search_body_time_range(self):
        body = build_search_body(
            LogQuery(start_time="2024-01-01T00:00:00Z", max_results=7)
        )
        filters = body["query"]["bool"]["filter"]
        assert filters[1] == {"range": {"@timestamp": {"gte": "2024-01-01T00:00:00Z"}}}
        assert body["size"] == 7


class TestKibanaClient:
    """Tests for KibanaClient version handling."""

    def test_factory(self):
        assert isinstance(create_backend(make_config()), KibanaClient)

    @pytest.mark.asyncio
    async def test_envelope_version(self):
        """Test 7.10+ uses the internal search endpoint and rawResponse."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "x", "rawResponse": ES_BODY})

        client = KibanaClient(make_config("7.17.0"), transport=httpx.MockTransport(handler))
        assert client.uses_envelope
        entries = await client.query(LogQuery(level="ERROR"))
        await client.close()

        request = requests[0]
        assert request.url.path == "/internal/search/es"
        assert request.headers["kbn-xsrf"] == "true"
        assert request.headers["kbn-version"] == "7.17.0"
        body = json.loads(request.content)
        assert body["params"]["index"] == "logs-*"
        assert "query" in body["params"]["body"]
        assert [e.message for e in entries] == ["boom"]
        assert entries[0].service == "api"

    @pytest.mark.asyncio
    async def test_console_proxy_version(self):
        """Test older versions go through the console proxy."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=ES_BODY)

        client = KibanaClient(make_config("7.9.3"), transport=httpx.MockTransport(handler))
        assert not client.uses_envelope
        entries = await client.query(LogQuery())
        await client.close()

        request = requests[0]
        assert request.url.path == "/api/console/proxy"
        assert request.url.params["path"] == "logs-*/_search"
        assert request.url.params["method"] == "POST"
        assert "query" in json.loads(request.content)
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_console_proxy_response_wrapper(self):
        client = KibanaClient(
            make_config("6.8.0"),
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"response": ES_BODY})
            ),
        )
        entries = await client.query(LogQuery())
        await client.close()
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_unexpected_envelope(self):
        client = KibanaClient(
            make_config(),
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"isPartial": True})
            ),
        )
        with pytest.raises(BackendError) as exc_info:
            await client.query(LogQuery())
        await client.close()
        assert exc_info.value.kind == BackendErrorKind.PARSE

    @pytest.mark.asyncio
    async def test_forbidden(self):
        client = KibanaClient(
            make_config(),
            transport=httpx.MockTransport(lambda request: httpx.Response(403)),
        )
        with pytest.raises(BackendError) as exc_info:
            await client.query(LogQuery())
        await client.close()
        assert exc_info.value.kind == BackendErrorKind.AUTH

    @pytest.mark.asyncio
    async def test_health_check(self):
        def handler(request):
            return httpx.Response(200 if request.url.path == "/api/status" else 404)

        client = KibanaClient(make_config(), transport=httpx.MockTransport(handler))
        assert await client.health_check()
        await client.close()


class TestKibanaSearch:
    """Tests for searching through Kibana with LogExplorer."""

    @pytest.mark.asyncio
    async def test_lower_case_level(self, cache, retry_policy):
        """Test a lower-case level reaches documents stored in either case."""
        documents = [
            {"@timestamp": "2024-01-01T00:00:02Z", "level": "error", "message": "lower"},
            {"@timestamp": "2024-01-01T00:00:01Z", "level": "ERROR", "message": "upper"},
        ]

        def handler(request):
            body = json.loads(request.content)["params"]["body"]
            kql = body["query"]["bool"]["filter"][0]["query_string"]["query"]
            hits = [
                {"_source": doc}
                for doc in documents
                if f'"{doc["level"]}"' in kql.split("level:", 1)[1]
            ]
            return httpx.Response(200, json={"rawResponse": {"hits": {"hits": hits}}})

        client = KibanaClient(make_config(), transport=httpx.MockTransport(handler))
        explorer = LogExplorer({"kibana": client}, cache, retry_policy)
        entries = await explorer.search(LogQuery(level="error"))
        await client.close()

        assert [e.message for e in entries] == ["lower", "upper"]
