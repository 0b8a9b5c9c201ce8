from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from polyglot_db_mcp.adapters.api import (
    ElasticsearchAdapter,
    InfluxDBAdapter,
    MeilisearchAdapter,
    QdrantAdapter,
    SurrealDBAdapter,
    XTDBAdapter,
)
from polyglot_db_mcp.adapters.api.base import APIError
from polyglot_db_mcp.adapters.api.influxdb import flux_string, line_protocol, parse_annotated_csv
from polyglot_db_mcp.core import BackendExecutionError, ConnectivityError, DispatchGateway, ValidationError

pytestmark = pytest.mark.anyio


def recording_transport(handler: Callable[[httpx.Request], httpx.Response]):
    seen: List[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(_handler), seen


async def test_qdrant_search_posts_vector_and_unwraps_result():
    transport, seen = recording_transport(
        lambda request: httpx.Response(200, json={"result": [{"id": 1, "score": 0.9, "payload": {"t": "a"}}], "status": "ok"})
    )
    adapter = QdrantAdapter({"QDRANT_URL": "http://qdrant:6333", "QDRANT_API_KEY": "secret"}, transport=transport)

    result = await adapter.qdrant_search({"collection": "docs", "vector": "[0.1, 0.2]", "limit": 3})

    request = seen[0]
    assert request.url == "http://qdrant:6333/collections/docs/points/search"
    assert request.headers["api-key"] == "secret"
    assert json.loads(request.content) == {"vector": [0.1, 0.2], "limit": 3, "with_payload": True}
    assert result == {"results": [{"id": 1, "score": 0.9, "payload": {"t": "a"}}]}


async def test_qdrant_create_collection_validates_distance():
    transport, seen = recording_transport(lambda request: httpx.Response(200, json={"result": True}))
    adapter = QdrantAdapter({}, transport=transport)

    with pytest.raises(ValidationError, match="'distance' must be one of"):
        await adapter.qdrant_create_collection({"collection": "docs", "vectorSize": 4, "distance": "Hamming"})
    assert seen == []


async def test_elasticsearch_search_flattens_hits():
    body = {"hits": {"total": {"value": 1}, "hits": [{"_id": "a1", "_score": 1.2, "_source": {"title": "Hello"}}]}}
    transport, seen = recording_transport(lambda request: httpx.Response(200, json=body))
    adapter = ElasticsearchAdapter({"ELASTICSEARCH_URL": "http://es:9200"}, transport=transport)

    result = await adapter.es_search({"index": "logs-*", "query": {"match": {"title": "hello"}}, "size": 5})

    assert seen[0].url.path == "/logs-*/_search"
    assert json.loads(seen[0].content) == {"query": {"match": {"title": "hello"}}, "size": 5, "from": 0}
    assert result == {"total": 1, "hits": [{"_id": "a1", "_score": 1.2, "title": "Hello"}], "count": 1}


async def test_elasticsearch_delete_by_query_requires_filter():
    transport, seen = recording_transport(lambda request: httpx.Response(200, json={}))
    adapter = ElasticsearchAdapter({}, transport=transport)

    with pytest.raises(ValidationError, match="requires a filter condition"):
        await adapter.es_delete_by_query({"index": "logs", "query": "{}"})
    assert seen == []


async def test_http_error_status_becomes_api_error():
    transport, _ = recording_transport(lambda request: httpx.Response(404, json={"message": "Index `movies` not found."}))
    adapter = MeilisearchAdapter({"MEILISEARCH_URL": "http://meili:7700"}, transport=transport)

    with pytest.raises(APIError) as excinfo:
        await adapter.meili_search({"index": "movies", "query": "alien"})

    assert excinfo.value.status_code == 404
    assert "Index `movies` not found." in str(excinfo.value)


async def test_meilisearch_search_sends_bearer_token():
    transport, seen = recording_transport(lambda request: httpx.Response(200, json={"hits": [{"id": 1}], "estimatedTotalHits": 1, "processingTimeMs": 2}))
    adapter = MeilisearchAdapter({"MEILISEARCH_API_KEY": "master"}, transport=transport)

    result = await adapter.meili_search({"index": "movies", "query": "alien", "filter": "year > 1980", "sort": "year:desc"})

    assert seen[0].headers["Authorization"] == "Bearer master"
    assert json.loads(seen[0].content) == {"q": "alien", "limit": 20, "filter": "year > 1980", "sort": ["year:desc"]}
    assert result["estimatedTotalHits"] == 1


async def test_transport_errors_become_connectivity_errors():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = XTDBAdapter({}, transport=httpx.MockTransport(refuse), retry_attempts=1)

    with pytest.raises(ConnectivityError, match="xtdb is unreachable"):
        await adapter.xtdb_status({})
    assert await adapter.is_connected() is False


async def test_transport_errors_are_retried():
    attempts = []

    def flaky(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"version": "2.0"})

    adapter = XTDBAdapter({}, transport=httpx.MockTransport(flaky), retry_attempts=2)

    assert await adapter.xtdb_status({}) == {"status": {"version": "2.0"}}
    assert len(attempts) == 2


async def test_xtdb_put_builds_transaction():
    transport, seen = recording_transport(lambda request: httpx.Response(200, json={"txId": 7}))
    adapter = XTDBAdapter({"XTDB_URL": "http://xtdb:3000"}, transport=transport)

    result = await adapter.xtdb_put({"table": "people", "id": "p1", "doc": '{"name": "Ada"}'})

    assert seen[0].url == "http://xtdb:3000/tx"
    assert json.loads(seen[0].content) == {"txOps": [{"put": {"table": "people", "doc": {"name": "Ada", "_id": "p1"}}}]}
    assert result == {"transaction": {"txId": 7}}


async def test_surreal_binds_values_as_variables():
    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"status": "OK", "result": None},
                {"status": "OK", "result": [{"id": "person:1", "name": "Ada"}]},
            ],
        )

    transport, seen = recording_transport(respond)
    adapter = SurrealDBAdapter({"SURREAL_NAMESPACE": "ns", "SURREAL_DATABASE": "db"}, transport=transport)

    result = await adapter.surreal_select({"table": "person"})

    request = seen[0]
    assert request.url.path == "/sql"
    assert request.content.decode() == 'LET $tb = "person";\nSELECT * FROM type::table($tb);'
    assert request.headers["Surreal-NS"] == "ns"
    assert request.headers["Authorization"].startswith("Basic ")
    assert result == {"count": 1, "records": [{"id": "person:1", "name": "Ada"}]}


async def test_surreal_statement_errors_raise():
    transport, _ = recording_transport(lambda request: httpx.Response(200, json=[{"status": "ERR", "result": "Parse error"}]))
    adapter = SurrealDBAdapter({}, transport=transport)

    with pytest.raises(BackendExecutionError, match="SurrealQL error: Parse error"):
        await adapter.surreal_query({"query": "SELEC"})


async def test_surreal_rejects_bad_table_names():
    adapter = SurrealDBAdapter({}, transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])))

    with pytest.raises(ValidationError):
        await adapter.surreal_select({"table": "person; REMOVE TABLE person"})


async def test_influx_query_parses_annotated_csv():
    csv_body = "#datatype,string,long,double\n,result,table,_value\n,_result,0,1.5\n,_result,0,2.5\n"
    transport, seen = recording_transport(lambda request: httpx.Response(200, text=csv_body, headers={"content-type": "application/csv"}))
    adapter = InfluxDBAdapter({"INFLUXDB_TOKEN": "tok", "INFLUXDB_ORG": "acme"}, transport=transport)

    result = await adapter.influx_query({"query": 'from(bucket: "b") |> range(start: -1h)'})

    assert seen[0].headers["Authorization"] == "Token tok"
    assert seen[0].url.params["org"] == "acme"
    assert result == {
        "records": [
            {"result": "_result", "table": "0", "_value": "1.5"},
            {"result": "_result", "table": "0", "_value": "2.5"},
        ],
        "count": 2,
    }


async def test_influx_write_point_sends_line_protocol():
    transport, seen = recording_transport(lambda request: httpx.Response(204))
    adapter = InfluxDBAdapter({"INFLUXDB_BUCKET": "metrics"}, transport=transport)

    result = await adapter.influx_write_point({"measurement": "cpu", "tags": {"host": "a b"}, "fields": {"usage": 0.5, "cores": 4}})

    assert seen[0].url.params["bucket"] == "metrics"
    assert seen[0].content.decode() == "cpu,host=a\\ b usage=0.5,cores=4i"
    assert result["success"] is True


async def test_influx_aggregate_rejects_unknown_function():
    adapter = InfluxDBAdapter({}, transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    with pytest.raises(ValidationError, match="'fn' must be one of"):
        await adapter.influx_aggregate({"measurement": "cpu", "fn": "drop"})


def test_flux_helpers():
    assert flux_string('cpu") |> drop() //') == '"cpu\\") |> drop() //"'
    assert line_protocol("cpu load", {}, {"ok": True, "note": 'say "hi"'}, "17") == 'cpu\\ load ok=true,note="say \\"hi\\"" 17'
    assert parse_annotated_csv("") == []


async def test_http_adapter_through_gateway_reports_status():
    transport, _ = recording_transport(lambda request: httpx.Response(200, json={"status": "available"}))
    gateway = DispatchGateway.from_adapters([MeilisearchAdapter({}, transport=transport)])

    report = await gateway.status()
    await gateway.shutdown()

    assert report["connected"] == ["meilisearch"]
